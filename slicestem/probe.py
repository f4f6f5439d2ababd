"""Module for building the initial probe wave function."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

import numpy as np

from slicestem.core.complex import abs2
from slicestem.core.fftw import ifft2
from slicestem.core.grid import Grid
from slicestem.core.utils import get_dtype
from slicestem.transfer import Aberrations, soft_aperture

logger = logging.getLogger(__name__)


class ProbeInitializer:
    """
    Builds the initial probe wave function in reciprocal space.

    The probe is a soft-edged aperture multiplied by the aberration phase factor
    exp(-i chi), normalized such that the sum of squared magnitudes is one. The array is
    in FFT ordering and is read by all workers without copying it in place.

    Parameters
    ----------
    grid : Grid
        The simulation grid.
    wavelength : float
        Electron wavelength [Å].
    semiangle_cutoff : float
        Semiangle cutoff of the aperture [mrad].
    aberrations : Aberrations or dict, optional
        Phase aberrations of the probe-forming lens.
    """

    def __init__(
        self,
        grid: Grid,
        wavelength: float,
        semiangle_cutoff: float,
        aberrations: Optional[Aberrations | dict] = None,
    ):
        if semiangle_cutoff < 0.0:
            raise ValueError(
                f"semiangle cutoff must be non-negative, got {semiangle_cutoff}"
            )

        if aberrations is None:
            aberrations = Aberrations()
        elif not isinstance(aberrations, Aberrations):
            aberrations = Aberrations(aberrations)

        self._grid = grid
        self._wavelength = wavelength
        self._semiangle_cutoff = semiangle_cutoff
        self._aberrations = aberrations

    @property
    def grid(self) -> Grid:
        return self._grid

    @property
    def semiangle_cutoff(self) -> float:
        """Semiangle cutoff of the aperture [mrad]."""
        return self._semiangle_cutoff

    @property
    def aberrations(self) -> Aberrations:
        return self._aberrations

    @property
    def angular_sampling(self) -> tuple[float, float]:
        """Reciprocal-space sampling in units of scattering angles [mrad]."""
        return tuple(
            d * self._wavelength * 1e3 for d in self._grid.reciprocal_space_sampling
        )

    def build(self) -> np.ndarray:
        """
        Build the normalized initial probe.

        Returns
        -------
        probe : np.ndarray
            Complex array of shape (ny, nx) in reciprocal space.
        """
        alpha = self._grid.q * self._wavelength
        phi = self._grid.phi

        array = soft_aperture(
            alpha, phi, self._semiangle_cutoff, self.angular_sampling
        ).astype(np.complex128)

        array *= self._aberrations.evaluate(alpha, phi, self._wavelength)

        array /= np.sqrt(abs2(array).sum())

        return array.astype(get_dtype(complex=True))

    def snapshot(
        self,
        probe: np.ndarray,
        probe_sink: Callable[[np.ndarray], None],
        plan_lock: Optional[threading.Lock] = None,
    ) -> None:
        """
        Hand the real-space probe to an external sink.

        Parameters
        ----------
        probe : np.ndarray
            The reciprocal-space probe created by `build`.
        probe_sink : callable
            Called with the real-space probe.
        plan_lock : threading.Lock, optional
            Lock held while planning the transform.
        """
        logger.info("Saving initial probe")
        probe_sink(ifft2(probe, plan_lock=plan_lock))
