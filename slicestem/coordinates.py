"""Module for the coordinate system shared by all probes of a simulation."""

from __future__ import annotations

import logging
from functools import cached_property
from typing import Optional, Sequence

import numpy as np

from slicestem.core.complex import complex_exponential
from slicestem.core.grid import Grid
from slicestem.core.utils import get_dtype
from slicestem.detectors import DetectorRegions, FlexibleAnnularDetector
from slicestem.scan import BaseScan

logger = logging.getLogger(__name__)


def fresnel_propagator(
    grid: Grid,
    wavelength: float,
    thickness: float,
    tilt: tuple[float, float] = (0.0, 0.0),
) -> np.ndarray:
    """
    The Fresnel propagator for a distance in free space, including the beam tilt and
    restricted to the anti-aliasing aperture.

    Parameters
    ----------
    grid : Grid
        The simulation grid.
    wavelength : float
        Electron wavelength [Å].
    thickness : float
        Distance to propagate [Å].
    tilt : two float
        Beam tilt in `x` and `y` [mrad].

    Returns
    -------
    propagator : np.ndarray
        Complex array of shape (ny, nx) in FFT ordering, zero outside the aperture.
    """
    phase = -np.pi * wavelength * thickness * grid.q2 + 2 * np.pi * thickness * (
        grid.qx * np.tan(tilt[0] * 1e-3) + grid.qy * np.tan(tilt[1] * 1e-3)
    )

    array = complex_exponential(phase)
    array[~grid.antialias_mask] = 0.0
    return array


class CoordinateSystem:
    """
    Real- and reciprocal-space coordinates, propagator and detector channels of a
    simulation. All arrays are computed once and only read afterwards.

    Parameters
    ----------
    grid : Grid
        The simulation grid.
    wavelength : float
        Electron wavelength [Å].
    slice_thickness : float
        Thickness of the potential slices [Å].
    scan : BaseScan
        The probe positions.
    detector_step : float
        Angular width of the detector channels [mrad].
    tilt : two float
        Beam tilt in `x` and `y` [mrad].
    """

    def __init__(
        self,
        grid: Grid,
        wavelength: float,
        slice_thickness: float,
        scan: BaseScan,
        detector_step: float,
        tilt: Sequence[float] = (0.0, 0.0),
    ):
        if scan.num_positions == 0:
            raise ValueError("scan has no probe positions")

        self._grid = grid
        self._wavelength = wavelength
        self._slice_thickness = slice_thickness
        self._scan = scan
        self._tilt = (float(tilt[0]), float(tilt[1]))
        self._detector = FlexibleAnnularDetector(detector_step, self.max_angle)

        logger.info(
            "Grid %s with sampling %s Å, %d probe positions, %d detector channels",
            grid.gpts,
            grid.sampling,
            scan.num_positions,
            self._detector.nbins,
        )

    @property
    def grid(self) -> Grid:
        return self._grid

    @property
    def wavelength(self) -> float:
        """Electron wavelength [Å]."""
        return self._wavelength

    @property
    def slice_thickness(self) -> float:
        return self._slice_thickness

    @property
    def scan(self) -> BaseScan:
        return self._scan

    @property
    def tilt(self) -> tuple[float, float]:
        """Beam tilt [mrad]."""
        return self._tilt

    @property
    def max_angle(self) -> float:
        """Largest scattering angle inside the anti-aliasing aperture [mrad]."""
        return self._grid.max_frequency * self._wavelength * 1e3

    @property
    def angular_sampling(self) -> tuple[float, float]:
        """Reciprocal-space sampling in units of scattering angles [mrad]."""
        return tuple(
            d * self._wavelength * 1e3 for d in self._grid.reciprocal_space_sampling
        )

    @property
    def detector(self) -> FlexibleAnnularDetector:
        return self._detector

    @cached_property
    def alpha(self) -> np.ndarray:
        """Scattering angle of each pixel [mrad]."""
        return self._grid.q * self._wavelength * 1e3

    @cached_property
    def detector_regions(self) -> DetectorRegions:
        return DetectorRegions(self._detector, self.alpha)

    @cached_property
    def propagator(self) -> np.ndarray:
        """Propagator through one slice."""
        return fresnel_propagator(
            self._grid, self._wavelength, self._slice_thickness, self._tilt
        )

    def scaled_propagator(self, dtype=None) -> np.ndarray:
        """
        Propagator through one slice divided by the number of grid points, which
        normalizes the preceding pair of unnormalized transforms.
        """
        if dtype is None:
            dtype = get_dtype(complex=True)

        return (self.propagator / self._grid.size).astype(dtype)

    def shift_phase(self, positions: np.ndarray, dtype=None) -> np.ndarray:
        """
        Fourier-space phase ramps exp(-2 pi i (qx x + qy y)) shifting probes to the
        given positions.

        Parameters
        ----------
        positions : np.ndarray
            Probe positions of shape (n, 2) [Å].
        dtype : dtype, optional
            Complex dtype of the result.

        Returns
        -------
        np.ndarray
            Array of shape (n, ny, nx).
        """
        if dtype is None:
            dtype = get_dtype(complex=True)

        positions = np.asarray(positions, dtype=np.float64)
        x = positions[:, 0, None, None]
        y = positions[:, 1, None, None]

        phase = -2 * np.pi * (self._grid.qx[None] * x + self._grid.qy[None] * y)
        return complex_exponential(phase).astype(dtype)

    def frequencies(self, dtype=None) -> tuple[np.ndarray, np.ndarray]:
        """Spatial frequencies `qx` and `qy` [1/Å]."""
        return self._grid.frequencies(dtype)

    def crop_indices(self, max_angle: Optional[float] = None) -> tuple[slice, slice]:
        """
        Slices selecting scattering angles up to a maximum from a quarter-shift cropped
        array (see `quarter_shift_crop`), in `y` and `x`.

        Parameters
        ----------
        max_angle : float, optional
            Maximum scattering angle along each axis [mrad]. If not given, the full
            cropped array is selected.
        """
        nx, ny = self._grid.gpts

        if max_angle is None:
            return slice(0, ny // 2), slice(0, nx // 2)

        slices = []
        for n, d in ((ny, self.angular_sampling[1]), (nx, self.angular_sampling[0])):
            center = n // 4
            k = int(np.floor(max_angle / d + 1e-9))
            slices.append(slice(max(center - k, 0), min(center + k + 1, n // 2)))

        return tuple(slices)
