"""Module for binning diffraction intensities into annular detector channels."""

from __future__ import annotations

from functools import cached_property

import numpy as np

from slicestem.core.utils import inclusive_range
from slicestem.cpu_kernels import sum_run_length_encoded


def detector_bin_indices(alpha: np.ndarray, step: float) -> np.ndarray:
    """
    One-based detector channel of each scattering angle.

    Angles exactly on the boundary between two channels are assigned to the outer
    channel, i.e. half-way cases of round((alpha + step / 2) / step) are always rounded
    up.

    Parameters
    ----------
    alpha : np.ndarray
        Scattering angles [mrad].
    step : float
        Angular width of the channels [mrad].
    """
    return np.floor((alpha + step / 2) / step + 0.5).astype(np.int64)


class FlexibleAnnularDetector:
    """
    The flexible annular detector bins the intensity in annular integration regions of
    equal angular width starting at zero scattering angle.

    Channels extend up to the maximum scattering angle of the simulation, intensity at
    angles beyond the last channel is dropped, not added to the last channel.

    Parameters
    ----------
    step_size : float
        Radial extent of the bins [mrad].
    max_angle : float
        Maximum scattering angle [mrad], typically the band limit of the simulation.
    """

    def __init__(self, step_size: float, max_angle: float):
        if step_size <= 0.0:
            raise ValueError(f"detector step size must be positive, got {step_size}")

        self._step_size = float(step_size)
        self._max_angle = float(max_angle)

    @property
    def step_size(self) -> float:
        """Step size [mrad]."""
        return self._step_size

    @property
    def max_angle(self) -> float:
        """Maximum scattering angle [mrad]."""
        return self._max_angle

    @cached_property
    def angles(self) -> np.ndarray:
        """Center of each detector channel [mrad]."""
        return inclusive_range(
            self._step_size / 2,
            self._step_size,
            self._max_angle - self._step_size / 2,
        )

    @property
    def nbins(self) -> int:
        """Number of detector channels."""
        return len(self.angles)

    def get_regions(self, alpha: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Flat pixel indices of each channel in run-length encoded form.

        Parameters
        ----------
        alpha : np.ndarray
            Scattering angle of each pixel [mrad].

        Returns
        -------
        order : np.ndarray
            Flat indices of the detected pixels sorted by channel, row-major within each
            channel.
        separators : np.ndarray
            The pixels of channel `i` are ``order[separators[i]:separators[i + 1]]``.
        """
        indices = detector_bin_indices(alpha, self._step_size).ravel()

        detected = np.flatnonzero((indices >= 1) & (indices <= self.nbins))
        order = detected[np.argsort(indices[detected], kind="stable")]

        counts = np.bincount(indices[detected] - 1, minlength=self.nbins)
        separators = np.concatenate(([0], np.cumsum(counts))).astype(np.int64)
        return order, separators


class DetectorRegions:
    """
    Detector channels evaluated on a simulation grid.

    Parameters
    ----------
    detector : FlexibleAnnularDetector
        The annular detector.
    alpha : np.ndarray
        Scattering angle of each pixel of the grid [mrad].
    """

    def __init__(self, detector: FlexibleAnnularDetector, alpha: np.ndarray):
        self._detector = detector
        self._shape = alpha.shape
        self._order, self._separators = detector.get_regions(alpha)

    @property
    def detector(self) -> FlexibleAnnularDetector:
        return self._detector

    @property
    def nbins(self) -> int:
        return self._detector.nbins

    def integrate(self, intensity: np.ndarray, out: np.ndarray) -> None:
        """
        Add the intensity of each detector channel to an output array.

        Parameters
        ----------
        intensity : np.ndarray
            Batch of intensities of shape (batch, `y`, `x`).
        out : np.ndarray
            Array of shape (batch, nbins) the binned intensities are added to.
        """
        intensity = intensity.reshape((len(intensity), -1))[:, self._order]
        sum_run_length_encoded(intensity, out, self._separators)
