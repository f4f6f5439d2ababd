"""Module for the Grid class and related functions."""

from __future__ import annotations

from functools import cached_property
from typing import Sequence

import numpy as np

from slicestem.core.utils import get_dtype, number_to_tuple


def validate_gpts(gpts: tuple[int, ...]) -> tuple[int, ...]:
    """
    Parameters
    ----------
    gpts : tuple of int
        The number of grid points in each dimension.

    Returns
    -------
    gpts : tuple of int
        The validated number of grid points.

    Raises
    ------
    ValueError
        If any value is not greater than 0 or is odd.
    """
    if not all(n > 0 for n in gpts):
        raise ValueError(f"gpts must be greater than 0, got {gpts}")

    if any(n % 2 for n in gpts):
        raise ValueError(f"gpts must be even, got {gpts}")

    return gpts


def spatial_frequencies(
    gpts: tuple[int, ...],
    sampling: tuple[float, ...],
    return_grid: bool = False,
):
    """
    Return the spatial frequencies of a grid.

    Parameters
    ----------
    gpts : tuple of int
        Number of grid points.
    sampling : tuple of float
        Sampling of the grid [Å].
    return_grid : bool
        If True, return the grid as a single meshgrid array.

    Returns
    -------
    spatial_frequencies : tuple of np.ndarray
        Tuple of spatial frequencies in each dimension.
    spatial_frequencies_grid : np.ndarray
        If return_grid is True, the spatial frequencies as a single meshgrid array.
    """
    out = tuple(np.fft.fftfreq(n, d) for n, d in zip(gpts, sampling))

    if return_grid:
        return np.meshgrid(*out, indexing="ij")
    else:
        return out


def quarter_shift_indices(n: int) -> np.ndarray:
    """
    Indices of the central half of a periodic axis of length n in FFT ordering.

    Element ``i`` of the result is the index of the frequency ``i - n // 4``, hence
    indexing an unshifted Fourier-space axis with the result returns its central half
    with the zero frequency at position ``n // 4``.
    """
    return (np.arange(n // 2) - n // 4) % n


def quarter_shift_crop(array: np.ndarray) -> np.ndarray:
    """
    Crop the last two axes of an array in FFT ordering to their toroidally centered
    central half.

    Parameters
    ----------
    array : np.ndarray
        Array with the two last dimensions representing (y, x) in Fourier space.

    Returns
    -------
    np.ndarray
        Array of shape ``array.shape[:-2] + (ny // 2, nx // 2)``.
    """
    iy = quarter_shift_indices(array.shape[-2])
    ix = quarter_shift_indices(array.shape[-1])
    return array[..., iy[:, None], ix[None, :]]


def antialias_mask(gpts: tuple[int, int], sampling: tuple[float, float]) -> np.ndarray:
    """
    Boolean anti-aliasing mask in FFT ordering.

    The mask is the toroidally centered half of the grid (see `quarter_shift_indices`)
    restricted to a disk with radius of half the Nyquist frequency of the coarsest
    direction.

    Parameters
    ----------
    gpts : two int
        Number of grid points in `x` and `y`.
    sampling : two float
        Real-space sampling in `x` and `y` [Å].

    Returns
    -------
    np.ndarray
        Array of shape (ny, nx).
    """
    nx, ny = gpts
    mask = np.zeros((ny, nx), dtype=bool)
    iy = quarter_shift_indices(ny)
    ix = quarter_shift_indices(nx)
    mask[iy[:, None], ix[None, :]] = True

    kx, ky = spatial_frequencies(gpts, sampling)
    k = np.sqrt(kx[None] ** 2 + ky[:, None] ** 2)
    mask &= k <= max_frequency(gpts, sampling)
    return mask


def max_frequency(gpts: tuple[int, int], sampling: tuple[float, float]) -> float:
    """Band-limit radius of the anti-aliasing mask [1/Å]."""
    return min(n // 2 / (n * d) for n, d in zip(gpts, sampling)) / 2


class Grid:
    """
    The Grid object represent the simulation grid on which the wave functions and
    potential are discretized. The grid is immutable and derived reciprocal-space
    arrays are computed once on first access.

    Parameters
    ----------
    gpts : two int
        Number of grid points in `x` and `y`. Both must be even.
    sampling : float or two float
        Grid sampling in `x` and `y` [Å].
    """

    def __init__(
        self,
        gpts: int | Sequence[int],
        sampling: float | Sequence[float],
    ):
        gpts = tuple(int(n) for n in number_to_tuple(gpts, 2))
        sampling = tuple(float(d) for d in number_to_tuple(sampling, 2))

        if not all(d > 0.0 for d in sampling):
            raise ValueError(f"sampling must be greater than 0, got {sampling}")

        self._gpts = validate_gpts(gpts)
        self._sampling = sampling

    @property
    def gpts(self) -> tuple[int, int]:
        """Number of grid points in `x` and `y`."""
        return self._gpts

    @property
    def sampling(self) -> tuple[float, float]:
        """Grid sampling in `x` and `y` [Å]."""
        return self._sampling

    @property
    def extent(self) -> tuple[float, float]:
        """Grid extent in `x` and `y` [Å]."""
        return tuple(n * d for n, d in zip(self._gpts, self._sampling))

    @property
    def shape(self) -> tuple[int, int]:
        """Shape of arrays on the grid, (ny, nx)."""
        return self._gpts[1], self._gpts[0]

    @property
    def size(self) -> int:
        """Total number of grid points."""
        return self._gpts[0] * self._gpts[1]

    @property
    def reciprocal_space_sampling(self) -> tuple[float, float]:
        """Reciprocal-space sampling [1/Å]."""
        return tuple(1 / (n * d) for n, d in zip(self._gpts, self._sampling))

    @property
    def max_frequency(self) -> float:
        """Band-limit radius of the anti-aliasing mask [1/Å]."""
        return max_frequency(self._gpts, self._sampling)

    @cached_property
    def qx(self) -> np.ndarray:
        """Spatial frequencies in `x` broadcast to the grid shape [1/Å]."""
        kx, ky = spatial_frequencies(self._gpts, self._sampling)
        return np.broadcast_to(kx[None], self.shape).copy()

    @cached_property
    def qy(self) -> np.ndarray:
        """Spatial frequencies in `y` broadcast to the grid shape [1/Å]."""
        kx, ky = spatial_frequencies(self._gpts, self._sampling)
        return np.broadcast_to(ky[:, None], self.shape).copy()

    @cached_property
    def q2(self) -> np.ndarray:
        """Squared magnitude of the spatial frequencies [1/Å^2]."""
        return self.qx**2 + self.qy**2

    @cached_property
    def q(self) -> np.ndarray:
        """Magnitude of the spatial frequencies [1/Å]."""
        return np.sqrt(self.q2)

    @cached_property
    def phi(self) -> np.ndarray:
        """Azimuthal angle of the spatial frequencies [rad]."""
        return np.arctan2(self.qy, self.qx)

    @cached_property
    def antialias_mask(self) -> np.ndarray:
        """Boolean anti-aliasing mask."""
        return antialias_mask(self._gpts, self._sampling)

    def frequencies(self, dtype=None) -> tuple[np.ndarray, np.ndarray]:
        """
        Spatial frequencies `qx` and `qy` in the given precision.

        Parameters
        ----------
        dtype : dtype, optional
            Real dtype. Defaults to the configured precision.
        """
        if dtype is None:
            dtype = get_dtype(complex=False)
        return self.qx.astype(dtype), self.qy.astype(dtype)

    def __eq__(self, other):
        if not isinstance(other, Grid):
            return False
        return self.gpts == other.gpts and np.allclose(self.sampling, other.sampling)

    def __hash__(self):
        # sampling is compared with a tolerance
        return hash(self.gpts)

    def __repr__(self):
        return f"{self.__class__.__name__}(gpts={self.gpts}, sampling={self.sampling})"
