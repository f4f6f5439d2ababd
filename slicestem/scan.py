"""Module for describing different types of scans."""

from __future__ import annotations

from abc import abstractmethod
from typing import Optional, Sequence

import numpy as np

from slicestem.core.utils import CopyMixin, EqualityMixin, inclusive_range


def nyquist_probe_count(
    semiangle_cutoff: float, wavelength: float, extent: float
) -> int:
    """
    Number of probe positions along a cell axis needed to sample the scan at the Nyquist
    rate of a probe.

    Parameters
    ----------
    semiangle_cutoff : float
        Semiangle cutoff of the probe aperture [mrad].
    wavelength : float
        Electron wavelength [Å].
    extent : float
        Extent of the cell along the axis [Å].
    """
    return max(int(np.ceil(4 * semiangle_cutoff * 1e-3 / wavelength * extent)), 1)


def _validate_window(window: Sequence[float]) -> tuple[float, float]:
    window = tuple(float(value) for value in window)

    if len(window) != 2:
        raise ValueError(f"scan window must be given as (start, end), got {window}")

    if window[1] < window[0]:
        raise ValueError(f"scan window end must not be smaller than start, got {window}")

    return window


class BaseScan(EqualityMixin, CopyMixin):
    """Abstract class to describe scans."""

    def __len__(self) -> int:
        return self.num_positions

    @property
    @abstractmethod
    def shape(self) -> tuple[int, int]:
        """Shape of the output cells (number of probes in `y`, number of probes in
        `x`)."""
        pass

    @property
    def num_positions(self) -> int:
        """Number of probe positions in the scan."""
        return self.shape[0] * self.shape[1]

    @abstractmethod
    def get_positions(self) -> np.ndarray:
        """
        Probe positions [Å] as an array of shape (num_positions, 2) holding `x` and
        `y`, ordered by probe index.
        """
        pass

    @abstractmethod
    def output_indices(self, index: int) -> tuple[int, int]:
        """Output cell (`y`, `x`) of the probe with the given index."""
        pass


class GridScan(BaseScan):
    """
    A raster scan over a rectangular window of a periodic cell.

    The positions along each axis start at the lower bound of the window and are spaced
    by the step, the last position is the largest one not exceeding the upper bound.

    Parameters
    ----------
    extent : two float
        Extent of the cell in `x` and `y` [Å].
    step : two float
        Distance between neighbouring probe positions in `x` and `y` [Å].
    window_x : two float, optional
        Lower and upper bound of the scan in `x` as fractions of the cell extent.
        Default is (0, 1).
    window_y : two float, optional
        Lower and upper bound of the scan in `y` as fractions of the cell extent.
        Default is (0, 1).
    """

    def __init__(
        self,
        extent: tuple[float, float],
        step: float | tuple[float, float],
        window_x: Sequence[float] = (0.0, 1.0),
        window_y: Sequence[float] = (0.0, 1.0),
    ):
        if np.isscalar(step):
            step = (step, step)

        self._extent = (float(extent[0]), float(extent[1]))
        self._step = (float(step[0]), float(step[1]))
        self._window_x = _validate_window(window_x)
        self._window_y = _validate_window(window_y)

        if not all(d > 0.0 for d in self._step):
            raise ValueError(f"scan step must be positive, got {self._step}")

        self._x = inclusive_range(
            self._window_x[0] * self._extent[0],
            self._step[0],
            self._window_x[1] * self._extent[0],
        )
        self._y = inclusive_range(
            self._window_y[0] * self._extent[1],
            self._step[1],
            self._window_y[1] * self._extent[1],
        )

    @classmethod
    def nyquist(
        cls,
        extent: tuple[float, float],
        semiangle_cutoff: float,
        wavelength: float,
        window_x: Sequence[float] = (0.0, 1.0),
        window_y: Sequence[float] = (0.0, 1.0),
    ) -> GridScan:
        """
        Create a scan with the step set by the Nyquist sampling of a probe.

        Parameters
        ----------
        extent : two float
            Extent of the cell in `x` and `y` [Å].
        semiangle_cutoff : float
            Semiangle cutoff of the probe aperture [mrad].
        wavelength : float
            Electron wavelength [Å].
        window_x, window_y : two float, optional
            Fractional scan window.
        """
        if semiangle_cutoff <= 0.0:
            raise ValueError("Nyquist sampling requires a positive semiangle cutoff")

        step = tuple(
            e / nyquist_probe_count(semiangle_cutoff, wavelength, e) for e in extent
        )
        return cls(extent, step=step, window_x=window_x, window_y=window_y)

    @property
    def extent(self) -> tuple[float, float]:
        """Extent of the cell [Å]."""
        return self._extent

    @property
    def step(self) -> tuple[float, float]:
        """Distance between probe positions [Å]."""
        return self._step

    @property
    def x(self) -> np.ndarray:
        """Probe positions in `x` [Å]."""
        return self._x

    @property
    def y(self) -> np.ndarray:
        """Probe positions in `y` [Å]."""
        return self._y

    @property
    def shape(self) -> tuple[int, int]:
        return len(self._y), len(self._x)

    def get_positions(self) -> np.ndarray:
        x, y = np.meshgrid(self._x, self._y, indexing="xy")
        return np.stack((x.ravel(), y.ravel()), axis=-1)

    def output_indices(self, index: int) -> tuple[int, int]:
        return index // len(self._x), index % len(self._x)


class CustomScan(BaseScan):
    """
    Custom scan based on explicit probe positions. The results are laid out as a single
    row of output cells.

    Parameters
    ----------
    positions : np.ndarray
        Scan positions [Å]. Anything that can be converted to an array of shape (n, 2) is
        accepted.
    """

    def __init__(self, positions: np.ndarray | Sequence):
        positions = np.array(positions, dtype=np.float64)

        if len(positions.shape) == 1:
            positions = positions[None]

        if len(positions.shape) != 2 or positions.shape[1] != 2:
            raise ValueError(
                f"positions must have shape (n, 2), got {positions.shape}"
            )

        if len(positions) == 0:
            raise ValueError("scan has no probe positions")

        self._positions = positions

    @property
    def positions(self) -> np.ndarray:
        """Scan positions [Å]."""
        return self._positions

    @property
    def shape(self) -> tuple[int, int]:
        return 1, len(self._positions)

    def get_positions(self) -> np.ndarray:
        return self._positions

    def output_indices(self, index: int) -> tuple[int, int]:
        return 0, index


def validate_scan(
    scan: Optional[BaseScan | Sequence | np.ndarray],
    extent: tuple[float, float],
    step: Optional[float | tuple[float, float]] = None,
    nyquist_sampling: bool = False,
    semiangle_cutoff: Optional[float] = None,
    wavelength: Optional[float] = None,
    window_x: Sequence[float] = (0.0, 1.0),
    window_y: Sequence[float] = (0.0, 1.0),
) -> BaseScan:
    """
    Validate that the input is a scan or a sequence of scan positions, if no scan is
    given a raster scan of the window is created.

    Parameters
    ----------
    scan : BaseScan or sequence, optional
        A scan, or explicit probe positions [Å].
    extent : two float
        Extent of the cell [Å].
    step : float or two float, optional
        Step of the raster scan [Å].
    nyquist_sampling : bool
        If True, the step of the raster scan is derived from the Nyquist sampling of the
        probe.
    semiangle_cutoff : float, optional
        Semiangle cutoff of the probe [mrad], required for Nyquist sampling.
    wavelength : float, optional
        Electron wavelength [Å], required for Nyquist sampling.
    window_x, window_y : two float
        Fractional scan window.

    Returns
    -------
    validated_scan : BaseScan
    """
    if isinstance(scan, BaseScan):
        validated_scan = scan
    elif scan is not None:
        validated_scan = CustomScan(scan)
    elif nyquist_sampling:
        validated_scan = GridScan.nyquist(
            extent,
            semiangle_cutoff=semiangle_cutoff,
            wavelength=wavelength,
            window_x=window_x,
            window_y=window_y,
        )
    elif step is not None:
        validated_scan = GridScan(
            extent, step=step, window_x=window_x, window_y=window_y
        )
    else:
        raise ValueError("provide a scan, explicit positions, a step or Nyquist sampling")

    if validated_scan.num_positions == 0:
        raise ValueError("scan has no probe positions")

    return validated_scan
