"""Module for potential arrays and the transmission functions built from them."""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from slicestem.core.complex import complex_exponential
from slicestem.core.energy import Accelerator
from slicestem.core.grid import Grid
from slicestem.core.utils import get_dtype


class PotentialArray:
    """
    The potential array represents slices of the projected electrostatic potential as
    an array.

    Parameters
    ----------
    array : 3D np.ndarray
        The array representing the potential slices. The first dimension is the slice
        index and the last two are the spatial dimensions (`y`, `x`).
    sampling : one or two float
        Lateral sampling of the potential in `x` and `y` [Å].
    slice_thickness : float
        The thickness of the potential slices [Å].
    """

    def __init__(
        self,
        array: np.ndarray,
        sampling: float | Sequence[float],
        slice_thickness: float,
    ):
        array = np.asarray(array)

        if array.ndim != 3:
            raise ValueError(
                f"potential array must be 3D (slice, y, x), got {array.ndim}D"
            )

        if np.iscomplexobj(array):
            raise ValueError("potential array must be real")

        if len(array) == 0:
            raise ValueError("potential array has no slices")

        if slice_thickness <= 0.0:
            raise ValueError(
                f"slice thickness must be positive, got {slice_thickness}"
            )

        self._array = array
        self._grid = Grid(gpts=(array.shape[2], array.shape[1]), sampling=sampling)
        self._slice_thickness = float(slice_thickness)

    @property
    def array(self) -> np.ndarray:
        """Potential slices [eV / e * Å]."""
        return self._array

    @property
    def grid(self) -> Grid:
        return self._grid

    @property
    def gpts(self) -> tuple[int, int]:
        return self._grid.gpts

    @property
    def sampling(self) -> tuple[float, float]:
        return self._grid.sampling

    @property
    def extent(self) -> tuple[float, float]:
        return self._grid.extent

    @property
    def num_slices(self) -> int:
        """Number of potential slices."""
        return len(self._array)

    @property
    def slice_thickness(self) -> float:
        """Thickness of the potential slices [Å]."""
        return self._slice_thickness

    @property
    def thickness(self) -> float:
        """Total thickness of the potential [Å]."""
        return self.num_slices * self._slice_thickness

    def transmission_function(
        self, energy: Optional[float] = None, sigma: Optional[float] = None
    ) -> TransmissionFunction:
        """
        Calculate the transmission functions for each slice.

        Parameters
        ----------
        energy : float, optional
            Electron energy [eV], used to derive the interaction parameter.
        sigma : float, optional
            Interaction parameter [1 / (Å * eV)], overrides the value derived from the
            energy.

        Returns
        -------
        transmission_function : TransmissionFunction
            Transmission functions for each slice.
        """
        if sigma is None:
            sigma = Accelerator(energy=energy).sigma

        return TransmissionFunction.from_potential(
            self._array, sigma, self._grid, self._slice_thickness
        )


class TransmissionFunction:
    """
    Phase transmission functions exp(i sigma V) of each potential slice.

    Parameters
    ----------
    array : 3D np.ndarray
        Complex transmission functions (slice, `y`, `x`).
    grid : Grid
        Grid of the transmission functions.
    slice_thickness : float
        Thickness of the slices [Å].
    """

    def __init__(self, array: np.ndarray, grid: Grid, slice_thickness: float):
        self._array = array
        self._grid = grid
        self._slice_thickness = slice_thickness

    @classmethod
    def from_potential(
        cls,
        array: np.ndarray,
        sigma: float,
        grid: Grid,
        slice_thickness: float,
    ) -> TransmissionFunction:
        dtype = get_dtype(complex=False)
        array = complex_exponential(
            np.asarray(array, dtype=dtype) * np.array(sigma, dtype=dtype)
        )
        return cls(array, grid, slice_thickness)

    @property
    def array(self) -> np.ndarray:
        return self._array

    @property
    def grid(self) -> Grid:
        return self._grid

    @property
    def num_slices(self) -> int:
        return len(self._array)

    @property
    def slice_thickness(self) -> float:
        return self._slice_thickness

    def check_matches_grid(self, grid: Grid) -> None:
        """
        Raise an error if the transmission functions are not defined on the given grid.
        """
        if self._grid != grid:
            raise ValueError(
                f"potential grid {self._grid} does not match the simulation grid "
                f"{grid}"
            )


def validate_potential(potential: PotentialArray | np.ndarray, **kwargs) -> PotentialArray:
    """
    Validate that the input is a potential array, arrays are wrapped using the given
    keyword arguments.
    """
    if isinstance(potential, PotentialArray):
        return potential

    return PotentialArray(potential, **kwargs)
