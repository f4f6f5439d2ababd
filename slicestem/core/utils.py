"""Module for various convenient utilities."""

from __future__ import annotations

import copy
from typing import Optional, Sequence, TypeVar

import numpy as np

from slicestem.core import config

T = TypeVar("T", float, int, bool)


def number_to_tuple(
    value: T | Sequence[T], dimension: Optional[int] = None
) -> tuple[T, ...]:
    if isinstance(value, (float, int, bool, np.floating, np.integer)):
        if dimension is None:
            return (value,)
        else:
            return (value,) * dimension
    else:
        value = tuple(value)
        if dimension is not None and len(value) != dimension:
            raise ValueError(f"expected {dimension} values, got {len(value)}")
        return value


def get_dtype(complex: bool = False) -> np.dtype:
    """
    Get the numpy dtype from the config precision setting.

    Parameters
    ----------
    complex : bool, optional
        If True, return a complex dtype. Defaults to False.
    """
    dtype = config.get("precision")

    if dtype == "float32" and complex:
        dtype = np.complex64
    elif dtype == "float32":
        dtype = np.float32
    elif dtype == "float64" and complex:
        dtype = np.complex128
    elif dtype == "float64":
        dtype = np.float64
    else:
        raise RuntimeError(f"Invalid dtype: {dtype}")

    return dtype


def inclusive_range(start: float, step: float, stop: float) -> np.ndarray:
    """
    Evenly spaced values from `start` to `stop` including the end point if it falls on
    the grid of steps. At least one value (`start`) is always returned.

    Parameters
    ----------
    start : float
        First value.
    step : float
        Spacing between the values. Must be positive.
    stop : float
        Largest allowed value.
    """
    if step <= 0.0:
        raise ValueError(f"step must be positive, got {step}")

    n = int(np.floor((stop - start) / step + 1e-9)) + 1
    return start + step * np.arange(max(n, 1), dtype=np.float64)


class CopyMixin:
    def copy(self):
        """Make a copy."""
        return copy.deepcopy(self)


def safe_equality(a, b, exclude: tuple[str, ...] = ()) -> bool:
    if not isinstance(b, a.__class__):
        return False

    for key, value in a.__dict__.items():
        if key in exclude:
            continue

        if key not in b.__dict__:
            return False

        other = b.__dict__[key]

        if isinstance(value, np.ndarray) or isinstance(other, np.ndarray):
            equal = np.array_equal(value, other)
        else:
            equal = value == other

        if not equal:
            return False

    return True


class EqualityMixin:
    def __eq__(self, other):
        return safe_equality(self, other)

    def __ne__(self, other):
        return not self.__eq__(other)
