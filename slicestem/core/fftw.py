"""Module for FFTW plans used by the multislice workers.

Planning routines of FFTW are not thread safe, executing an existing plan is. All
plans are therefore created and released while holding a `plan_lock` owned by the
caller, while the transforms themselves run without synchronization.
"""

from __future__ import annotations

import threading
from contextlib import nullcontext
from typing import Optional

import numpy as np

from slicestem.core import config

try:
    import pyfftw  # type: ignore
except (ModuleNotFoundError, ImportError):
    pyfftw = None


def _raise_fftw_not_present():
    raise RuntimeError(
        "FFT library pyfftw not present. Install this package to run multislice "
        "simulations."
    )


def _new_fftw_object(array: np.ndarray, direction: str, flags: tuple[str, ...] = ()):
    # planning with FFTW_MEASURE overwrites the arrays, so plan on a dummy
    dummy = pyfftw.empty_aligned(array.shape, dtype=array.dtype)

    fftw_object = pyfftw.FFTW(
        dummy,
        dummy,
        axes=(-2, -1),
        direction=direction,
        threads=config.get("fftw.threads"),
        flags=(config.get("fftw.planning_effort"),) + flags,
        planning_timelimit=config.get("fftw.planning_timelimit"),
    )

    fftw_object.update_arrays(array, array)

    return fftw_object


class InPlaceFFTW:
    """
    Forward and backward in-place FFTW plans over the last two axes of an aligned
    buffer. A buffer with a leading axis is transformed as a batch with a single
    call.

    The transforms are unnormalized, a forward followed by a backward transform
    multiplies the array by the number of elements in the last two axes.

    Parameters
    ----------
    shape : tuple of int
        Shape of the buffer, e.g. (batch, ny, nx).
    dtype : dtype
        Complex dtype of the buffer.
    plan_lock : threading.Lock
        Lock serializing plan creation and destruction across threads.
    """

    def __init__(self, shape: tuple[int, ...], dtype, plan_lock: threading.Lock):
        if pyfftw is None:
            _raise_fftw_not_present()

        self._plan_lock = plan_lock
        self._array = pyfftw.zeros_aligned(shape, dtype=dtype)

        with plan_lock:
            self._forward = _new_fftw_object(self._array, "FFTW_FORWARD")
            self._backward = _new_fftw_object(self._array, "FFTW_BACKWARD")

    @property
    def array(self) -> np.ndarray:
        """The buffer transformed in place."""
        return self._array

    def forward(self) -> np.ndarray:
        """Unnormalized forward transform of the buffer in place."""
        self._forward.execute()
        return self._array

    def backward(self) -> np.ndarray:
        """Unnormalized backward transform of the buffer in place."""
        self._backward.execute()
        return self._array

    def close(self):
        """Release the plans."""
        with self._plan_lock:
            self._forward = None
            self._backward = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()


def _transform(
    array: np.ndarray, direction: str, plan_lock: Optional[threading.Lock]
) -> np.ndarray:
    if pyfftw is None:
        _raise_fftw_not_present()

    lock = nullcontext() if plan_lock is None else plan_lock

    with lock:
        buffer = pyfftw.empty_aligned(array.shape, dtype=array.dtype)
        fftw_object = _new_fftw_object(buffer, direction)

    buffer[...] = array
    fftw_object.execute()

    with lock:
        del fftw_object

    if direction == "FFTW_BACKWARD":
        buffer /= array.shape[-2] * array.shape[-1]

    return buffer


def fft2(array: np.ndarray, plan_lock: Optional[threading.Lock] = None) -> np.ndarray:
    """
    Compute the 2-dimensional discrete Fourier transform of the last two axes.

    Parameters
    ----------
    array : np.ndarray
        Complex array to transform, it is not modified.
    plan_lock : threading.Lock, optional
        Lock held while planning.
    """
    return _transform(array, "FFTW_FORWARD", plan_lock)


def ifft2(array: np.ndarray, plan_lock: Optional[threading.Lock] = None) -> np.ndarray:
    """
    Compute the normalized 2-dimensional inverse discrete Fourier transform of the
    last two axes.

    Parameters
    ----------
    array : np.ndarray
        Complex array to transform, it is not modified.
    plan_lock : threading.Lock, optional
        Lock held while planning.
    """
    return _transform(array, "FFTW_BACKWARD", plan_lock)
