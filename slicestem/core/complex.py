import numba as nb
import numpy as np


@nb.vectorize([nb.float32(nb.complex64), nb.float64(nb.complex128)])
def _abs2_numba(x):
    return x.real**2 + x.imag**2


def abs2(x: np.ndarray) -> np.ndarray:
    """Squared magnitude of a (complex) array."""
    if np.iscomplexobj(x):
        return _abs2_numba(x)
    else:
        return np.abs(x) ** 2


@nb.vectorize([nb.complex64(nb.float32), nb.complex128(nb.float64)])
def _complex_exponential_numba(x):
    return np.cos(x) + 1.0j * np.sin(x)


def complex_exponential(x: np.ndarray) -> np.ndarray:
    """Calculate exp(i x) for a real array x."""
    return _complex_exponential_numba(x)
