"""Module for the CPU-optimization of numerical calculations using numba."""

from numba import jit


@jit(nopython=True, nogil=True, fastmath=False)
def sum_run_length_encoded(array, result, separators):
    """
    Sum consecutive runs of the last axis of an array.

    Parameters
    ----------
    array : 2d array of float
        Values to sum, the last axis is ordered such that the elements of each run are
        consecutive.
    result : 2d array of float
        The sums are added to this array of shape (len(array), number of runs).
    separators : 1d array of int
        Start index of each run followed by the end index of the last run.
    """
    for i in range(result.shape[0]):
        for x in range(result.shape[1]):
            for j in range(separators[x], separators[x + 1]):
                result[i, x] += array[i, j]


@jit(nopython=True, nogil=True)
def center_of_mass(intensity, qx, qy, result):
    """
    Intensity weighted mean of the spatial frequencies.

    Parameters
    ----------
    intensity : 3d array of float
        Batch of intensities (batch, `y`, `x`).
    qx, qy : 2d array of float
        Spatial frequencies in `x` and `y`.
    result : 2d array of float
        Array of shape (batch, 2) the center of mass in `x` and `y` is added to.
    """
    for i in range(intensity.shape[0]):
        total = 0.0
        com_x = 0.0
        com_y = 0.0
        for j in range(intensity.shape[1]):
            for k in range(intensity.shape[2]):
                value = intensity[i, j, k]
                com_x += qx[j, k] * value
                com_y += qy[j, k] * value
                total += value

        result[i, 0] += com_x / total
        result[i, 1] += com_y / total
