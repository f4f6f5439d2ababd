import numpy as np
import pytest
from hypothesis import given

import strategies as slicestem_st
from slicestem.core.grid import (
    Grid,
    antialias_mask,
    quarter_shift_crop,
    quarter_shift_indices,
)


def test_quarter_shift_indices():
    assert np.all(quarter_shift_indices(8) == [6, 7, 0, 1])
    assert np.all(quarter_shift_indices(6) == [5, 0, 1])


@given(gpts=slicestem_st.gpts())
def test_quarter_shift_crop_centers_zero_frequency(gpts):
    nx, ny = gpts
    array = np.zeros((2, ny, nx))
    array[:, 0, 0] = 1.0

    cropped = quarter_shift_crop(array)

    assert cropped.shape == (2, ny // 2, nx // 2)
    assert np.all(cropped[:, ny // 4, nx // 4] == 1.0)
    assert cropped.sum() == 2.0


@given(gpts=slicestem_st.gpts(), sampling=slicestem_st.sampling())
def test_antialias_mask_within_band_limit(gpts, sampling):
    grid = Grid(gpts=gpts, sampling=sampling)
    mask = antialias_mask(gpts, sampling)

    assert mask.shape == grid.shape
    assert np.all(grid.q[mask] <= grid.max_frequency)
    assert mask[0, 0]

    outside_square = np.ones(grid.shape, dtype=bool)
    iy = quarter_shift_indices(grid.shape[0])
    ix = quarter_shift_indices(grid.shape[1])
    outside_square[iy[:, None], ix[None]] = False
    assert not np.any(mask[outside_square])


def test_antialias_mask_disk():
    grid = Grid(gpts=(64, 32), sampling=(0.1, 0.2))

    assert np.isclose(grid.max_frequency, min(32 / 6.4, 16 / 6.4) / 2)
    assert np.all(grid.antialias_mask == (grid.q <= grid.max_frequency) & antialias_mask(
        grid.gpts, grid.sampling
    ))


def test_grid_properties():
    grid = Grid(gpts=(16, 8), sampling=(0.5, 0.25))

    assert grid.shape == (8, 16)
    assert np.allclose(grid.extent, (8.0, 2.0))
    assert np.allclose(grid.reciprocal_space_sampling, (1 / 8.0, 1 / 2.0))
    assert grid.qx.shape == grid.shape
    assert np.allclose(grid.qx[0, :3], [0.0, 1 / 8.0, 2 / 8.0])
    assert np.allclose(grid.qy[:3, 0], [0.0, 1 / 2.0, 2 / 2.0])
    assert np.allclose(grid.q2, grid.qx**2 + grid.qy**2)


def test_grid_frequencies_precision():
    grid = Grid(gpts=8, sampling=0.1)
    qx, qy = grid.frequencies()

    assert qx.dtype == np.float32
    assert qy.dtype == np.float32


def test_grid_equality():
    assert Grid(gpts=8, sampling=0.1) == Grid(gpts=(8, 8), sampling=(0.1, 0.1))
    assert Grid(gpts=8, sampling=0.1) != Grid(gpts=8, sampling=0.2)


def test_equal_grids_hash_equal():
    grid = Grid(gpts=8, sampling=0.1)
    close = Grid(gpts=8, sampling=0.1 + 1e-12)

    assert grid == close
    assert hash(grid) == hash(close)
    assert len({grid, close}) == 1


@pytest.mark.parametrize("gpts", [(7, 8), (8, 0), (0, 0)])
def test_grid_raises(gpts):
    with pytest.raises(ValueError):
        Grid(gpts=gpts, sampling=0.1)


def test_grid_sampling_raises():
    with pytest.raises(ValueError):
        Grid(gpts=8, sampling=0.0)
