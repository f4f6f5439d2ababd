import numpy as np
import pytest
from hypothesis import given

import strategies as slicestem_st
from slicestem.core.energy import energy2wavelength
from slicestem.core.utils import inclusive_range
from slicestem.scan import CustomScan, GridScan, nyquist_probe_count, validate_scan


def test_inclusive_range():
    assert np.allclose(inclusive_range(0.0, 1.0, 4.0), [0.0, 1.0, 2.0, 3.0, 4.0])
    assert np.allclose(inclusive_range(0.0, 1.5, 4.0), [0.0, 1.5, 3.0])
    assert np.allclose(inclusive_range(0.0, 0.1, 0.3), [0.0, 0.1, 0.2, 0.3])
    assert np.allclose(inclusive_range(2.0, 1.0, 1.0), [2.0])


def test_grid_scan_layout():
    scan = GridScan(extent=(4.0, 2.0), step=1.0)

    assert scan.shape == (3, 5)
    assert scan.num_positions == 15
    assert len(scan) == 15

    positions = scan.get_positions()
    assert positions.shape == (15, 2)
    assert np.allclose(positions[0], (0.0, 0.0))
    assert np.allclose(positions[7], (2.0, 1.0))
    assert np.allclose(positions[-1], (4.0, 2.0))
    assert scan.output_indices(7) == (1, 2)


def test_grid_scan_window():
    scan = GridScan(extent=(10.0, 10.0), step=(1.0, 2.0), window_x=(0.5, 1.0))

    assert np.allclose(scan.x, [5.0, 6.0, 7.0, 8.0, 9.0, 10.0])
    assert np.allclose(scan.y, [0.0, 2.0, 4.0, 6.0, 8.0, 10.0])


@given(scan=slicestem_st.grid_scan())
def test_grid_scan_output_indices(scan):
    positions = scan.get_positions()
    seen = set()

    for index in range(scan.num_positions):
        ay, ax = scan.output_indices(index)
        assert 0 <= ay < scan.shape[0]
        assert 0 <= ax < scan.shape[1]
        assert np.allclose(positions[index], (scan.x[ax], scan.y[ay]))
        seen.add((ay, ax))

    assert len(seen) == scan.num_positions


@given(scan=slicestem_st.custom_scan())
def test_custom_scan_layout(scan):
    assert scan.shape == (1, len(scan.positions))
    assert scan.get_positions().dtype == np.float64

    for index in range(scan.num_positions):
        assert scan.output_indices(index) == (0, index)


def test_custom_scan_single_position():
    scan = CustomScan((1.0, 2.0))
    assert scan.get_positions().shape == (1, 2)


def test_custom_scan_invalid():
    with pytest.raises(ValueError):
        CustomScan(np.zeros((0, 2)))

    with pytest.raises(ValueError):
        CustomScan(np.zeros((3, 3)))


def test_nyquist_scan():
    wavelength = energy2wavelength(100e3)
    scan = GridScan.nyquist((10.0, 5.0), semiangle_cutoff=20.0, wavelength=wavelength)

    nx = nyquist_probe_count(20.0, wavelength, 10.0)
    ny = nyquist_probe_count(20.0, wavelength, 5.0)

    assert nx == int(np.ceil(4 * 20e-3 / wavelength * 10.0))
    assert np.allclose(scan.step, (10.0 / nx, 5.0 / ny))
    assert scan.shape == (ny + 1, nx + 1)


def test_nyquist_probe_count_at_least_one():
    assert nyquist_probe_count(0.0, 0.02, 10.0) == 1


def test_validate_scan():
    scan = GridScan(extent=(2.0, 2.0), step=1.0)
    assert validate_scan(scan, extent=(2.0, 2.0)) is scan

    custom = validate_scan([(0.0, 0.0), (1.0, 1.0)], extent=(2.0, 2.0))
    assert isinstance(custom, CustomScan)
    assert custom.num_positions == 2

    grid = validate_scan(None, extent=(2.0, 2.0), step=0.5)
    assert grid.shape == (5, 5)

    with pytest.raises(ValueError):
        validate_scan(None, extent=(2.0, 2.0))


def test_scan_step_must_be_positive():
    with pytest.raises(ValueError):
        GridScan(extent=(2.0, 2.0), step=0.0)


def test_scan_copy_and_equality():
    scan = GridScan(extent=(2.0, 3.0), step=0.5, window_y=(0.2, 0.8))
    copied = scan.copy()

    assert copied == scan
    assert copied is not scan
    assert GridScan(extent=(2.0, 3.0), step=0.25) != scan
    assert CustomScan([(0.0, 1.0)]) == CustomScan([(0.0, 1.0)])
