import threading

import numpy as np
import pytest
from hypothesis import given
from hypothesis import strategies as st

from slicestem.coordinates import CoordinateSystem, fresnel_propagator
from slicestem.core.energy import energy2wavelength
from slicestem.core.grid import Grid, quarter_shift_crop
from slicestem.measurements import DATACUBE_PREFIX, ExitPlanes
from slicestem.multislice import MultisliceEngine
from slicestem.potentials import PotentialArray
from slicestem.scan import CustomScan
from slicestem.simulation import MultisliceSimulation
from slicestem.sinks import MemoryDatacubeSink

GPTS = 32
SAMPLING = 0.2
EXTENT = GPTS * SAMPLING


def zero_potential(num_slices=4):
    return PotentialArray(
        np.zeros((num_slices, GPTS, GPTS), dtype=np.float32),
        sampling=SAMPLING,
        slice_thickness=1.0,
    )


def random_potential(num_slices=4, seed=0):
    rng = np.random.RandomState(seed)
    array = (rng.rand(num_slices, GPTS, GPTS) * 200.0).astype(np.float32)
    return PotentialArray(array, sampling=SAMPLING, slice_thickness=1.0)


def make_simulation(potential=None, **kwargs):
    if potential is None:
        potential = zero_potential()

    kwargs.setdefault("energy", 100e3)
    kwargs.setdefault("semiangle_cutoff", 15.0)
    kwargs.setdefault("detector_angle_step", 2.0)
    kwargs.setdefault("num_threads", 1)
    kwargs.setdefault("batch_size", 1)

    if "scan" not in kwargs:
        kwargs.setdefault("scan_step", EXTENT / 4)

    return MultisliceSimulation(potential, **kwargs)


@pytest.mark.parametrize(
    "num_planes, slices_per_layer, z_start_plane, expected",
    [
        (10, 3, 0, [3, 6, 9, 10]),
        (10, 3, 4, [6, 9, 10]),
        (9, 3, 0, [3, 6, 9]),
        (4, 1, 0, [1, 2, 3, 4]),
        (5, 1, 10, [5]),
        (2, 5, 0, [2]),
    ],
)
def test_exit_planes(num_planes, slices_per_layer, z_start_plane, expected):
    exit_planes = ExitPlanes(num_planes, slices_per_layer, z_start_plane)

    assert exit_planes.planes == expected
    assert exit_planes.num_layers == len(expected)
    assert np.allclose(exit_planes.depths(0.5), np.array(expected) * 0.5)


@given(
    num_planes=st.integers(min_value=1, max_value=100),
    slices_per_layer=st.integers(min_value=1, max_value=20),
    z_start_plane=st.integers(min_value=0, max_value=120),
)
def test_exit_planes_count(num_planes, slices_per_layer, z_start_plane):
    exit_planes = ExitPlanes(num_planes, slices_per_layer, z_start_plane)

    lowest = max(z_start_plane, 1)
    multiples = max(
        num_planes // slices_per_layer - (lowest - 1) // slices_per_layer, 0
    )
    last_is_multiple = num_planes % slices_per_layer == 0 and num_planes >= lowest

    assert exit_planes.num_layers == multiples + (0 if last_is_multiple else 1)
    assert exit_planes.planes[-1] == num_planes
    assert exit_planes.planes == sorted(set(exit_planes.planes))


def test_first_layer():
    assert ExitPlanes(10, 3, 0).first_layer == 1
    assert ExitPlanes(10, 3, 4).first_layer == 2
    assert ExitPlanes(10, 3, 6).first_layer == 2


def test_invalid_exit_planes():
    with pytest.raises(ValueError):
        ExitPlanes(0)

    with pytest.raises(ValueError):
        ExitPlanes(4, slices_per_layer=0)

    with pytest.raises(ValueError):
        ExitPlanes(4, z_start_plane=-1)


def test_propagator_band_limited():
    grid = Grid(gpts=GPTS, sampling=SAMPLING)
    propagator = fresnel_propagator(grid, energy2wavelength(100e3), 1.0, tilt=(2.0, 1.0))

    assert np.all(propagator[~grid.antialias_mask] == 0.0)
    assert np.allclose(np.abs(propagator[grid.antialias_mask]), 1.0)
    assert propagator[0, 0] == 1.0


def test_scaled_propagator():
    grid = Grid(gpts=GPTS, sampling=SAMPLING)
    coordinates = CoordinateSystem(
        grid,
        energy2wavelength(100e3),
        slice_thickness=1.0,
        scan=CustomScan([(0.0, 0.0)]),
        detector_step=2.0,
    )

    scaled = coordinates.scaled_propagator(np.complex128)
    assert np.allclose(scaled * grid.size, coordinates.propagator)


def test_plane_wave_through_vacuum():
    simulation = make_simulation(
        zero_potential(num_slices=1),
        semiangle_cutoff=0.0,
        scan=[(0.0, 0.0)],
    )
    output = simulation.run()

    assert output.shape == (1, 1, 1, simulation.coordinates.detector.nbins)
    assert np.isclose(output.array[0, 0, 0, 0], 1.0, rtol=1e-5)
    assert np.allclose(output.array[0, 0, 0, 1:], 0.0, atol=1e-6)


def test_vacuum_conserves_intensity():
    simulation = make_simulation()
    output = simulation.run()

    assert output.shape == (4, 5, 5, simulation.coordinates.detector.nbins)
    assert np.allclose(output.array.sum(-1), 1.0, rtol=1e-4)


def test_vacuum_with_tilt_keeps_intensity_distribution():
    output = make_simulation().run()
    tilted = make_simulation(tilt=(3.0, -2.0)).run()

    assert np.allclose(output.array, tilted.array, atol=1e-5)


def test_intensity_bounded():
    simulation = make_simulation(random_potential())
    output = simulation.run()

    assert np.all(output.array >= 0.0)
    assert np.all(output.array.sum(-1) <= 1.0 + 1e-4)


def test_intensity_non_increasing_with_depth():
    sink = MemoryDatacubeSink()
    simulation = make_simulation(
        random_potential(), datacube_sink=sink, complex_output=True
    )
    simulation.run()

    energies = [
        (np.abs(sink[f"{DATACUBE_PREFIX}{layer:04d}_fp0000"]) ** 2).sum(axis=(-2, -1))
        for layer in range(simulation.exit_planes.num_layers)
    ]

    assert np.all(energies[0] <= 1.0 + 1e-4)
    for shallow, deep in zip(energies[:-1], energies[1:]):
        assert np.all(deep <= shallow + 1e-4)


def test_batch_size_invariance():
    potential = random_potential()
    output = make_simulation(potential, batch_size=1).run()
    batched = make_simulation(potential, batch_size=3).run()

    assert np.allclose(output.array, batched.array, atol=1e-5)


def test_thread_count_invariance():
    potential = random_potential()
    output = make_simulation(potential, num_threads=1).run()
    threaded = make_simulation(potential, num_threads=3, batch_size=2).run()

    assert np.allclose(output.array, threaded.array, atol=1e-5)


def test_periodic_positions():
    simulation = make_simulation(random_potential(), scan=[(0.0, 0.0), (EXTENT, EXTENT)])
    output = simulation.run()

    assert np.allclose(output.array[:, 0, 0], output.array[:, 0, 1], atol=1e-5)


def test_slices_per_layer():
    potential = random_potential(num_slices=5)
    every = make_simulation(potential).run()
    grouped = make_simulation(potential, slices_per_layer=2).run()

    assert grouped.shape[0] == 3
    assert np.allclose(grouped.depths, [2.0, 4.0, 5.0])
    assert np.allclose(grouped.array, every.array[[1, 3, 4]], atol=1e-6)


def test_partial_propagation():
    potential = random_potential(num_slices=4)
    full = make_simulation(potential).run()
    partial = make_simulation(potential, num_planes=2).run()

    assert partial.shape[0] == 2
    assert np.allclose(partial.array, full.array[:2], atol=1e-6)


def test_integrate_channels():
    output = make_simulation().run()
    angles = output.angles

    bright_field = output.integrate(0.0, 15.0)
    expected = output.array[..., angles < 15.0].sum(-1)

    assert bright_field.shape == output.shape[:-1]
    assert np.allclose(bright_field, expected)


def test_center_of_mass():
    potential = random_potential()
    positions = [(1.0, 2.0), (3.5, 0.5)]
    simulation = make_simulation(potential, scan=positions, save_center_of_mass=True)
    output = simulation.run()

    assert output.center_of_mass.shape == output.shape[:-1] + (2,)

    grid = simulation.coordinates.grid
    qx = quarter_shift_crop(grid.qx)
    qy = quarter_shift_crop(grid.qy)

    for i, position in enumerate(positions):
        kspace_probe, _ = simulation.single_probe(position)
        intensity = np.abs(kspace_probe.astype(np.complex128)) ** 2

        expected = (
            (intensity * qx).sum() / intensity.sum(),
            (intensity * qy).sum() / intensity.sum(),
        )
        assert np.allclose(output.center_of_mass[-1, 0, i], expected, atol=1e-4)


def test_center_of_mass_centered_probe():
    simulation = make_simulation(scan=[(3.2, 3.2)], save_center_of_mass=True)
    output = simulation.run()

    assert np.allclose(output.center_of_mass, 0.0, atol=1e-5)


def test_single_probe():
    simulation = make_simulation(random_potential())
    kspace_probe, realspace_probe = simulation.single_probe((1.0, 1.0))

    assert kspace_probe.shape == (GPTS // 2, GPTS // 2)
    assert realspace_probe.shape == (GPTS // 2, GPTS // 2)
    assert np.allclose(
        np.fft.fft2(realspace_probe), np.fft.ifftshift(kspace_probe), atol=1e-5
    )
    assert (np.abs(kspace_probe) ** 2).sum() <= 1.0 + 1e-4


def test_single_probe_matches_output():
    potential = random_potential()
    simulation = make_simulation(potential, scan=[(2.0, 4.0)])
    output = simulation.run()

    kspace_probe, _ = simulation.single_probe((2.0, 4.0))
    assert np.isclose(
        output.array[-1, 0, 0].sum(),
        (np.abs(kspace_probe) ** 2).sum(),
        rtol=1e-3,
    )


def test_engine_validation():
    simulation = make_simulation()
    coordinates = simulation.coordinates
    transmission_function = zero_potential(num_slices=2).transmission_function(sigma=1.0)

    with pytest.raises(ValueError):
        MultisliceEngine(
            coordinates, simulation.probe[:8], transmission_function, ExitPlanes(2)
        )

    with pytest.raises(ValueError):
        MultisliceEngine(
            coordinates, simulation.probe, transmission_function, ExitPlanes(3)
        )


def test_engine_shared_between_threads():
    potential = random_potential()
    simulation = make_simulation(potential)
    engine = MultisliceEngine(
        simulation.coordinates,
        simulation.probe,
        potential.transmission_function(energy=simulation.energy),
        simulation.exit_planes,
    )
    lock = threading.Lock()

    expected = engine.single_probe((1.0, 1.0), plan_lock=lock)[0]
    results = [None] * 4

    def worker(i):
        results[i] = engine.single_probe((1.0, 1.0), plan_lock=lock)[0]

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    for result in results:
        assert np.allclose(result, expected)


def test_engine_builds_shared_detector_regions():
    potential = zero_potential()
    simulation = make_simulation(potential)
    coordinates = simulation.coordinates
    assert "detector_regions" not in coordinates.__dict__

    MultisliceEngine(
        coordinates,
        simulation.probe,
        potential.transmission_function(energy=simulation.energy),
        simulation.exit_planes,
    )

    assert "detector_regions" in coordinates.__dict__


def test_engine_single_requires_plan_lock():
    potential = zero_potential()
    simulation = make_simulation(potential)
    engine = MultisliceEngine(
        simulation.coordinates,
        simulation.probe,
        potential.transmission_function(energy=simulation.energy),
        simulation.exit_planes,
    )

    with pytest.raises(TypeError):
        engine.single_probe((0.0, 0.0))


def test_engine_slice_thickness_mismatch():
    simulation = make_simulation()
    thick = PotentialArray(
        np.zeros((4, GPTS, GPTS), dtype=np.float32), sampling=SAMPLING, slice_thickness=2.0
    )

    with pytest.raises(ValueError, match="slice thickness"):
        MultisliceEngine(
            simulation.coordinates,
            simulation.probe,
            thick.transmission_function(energy=simulation.energy),
            simulation.exit_planes,
        )
