"""Module for running the multislice algorithm."""

from __future__ import annotations

import logging
import threading

import numpy as np

from slicestem.coordinates import CoordinateSystem
from slicestem.core.fftw import InPlaceFFTW, ifft2
from slicestem.core.grid import quarter_shift_crop
from slicestem.core.utils import get_dtype
from slicestem.measurements import ExitPlanes, OutputAccumulator
from slicestem.potentials import TransmissionFunction

logger = logging.getLogger(__name__)


class MultisliceEngine:
    """
    Propagates probes through the slices of a transmission function.

    The waves are kept in reciprocal space between the slices. Each step transforms the
    waves to real space, multiplies them by the transmission function of the slice,
    transforms them back to reciprocal space and multiplies them by the propagator. The
    propagator is divided by the number of grid points, so no further normalization of
    the transforms is required.

    The engine only reads shared state, several threads may use one engine as long as
    each uses its own transform buffer and accumulator.

    Parameters
    ----------
    coordinates : CoordinateSystem
        Coordinates and propagator of the simulation.
    probe : np.ndarray
        The initial probe in reciprocal space.
    transmission_function : TransmissionFunction
        Transmission functions of the slices.
    exit_planes : ExitPlanes
        The planes after which the probes are recorded.
    """

    def __init__(
        self,
        coordinates: CoordinateSystem,
        probe: np.ndarray,
        transmission_function: TransmissionFunction,
        exit_planes: ExitPlanes,
    ):
        transmission_function.check_matches_grid(coordinates.grid)

        if probe.shape != coordinates.grid.shape:
            raise ValueError(
                f"probe shape {probe.shape} does not match the grid shape "
                f"{coordinates.grid.shape}"
            )

        if not np.isclose(
            transmission_function.slice_thickness, coordinates.slice_thickness
        ):
            raise ValueError(
                f"slice thickness {transmission_function.slice_thickness} of the "
                f"potential does not match the simulation slice thickness "
                f"{coordinates.slice_thickness}"
            )

        if exit_planes.num_planes > transmission_function.num_slices:
            raise ValueError(
                f"cannot propagate through {exit_planes.num_planes} planes of a "
                f"potential with {transmission_function.num_slices} slices"
            )

        dtype = get_dtype(complex=True)

        self._coordinates = coordinates
        self._probe = probe.astype(dtype, copy=False)
        self._transmission = transmission_function.array.astype(dtype, copy=False)
        self._exit_planes = exit_planes
        self._propagator = coordinates.scaled_propagator(dtype)
        self._positions = coordinates.scan.get_positions()

        # shared by the workers, built before they start
        coordinates.detector_regions

    @property
    def coordinates(self) -> CoordinateSystem:
        return self._coordinates

    @property
    def exit_planes(self) -> ExitPlanes:
        return self._exit_planes

    def _initialize(self, waves: np.ndarray, positions: np.ndarray) -> None:
        waves[...] = self._probe[None] * self._coordinates.shift_phase(
            positions, dtype=waves.dtype
        )

    def _step(self, fftw: InPlaceFFTW, waves: np.ndarray, plane: int) -> None:
        fftw.backward()
        waves *= self._transmission[plane]
        fftw.forward()
        waves *= self._propagator

    def propagate_batch(
        self,
        fftw: InPlaceFFTW,
        start: int,
        stop: int,
        accumulator: OutputAccumulator,
    ) -> None:
        """
        Propagate the probes in a range of indices through all planes and accumulate
        the recorded layers.

        Parameters
        ----------
        fftw : InPlaceFFTW
            Transform buffer of the calling thread with room for at least
            `stop - start` probes.
        start, stop : int
            Half-open range of probe indices.
        accumulator : OutputAccumulator
            Accumulator of the calling thread.
        """
        num_probes = stop - start
        if num_probes > len(fftw.array):
            raise ValueError(
                f"batch of {num_probes} probes does not fit a buffer of "
                f"{len(fftw.array)}"
            )

        waves = fftw.array[:num_probes]
        self._initialize(waves, self._positions[start:stop])

        layer = 0
        for plane in range(self._exit_planes.num_planes):
            self._step(fftw, waves, plane)

            if self._exit_planes.emits(plane + 1):
                accumulator.accumulate(waves, start, layer)
                layer += 1

    def single_probe(
        self,
        position: tuple[float, float],
        plan_lock: threading.Lock,
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Propagate a single probe through all planes.

        Parameters
        ----------
        position : two float
            Position of the probe in `x` and `y` [Å].
        plan_lock : threading.Lock
            Lock serializing creation of transform plans, shared by all callers.

        Returns
        -------
        kspace_probe : np.ndarray
            The band-limited exit wave in reciprocal space with the zero frequency at
            the center, the shape is half the grid shape.
        realspace_probe : np.ndarray
            The inverse transform of the band-limited exit wave.
        """
        shape = (1,) + self._coordinates.grid.shape

        with InPlaceFFTW(shape, self._probe.dtype, plan_lock) as fftw:
            waves = fftw.array
            self._initialize(waves, np.array([position], dtype=np.float64))

            for plane in range(self._exit_planes.num_planes):
                self._step(fftw, waves, plane)

            kspace_probe = quarter_shift_crop(waves[0])

        realspace_probe = ifft2(np.fft.ifftshift(kspace_probe), plan_lock=plan_lock)
        return kspace_probe, realspace_probe
