"""Module for running multislice simulations of scanning transmission electron
microscopy on worker threads."""

from __future__ import annotations

import logging
import queue
import threading
import warnings
from typing import Callable, Optional, Sequence

import numpy as np
import psutil

from slicestem.coordinates import CoordinateSystem
from slicestem.core import config
from slicestem.core.diagnostics import ProgressCallback, ProgressReporter
from slicestem.core.energy import Accelerator
from slicestem.core.fftw import InPlaceFFTW
from slicestem.core.utils import get_dtype
from slicestem.dispatch import WorkDispatcher
from slicestem.measurements import (
    DatacubeExport,
    ExitPlanes,
    MultisliceOutput,
    OutputAccumulator,
)
from slicestem.multislice import MultisliceEngine
from slicestem.potentials import PotentialArray, validate_potential
from slicestem.probe import ProbeInitializer
from slicestem.scan import BaseScan, validate_scan
from slicestem.sinks import BaseDatacubeSink
from slicestem.transfer import Aberrations

logger = logging.getLogger(__name__)


def default_num_threads() -> int:
    """Number of physical cores."""
    return psutil.cpu_count(logical=False) or psutil.cpu_count() or 1


def validate_batch_size(target: int, num_probes: int, num_threads: int) -> int:
    """
    Batch size of the transforms, limited such that all threads receive work.

    Parameters
    ----------
    target : int
        Requested number of probes per batch.
    num_probes : int
        Total number of probes.
    num_threads : int
        Number of worker threads.
    """
    if target < 1:
        raise ValueError(f"batch size must be at least 1, got {target}")

    return min(target, max(1, num_probes // num_threads))


class MultisliceSimulation:
    """
    Multislice simulation of a probe scanned over a sample, recording the diffraction
    patterns binned by scattering angle at a series of depths.

    The coordinates and the initial probe are built once, each call of `run` processes
    one potential configuration on a pool of worker threads.

    Parameters
    ----------
    potential : PotentialArray
        Projected potential slices of the sample.
    energy : float
        Electron energy [eV].
    semiangle_cutoff : float
        Semiangle cutoff of the probe aperture [mrad].
    detector_angle_step : float
        Angular width of the detector channels [mrad].
    aberrations : Aberrations or dict, optional
        Phase aberrations of the probe. Magnitudes in [Å] and angles in [radian].
    tilt : two float
        Beam tilt in `x` and `y` [mrad].
    scan : BaseScan or array of positions, optional
        Scan or explicit probe positions [Å]. If not given, a raster scan of the scan
        window is created.
    scan_step : float or two float, optional
        Step of the raster scan [Å].
    nyquist_sampling : bool
        Use a raster step given by the Nyquist sampling of the probe.
    scan_window_x, scan_window_y : two float
        Raster scan window as fractions of the cell extent.
    slices_per_layer : int
        Number of slices grouped into one recorded depth layer.
    z_start_plane : int
        First plane recorded, the last plane is always recorded.
    num_planes : int, optional
        Number of slices to propagate through. Defaults to all slices.
    save_center_of_mass : bool
        Record the center of mass of the diffraction patterns.
    datacube_sink : BaseDatacubeSink, optional
        If given, the diffraction patterns are exported to this sink.
    complex_output : bool
        Export the complex exit waves instead of intensities.
    crop_angle : float, optional
        Crop exported patterns to this scattering angle [mrad].
    save_probe : bool
        Hand the initial probe to `probe_sink` when processing the first configuration.
    probe_sink : callable, optional
        Receives the initial probe in real space.
    num_threads : int, optional
        Number of worker threads. Default is given by the configuration, or the number
        of physical cores.
    batch_size : int, optional
        Requested number of probes transformed together. Default is given by the
        configuration.
    progress_callback : callable, optional
        Called with the number of completed probes, total number of probes and a status
        message.
    """

    def __init__(
        self,
        potential: PotentialArray | np.ndarray,
        energy: float,
        semiangle_cutoff: float,
        detector_angle_step: float = 1.0,
        aberrations: Optional[Aberrations | dict] = None,
        tilt: Sequence[float] = (0.0, 0.0),
        scan: Optional[BaseScan | Sequence | np.ndarray] = None,
        scan_step: Optional[float | tuple[float, float]] = None,
        nyquist_sampling: bool = False,
        scan_window_x: Sequence[float] = (0.0, 1.0),
        scan_window_y: Sequence[float] = (0.0, 1.0),
        slices_per_layer: int = 1,
        z_start_plane: int = 0,
        num_planes: Optional[int] = None,
        save_center_of_mass: bool = False,
        datacube_sink: Optional[BaseDatacubeSink] = None,
        complex_output: bool = False,
        crop_angle: Optional[float] = None,
        save_probe: bool = False,
        probe_sink: Optional[Callable[[np.ndarray], None]] = None,
        num_threads: Optional[int] = None,
        batch_size: Optional[int] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        potential = validate_potential(potential)

        if save_probe and probe_sink is None:
            raise ValueError("saving the probe requires a probe sink")

        self._accelerator = Accelerator(energy=energy)
        self._potential = potential

        scan = validate_scan(
            scan,
            extent=potential.extent,
            step=scan_step,
            nyquist_sampling=nyquist_sampling,
            semiangle_cutoff=semiangle_cutoff,
            wavelength=self.wavelength,
            window_x=scan_window_x,
            window_y=scan_window_y,
        )

        self._coordinates = CoordinateSystem(
            potential.grid,
            wavelength=self.wavelength,
            slice_thickness=potential.slice_thickness,
            scan=scan,
            detector_step=detector_angle_step,
            tilt=tilt,
        )

        if num_planes is None:
            num_planes = potential.num_slices

        self._exit_planes = ExitPlanes(
            num_planes, slices_per_layer=slices_per_layer, z_start_plane=z_start_plane
        )

        self._probe_initializer = ProbeInitializer(
            potential.grid,
            wavelength=self.wavelength,
            semiangle_cutoff=semiangle_cutoff,
            aberrations=aberrations,
        )

        self._export = None
        if datacube_sink is not None:
            self._export = DatacubeExport(
                datacube_sink, complex_output=complex_output, max_angle=crop_angle
            )

        self._save_center_of_mass = save_center_of_mass
        self._save_probe = save_probe
        self._probe_sink = probe_sink
        self._progress_callback = progress_callback

        self._num_threads = config.get("multislice.num_threads", override_with=num_threads)
        if self._num_threads is None:
            self._num_threads = default_num_threads()

        if self._num_threads < 1:
            raise ValueError(f"number of threads must be positive, got {self._num_threads}")

        self._batch_size = config.get("multislice.batch_size", override_with=batch_size)

        # owned here and shared by all workers, FFTW planning is not thread safe
        self._plan_lock = threading.Lock()
        self._probe = self._probe_initializer.build()

    @property
    def wavelength(self) -> float:
        """Relativistic wavelength [Å]."""
        return self._accelerator.wavelength

    @property
    def energy(self) -> float:
        return self._accelerator.energy

    @property
    def coordinates(self) -> CoordinateSystem:
        return self._coordinates

    @property
    def scan(self) -> BaseScan:
        return self._coordinates.scan

    @property
    def exit_planes(self) -> ExitPlanes:
        return self._exit_planes

    @property
    def probe(self) -> np.ndarray:
        """The initial probe in reciprocal space."""
        return self._probe

    @property
    def num_threads(self) -> int:
        return self._num_threads

    @property
    def batch_size(self) -> int:
        """Batch size of the transforms used by `run`."""
        return validate_batch_size(
            self._batch_size, self.scan.num_positions, self._num_threads
        )

    def _engine(self, potential: Optional[PotentialArray]) -> MultisliceEngine:
        if potential is None:
            potential = self._potential
        else:
            potential = validate_potential(
                potential,
                sampling=self._potential.sampling,
                slice_thickness=self._potential.slice_thickness,
            )

        transmission_function = potential.transmission_function(energy=self.energy)

        return MultisliceEngine(
            self._coordinates, self._probe, transmission_function, self._exit_planes
        )

    def _setup_datacubes(self, tag: str, configuration_index: int) -> None:
        if self._export is None:
            return

        if configuration_index != 0 and not self._export.complex_output:
            return

        identifiers = [
            self._export.identifier(layer, tag, configuration_index)
            for layer in range(self._exit_planes.num_layers)
        ]
        shape = (
            self.scan.shape[1],
            self.scan.shape[0],
            *self._export.pattern_shape(self._coordinates),
        )
        self._export.sink.setup_datacubes(identifiers, shape, self._export.dtype)

    def run(
        self,
        potential: Optional[PotentialArray | np.ndarray] = None,
        configuration_index: int = 0,
        num_configurations: int = 1,
        tag: str = "",
    ) -> MultisliceOutput:
        """
        Run the simulation for one potential configuration.

        Parameters
        ----------
        potential : PotentialArray, optional
            Potential of this configuration, it must have the grid of the potential
            given at construction. Defaults to the potential given at construction.
        configuration_index : int
            Index of the frozen phonon configuration.
        num_configurations : int
            Number of frozen phonon configurations, exported intensities are divided by
            this number.
        tag : str
            Tag appended to the identifiers of exported datasets.

        Returns
        -------
        output : MultisliceOutput
            Binned intensities of this configuration. Averaging over configurations is
            left to the caller.
        """
        if num_configurations < 1:
            raise ValueError(
                f"number of configurations must be positive, got {num_configurations}"
            )

        engine = self._engine(potential)

        if self._save_probe and configuration_index == 0:
            self._probe_initializer.snapshot(
                self._probe, self._probe_sink, plan_lock=self._plan_lock
            )

        output = MultisliceOutput.allocate(
            self._exit_planes, self._coordinates, self._save_center_of_mass
        )
        self._setup_datacubes(tag, configuration_index)

        num_probes = self.scan.num_positions
        batch_size = self.batch_size

        if batch_size < self._batch_size:
            warnings.warn(
                f"batch size reduced from {self._batch_size} to {batch_size} to "
                f"distribute {num_probes} probes over {self._num_threads} threads"
            )

        logger.info("Number of layers: %d", self._exit_planes.num_layers)
        logger.info(
            "First output depth is at %s Å with steps of %s Å",
            self._exit_planes.first_layer
            * self._exit_planes.slices_per_layer
            * self._coordinates.slice_thickness,
            self._exit_planes.slices_per_layer * self._coordinates.slice_thickness,
        )
        logger.info("Batch size: %d", batch_size)

        dispatcher = WorkDispatcher(num_probes)
        progress = ProgressReporter(num_probes, callback=self._progress_callback)
        print_frequency = max(1, num_probes // 10)
        errors: queue.Queue = queue.Queue()

        def worker(thread_index: int) -> None:
            logger.info("Launching CPU worker #%d", thread_index)
            try:
                self._work(
                    engine,
                    dispatcher,
                    output,
                    progress,
                    batch_size,
                    print_frequency,
                    tag,
                    configuration_index,
                    num_configurations,
                )
            except Exception as e:
                dispatcher.exhaust()
                errors.put(e)
            logger.info("CPU worker #%d finished", thread_index)

        workers = [
            threading.Thread(target=worker, args=(t,), name=f"multislice-{t}")
            for t in range(self._num_threads)
        ]

        for thread in workers:
            thread.start()

        for thread in workers:
            thread.join()

        progress.close()

        if not errors.empty():
            raise errors.get()

        return output

    def _work(
        self,
        engine: MultisliceEngine,
        dispatcher: WorkDispatcher,
        output: MultisliceOutput,
        progress: ProgressReporter,
        batch_size: int,
        print_frequency: int,
        tag: str,
        configuration_index: int,
        num_configurations: int,
    ) -> None:
        work = dispatcher.get_work(batch_size)
        if work is None:
            return

        accumulator = OutputAccumulator(
            self._coordinates,
            output,
            export=self._export,
            tag=tag,
            configuration_index=configuration_index,
            num_configurations=num_configurations,
        )

        shape = (batch_size,) + self._coordinates.grid.shape

        with InPlaceFFTW(shape, get_dtype(complex=True), self._plan_lock) as fftw:
            while work is not None:
                start, stop = work

                if start % print_frequency < batch_size:
                    logger.debug(
                        "Computing Probe Position #%d/%d", start, dispatcher.total
                    )

                engine.propagate_batch(fftw, start, stop, accumulator)
                progress.update(stop - start)

                work = dispatcher.get_work(batch_size)

    def single_probe(
        self,
        position: tuple[float, float],
        potential: Optional[PotentialArray | np.ndarray] = None,
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Propagate a single probe through all planes without recording output.

        Parameters
        ----------
        position : two float
            Position of the probe in `x` and `y` [Å].
        potential : PotentialArray, optional
            Potential of the configuration. Defaults to the potential given at
            construction.

        Returns
        -------
        kspace_probe : np.ndarray
            The band-limited exit wave in reciprocal space with the zero frequency at
            the center.
        realspace_probe : np.ndarray
            The inverse transform of the band-limited exit wave.
        """
        return self._engine(potential).single_probe(position, plan_lock=self._plan_lock)
