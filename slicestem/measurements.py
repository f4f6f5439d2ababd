"""Module for the output of multislice simulations and its accumulation."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from slicestem.coordinates import CoordinateSystem
from slicestem.core.complex import abs2
from slicestem.core.grid import quarter_shift_crop
from slicestem.core.utils import get_dtype
from slicestem.cpu_kernels import center_of_mass
from slicestem.scan import BaseScan
from slicestem.sinks import BaseDatacubeSink

logger = logging.getLogger(__name__)

DATACUBE_PREFIX = "4DSTEM_simulation/data/datacubes/CBED_array_depth"


def digit_string(value: int) -> str:
    return f"{value:04d}"


class ExitPlanes:
    """
    The planes after which the probes are recorded.

    Every `slices_per_layer` planes, beginning at `z_start_plane`, one depth layer is
    recorded, the last plane is always recorded.

    Parameters
    ----------
    num_planes : int
        Number of potential slices the probes are propagated through.
    slices_per_layer : int
        Number of slices grouped into one depth layer.
    z_start_plane : int
        Planes before this one are not recorded, except the last plane.
    """

    def __init__(self, num_planes: int, slices_per_layer: int = 1, z_start_plane: int = 0):
        if num_planes < 1:
            raise ValueError(f"number of planes must be positive, got {num_planes}")

        if slices_per_layer < 1:
            raise ValueError(
                f"slices per layer must be positive, got {slices_per_layer}"
            )

        if z_start_plane < 0:
            raise ValueError(f"z start plane must be non-negative, got {z_start_plane}")

        self._num_planes = num_planes
        self._slices_per_layer = slices_per_layer
        self._z_start_plane = z_start_plane

    @property
    def num_planes(self) -> int:
        return self._num_planes

    @property
    def slices_per_layer(self) -> int:
        return self._slices_per_layer

    @property
    def z_start_plane(self) -> int:
        return self._z_start_plane

    def emits(self, plane: int) -> bool:
        """
        True if the probes are recorded after the given plane.

        Parameters
        ----------
        plane : int
            One-based index of the last completed plane.
        """
        return (
            plane % self._slices_per_layer == 0 and plane >= self._z_start_plane
        ) or plane == self._num_planes

    @property
    def planes(self) -> list[int]:
        """One-based indices of the recorded planes."""
        return [plane for plane in range(1, self._num_planes + 1) if self.emits(plane)]

    @property
    def num_layers(self) -> int:
        """Number of recorded depth layers."""
        return len(self.planes)

    @property
    def first_layer(self) -> int:
        """Index of the first recorded layer in units of `slices_per_layer`."""
        if self._z_start_plane == 0:
            return 1
        return -(-self._z_start_plane // self._slices_per_layer)

    def depths(self, slice_thickness: float) -> np.ndarray:
        """Depth of each recorded layer [Å]."""
        return np.array(self.planes, dtype=np.float64) * slice_thickness


class MultisliceOutput:
    """
    Depth-resolved annular detector output of a multislice simulation.

    Parameters
    ----------
    array : np.ndarray
        Binned intensities (layer, `y` probe, `x` probe, channel).
    depths : np.ndarray
        Depth of each layer [Å].
    angles : np.ndarray
        Center of each detector channel [mrad].
    scan : BaseScan
        The scan the probes were positioned by.
    center_of_mass : np.ndarray, optional
        Center of mass of the diffraction patterns (layer, `y` probe, `x` probe, 2) in
        `x` and `y` [1/Å].
    """

    def __init__(
        self,
        array: np.ndarray,
        depths: np.ndarray,
        angles: np.ndarray,
        scan: BaseScan,
        center_of_mass: Optional[np.ndarray] = None,
    ):
        self._array = array
        self._depths = depths
        self._angles = angles
        self._scan = scan
        self._center_of_mass = center_of_mass

    @classmethod
    def allocate(
        cls,
        exit_planes: ExitPlanes,
        coordinates: CoordinateSystem,
        save_center_of_mass: bool = False,
    ) -> MultisliceOutput:
        """
        Allocate zero-initialized output for a simulation.
        """
        shape = (
            exit_planes.num_layers,
            *coordinates.scan.shape,
            coordinates.detector.nbins,
        )
        dtype = get_dtype(complex=False)

        com = None
        if save_center_of_mass:
            com = np.zeros(shape[:-1] + (2,), dtype=dtype)

        return cls(
            np.zeros(shape, dtype=dtype),
            depths=exit_planes.depths(coordinates.slice_thickness),
            angles=coordinates.detector.angles,
            scan=coordinates.scan,
            center_of_mass=com,
        )

    @property
    def array(self) -> np.ndarray:
        """Binned intensities (layer, `y` probe, `x` probe, channel)."""
        return self._array

    @property
    def depths(self) -> np.ndarray:
        """Depth of each layer [Å]."""
        return self._depths

    @property
    def angles(self) -> np.ndarray:
        """Center of each detector channel [mrad]."""
        return self._angles

    @property
    def scan(self) -> BaseScan:
        return self._scan

    @property
    def center_of_mass(self) -> Optional[np.ndarray]:
        return self._center_of_mass

    @property
    def shape(self) -> tuple[int, ...]:
        return self._array.shape

    def integrate(self, inner: float, outer: float) -> np.ndarray:
        """
        Sum the channels with centers between an inner and outer angle.

        Parameters
        ----------
        inner : float
            Inner integration limit [mrad].
        outer : float
            Outer integration limit [mrad].

        Returns
        -------
        np.ndarray
            Images (layer, `y` probe, `x` probe).
        """
        included = (self._angles >= inner) & (self._angles < outer)
        return self._array[..., included].sum(-1)


class DatacubeExport:
    """
    Settings of the export of diffraction patterns to a datacube sink.

    Parameters
    ----------
    sink : BaseDatacubeSink
        Sink receiving the patterns.
    complex_output : bool
        If True, export the complex waves instead of the intensities.
    max_angle : float, optional
        Crop the patterns to this scattering angle [mrad].
    """

    def __init__(
        self,
        sink: BaseDatacubeSink,
        complex_output: bool = False,
        max_angle: Optional[float] = None,
    ):
        self.sink = sink
        self.complex_output = complex_output
        self.max_angle = max_angle

    def identifier(self, layer: int, tag: str = "", configuration_index: int = 0) -> str:
        identifier = DATACUBE_PREFIX + digit_string(layer) + tag

        if self.complex_output:
            identifier += "_fp" + digit_string(configuration_index)

        return identifier

    def pattern_shape(self, coordinates: CoordinateSystem) -> tuple[int, int]:
        """Shape of exported patterns (`kx`, `ky`)."""
        crop_y, crop_x = coordinates.crop_indices(self.max_angle)
        return crop_x.stop - crop_x.start, crop_y.stop - crop_y.start

    @property
    def dtype(self):
        return get_dtype(complex=self.complex_output)


class OutputAccumulator:
    """
    Bins the waves of a batch of probes into the shared output and optionally exports
    them. Each worker owns one accumulator, the output cells of distinct probes are
    disjoint so the shared arrays are updated without locking.

    Parameters
    ----------
    coordinates : CoordinateSystem
        The coordinate system of the simulation.
    output : MultisliceOutput
        The shared output.
    export : DatacubeExport, optional
        Settings for exporting diffraction patterns.
    tag : str
        Tag appended to the identifiers of exported datasets.
    configuration_index : int
        Index of the frozen phonon configuration.
    num_configurations : int
        Number of frozen phonon configurations the exported patterns are averaged over.
    """

    def __init__(
        self,
        coordinates: CoordinateSystem,
        output: MultisliceOutput,
        export: Optional[DatacubeExport] = None,
        tag: str = "",
        configuration_index: int = 0,
        num_configurations: int = 1,
    ):
        self._coordinates = coordinates
        self._output = output
        self._export = export
        self._tag = tag
        self._configuration_index = configuration_index
        self._num_configurations = num_configurations

        self._regions = coordinates.detector_regions
        self._qx, self._qy = coordinates.frequencies()

        if export is not None:
            self._crop = coordinates.crop_indices(export.max_angle)
            self._running_average_buffer = np.zeros(
                export.pattern_shape(coordinates), dtype=export.dtype
            )

    def accumulate(self, waves: np.ndarray, first_index: int, layer: int) -> None:
        """
        Add the diffraction patterns of consecutive probes to a depth layer.

        Parameters
        ----------
        waves : np.ndarray
            Reciprocal-space waves of shape (batch, `y`, `x`) in FFT ordering.
        first_index : int
            Probe index of the first wave.
        layer : int
            Index of the depth layer.
        """
        scan = self._coordinates.scan
        intensity = abs2(waves)

        binned = np.zeros((len(waves), self._regions.nbins), dtype=self._output.array.dtype)
        self._regions.integrate(intensity, binned)

        com = None
        if self._output.center_of_mass is not None:
            com = np.zeros((len(waves), 2), dtype=np.float64)
            center_of_mass(intensity, self._qx, self._qy, com)

        for i in range(len(waves)):
            index = first_index + i
            ay, ax = scan.output_indices(index)

            self._output.array[layer, ay, ax] += binned[i]

            if com is not None:
                self._output.center_of_mass[layer, ay, ax] += com[i]

            if self._export is not None:
                if self._export.complex_output:
                    self._write_pattern(waves[i], layer, ay, ax, 1)
                else:
                    self._write_pattern(
                        intensity[i], layer, ay, ax, self._num_configurations
                    )

    def _write_pattern(
        self, array: np.ndarray, layer: int, ay: int, ax: int, num_configurations: int
    ) -> None:
        crop_y, crop_x = self._crop
        pattern = quarter_shift_crop(array)[crop_y, crop_x].T

        identifier = self._export.identifier(
            layer, tag=self._tag, configuration_index=self._configuration_index
        )

        self._export.sink.write_datacube(
            pattern,
            self._running_average_buffer,
            dimensions=(1, 1) + pattern.shape,
            offset=(ax, ay, 0, 0),
            num_configurations=num_configurations,
            identifier=identifier,
        )
