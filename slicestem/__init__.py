"""Main slicestem module."""

from slicestem import transfer
from slicestem._version import __version__
from slicestem.coordinates import CoordinateSystem
from slicestem.core import config
from slicestem.core.grid import Grid
from slicestem.detectors import FlexibleAnnularDetector
from slicestem.dispatch import WorkDispatcher
from slicestem.measurements import ExitPlanes, MultisliceOutput
from slicestem.multislice import MultisliceEngine
from slicestem.potentials import PotentialArray, TransmissionFunction
from slicestem.probe import ProbeInitializer
from slicestem.scan import CustomScan, GridScan
from slicestem.simulation import MultisliceSimulation
from slicestem.sinks import MemoryDatacubeSink, MemoryProbeSink
from slicestem.transfer import Aberrations

__all__ = [
    "__version__",
    "config",
    "transfer",
    "Aberrations",
    "CoordinateSystem",
    "CustomScan",
    "ExitPlanes",
    "FlexibleAnnularDetector",
    "Grid",
    "GridScan",
    "MemoryDatacubeSink",
    "MemoryProbeSink",
    "MultisliceEngine",
    "MultisliceOutput",
    "MultisliceSimulation",
    "PotentialArray",
    "ProbeInitializer",
    "TransmissionFunction",
    "WorkDispatcher",
]
