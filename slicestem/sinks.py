"""Module for the sinks receiving diffraction patterns and probe snapshots."""

from __future__ import annotations

import threading
from abc import ABCMeta, abstractmethod
from typing import Sequence

import numpy as np


class BaseDatacubeSink(metaclass=ABCMeta):
    """
    Base class for sinks persisting 4D datasets of diffraction patterns.

    A dataset is indexed as (`x` probe, `y` probe, `kx`, `ky`). Every (probe, depth)
    pair is written exactly once per configuration, distinct probes are written
    concurrently from several threads.
    """

    def setup_datacubes(
        self, identifiers: Sequence[str], shape: tuple[int, ...], dtype
    ) -> None:
        """
        Prepare the datasets before the first write of a run.

        Parameters
        ----------
        identifiers : sequence of str
            Names of the datasets.
        shape : tuple of int
            Shape of each dataset.
        dtype : dtype
            Data type of the datasets.
        """

    @abstractmethod
    def write_datacube(
        self,
        data: np.ndarray,
        running_average_buffer: np.ndarray,
        dimensions: tuple[int, ...],
        offset: tuple[int, ...],
        num_configurations: int,
        identifier: str,
    ) -> None:
        """
        Add a block to a dataset.

        Parameters
        ----------
        data : np.ndarray
            The block to write, the shape is `dimensions` without the leading ones.
        running_average_buffer : np.ndarray
            Scratch array with the shape of `data` owned by the calling thread.
        dimensions : tuple of int
            Size of the block along each dimension of the dataset.
        offset : tuple of int
            Position of the block in the dataset, ordered as [`x` probe, `y` probe, ...].
        num_configurations : int
            The block is divided by this number and added to the dataset, averaging the
            frozen phonon configurations.
        identifier : str
            Name of the dataset.
        """


class MemoryDatacubeSink(BaseDatacubeSink):
    """
    Datacube sink keeping the datasets in memory as numpy arrays.
    """

    def __init__(self):
        self._datacubes: dict[str, np.ndarray] = {}
        self._lock = threading.Lock()

    @property
    def datacubes(self) -> dict[str, np.ndarray]:
        """The datasets by identifier."""
        return self._datacubes

    def __getitem__(self, identifier: str) -> np.ndarray:
        return self._datacubes[identifier]

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._datacubes

    def setup_datacubes(
        self, identifiers: Sequence[str], shape: tuple[int, ...], dtype
    ) -> None:
        with self._lock:
            for identifier in identifiers:
                if identifier not in self._datacubes:
                    self._datacubes[identifier] = np.zeros(shape, dtype=dtype)

    def write_datacube(
        self,
        data: np.ndarray,
        running_average_buffer: np.ndarray,
        dimensions: tuple[int, ...],
        offset: tuple[int, ...],
        num_configurations: int,
        identifier: str,
    ) -> None:
        datacube = self._datacubes[identifier]

        region = tuple(slice(o, o + d) for o, d in zip(offset, dimensions))
        block = datacube[region].reshape(data.shape)

        running_average_buffer[...] = block
        running_average_buffer += data / num_configurations
        datacube[region] = running_average_buffer.reshape(dimensions)


class MemoryProbeSink:
    """
    Probe sink keeping the snapshots of the initial probe in memory.
    """

    def __init__(self):
        self.probes: list[np.ndarray] = []

    def __call__(self, array: np.ndarray) -> None:
        self.probes.append(array.copy())
