"""Module for distributing probe indices over worker threads."""

from __future__ import annotations

import threading
from typing import Optional


class WorkDispatcher:
    """
    Thread-safe issuer of disjoint ranges of probe indices.

    Ranges are issued in increasing order and their union covers [0, total) exactly
    once. The lock is only held while advancing the cursor.

    Parameters
    ----------
    total : int
        Total number of probes.
    """

    def __init__(self, total: int):
        if total < 0:
            raise ValueError(f"total number of probes must be non-negative, got {total}")

        self._total = total
        self._cursor = 0
        self._lock = threading.Lock()

    @property
    def total(self) -> int:
        return self._total

    def get_work(self, batch_size: int) -> Optional[tuple[int, int]]:
        """
        Claim the next range of probe indices.

        Parameters
        ----------
        batch_size : int
            Requested number of probes, the range is shorter when fewer remain.

        Returns
        -------
        work : tuple of int or None
            The half-open range (start, stop) or None when all probes are issued.
        """
        if batch_size < 1:
            raise ValueError(f"batch size must be at least 1, got {batch_size}")

        with self._lock:
            if self._cursor >= self._total:
                return None

            start = self._cursor
            stop = min(start + batch_size, self._total)
            self._cursor = stop

        return start, stop

    def exhaust(self) -> None:
        """Stop issuing work, subsequent requests return None."""
        with self._lock:
            self._cursor = self._total
