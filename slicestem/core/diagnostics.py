from __future__ import annotations

import threading
import warnings
from typing import Any, Callable, Optional

from slicestem.core import config

try:
    from tqdm.auto import tqdm  # type: ignore
except ImportError:
    tqdm = None


class TqdmWrapper:
    """
    This class is a wrapper for the tqdm bar, which implements fallback logic if tqdm
    is not installed.

    Parameters
    ----------
    enabled : bool, optional
        A flag indicating if the wrapper is enabled. If None, the value from the
        configuration key "local_diagnostics.progress_bar" is used.
    *args
        Variable length argument list for tqdm.
    **kwargs
        Arbitrary keyword arguments for tqdm.
    """

    def __init__(self, *args, enabled: Optional[bool] = None, **kwargs: Any):
        if enabled is None:
            enabled = config.get("local_diagnostics.progress_bar", False)

        if tqdm is not None and enabled:
            self._pbar = tqdm(*args, **kwargs)
        else:
            if enabled:
                warnings.warn("displaying progress requires tqdm installed")

            self._pbar = None

    @property
    def pbar(self):
        """The progress bar object."""
        return self._pbar

    def update_if_exists(self, n: int = 1) -> None:
        """
        Updates the progress bar by n steps, if tqdm is successfully imported and
        enabled.
        """
        if self.pbar is not None:
            self.pbar.update(n)

    def close_if_exists(self) -> None:
        """
        Closes the progress bar provided it exists.
        """
        if self.pbar is not None:
            self.pbar.close()


ProgressCallback = Callable[[int, int, str], None]


class ProgressReporter:
    """
    Thread-safe counter of completed probes, forwarded to a progress bar and an
    optional callback. Reporting is purely observational.

    Parameters
    ----------
    total : int
        Total number of probes.
    callback : callable, optional
        Called as ``callback(completed, total, message)`` after every update.
    enabled : bool, optional
        Show a tqdm progress bar. Defaults to the configuration.
    description : str
        Status message passed to the callback and the progress bar.
    """

    def __init__(
        self,
        total: int,
        callback: Optional[ProgressCallback] = None,
        enabled: Optional[bool] = None,
        description: str = "Computing final output (Multislice)",
    ):
        self._total = total
        self._completed = 0
        self._callback = callback
        self._description = description
        self._lock = threading.Lock()
        self._pbar = TqdmWrapper(enabled=enabled, total=total, desc=description)

        if callback is not None:
            callback(0, total, description)

    @property
    def completed(self) -> int:
        """Number of probes completed so far."""
        return self._completed

    def update(self, n: int) -> None:
        with self._lock:
            self._completed += n
            completed = self._completed
            self._pbar.update_if_exists(n)

        if self._callback is not None:
            self._callback(completed, self._total, self._description)

    def close(self) -> None:
        self._pbar.close_if_exists()
