"""Process-wide configuration of slicestem.

Defaults are read from the packaged ``slicestem.yaml``, then updated with yaml files in
the user configuration directory and ``SLICESTEM_*`` environment variables. Keys are
accessed with dotted names, e.g. ``get("multislice.batch_size")``.
"""

import os
import threading
from collections.abc import Mapping
from typing import Any, Optional, Sequence

import yaml
from dask.config import canonical_name, collect_yaml, update

no_default = "__no_default__"

ENV_PREFIX = "SLICESTEM_"

PATH = os.environ.get(
    "SLICESTEM_CONFIG", os.path.join(os.path.expanduser("~"), ".config", "slicestem")
)

config: dict = {}

config_lock = threading.Lock()

defaults: list[Mapping] = []

_missing = object()


def _split_key(key: str) -> list[str]:
    return key.replace("__", ".").split(".")


class set:
    """
    Set configuration values, the previous values are restored when used as a context
    manager.

    Parameters
    ----------
    arg : mapping, optional
        Mapping from dotted keys to values.
    **kwargs
        Further values, double underscores in the keyword denote nesting, e.g.
        ``fftw__threads=2``.

    Examples
    --------
    >>> with set({"multislice.batch_size": 4}):
    ...     get("multislice.batch_size")
    4
    """

    def __init__(
        self,
        arg: Optional[Mapping] = None,
        config: dict = config,
        lock: threading.Lock = config_lock,
        **kwargs,
    ):
        self.config = config
        self._previous: list[tuple[list[str], Any]] = []

        items = list((arg or {}).items()) + list(kwargs.items())

        with lock:
            for key, value in items:
                self._assign(_split_key(key), value)

    def _assign(self, keys: list[str], value: Any) -> None:
        d = self.config
        path = []

        for key in keys[:-1]:
            key = canonical_name(key, d)
            path.append(key)

            if not isinstance(d.get(key), dict):
                # the whole branch is new, restoring its root removes it
                self._previous.append((list(path), d.get(key, _missing)))
                d[key] = {}
                d = d[key]
                for key in keys[len(path) : -1]:
                    d = d.setdefault(key, {})
                d[keys[-1]] = value
                return

            d = d[key]

        key = canonical_name(keys[-1], d)
        self._previous.append((path + [key], d.get(key, _missing)))
        d[key] = value

    def __enter__(self):
        return self.config

    def __exit__(self, exc_type, exc_value, traceback):
        for path, value in reversed(self._previous):
            d = self.config
            for key in path[:-1]:
                d = d[key]

            if value is _missing:
                d.pop(path[-1], None)
            else:
                d[path[-1]] = value


def collect_env(env: Optional[Mapping] = None) -> dict:
    """
    Collect configuration from environment variables.

    Variables are prefixed with ``SLICESTEM_``, double underscores denote nesting and
    values are parsed as yaml, e.g. ``SLICESTEM_MULTISLICE__NUM_THREADS=8`` sets
    ``multislice.num_threads``.
    """
    if env is None:
        env = os.environ

    result: dict = {}
    for name, value in env.items():
        if not name.startswith(ENV_PREFIX) or name == "SLICESTEM_CONFIG":
            continue

        keys = name[len(ENV_PREFIX) :].lower().split("__")

        d = result
        for key in keys[:-1]:
            d = d.setdefault(key, {})

        try:
            d[keys[-1]] = yaml.safe_load(value)
        except yaml.YAMLError:
            d[keys[-1]] = value

    return result


def collect(paths: Optional[Sequence[str]] = None, env: Optional[Mapping] = None) -> dict:
    """
    Collect configuration from yaml files and environment variables.

    Parameters
    ----------
    paths : list of str
        Files or directories with yaml files. Defaults to the user configuration
        directory.
    env : mapping
        Environment variables. Defaults to ``os.environ``.
    """
    if paths is None:
        paths = [PATH]

    result: dict = {}
    for collected in list(collect_yaml(paths=paths)) + [collect_env(env=env)]:
        update(result, collected)
    return result


def refresh(config: dict = config, defaults: list[Mapping] = defaults, **kwargs) -> None:
    """
    Reset the configuration to the defaults and re-read the yaml files and environment
    variables. Keyword arguments are passed to `collect`.
    """
    config.clear()

    for d in defaults:
        update(config, d, priority="old")

    update(config, collect(**kwargs))


def get(
    key: str,
    default: Any = no_default,
    config: dict = config,
    override_with: Any = None,
) -> Any:
    """
    Get a configuration value by its dotted key.

    Parameters
    ----------
    key : str
        Dotted key, e.g. "fftw.threads".
    default : optional
        Returned if the key does not exist, otherwise a KeyError is raised.
    override_with : optional
        If not None, this value is returned instead. Used for keyword arguments
        defaulting to the configuration.
    """
    if override_with is not None:
        return override_with

    result = config
    for k in key.split("."):
        k = canonical_name(k, result)
        try:
            result = result[k]
        except (TypeError, IndexError, KeyError):
            if default is not no_default:
                return default
            raise

    return result


def update_defaults(
    new: Mapping, config: dict = config, defaults: list[Mapping] = defaults
) -> None:
    """
    Register a set of defaults, values already in the configuration take precedence.
    """
    defaults.append(new)
    update(config, new, priority="old")


def _initialize() -> None:
    fn = os.path.join(os.path.dirname(__file__), "slicestem.yaml")

    with open(fn) as f:
        update_defaults(yaml.safe_load(f))


refresh()
_initialize()
