"""Experiment plugin interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, ClassVar

import numpy as np

from rxn_calib.errors import ConfigError
from rxn_calib.parameters import ParameterStore


class SimulatedExperiment(ABC):
    """Black-box simulator mapping the active parameters to measurements.

    Plugins read the current parameter values from the ``ParameterStore``
    they were built with. Solver objects created by ``initialize`` must be
    listed in ``transient_attributes``: they are dropped when the plugin is
    pickled into a worker process, which initializes its own copy.
    """

    type_name: ClassVar[str] = ""
    transient_attributes: ClassVar[tuple[str, ...]] = ()

    def __init__(self, name: str, parameters: ParameterStore) -> None:
        self.name = name
        self.parameters = parameters
        self.is_initialized = False

    @abstractmethod
    def measurement_count(self) -> int:
        """Number of measured values; fixed once constructed."""

    def initialize(self) -> None:
        self.is_initialized = True

    @abstractmethod
    def measure(self, buffer: np.ndarray) -> bool:
        """Fill ``buffer``; return False when the values are not physically valid."""

    @abstractmethod
    def noise_scale(self, buffer: np.ndarray) -> None:
        """Fill ``buffer`` with the per-measurement observation std."""

    def export_state(self) -> Any:
        """Return solver state needed to resume this experiment elsewhere."""
        return None

    def import_state(self, state: Any) -> None:
        """Restore state produced by ``export_state`` on another participant."""

    def __getstate__(self) -> dict[str, Any]:
        state = self.__dict__.copy()
        for attr in self.transient_attributes:
            state[attr] = None
        if self.transient_attributes:
            state["is_initialized"] = False
        return state

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


def require_mapping(value: Any, label: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ConfigError(f"{label} must be a mapping.")
    return value


def optional_mapping(value: Any, label: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    return require_mapping(value, label)


def as_float(value: Any, label: str) -> float:
    if value is None or isinstance(value, bool):
        raise ConfigError(f"{label} must be a float.")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{label} must be a float, got {value!r}.") from exc


def as_int(value: Any, label: str) -> int:
    if value is None or isinstance(value, bool):
        raise ConfigError(f"{label} must be an int.")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{label} must be an int, got {value!r}.") from exc


def as_str(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{label} must be a non-empty string.")
    return value


def as_float_list(value: Any, label: str) -> list[float]:
    if isinstance(value, str) or not isinstance(value, Sequence):
        raise ConfigError(f"{label} must be a sequence of floats.")
    values = [as_float(entry, label) for entry in value]
    if not values:
        raise ConfigError(f"{label} must contain at least one entry.")
    return values


def as_str_list(value: Any, label: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, Sequence):
        raise ConfigError(f"{label} must be a sequence of strings.")
    return [as_str(entry, label) for entry in value]


__all__ = [
    "SimulatedExperiment",
    "as_float",
    "as_float_list",
    "as_int",
    "as_str",
    "as_str_list",
    "optional_mapping",
    "require_mapping",
]
