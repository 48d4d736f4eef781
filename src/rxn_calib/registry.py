"""Experiment type registry, keyed by the ``type`` tag used in config."""

from __future__ import annotations

import importlib
from typing import Any, Optional, TypeVar

from rxn_calib.errors import ConfigError

BUILTIN_EXPERIMENT_MODULES = (
    "rxn_calib.experiments.analytic",
    "rxn_calib.experiments.flame",
    "rxn_calib.experiments.zero_d",
)

_P = TypeVar("_P")


class ExperimentTypes:
    """Maps type tags to plugin classes that provide ``from_config``."""

    def __init__(self) -> None:
        self._types: dict[str, Any] = {}

    def __contains__(self, type_name: object) -> bool:
        return type_name in self._types

    def names(self) -> list[str]:
        return sorted(self._types)

    def add(self, plugin: _P, *, overwrite: bool = False) -> _P:
        type_name = getattr(plugin, "type_name", None)
        if not isinstance(type_name, str) or not type_name.strip():
            raise ConfigError(f"{plugin!r} does not declare a type_name tag.")
        if not callable(getattr(plugin, "from_config", None)):
            raise ConfigError(
                f"Experiment type {type_name!r} has no from_config factory."
            )
        existing = self._types.get(type_name)
        if existing is not None and existing is not plugin and not overwrite:
            raise ConfigError(
                f"Experiment type {type_name!r} is already registered "
                f"by {existing.__name__}.",
                context={"type": type_name},
            )
        self._types[type_name] = plugin
        return plugin

    def resolve(self, type_name: str) -> Any:
        if not isinstance(type_name, str) or not type_name.strip():
            raise ConfigError("experiment type must be a non-empty string.")
        plugin = self._types.get(type_name)
        if plugin is None:
            available = ", ".join(self.names()) or "<none>"
            raise ConfigError(
                f"Unknown experiment type {type_name!r}. Available: {available}.",
                context={"type": type_name},
            )
        return plugin


EXPERIMENT_TYPES = ExperimentTypes()


def register_experiment_type(plugin: _P) -> _P:
    """Class decorator adding ``plugin`` under its ``type_name``."""
    return EXPERIMENT_TYPES.add(plugin)


def _load_builtin_experiments() -> None:
    for module in BUILTIN_EXPERIMENT_MODULES:
        importlib.import_module(module)


def experiment_type_names() -> list[str]:
    _load_builtin_experiments()
    return EXPERIMENT_TYPES.names()


def resolve_experiment_type(
    type_name: str,
    *,
    registry: Optional[ExperimentTypes] = None,
) -> Any:
    """Return the plugin class registered for an experiment type tag."""
    if registry is None:
        _load_builtin_experiments()
        registry = EXPERIMENT_TYPES
    return registry.resolve(type_name)


__all__ = [
    "ExperimentTypes",
    "experiment_type_names",
    "register_experiment_type",
    "resolve_experiment_type",
]
