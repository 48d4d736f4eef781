"""Structured config schema for Hydra."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Optional


@dataclass
class CommonConfig:
    seed: int = 0
    verbose: bool = False


@dataclass
class FarmConfig:
    # "sequential" runs in-process; "process" uses a pool of worker processes.
    mode: str = "sequential"
    workers: int = 2
    start_method: str = "spawn"


@dataclass
class CalibrationConfig:
    use_synthetic_data: bool = True
    noise_multiplier: float = 0.0
    # Defaults to the parameter defaults when unset.
    true_parameters: Optional[Any] = None


@dataclass
class BisectionConfig:
    parameter: int = 0
    kmin: float = 0.0
    kmax: float = 1.0
    ktyp: float = 0.5
    tol: float = 1.0e-3
    interesting: bool = False


@dataclass
class AppConfig:
    common: CommonConfig = field(default_factory=CommonConfig)
    farm: FarmConfig = field(default_factory=FarmConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    bisection: BisectionConfig = field(default_factory=BisectionConfig)
    # Entries: {name, default, reaction?, prior?: {mean, std}}.
    parameters: list[Any] = field(default_factory=list)
    # Experiment identifiers in registration order.
    experiments: list[str] = field(default_factory=list)
    # Identifier -> {type, data?, ...type-specific settings}.
    experiment_settings: dict[str, Any] = field(default_factory=dict)


def register_configs() -> None:
    from hydra.core.config_store import ConfigStore

    cs = ConfigStore.instance()
    try:
        cs.store(group="schema", name="base", node=AppConfig, package="_global_")
    except Exception as exc:
        logging.getLogger(__name__).warning(
            "Hydra config store registration failed: %s", exc
        )


__all__ = [
    "AppConfig",
    "BisectionConfig",
    "CalibrationConfig",
    "CommonConfig",
    "FarmConfig",
    "register_configs",
]
