"""Build a calibration session (parameters, experiments, farm) from configuration."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
import logging
from typing import Any, Optional

import numpy as np

from rxn_calib.errors import ConfigError
from rxn_calib.experiment_set import ExperimentSet
from rxn_calib.experiments.base import (
    SimulatedExperiment,
    as_float,
    as_float_list,
    as_int,
    as_str,
    as_str_list,
    optional_mapping,
    require_mapping,
)
from rxn_calib.farm import TaskFarm, build_farm
from rxn_calib.hydra_utils import resolve_config
from rxn_calib.manager import ExperimentManager
from rxn_calib.parameters import ParameterStore
from rxn_calib.registry import resolve_experiment_type

FLAME_TYPE = "PREMIXReactor"

logger = logging.getLogger("rxn_calib.session")


@dataclass
class CalibrationSession:
    parameters: ParameterStore
    manager: ExperimentManager
    farm: TaskFarm
    true_parameters: np.ndarray

    def close(self) -> None:
        self.manager.close()

    def __enter__(self) -> "CalibrationSession":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def _build_parameters(entries: Any, rng: np.random.Generator) -> ParameterStore:
    if entries is None:
        entries = []
    if isinstance(entries, (str, Mapping)) or not isinstance(entries, Sequence):
        raise ConfigError("parameters must be a list of parameter entries.")
    store = ParameterStore(rng=rng)
    means: list[float] = []
    stds: list[float] = []
    for position, raw in enumerate(entries):
        entry = require_mapping(raw, f"parameters[{position}]")
        name = as_str(entry.get("name"), f"parameters[{position}].name")
        reaction = entry.get("reaction")
        store.add_parameter(
            name,
            as_float(entry.get("default"), f"{name}.default"),
            reaction=None if reaction is None else as_int(reaction, f"{name}.reaction"),
        )
        prior = entry.get("prior")
        if prior is not None:
            prior = require_mapping(prior, f"{name}.prior")
            means.append(as_float(prior.get("mean"), f"{name}.prior.mean"))
            stds.append(as_float(prior.get("std"), f"{name}.prior.std"))
    if means and len(means) == len(store):
        store.set_prior_stats(means, stds)
    elif means:
        logger.warning(
            "Prior statistics given for %d of %d parameters; prior left unset.",
            len(means),
            len(store),
        )
    return store


def _settings_for(
    experiment_settings: Mapping[str, Any],
    identifier: str,
) -> Mapping[str, Any]:
    if identifier not in experiment_settings:
        raise ConfigError(
            f"No experiment_settings entry for experiment {identifier!r}.",
            context={"experiment": identifier},
        )
    return require_mapping(experiment_settings[identifier], f"experiment_settings.{identifier}")


def build_experiment(
    identifier: str,
    experiment_settings: Mapping[str, Any],
    parameters: ParameterStore,
    *,
    _stack: Sequence[str] = (),
) -> SimulatedExperiment:
    """Construct the plugin configured under ``identifier``.

    Flame prerequisites (``prereqs``) are built recursively; a prerequisite
    chain that loops back on itself is rejected.
    """
    if identifier in _stack:
        chain = " -> ".join([*_stack, identifier])
        raise ConfigError(
            f"Cyclic prerequisites: {chain}.",
            context={"experiment": identifier},
        )
    settings = _settings_for(experiment_settings, identifier)
    type_name = as_str(settings.get("type"), f"{identifier}.type")
    factory = resolve_experiment_type(type_name)
    if type_name != FLAME_TYPE:
        return factory.from_config(identifier, settings, parameters)

    prerequisites = []
    for prereq_id in as_str_list(settings.get("prereqs"), f"{identifier}.prereqs"):
        prereq_settings = _settings_for(experiment_settings, prereq_id)
        if prereq_settings.get("type") != FLAME_TYPE:
            raise ConfigError(
                f"Prerequisite {prereq_id!r} of {identifier!r} must be a {FLAME_TYPE}.",
                context={"experiment": identifier, "prerequisite": prereq_id},
            )
        prerequisites.append(
            build_experiment(
                prereq_id,
                experiment_settings,
                parameters,
                _stack=(*_stack, identifier),
            )
        )
    return factory.from_config(identifier, settings, parameters, prerequisites=prerequisites)


def _true_parameters(raw: Any, parameters: ParameterStore) -> np.ndarray:
    if raw is None:
        return parameters.defaults
    values = np.asarray(raw, dtype=float).reshape(-1)
    if values.size != len(parameters):
        raise ConfigError(
            f"calibration.true_parameters has {values.size} entries; "
            f"expected {len(parameters)}.",
        )
    return values


def build_session(
    cfg: Any,
    *,
    rng: Optional[np.random.Generator] = None,
) -> CalibrationSession:
    """Create parameters, experiments and the task farm described by ``cfg``."""
    resolved = resolve_config(cfg)
    common = optional_mapping(resolved.get("common"), "common")
    farm_cfg = optional_mapping(resolved.get("farm"), "farm")
    calibration = optional_mapping(resolved.get("calibration"), "calibration")
    experiment_settings = optional_mapping(
        resolved.get("experiment_settings"), "experiment_settings"
    )

    if rng is None:
        seed = common.get("seed")
        rng = np.random.default_rng(None if seed is None else as_int(seed, "common.seed"))
    parameters = _build_parameters(resolved.get("parameters"), rng)

    experiments = ExperimentSet()
    farm = build_farm(
        parameters,
        experiments,
        mode=str(farm_cfg.get("mode", "sequential")),
        workers=as_int(farm_cfg.get("workers", 2), "farm.workers"),
        start_method=str(farm_cfg.get("start_method", "spawn")),
    )
    manager = ExperimentManager(
        parameters,
        use_synthetic_data=bool(calibration.get("use_synthetic_data", True)),
        noise_multiplier=as_float(
            calibration.get("noise_multiplier", 0.0), "calibration.noise_multiplier"
        ),
        farm=farm,
        experiments=experiments,
        rng=rng,
        verbose=bool(common.get("verbose", False)),
    )

    for identifier in as_str_list(resolved.get("experiments"), "experiments"):
        experiment = build_experiment(identifier, experiment_settings, parameters)
        data = experiment_settings[identifier].get("data")
        if data is not None:
            data = as_float_list(data, f"{identifier}.data")
        manager.add_experiment(experiment, identifier, data=data)
        logger.debug(
            "Registered experiment %s (%s) with %d measurements.",
            identifier,
            experiment.type_name,
            experiment.measurement_count(),
        )
    manager.initialize_experiments()

    return CalibrationSession(
        parameters=parameters,
        manager=manager,
        farm=farm,
        true_parameters=_true_parameters(calibration.get("true_parameters"), parameters),
    )


__all__ = ["CalibrationSession", "build_experiment", "build_session"]
