"""Evaluation engine and statistics bookkeeping for a calibration session."""

from __future__ import annotations

from collections.abc import Sequence
import logging
from typing import Optional

import numpy as np

from rxn_calib.errors import ConfigError, DataError
from rxn_calib.experiment_set import ExperimentDescriptor, ExperimentSet
from rxn_calib.experiments.base import SimulatedExperiment
from rxn_calib.farm import SequentialFarm, TaskFarm
from rxn_calib.parameters import ParameterStore

DEFAULT_NOISE_MULTIPLIER = 0.0


def _readonly(array: np.ndarray) -> np.ndarray:
    view = array.view()
    view.flags.writeable = False
    return view


class ExperimentManager:
    """Registers experiments, evaluates them and scores results against data.

    True data and observation std are filled once by
    ``initialize_true_data`` (or, for true data, from configured
    observations). Perturbed data is generated once per session by
    ``generate_expt_data`` and is required by ``compute_likelihood``.
    """

    def __init__(
        self,
        parameters: ParameterStore,
        *,
        use_synthetic_data: bool = True,
        noise_multiplier: float = DEFAULT_NOISE_MULTIPLIER,
        farm: Optional[TaskFarm] = None,
        experiments: Optional[ExperimentSet] = None,
        rng: Optional[np.random.Generator] = None,
        verbose: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.parameters = parameters
        self.use_synthetic_data = bool(use_synthetic_data)
        self.noise_multiplier = float(noise_multiplier)
        self.experiments = experiments if experiments is not None else ExperimentSet()
        self.farm = farm if farm is not None else SequentialFarm(parameters, self.experiments)
        if self.farm.experiments is not self.experiments:
            raise ConfigError("The task farm must share the manager's experiment set.")
        self.rng = rng if rng is not None else np.random.default_rng()
        self.verbose = verbose
        self.logger = logger or logging.getLogger("rxn_calib.manager")
        self._true_data = np.zeros(0)
        self._true_std = np.zeros(0)
        self._perturbed_data = np.zeros(0)

    # Registry

    def add_experiment(
        self,
        experiment: SimulatedExperiment,
        name: str,
        data: Optional[Sequence[float]] = None,
    ) -> ExperimentDescriptor:
        """Register ``experiment``; ``data`` holds its observations when not synthetic."""
        self.farm.close()
        descriptor = self.experiments.add_experiment(experiment, name)
        self._true_data = np.concatenate(
            [self._true_data[: descriptor.offset], np.zeros(descriptor.count)]
        )
        if not self.use_synthetic_data:
            observed = [] if data is None else list(data)
            if len(observed) < descriptor.count:
                raise ConfigError(
                    f"Insufficient data for experiment: {name}, required number data: "
                    f"{descriptor.count}",
                    context={"experiment": name, "provided": len(observed)},
                )
            self._true_data[descriptor.region] = np.asarray(
                observed[: descriptor.count], dtype=float
            )
        return descriptor

    def clear(self) -> None:
        self.farm.close()
        self.experiments.clear()
        self._true_data = np.zeros(0)
        self._true_std = np.zeros(0)
        self._perturbed_data = np.zeros(0)

    def num_expt_data(self) -> int:
        return self.experiments.num_expt_data()

    def experiment_names(self) -> list[str]:
        return self.experiments.names

    def initialize_experiments(self) -> None:
        self.experiments.initialize()

    def raw_data(self, index: int) -> Optional[np.ndarray]:
        """Buffer returned by experiment ``index`` in the latest round, failed or not."""
        if index >= len(self.farm.raw_data):
            return None
        return self.farm.raw_data[index]

    def close(self) -> None:
        self.farm.close()

    # Evaluation

    def generate_test_measurements(
        self,
        test_params: Sequence[float],
    ) -> tuple[np.ndarray, bool]:
        """Run one round at ``test_params``; returns the flat measurements and ok flag."""
        values = np.asarray(test_params, dtype=float).reshape(-1)
        self.parameters.set_values(values)
        level = logging.INFO if self.verbose else logging.DEBUG
        for index, value in enumerate(values):
            self.logger.log(level, "parameter %d value %s", index, value)
        measurements = np.zeros(self.num_expt_data())
        ok = self.farm.run_round(values, measurements)
        return measurements, ok

    evaluate = generate_test_measurements

    # Statistics

    @property
    def true_data(self) -> np.ndarray:
        return _readonly(self._true_data)

    @property
    def observation_std(self) -> np.ndarray:
        return _readonly(self._true_std)

    @property
    def perturbed_data(self) -> np.ndarray:
        return _readonly(self._perturbed_data)

    def initialize_true_data(self, true_parameters: Sequence[float]) -> bool:
        """Fill true data (synthetic mode) and observation std; drop perturbed data.

        Returns the ok flag of the synthetic evaluation round (always True when
        observed data came from configuration).
        """
        ok = True
        if self.use_synthetic_data:
            self._true_data, ok = self.generate_test_measurements(true_parameters)
            if not ok:
                self.logger.warning("Evaluation at the true parameters failed.")

        total = self.num_expt_data()
        std = np.zeros(total)
        for descriptor in self.experiments:
            buffer = np.zeros(descriptor.count)
            descriptor.experiment.noise_scale(buffer)
            if np.any(buffer <= 0) or not np.all(np.isfinite(buffer)):
                raise DataError(
                    f"Experiment {descriptor.name!r} reported a non-positive or "
                    "non-finite observation std.",
                    context={"experiment": descriptor.name, "std": buffer.tolist()},
                )
            std[descriptor.region] = buffer
        self._true_std = std
        self._perturbed_data = np.zeros(0)
        return ok

    def generate_expt_data(self) -> np.ndarray:
        """Draw ``max(std, true + std * z * multiplier)`` per measurement, once."""
        total = self.num_expt_data()
        if self._perturbed_data.size != 0:
            raise DataError(
                "Perturbed data already generated; re-run initialize_true_data to reset it."
            )
        if self._true_std.size != total or self._true_data.size != total:
            raise DataError(
                "True data and observation std must be initialized before generating data.",
                context={
                    "expected": total,
                    "true_data": int(self._true_data.size),
                    "observation_std": int(self._true_std.size),
                },
            )
        if self.noise_multiplier == 0:
            self.logger.warning("Zeroing data noise: perturbed data equals the true data.")
        z = self.rng.standard_normal(total)
        # TODO: confirm the floor; max(true, ...) may have been intended instead of max(std, ...).
        self._perturbed_data = np.maximum(
            self._true_std,
            self._true_data + self._true_std * z * self.noise_multiplier,
        )
        return self.perturbed_data

    def compute_likelihood(self, test_data: Sequence[float]) -> float:
        """Unnormalized negative log Gaussian likelihood with diagonal ``std**2``."""
        if self._perturbed_data.size == 0:
            raise DataError(
                "Must generate (perturbed) expt data before computing likelihood."
            )
        test = np.asarray(test_data, dtype=float).reshape(-1)
        total = self.num_expt_data()
        if test.size != total:
            raise DataError(
                f"Test data has {test.size} values; expected {total}.",
                context={"expected": total, "actual": int(test.size)},
            )
        residual = self._perturbed_data - test
        return float(np.sum(0.5 * residual * residual / (self._true_std * self._true_std)))


__all__ = ["DEFAULT_NOISE_MULTIPLIER", "ExperimentManager"]
