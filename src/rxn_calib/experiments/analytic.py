"""Closed-form experiments that need no kinetics solver."""

from __future__ import annotations

from collections.abc import Mapping
import math
from typing import Any, Optional

import numpy as np

from rxn_calib.errors import ConfigError, DataError
from rxn_calib.experiments.base import (
    SimulatedExperiment,
    as_float,
    as_float_list,
    as_int,
)
from rxn_calib.parameters import ParameterStore
from rxn_calib.registry import register_experiment_type

ARRHENIUS_ERR_DEF = 15.0
LINEAR_ERR_DEF = 1.0
MAX_VALID_MEASUREMENT = 1.0e5


def _check_buffer(buffer: np.ndarray, count: int, name: str) -> None:
    if buffer.shape != (count,):
        raise DataError(
            f"Measurement buffer for {name!r} has shape {buffer.shape}; expected ({count},).",
            context={"experiment": name},
        )


@register_experiment_type
class LinearResponse(SimulatedExperiment):
    """``values = baseline + coefficients @ parameters``.

    Values outside ``[lower, upper]`` (when given) are reported invalid.
    """

    type_name = "LinearResponse"

    def __init__(
        self,
        name: str,
        parameters: ParameterStore,
        *,
        baseline: list[float],
        coefficients: list[list[float]],
        measurement_error: float = LINEAR_ERR_DEF,
        lower: Optional[float] = None,
        upper: Optional[float] = None,
    ) -> None:
        super().__init__(name, parameters)
        self.baseline = np.asarray(baseline, dtype=float)
        self.coefficients = np.asarray(coefficients, dtype=float)
        if self.coefficients.ndim != 2 or self.coefficients.shape[0] != self.baseline.size:
            raise ConfigError(
                f"{name}.coefficients must have one row per baseline entry."
            )
        self.measurement_error = float(measurement_error)
        self.lower = lower
        self.upper = upper

    @classmethod
    def from_config(
        cls,
        name: str,
        settings: Mapping[str, Any],
        parameters: ParameterStore,
    ) -> "LinearResponse":
        baseline = as_float_list(settings.get("baseline"), f"{name}.baseline")
        raw_rows = settings.get("coefficients")
        if raw_rows is None:
            raise ConfigError(f"{name}.coefficients is required.")
        rows = [as_float_list(row, f"{name}.coefficients") for row in raw_rows]
        lower = settings.get("lower")
        upper = settings.get("upper")
        return cls(
            name,
            parameters,
            baseline=baseline,
            coefficients=rows,
            measurement_error=as_float(
                settings.get("measurement_error", LINEAR_ERR_DEF),
                f"{name}.measurement_error",
            ),
            lower=None if lower is None else as_float(lower, f"{name}.lower"),
            upper=None if upper is None else as_float(upper, f"{name}.upper"),
        )

    def measurement_count(self) -> int:
        return int(self.baseline.size)

    def initialize(self) -> None:
        if self.coefficients.shape[1] != len(self.parameters):
            raise ConfigError(
                f"{self.name}.coefficients rows need {len(self.parameters)} entries, "
                f"got {self.coefficients.shape[1]}."
            )
        super().initialize()

    def measure(self, buffer: np.ndarray) -> bool:
        _check_buffer(buffer, self.measurement_count(), self.name)
        buffer[:] = self.baseline + self.coefficients @ self.parameters.values
        if self.lower is not None and np.any(buffer < self.lower):
            return False
        if self.upper is not None and np.any(buffer > self.upper):
            return False
        return True

    def noise_scale(self, buffer: np.ndarray) -> None:
        _check_buffer(buffer, self.measurement_count(), self.name)
        buffer[:] = self.measurement_error


@register_experiment_type
class ArrheniusDelay(SimulatedExperiment):
    """Ignition delay surrogate ``tau = A exp(Ta / T) / k`` in microseconds.

    ``k`` is the value of parameter ``parameter``; one measurement per
    temperature.
    """

    type_name = "ArrheniusDelay"

    def __init__(
        self,
        name: str,
        parameters: ParameterStore,
        *,
        temperatures: list[float],
        prefactor: float,
        activation_temperature: float,
        parameter: int = 0,
        measurement_error: float = ARRHENIUS_ERR_DEF,
    ) -> None:
        super().__init__(name, parameters)
        if not temperatures or any(temp <= 0 for temp in temperatures):
            raise ConfigError(f"{name}.temperatures must be positive.")
        self.temperatures = np.asarray(temperatures, dtype=float)
        self.prefactor = float(prefactor)
        self.activation_temperature = float(activation_temperature)
        self.parameter = int(parameter)
        self.measurement_error = float(measurement_error)

    @classmethod
    def from_config(
        cls,
        name: str,
        settings: Mapping[str, Any],
        parameters: ParameterStore,
    ) -> "ArrheniusDelay":
        return cls(
            name,
            parameters,
            temperatures=as_float_list(settings.get("temperatures"), f"{name}.temperatures"),
            prefactor=as_float(settings.get("prefactor"), f"{name}.prefactor"),
            activation_temperature=as_float(
                settings.get("activation_temperature"),
                f"{name}.activation_temperature",
            ),
            parameter=as_int(settings.get("parameter", 0), f"{name}.parameter"),
            measurement_error=as_float(
                settings.get("measurement_error", ARRHENIUS_ERR_DEF),
                f"{name}.measurement_error",
            ),
        )

    def measurement_count(self) -> int:
        return int(self.temperatures.size)

    def initialize(self) -> None:
        if not 0 <= self.parameter < len(self.parameters):
            raise ConfigError(
                f"{self.name}.parameter index {self.parameter} is out of range."
            )
        super().initialize()

    @staticmethod
    def valid_measurement(value: float) -> bool:
        return 0.0 < value < MAX_VALID_MEASUREMENT

    def measure(self, buffer: np.ndarray) -> bool:
        _check_buffer(buffer, self.measurement_count(), self.name)
        rate = self.parameters[self.parameter]
        if rate <= 0 or not math.isfinite(rate):
            buffer[:] = -1.0
            return False
        buffer[:] = (
            1.0e6 * self.prefactor * np.exp(self.activation_temperature / self.temperatures) / rate
        )
        return all(self.valid_measurement(float(value)) for value in buffer)

    def noise_scale(self, buffer: np.ndarray) -> None:
        _check_buffer(buffer, self.measurement_count(), self.name)
        buffer[:] = self.measurement_error


__all__ = ["ArrheniusDelay", "LinearResponse"]
