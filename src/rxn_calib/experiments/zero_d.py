"""Cantera-backed 0D reactor experiments."""

from __future__ import annotations

from collections.abc import Mapping
import logging
from typing import Any, Optional

import numpy as np

from rxn_calib.errors import ConfigError, DataError, ExperimentError
from rxn_calib.experiments.base import (
    SimulatedExperiment,
    as_float,
    as_int,
    as_str,
    optional_mapping,
)
from rxn_calib.parameters import ParameterStore
from rxn_calib.registry import register_experiment_type

try:  # Optional dependency.
    import cantera as ct
except ImportError:  # pragma: no cover - optional dependency
    ct = None

ONE_ATM = 101325.0
ZERO_D_ERR_DEF = 15.0
DPDT_THRESH_DEF = 10.0  # atm / s
DOH_THRESH_DEF = 1.0e-4
MAX_VALID_MEASUREMENT = 1.0e5

TIME_SERIES = "time_series"
TRANSIENT_DIAGNOSTICS = (
    "pressure_rise",
    "onset_pressure_rise",
    "max_pressure",
    "max_OH",
)


def require_cantera() -> Any:
    if ct is None:
        raise ExperimentError(
            "Cantera is not installed; install cantera to use reactor experiments."
        )
    return ct


def coerce_composition(value: Any, label: str) -> str | dict[str, float]:
    if isinstance(value, str):
        if not value.strip():
            raise ConfigError(f"{label} must be a non-empty string.")
        return value
    if isinstance(value, Mapping):
        composition: dict[str, float] = {}
        for name, amount in value.items():
            if not isinstance(name, str) or not name.strip():
                raise ConfigError(f"{label} keys must be non-empty strings.")
            composition[name] = as_float(amount, f"{label}[{name}]")
        if not composition or sum(composition.values()) <= 0:
            raise ConfigError(f"{label} must contain at least one species.")
        return composition
    raise ConfigError(f"{label} must be a composition string or mapping.")


def apply_rate_multipliers(solution: Any, parameters: ParameterStore) -> None:
    """Apply every parameter bound to a reaction as that reaction's rate multiplier."""
    n_reactions = int(getattr(solution, "n_reactions", 0) or 0)
    for param in parameters.parameters:
        if param.reaction is None:
            continue
        if param.reaction < 0 or param.reaction >= n_reactions:
            raise ConfigError(
                f"Parameter {param.name!r} targets reaction {param.reaction}, "
                f"but the mechanism has {n_reactions} reactions."
            )
        solution.set_multiplier(param.value, param.reaction)


class ZeroDReactor(SimulatedExperiment):
    """Homogeneous reactor sampled on a fixed time grid.

    Time-series diagnostics (``temp``, ``pressure`` or a species name) yield
    one value per sample time. Transient diagnostics yield a single value:
    the detection time in microseconds.
    """

    constant_volume = True
    transient_attributes = ("_gas",)

    def __init__(
        self,
        name: str,
        parameters: ParameterStore,
        *,
        mechanism: str,
        temperature: float,
        pressure_atm: float,
        composition: str | dict[str, float],
        measurement_times: list[float],
        diagnostic_name: str = "temp",
        transient_thresh: Optional[float] = None,
        measurement_error: float = ZERO_D_ERR_DEF,
        phase: Optional[str] = None,
    ) -> None:
        super().__init__(name, parameters)
        self.mechanism = mechanism
        self.phase = phase
        self.temperature = float(temperature)
        self.pressure_atm = float(pressure_atm)
        self.composition = composition
        self.measurement_times = list(measurement_times)
        self.diagnostic_name = diagnostic_name
        self.measurement_error = float(measurement_error)
        if diagnostic_name in ("pressure_rise", "onset_pressure_rise"):
            default_thresh = DPDT_THRESH_DEF
        elif diagnostic_name == "max_OH":
            default_thresh = DOH_THRESH_DEF
        else:
            default_thresh = 0.0
        self.transient_thresh = (
            default_thresh if transient_thresh is None else float(transient_thresh)
        )
        self._gas: Any = None

    @classmethod
    def from_config(
        cls,
        name: str,
        settings: Mapping[str, Any],
        parameters: ParameterStore,
    ) -> "ZeroDReactor":
        require_cantera()
        tstart = as_float(settings.get("data_tstart", 0.0), f"{name}.data_tstart")
        tend = as_float(settings.get("data_tend", 0.1), f"{name}.data_tend")
        num_points = as_int(settings.get("data_num_points"), f"{name}.data_num_points")
        if num_points < 2:
            raise ConfigError(f"{name}.data_num_points must be at least 2.")
        if tend < tstart:
            raise ConfigError(f"{name}.data_tend must not precede data_tstart.")
        times = list(np.linspace(tstart, tend, num_points))

        diagnostic = as_str(settings.get("diagnostic_name", "temp"), f"{name}.diagnostic_name")
        thresh_key = {
            "pressure_rise": "dpdt_thresh",
            "onset_pressure_rise": "dpdt_thresh",
            "max_pressure": "p_thresh",
            "max_OH": "dOH_thresh",
        }.get(diagnostic)
        thresh = None
        if thresh_key is not None and settings.get(thresh_key) is not None:
            thresh = as_float(settings.get(thresh_key), f"{name}.{thresh_key}")

        phase = settings.get("phase")
        return cls(
            name,
            parameters,
            mechanism=as_str(settings.get("mechanism"), f"{name}.mechanism"),
            temperature=as_float(settings.get("T"), f"{name}.T"),
            pressure_atm=as_float(settings.get("Patm", 1.0), f"{name}.Patm"),
            composition=coerce_composition(settings.get("X"), f"{name}.X"),
            measurement_times=times,
            diagnostic_name=diagnostic,
            transient_thresh=thresh,
            measurement_error=as_float(
                settings.get("measurement_error", ZERO_D_ERR_DEF),
                f"{name}.measurement_error",
            ),
            phase=None if phase is None else as_str(phase, f"{name}.phase"),
        )

    @property
    def samples_evolution(self) -> bool:
        return self.diagnostic_name not in TRANSIENT_DIAGNOSTICS

    def measurement_count(self) -> int:
        if self.samples_evolution:
            return len(self.measurement_times)
        return 1

    def initialize(self) -> None:
        cantera = require_cantera()
        if self.phase is None:
            gas = cantera.Solution(self.mechanism)
        else:
            gas = cantera.Solution(self.mechanism, name=self.phase)
        if self.diagnostic_name not in ("temp", "pressure", *TRANSIENT_DIAGNOSTICS):
            if self.diagnostic_name not in gas.species_names:
                raise ConfigError(
                    f"Invalid species/temp for: {self.name} ({self.diagnostic_name!r})."
                )
        if self.diagnostic_name == "max_OH" and "OH" not in gas.species_names:
            raise ConfigError(f"{self.name}: mechanism has no OH species.")
        self._gas = gas
        super().initialize()

    @staticmethod
    def valid_measurement(value: float) -> bool:
        # A reasonable test whether result is p, T, Y or a time.
        return 0.0 < value < MAX_VALID_MEASUREMENT

    def _make_reactor(self) -> tuple[Any, Any]:
        cantera = require_cantera()
        gas = self._gas
        gas.TPX = self.temperature, self.pressure_atm * ONE_ATM, self.composition
        apply_rate_multipliers(gas, self.parameters)
        if self.constant_volume:
            reactor = cantera.IdealGasReactor(gas)
        else:
            reactor = cantera.IdealGasConstPressureReactor(gas)
        return reactor, cantera.ReactorNet([reactor])

    def _extract(self, reactor: Any) -> float:
        if self.diagnostic_name == "temp":
            return float(reactor.T)
        if self.diagnostic_name in ("pressure", "pressure_rise", "onset_pressure_rise", "max_pressure"):
            return float(reactor.thermo.P) / ONE_ATM
        if self.diagnostic_name == "max_OH":
            return float(reactor.thermo["OH"].Y[0])
        return float(reactor.thermo[self.diagnostic_name].Y[0])

    def measure(self, buffer: np.ndarray) -> bool:
        if buffer.shape != (self.measurement_count(),):
            raise DataError(
                f"Measurement buffer for {self.name!r} has shape {buffer.shape}.",
                context={"experiment": self.name},
            )
        if not self.is_initialized:
            raise ExperimentError(f"Experiment {self.name!r} is not initialized.")
        cantera = require_cantera()
        try:
            reactor, net = self._make_reactor()
            if self.samples_evolution:
                return self._sample_evolution(reactor, net, buffer)
            return self._detect_transient(reactor, net, buffer)
        except cantera.CanteraError as exc:
            logging.getLogger("rxn_calib.experiments").warning(
                "Reactor integration failed for %s: %s", self.name, exc
            )
            return False

    def _sample_evolution(self, reactor: Any, net: Any, buffer: np.ndarray) -> bool:
        for index, target in enumerate(self.measurement_times):
            if target > net.time:
                net.advance(float(target))
            buffer[index] = self._extract(reactor)
            if not self.valid_measurement(buffer[index]):
                return False
        return True

    def _detect_transient(self, reactor: Any, net: Any, buffer: np.ndarray) -> bool:
        times = self.measurement_times
        value_new = self._extract(reactor)
        value_old = value_new
        rate_old = 0.0
        dt = 0.0
        t_end = times[0]
        t_start_last = t_end
        for target in times[1:]:
            t_start = t_end
            t_end = float(target)
            dt_old = dt
            dt = t_end - t_start
            net.advance(t_end)
            value_older = value_old
            value_old = value_new
            value_new = self._extract(reactor)

            detected_at: Optional[float] = None
            if self.diagnostic_name == "onset_pressure_rise":
                rate = (value_new - value_older) / (dt + dt_old)
                if rate > self.transient_thresh and rate < rate_old:
                    detected_at = t_start_last
                rate_old = rate
            elif self.diagnostic_name == "pressure_rise":
                rate = (value_new - value_old) / dt
                if rate > self.transient_thresh and rate < rate_old:
                    detected_at = t_start
                rate_old = rate
            elif self.diagnostic_name == "max_pressure":
                if value_old > self.transient_thresh and (value_new - value_old) / dt < self.transient_thresh:
                    detected_at = t_start
            elif self.diagnostic_name == "max_OH":
                if value_old > self.transient_thresh and value_new < value_old:
                    detected_at = t_start
            t_start_last = t_start

            if detected_at is not None:
                buffer[0] = detected_at * 1.0e6
                return self.valid_measurement(buffer[0])
        return False

    def noise_scale(self, buffer: np.ndarray) -> None:
        buffer[:] = self.measurement_error


@register_experiment_type
class ConstantVolumeReactor(ZeroDReactor):
    type_name = "CVReactor"
    constant_volume = True


@register_experiment_type
class ConstantPressureReactor(ZeroDReactor):
    type_name = "CPReactor"
    constant_volume = False


__all__ = [
    "ConstantPressureReactor",
    "ConstantVolumeReactor",
    "ZeroDReactor",
    "apply_rate_multipliers",
    "coerce_composition",
    "require_cantera",
]
