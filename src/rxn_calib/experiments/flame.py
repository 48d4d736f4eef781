"""Freely propagating premixed flame experiment (laminar flame speed)."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import logging
from typing import Any, Optional

import numpy as np

from rxn_calib.errors import DataError, ExperimentError
from rxn_calib.experiments.base import SimulatedExperiment, as_float, as_str
from rxn_calib.experiments.zero_d import (
    ONE_ATM,
    apply_rate_multipliers,
    coerce_composition,
    require_cantera,
)
from rxn_calib.parameters import ParameterStore
from rxn_calib.registry import register_experiment_type

PREMIX_ERR_DEF = 10.0
WIDTH_DEF = 0.03  # m
MAX_VALID_MEASUREMENT = 1.0e5

logger = logging.getLogger("rxn_calib.experiments")


@register_experiment_type
class PremixedFlame(SimulatedExperiment):
    """Laminar flame speed in cm/s from a Cantera ``FreeFlame``.

    The converged grid and temperature profile form the transferable state:
    it is exported after every solve and used as the initial guess of the
    next one, wherever that runs. Prerequisite flames are solved first and
    seed the initial guess when no state is available yet.
    """

    type_name = "PREMIXReactor"
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
        width: float = WIDTH_DEF,
        measurement_error: float = PREMIX_ERR_DEF,
        prerequisites: Sequence["PremixedFlame"] = (),
        loglevel: int = 0,
    ) -> None:
        super().__init__(name, parameters)
        self.mechanism = mechanism
        self.temperature = float(temperature)
        self.pressure_atm = float(pressure_atm)
        self.composition = composition
        self.width = float(width)
        self.measurement_error = float(measurement_error)
        self.prerequisites = list(prerequisites)
        self.loglevel = loglevel
        self.solution: Optional[dict[str, list[float]]] = None
        self._gas: Any = None

    @classmethod
    def from_config(
        cls,
        name: str,
        settings: Mapping[str, Any],
        parameters: ParameterStore,
        *,
        prerequisites: Sequence["PremixedFlame"] = (),
    ) -> "PremixedFlame":
        require_cantera()
        return cls(
            name,
            parameters,
            mechanism=as_str(settings.get("mechanism"), f"{name}.mechanism"),
            temperature=as_float(settings.get("T"), f"{name}.T"),
            pressure_atm=as_float(settings.get("Patm", 1.0), f"{name}.Patm"),
            composition=coerce_composition(settings.get("X"), f"{name}.X"),
            width=as_float(settings.get("width", WIDTH_DEF), f"{name}.width"),
            measurement_error=as_float(
                settings.get("measurement_error", PREMIX_ERR_DEF),
                f"{name}.measurement_error",
            ),
            prerequisites=prerequisites,
        )

    def measurement_count(self) -> int:
        return 1

    def initialize(self) -> None:
        cantera = require_cantera()
        self._gas = cantera.Solution(self.mechanism)
        for prereq in self.prerequisites:
            prereq.initialize()
            logger.debug("Initialized prerequisite %s of %s.", prereq.name, self.name)
        super().initialize()

    @staticmethod
    def valid_measurement(value: float) -> bool:
        return 0.0 < value < MAX_VALID_MEASUREMENT

    def _initial_guess(self) -> Optional[dict[str, list[float]]]:
        if self.solution is not None:
            return self.solution
        guess = None
        for prereq in self.prerequisites:
            buffer = np.zeros(prereq.measurement_count())
            if prereq.measure(buffer):
                guess = prereq.solution
        return guess

    def _solve(self, guess: Optional[dict[str, list[float]]]) -> float:
        cantera = require_cantera()
        gas = self._gas
        gas.TPX = self.temperature, self.pressure_atm * ONE_ATM, self.composition
        apply_rate_multipliers(gas, self.parameters)
        if guess is None:
            flame = cantera.FreeFlame(gas, width=self.width)
        else:
            grid = np.asarray(guess["grid"], dtype=float)
            flame = cantera.FreeFlame(gas, grid=grid)
            span = grid[-1] - grid[0]
            positions = (grid - grid[0]) / span if span > 0 else grid
            flame.set_profile("T", positions, guess["T"])
        flame.set_refine_criteria(ratio=3, slope=0.06, curve=0.12)
        flame.solve(loglevel=self.loglevel, auto=guess is None)
        self.solution = {
            "grid": [float(x) for x in flame.grid],
            "T": [float(t) for t in flame.T],
        }
        return float(flame.velocity[0]) * 100.0

    def measure(self, buffer: np.ndarray) -> bool:
        if buffer.shape != (1,):
            raise DataError(
                f"Measurement buffer for {self.name!r} has shape {buffer.shape}.",
                context={"experiment": self.name},
            )
        if not self.is_initialized:
            raise ExperimentError(f"Experiment {self.name!r} is not initialized.")
        cantera = require_cantera()
        try:
            buffer[0] = self._solve(self._initial_guess())
        except cantera.CanteraError as exc:
            logger.warning("Flame solve failed for %s: %s", self.name, exc)
            return False
        return self.valid_measurement(buffer[0])

    def noise_scale(self, buffer: np.ndarray) -> None:
        buffer[:] = self.measurement_error

    def export_state(self) -> Optional[dict[str, list[float]]]:
        if self.solution is None:
            return None
        return {key: list(values) for key, values in self.solution.items()}

    def import_state(self, state: Any) -> None:
        if state is None:
            return
        if not isinstance(state, Mapping) or "grid" not in state or "T" not in state:
            raise ExperimentError(
                f"Invalid transferred flame state for {self.name!r}.",
                context={"experiment": self.name},
            )
        if len(state["grid"]) != len(state["T"]):
            raise ExperimentError(f"Transferred flame state for {self.name!r} is ragged.")
        self.solution = {"grid": list(state["grid"]), "T": list(state["T"])}


__all__ = ["PremixedFlame"]
