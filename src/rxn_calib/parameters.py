"""Active calibration parameters and their Gaussian prior."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Optional

import numpy as np

from rxn_calib.errors import ParameterError


@dataclass
class Parameter:
    """One active parameter; ``reaction`` names the rate multiplier it drives."""

    name: str
    default: float
    value: float
    reaction: Optional[int] = None


def _as_vector(values: Sequence[float], label: str, size: int) -> np.ndarray:
    array = np.asarray(values, dtype=float).reshape(-1)
    if array.size != size:
        raise ParameterError(
            f"{label} has {array.size} entries but {size} parameters are registered.",
            context={"expected": size, "actual": int(array.size)},
        )
    return array


class ParameterStore:
    """Holds current values, defaults and prior statistics of active parameters.

    Values are mutated only through ``__setitem__``/``set_values``; the
    evaluation engine writes each trial vector here before a round.
    """

    def __init__(self, rng: Optional[np.random.Generator] = None) -> None:
        self._parameters: list[Parameter] = []
        self._prior_mean: Optional[np.ndarray] = None
        self._prior_std: Optional[np.ndarray] = None
        self.rng = rng if rng is not None else np.random.default_rng()

    def add_parameter(
        self,
        name: str,
        default: float,
        *,
        reaction: Optional[int] = None,
    ) -> float:
        """Add a parameter to the active set and return its default value."""
        default = float(default)
        self._parameters.append(
            Parameter(name=name, default=default, value=default, reaction=reaction)
        )
        self._prior_mean = None
        self._prior_std = None
        return default

    def num_params(self) -> int:
        return len(self._parameters)

    def __len__(self) -> int:
        return len(self._parameters)

    def __getitem__(self, index: int) -> float:
        return self._parameters[index].value

    def __setitem__(self, index: int, value: float) -> None:
        self._parameters[index].value = float(value)

    @property
    def parameters(self) -> tuple[Parameter, ...]:
        return tuple(self._parameters)

    @property
    def names(self) -> list[str]:
        return [param.name for param in self._parameters]

    @property
    def values(self) -> np.ndarray:
        return np.array([param.value for param in self._parameters], dtype=float)

    @property
    def defaults(self) -> np.ndarray:
        return np.array([param.default for param in self._parameters], dtype=float)

    def set_values(self, values: Sequence[float]) -> None:
        array = _as_vector(values, "parameter vector", len(self._parameters))
        for param, value in zip(self._parameters, array):
            param.value = float(value)

    def reset_to_default(self) -> None:
        for param in self._parameters:
            param.value = param.default

    def clear(self) -> None:
        self.reset_to_default()
        self._parameters = []
        self._prior_mean = None
        self._prior_std = None

    @property
    def prior_stats_initialized(self) -> bool:
        return self._prior_mean is not None and self._prior_std is not None

    @property
    def prior_mean(self) -> np.ndarray:
        self._require_prior()
        return self._prior_mean.copy()

    @property
    def prior_std(self) -> np.ndarray:
        self._require_prior()
        return self._prior_std.copy()

    def set_prior_stats(self, mean: Sequence[float], std: Sequence[float]) -> None:
        size = len(self._parameters)
        mean_arr = _as_vector(mean, "prior mean", size)
        std_arr = _as_vector(std, "prior std", size)
        if np.any(std_arr <= 0) or not np.all(np.isfinite(std_arr)):
            raise ParameterError("prior std entries must be positive and finite.")
        self._prior_mean = mean_arr
        self._prior_std = std_arr

    def _require_prior(self) -> None:
        if not self.prior_stats_initialized:
            raise ParameterError(
                "Prior statistics must be set before sampling or evaluating the prior."
            )

    def sample_prior(self, rng: Optional[np.random.Generator] = None) -> np.ndarray:
        """Draw ``mean + std * z`` independently for every parameter."""
        self._require_prior()
        rng = rng if rng is not None else self.rng
        z = rng.standard_normal(len(self._parameters))
        return self._prior_mean + self._prior_std * z

    def compute_prior(self, values: Sequence[float]) -> float:
        """Negative log density of the independent Gaussian prior, up to a constant."""
        self._require_prior()
        array = _as_vector(values, "parameter vector", len(self._parameters))
        residual = self._prior_mean - array
        return float(np.sum(residual * residual / (2.0 * self._prior_std**2)))


__all__ = ["Parameter", "ParameterStore"]
