"""Error hierarchy for rxn_calib."""

from __future__ import annotations

from typing import Any, Mapping, Optional


class CalibrationError(Exception):
    """Base exception for rxn_calib failures."""

    def __init__(
        self,
        message: str,
        *,
        user_message: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.user_message = message if user_message is None else user_message
        self.context = dict(context) if context else {}

    def log_message(self) -> str:
        if not self.context:
            return str(self)
        return f"{self}: {self.context}"


class ConfigError(CalibrationError):
    """Configuration loading or validation error."""


class ParameterError(CalibrationError):
    """Parameter store misuse (missing prior statistics, size mismatch)."""


class ExperimentError(CalibrationError):
    """Experiment plugin construction or execution error."""


class DataError(CalibrationError):
    """Measurement or statistics bookkeeping error."""


class ProtocolError(CalibrationError):
    """Master/worker message protocol violation."""


__all__ = [
    "CalibrationError",
    "ConfigError",
    "ParameterError",
    "ExperimentError",
    "DataError",
    "ProtocolError",
]
