"""Logging setup for master and worker processes, and error reporting."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import logging

from rxn_calib.errors import CalibrationError

PACKAGE_LOGGER = "rxn_calib"
DEFAULT_LOG_LEVEL = logging.INFO
LOG_FORMAT = "%(asctime)s %(levelname)s %(processName)s %(name)s: %(message)s"


def configure_logging(
    level: int = DEFAULT_LOG_LEVEL,
    *,
    verbose: bool = False,
) -> logging.Logger:
    """Install the root handler once and set the package level.

    ``verbose`` lowers the package logger to DEBUG even when the root
    handler was already installed at a higher level.
    """
    if verbose:
        level = logging.DEBUG
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    return logger


def configure_worker_logging(rank: int, level: int) -> logging.Logger:
    """Logging for a freshly started worker process; returns its own logger."""
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)
    logging.getLogger(PACKAGE_LOGGER).setLevel(level)
    return logging.getLogger(f"{PACKAGE_LOGGER}.farm.worker{rank}")


def log_exception(
    logger: logging.Logger,
    exc: BaseException,
    *,
    show_traceback: bool = False,
) -> str:
    if isinstance(exc, CalibrationError):
        message = exc.user_message
    else:
        message = f"Unexpected error: {exc}"
    logger.error(message)
    if isinstance(exc, CalibrationError) and exc.context:
        logger.debug("Error context: %s", exc.context)
    logger.log(
        logging.ERROR if show_traceback else logging.DEBUG,
        "Detailed traceback:",
        exc_info=exc,
    )
    return message


@contextmanager
def reporting_errors(
    logger: logging.Logger,
    *,
    show_traceback: bool = False,
) -> Iterator[None]:
    """Log any exception leaving the block, then let it propagate."""
    try:
        yield
    except Exception as exc:
        log_exception(logger, exc, show_traceback=show_traceback)
        raise


__all__ = [
    "DEFAULT_LOG_LEVEL",
    "LOG_FORMAT",
    "PACKAGE_LOGGER",
    "configure_logging",
    "configure_worker_logging",
    "log_exception",
    "reporting_errors",
]
