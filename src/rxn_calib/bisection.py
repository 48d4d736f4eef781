"""Bisection searches for the valid and interesting range of one parameter.

Every trial value costs a full evaluation round; a value is valid when the round
succeeds and no measurement is negative.
"""

from __future__ import annotations

from collections.abc import MutableSequence
import logging

import numpy as np

from rxn_calib.errors import ConfigError, DataError
from rxn_calib.manager import ExperimentManager

STEEP_CHANGE_FRACTION = 0.1
STEP_FRACTION = 0.01
MAX_INTERESTING_STEPS = 99

logger = logging.getLogger("rxn_calib.bisection")


def is_valid(
    manager: ExperimentManager,
    k: float,
    pvals: MutableSequence[float],
    idx: int,
) -> bool:
    """Set ``pvals[idx] = k`` (in place), evaluate, and test the result."""
    pvals[idx] = k
    measurements, ok = manager.generate_test_measurements(pvals)
    valid = bool(ok) and bool(np.all(measurements >= 0.0))
    logger.debug("trying p(%d) = %s -> %s", idx, k, "valid" if valid else "invalid")
    return valid


def _check_tol(tol: float) -> float:
    tol = float(tol)
    if not tol > 0:
        raise ConfigError(f"Bisection tolerance must be positive, got {tol!r}.")
    return tol


def _bisect_upper(
    manager: ExperimentManager,
    kmax: float,
    ktyp: float,
    tol: float,
    pvals: MutableSequence[float],
    idx: int,
) -> float:
    if is_valid(manager, kmax, pvals, idx):
        return kmax
    good, bad = ktyp, kmax
    while True:
        ktest = 0.5 * (good + bad)
        if is_valid(manager, ktest, pvals, idx):
            good = ktest
        else:
            bad = ktest
        if bad - good <= tol:
            return good


def _bisect_lower(
    manager: ExperimentManager,
    kmin: float,
    ktyp: float,
    tol: float,
    pvals: MutableSequence[float],
    idx: int,
) -> float:
    if is_valid(manager, kmin, pvals, idx):
        return kmin
    bad, good = kmin, ktyp
    while True:
        ktest = 0.5 * (good + bad)
        if is_valid(manager, ktest, pvals, idx):
            good = ktest
        else:
            bad = ktest
        if good - bad <= tol:
            return good


def find_valid_range(
    manager: ExperimentManager,
    kmin: float,
    kmax: float,
    ktyp: float,
    tol: float,
    pvals: MutableSequence[float],
    idx: int,
) -> tuple[float, float]:
    """Shrink ``[kmin, kmax]`` to within ``tol`` of the valid region around ``ktyp``.

    ``ktyp`` must be valid. Each bound is kept when already valid, otherwise
    bisected against ``ktyp`` and replaced by the last known-good value.
    """
    tol = _check_tol(tol)
    kmax = _bisect_upper(manager, kmax, ktyp, tol, pvals, idx)
    kmin = _bisect_lower(manager, kmin, ktyp, tol, pvals, idx)
    return kmin, kmax


def _walk_to_steep_change(
    manager: ExperimentManager,
    kmax: float,
    pvals: MutableSequence[float],
    idx: int,
) -> float:
    pvals[idx] = kmax
    measurements, _ = manager.generate_test_measurements(pvals)
    if measurements.size == 0:
        raise DataError("No measurements registered to inspect for a steep change.")
    dlast = dmag = float(measurements[0])
    threshold = abs(dmag) * STEEP_CHANGE_FRACTION
    step = kmax * STEP_FRACTION
    logger.info("Looking for change bigger than: %s", threshold)

    k1 = kmax
    for _ in range(MAX_INTERESTING_STEPS):
        pvals[idx] = k1 - step
        measurements, ok = manager.generate_test_measurements(pvals)
        if not ok:
            logger.debug("Evaluation failed at %s; treating it as a steep change.", k1 - step)
            return k1
        delta = abs(dlast - float(measurements[0]))
        dlast = float(measurements[0])
        if delta >= threshold:
            return k1
        k1 -= step
        logger.debug("k1, dlast: %s; %s", k1, dlast)
    logger.warning(
        "No steep change found within %d steps below %s.", MAX_INTERESTING_STEPS, kmax
    )
    return k1


def find_interesting_range(
    manager: ExperimentManager,
    kmin: float,
    kmax: float,
    ktyp: float,
    tol: float,
    pvals: MutableSequence[float],
    idx: int,
) -> tuple[float, float]:
    """Like ``find_valid_range`` but pull ``kmax`` down to the onset of a steep response.

    After bracketing a valid ``kmax``, it walks down in steps of 1% of that
    value while the first measurement changes by less than 10% of its value
    at ``kmax`` between consecutive steps.
    """
    tol = _check_tol(tol)
    kmax = _bisect_upper(manager, kmax, ktyp, tol, pvals, idx)
    kmax = _walk_to_steep_change(manager, kmax, pvals, idx)
    kmin = _bisect_lower(manager, kmin, ktyp, tol, pvals, idx)
    return kmin, kmax


__all__ = ["find_interesting_range", "find_valid_range", "is_valid"]
