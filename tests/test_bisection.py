import numpy as np
import pytest

from rxn_calib.bisection import find_interesting_range, find_valid_range, is_valid
from rxn_calib.errors import ConfigError
from rxn_calib.experiments.analytic import ArrheniusDelay, LinearResponse
from rxn_calib.manager import ExperimentManager
from rxn_calib.parameters import ParameterStore


def _window_manager() -> ExperimentManager:
    # Measurements [2 - k, k - 1] are non-negative for 1 <= k <= 2.
    parameters = ParameterStore()
    parameters.add_parameter("k", 1.5)
    manager = ExperimentManager(parameters)
    manager.add_experiment(
        LinearResponse("window", parameters, baseline=[2.0, -1.0], coefficients=[[-1.0], [1.0]]),
        "window",
    )
    manager.initialize_experiments()
    return manager


def _delay_manager() -> ExperimentManager:
    # tau = 1e-3 * exp(15) / k microseconds; valid while tau < 1e5.
    parameters = ParameterStore()
    parameters.add_parameter("k", 1.0)
    manager = ExperimentManager(parameters)
    manager.add_experiment(
        ArrheniusDelay(
            "delay",
            parameters,
            temperatures=[1000.0],
            prefactor=1.0e-9,
            activation_temperature=15000.0,
        ),
        "delay",
    )
    manager.initialize_experiments()
    return manager


def test_is_valid_writes_candidate_in_place() -> None:
    manager = _window_manager()
    pvals = np.array([1.5])

    assert is_valid(manager, 1.2, pvals, 0)
    assert pvals[0] == 1.2
    assert not is_valid(manager, 3.0, pvals, 0)


def test_valid_range_brackets_both_bounds() -> None:
    manager = _window_manager()
    tol = 1.0e-3

    kmin, kmax = find_valid_range(manager, 0.0, 4.0, 1.5, tol, np.array([1.5]), 0)

    assert 1.0 <= kmin < 1.0 + tol
    assert 2.0 - tol < kmax <= 2.0


def test_valid_bounds_are_kept() -> None:
    manager = _window_manager()

    kmin, kmax = find_valid_range(manager, 1.2, 1.8, 1.5, 1.0e-3, np.array([1.5]), 0)

    assert (kmin, kmax) == (1.2, 1.8)


def test_failed_round_counts_as_invalid() -> None:
    manager = _delay_manager()
    tol = 1.0e-3
    threshold = 1.0e-3 * np.exp(15.0) / 1.0e5

    kmin, kmax = find_valid_range(manager, 0.0, 10.0, 1.0, tol, np.array([1.0]), 0)

    assert threshold < kmin <= threshold + tol
    assert kmax == 10.0


def test_interesting_range_stops_at_steep_change() -> None:
    manager = _delay_manager()

    kmin, kmax = find_interesting_range(manager, 0.0, 10.0, 1.0, 1.0e-3, np.array([1.0]), 0)

    # Steps of 0.1 from 10; the first drop of more than 10% of tau(10) starts at 3.2.
    assert kmax == pytest.approx(3.2, abs=1.0e-6)
    assert 0.0 < kmin < 0.05


def test_non_positive_tolerance_is_rejected() -> None:
    manager = _window_manager()

    with pytest.raises(ConfigError):
        find_valid_range(manager, 0.0, 4.0, 1.5, 0.0, np.array([1.5]), 0)
