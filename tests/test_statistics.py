import logging

import numpy as np
import pytest

from rxn_calib.errors import ConfigError, DataError
from rxn_calib.experiments.analytic import LinearResponse
from rxn_calib.manager import ExperimentManager
from rxn_calib.parameters import ParameterStore


def _manager(**kwargs) -> ExperimentManager:
    parameters = ParameterStore()
    parameters.add_parameter("k", 1.0)
    manager = ExperimentManager(parameters, rng=np.random.default_rng(0), **kwargs)
    manager.add_experiment(
        LinearResponse(
            "ramp",
            parameters,
            baseline=[1.0, 2.0, 3.0, 4.0, 5.0],
            coefficients=[[0.0]] * 5,
        ),
        "ramp",
    )
    manager.initialize_experiments()
    return manager


def test_likelihood_zero_at_truth_and_half_per_unit_residual() -> None:
    manager = _manager(noise_multiplier=0.0)
    assert manager.initialize_true_data([1.0])
    manager.generate_expt_data()

    truth = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
    assert manager.true_data.tolist() == truth.tolist()
    assert manager.observation_std.tolist() == [1.0] * 5
    assert manager.perturbed_data.tolist() == truth.tolist()
    assert manager.compute_likelihood(truth) == 0.0
    assert manager.compute_likelihood(truth + 1.0) == pytest.approx(2.5)
    assert manager.compute_likelihood(truth - 1.0) == pytest.approx(2.5)


def test_zero_noise_multiplier_warns(caplog) -> None:
    manager = _manager(noise_multiplier=0.0)
    manager.initialize_true_data([1.0])

    with caplog.at_level(logging.WARNING, logger="rxn_calib.manager"):
        manager.generate_expt_data()

    assert any("Zeroing data noise" in record.getMessage() for record in caplog.records)


def test_perturbed_data_is_floored_at_std() -> None:
    manager = _manager(noise_multiplier=50.0)
    manager.initialize_true_data([1.0])

    perturbed = manager.generate_expt_data()

    assert np.all(perturbed >= manager.observation_std)


def test_perturbed_data_is_generated_once() -> None:
    manager = _manager()
    manager.initialize_true_data([1.0])
    manager.generate_expt_data()

    with pytest.raises(DataError):
        manager.generate_expt_data()

    manager.initialize_true_data([1.0])
    manager.generate_expt_data()


def test_likelihood_requires_perturbed_data() -> None:
    manager = _manager()
    manager.initialize_true_data([1.0])

    with pytest.raises(DataError) as exc:
        manager.compute_likelihood(np.zeros(5))

    assert "Must generate (perturbed) expt data" in str(exc.value)


def test_likelihood_rejects_wrong_size() -> None:
    manager = _manager()
    manager.initialize_true_data([1.0])
    manager.generate_expt_data()

    with pytest.raises(DataError):
        manager.compute_likelihood(np.zeros(4))


def test_observed_data_is_used_when_not_synthetic() -> None:
    parameters = ParameterStore()
    parameters.add_parameter("k", 1.0)
    manager = ExperimentManager(parameters, use_synthetic_data=False)
    experiment = LinearResponse("pair", parameters, baseline=[0.0, 0.0], coefficients=[[1.0], [1.0]])

    manager.add_experiment(experiment, "pair", data=[7.0, 8.0, 9.0])
    manager.initialize_true_data([1.0])

    assert manager.true_data.tolist() == [7.0, 8.0]


def test_insufficient_observed_data_is_fatal() -> None:
    parameters = ParameterStore()
    parameters.add_parameter("k", 1.0)
    manager = ExperimentManager(parameters, use_synthetic_data=False)
    experiment = LinearResponse("pair", parameters, baseline=[0.0, 0.0], coefficients=[[1.0], [1.0]])

    with pytest.raises(ConfigError) as exc:
        manager.add_experiment(experiment, "pair", data=[7.0])

    assert "Insufficient data for experiment: pair" in str(exc.value)


def test_statistics_views_are_read_only() -> None:
    manager = _manager()
    manager.initialize_true_data([1.0])

    with pytest.raises(ValueError):
        manager.true_data[0] = 10.0


def test_non_positive_observation_std_is_rejected() -> None:
    parameters = ParameterStore()
    parameters.add_parameter("k", 1.0)
    manager = ExperimentManager(parameters)
    manager.add_experiment(
        LinearResponse(
            "exact",
            parameters,
            baseline=[1.0, 2.0],
            coefficients=[[0.0], [0.0]],
            measurement_error=0.0,
        ),
        "exact",
    )
    manager.initialize_experiments()

    with pytest.raises(DataError) as exc:
        manager.initialize_true_data([1.0])

    assert "observation std" in str(exc.value)
    assert exc.value.context["experiment"] == "exact"
