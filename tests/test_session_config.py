from pathlib import Path

import pytest

from rxn_calib.errors import ConfigError
from rxn_calib.hydra_utils import (
    compose_config,
    format_config,
    load_config,
    resolve_config,
    seed_everything,
)
from rxn_calib.session import build_session


def _linear_cfg(**calibration) -> dict:
    return {
        "common": {"seed": 11},
        "calibration": calibration,
        "parameters": [
            {"name": "a", "default": 1.0, "prior": {"mean": 1.0, "std": 0.5}},
            {"name": "b", "default": 2.0, "prior": {"mean": 2.0, "std": 0.5}},
        ],
        "experiments": ["lin"],
        "experiment_settings": {
            "lin": {
                "type": "LinearResponse",
                "baseline": [0.0, 0.0],
                "coefficients": [[1.0, 0.0], [0.0, 1.0]],
                "data": [1.5, 2.5, 99.0],
            },
        },
    }


def test_hydra_compose_default_config(config_dir: Path) -> None:
    cfg = compose_config(config_path=config_dir, config_name="default")
    resolved = resolve_config(cfg)

    assert resolved["common"]["seed"] == 0
    assert resolved["farm"]["mode"] == "sequential"
    assert resolved["experiments"] == ["linear", "ignition"]
    assert seed_everything(cfg) == 0
    assert "experiment_settings:" in format_config(cfg)


def test_default_config_session_evaluates(config_dir: Path) -> None:
    cfg = compose_config(
        config_path=config_dir,
        config_name="default",
        overrides=["common.seed=5"],
    )

    with build_session(cfg) as session:
        measurements, ok = session.manager.generate_test_measurements(
            session.parameters.values
        )

    assert ok
    assert session.manager.experiment_names() == ["linear", "ignition"]
    assert measurements.shape == (5,)
    assert measurements[:2].tolist() == [2.0, 4.5]


def test_session_from_yaml_file(tmp_path) -> None:
    path = tmp_path / "session.yaml"
    path.write_text(
        "parameters:\n"
        "  - {name: k, default: 2.0}\n"
        "experiments: [lin]\n"
        "experiment_settings:\n"
        "  lin: {type: LinearResponse, baseline: [1.0], coefficients: [[3.0]]}\n",
        encoding="utf-8",
    )

    session = build_session(load_config(path))
    measurements, ok = session.manager.generate_test_measurements([2.0])

    assert ok
    assert measurements.tolist() == [7.0]
    assert session.true_parameters.tolist() == [2.0]
    assert not session.parameters.prior_stats_initialized


def test_observed_data_and_priors_from_config() -> None:
    session = build_session(_linear_cfg(use_synthetic_data=False, true_parameters=[1.0, 2.0]))
    manager = session.manager

    manager.initialize_true_data(session.true_parameters)
    manager.generate_expt_data()

    assert manager.true_data.tolist() == [1.5, 2.5]
    assert session.parameters.compute_prior([1.5, 2.0]) == pytest.approx(0.5)
    assert manager.compute_likelihood([1.5, 2.5]) == 0.0


def test_insufficient_observed_data_from_config() -> None:
    cfg = _linear_cfg(use_synthetic_data=False)
    cfg["experiment_settings"]["lin"]["data"] = [1.0]

    with pytest.raises(ConfigError) as exc:
        build_session(cfg)

    assert "Insufficient data" in str(exc.value)


def test_unknown_experiment_type_is_fatal() -> None:
    cfg = _linear_cfg()
    cfg["experiment_settings"]["lin"]["type"] = "WarpDrive"

    with pytest.raises(ConfigError) as exc:
        build_session(cfg)

    assert "WarpDrive" in str(exc.value)


def test_missing_experiment_settings_is_fatal() -> None:
    cfg = _linear_cfg()
    cfg["experiments"] = ["lin", "ghost"]

    with pytest.raises(ConfigError) as exc:
        build_session(cfg)

    assert "ghost" in str(exc.value)


def test_cyclic_flame_prerequisites_are_rejected() -> None:
    flame = {"type": "PREMIXReactor", "mechanism": "h2o2.yaml", "T": 300.0, "X": "H2:1, O2:1"}
    cfg = _linear_cfg()
    cfg["experiments"] = ["flame_a"]
    cfg["experiment_settings"] = {
        "flame_a": dict(flame, prereqs=["flame_b"]),
        "flame_b": dict(flame, prereqs=["flame_a"]),
    }

    with pytest.raises(ConfigError) as exc:
        build_session(cfg)

    assert "Cyclic prerequisites" in str(exc.value)
    assert "flame_a -> flame_b -> flame_a" in str(exc.value)


def test_true_parameters_size_is_checked() -> None:
    with pytest.raises(ConfigError):
        build_session(_linear_cfg(true_parameters=[1.0]))


def test_process_farm_session_matches_sequential(config_dir: Path) -> None:
    cfg = compose_config(config_path=config_dir, config_name="default")
    expected, _ = build_session(cfg).manager.generate_test_measurements([1.0, 2.0])
    process_cfg = compose_config(
        config_path=config_dir,
        config_name="default",
        overrides=["farm.mode=process", "farm.workers=2"],
    )

    with build_session(process_cfg) as session:
        measurements, ok = session.manager.generate_test_measurements([1.0, 2.0])

    assert ok
    assert measurements.tolist() == expected.tolist()
    assert not session.farm.started
