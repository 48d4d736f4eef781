import pytest

from rxn_calib.errors import ExperimentError
from rxn_calib.experiments.flame import PremixedFlame
from rxn_calib.parameters import ParameterStore


def _flame() -> PremixedFlame:
    return PremixedFlame(
        "flame",
        ParameterStore(),
        mechanism="h2o2.yaml",
        temperature=300.0,
        pressure_atm=1.0,
        composition="H2:1, O2:1, AR:5",
    )


def test_state_transfer_roundtrip() -> None:
    source = _flame()
    target = _flame()
    assert source.export_state() is None

    source.import_state({"grid": [0.0, 0.01, 0.03], "T": [300.0, 1500.0, 2000.0]})
    target.import_state(source.export_state())

    assert target.solution == {"grid": [0.0, 0.01, 0.03], "T": [300.0, 1500.0, 2000.0]}


def test_none_state_keeps_existing_solution() -> None:
    flame = _flame()
    flame.import_state({"grid": [0.0, 1.0], "T": [300.0, 2000.0]})

    flame.import_state(None)

    assert flame.solution is not None


def test_malformed_state_is_rejected() -> None:
    flame = _flame()

    with pytest.raises(ExperimentError):
        flame.import_state({"grid": [0.0, 1.0]})
    with pytest.raises(ExperimentError):
        flame.import_state({"grid": [0.0, 1.0], "T": [300.0]})


def test_pickling_drops_solver_handle() -> None:
    import pickle

    flame = _flame()
    flame._gas = "solver-handle"
    flame.is_initialized = True

    clone = pickle.loads(pickle.dumps(flame))

    assert clone._gas is None
    assert not clone.is_initialized
