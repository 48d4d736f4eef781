import numpy as np
import pytest

from rxn_calib.errors import ParameterError
from rxn_calib.parameters import ParameterStore


def _store() -> ParameterStore:
    store = ParameterStore(rng=np.random.default_rng(3))
    store.add_parameter("a", 1.0)
    store.add_parameter("b", 2.0, reaction=4)
    return store


def test_add_parameter_tracks_defaults_and_values() -> None:
    store = _store()

    assert store.num_params() == 2
    assert store.names == ["a", "b"]
    assert store.parameters[1].reaction == 4
    store.set_values([3.0, 4.0])
    assert store.values.tolist() == [3.0, 4.0]
    store.reset_to_default()
    assert store.values.tolist() == [1.0, 2.0]


def test_set_values_rejects_wrong_size() -> None:
    store = _store()

    with pytest.raises(ParameterError) as exc:
        store.set_values([1.0])

    assert "2 parameters" in str(exc.value)


def test_prior_requires_statistics() -> None:
    store = _store()

    with pytest.raises(ParameterError):
        store.sample_prior()
    with pytest.raises(ParameterError):
        store.compute_prior([1.0, 2.0])


def test_compute_prior_is_zero_at_mean_and_quadratic() -> None:
    store = _store()
    store.set_prior_stats([1.0, 2.0], [0.5, 2.0])

    assert store.compute_prior([1.0, 2.0]) == 0.0
    # (0.5)^2 / (2 * 0.25) + (2)^2 / (2 * 4) = 1.0 + 0.5
    assert store.compute_prior([1.5, 4.0]) == pytest.approx(1.5)


def test_sample_prior_uses_mean_and_std() -> None:
    store = _store()
    store.set_prior_stats([10.0, -5.0], [1.0e-9, 1.0e-9])

    draw = store.sample_prior()

    assert draw == pytest.approx([10.0, -5.0])


def test_adding_parameter_drops_prior() -> None:
    store = _store()
    store.set_prior_stats([1.0, 2.0], [1.0, 1.0])

    store.add_parameter("c", 0.5)

    assert not store.prior_stats_initialized
