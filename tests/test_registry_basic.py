import pytest

from rxn_calib.errors import ConfigError
from rxn_calib.experiments.analytic import LinearResponse
from rxn_calib.registry import (
    ExperimentTypes,
    experiment_type_names,
    resolve_experiment_type,
)


class _Tagged:
    type_name = "Tagged"

    @classmethod
    def from_config(cls, name, settings, parameters):
        return cls()


class _Untagged:
    @classmethod
    def from_config(cls, name, settings, parameters):
        return cls()


def test_add_and_resolve_by_type_tag() -> None:
    types = ExperimentTypes()

    assert types.add(_Tagged) is _Tagged

    assert "Tagged" in types
    assert types.resolve("Tagged") is _Tagged
    assert types.names() == ["Tagged"]


def test_plugin_without_type_tag_is_rejected() -> None:
    types = ExperimentTypes()

    with pytest.raises(ConfigError) as exc:
        types.add(_Untagged)

    assert "type_name" in str(exc.value)


def test_conflicting_registration_requires_overwrite() -> None:
    types = ExperimentTypes()
    types.add(_Tagged)
    types.add(_Tagged)

    class _Other(_Tagged):
        pass

    with pytest.raises(ConfigError) as exc:
        types.add(_Other)
    assert "already registered" in str(exc.value)

    types.add(_Other, overwrite=True)
    assert types.resolve("Tagged") is _Other


def test_builtin_experiment_types_are_registered() -> None:
    names = experiment_type_names()

    for type_name in (
        "LinearResponse",
        "ArrheniusDelay",
        "CVReactor",
        "CPReactor",
        "PREMIXReactor",
    ):
        assert type_name in names
    assert resolve_experiment_type("LinearResponse") is LinearResponse


def test_unknown_experiment_type_raises_config_error() -> None:
    with pytest.raises(ConfigError) as exc:
        resolve_experiment_type("MysteryReactor")

    message = str(exc.value)
    assert "Unknown experiment type" in message
    assert "MysteryReactor" in message
    assert "LinearResponse" in message
    assert exc.value.context == {"type": "MysteryReactor"}


def test_custom_registry_does_not_see_builtins() -> None:
    with pytest.raises(ConfigError) as exc:
        resolve_experiment_type("LinearResponse", registry=ExperimentTypes())

    assert "<none>" in str(exc.value)
