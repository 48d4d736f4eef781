"""Ordered experiment registry laid out over one flat measurement vector."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from rxn_calib.errors import ExperimentError
from rxn_calib.experiments.base import SimulatedExperiment


@dataclass(frozen=True)
class ExperimentDescriptor:
    name: str
    experiment: SimulatedExperiment
    count: int
    offset: int

    @property
    def stop(self) -> int:
        return self.offset + self.count

    @property
    def region(self) -> slice:
        return slice(self.offset, self.stop)


class ExperimentSet:
    """Experiments in registration order.

    Descriptor ``i`` owns ``[offset, offset + count)`` of the flat vector,
    with ``offset[0] == 0`` and ``offset[i + 1] == offset[i] + count[i]``.
    Registering a name twice keeps both descriptors; ``index(name)`` returns
    the latest.
    """

    def __init__(self) -> None:
        self._descriptors: list[ExperimentDescriptor] = []
        self._index: dict[str, int] = {}
        self._total = 0

    def add_experiment(
        self,
        experiment: SimulatedExperiment,
        name: str,
    ) -> ExperimentDescriptor:
        count = int(experiment.measurement_count())
        if count < 0:
            raise ExperimentError(
                f"Experiment {name!r} reports a negative measurement count ({count}).",
                context={"experiment": name, "count": count},
            )
        offset = self._descriptors[-1].stop if self._descriptors else 0
        descriptor = ExperimentDescriptor(
            name=name,
            experiment=experiment,
            count=count,
            offset=offset,
        )
        self._descriptors.append(descriptor)
        self._index[name] = len(self._descriptors) - 1
        self._total = descriptor.stop
        return descriptor

    def clear(self) -> None:
        self._descriptors = []
        self._index = {}
        self._total = 0

    def num_expt_data(self) -> int:
        return self._total

    def __len__(self) -> int:
        return len(self._descriptors)

    def __iter__(self) -> Iterator[ExperimentDescriptor]:
        return iter(self._descriptors)

    def __getitem__(self, index: int) -> ExperimentDescriptor:
        return self._descriptors[index]

    def index(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError as exc:
            raise KeyError(f"Experiment {name!r} is not registered.") from exc

    def slice_of(self, index: int) -> slice:
        return self._descriptors[index].region

    @property
    def names(self) -> list[str]:
        return [descriptor.name for descriptor in self._descriptors]

    @property
    def offsets(self) -> list[int]:
        return [descriptor.offset for descriptor in self._descriptors]

    @property
    def counts(self) -> list[int]:
        return [descriptor.count for descriptor in self._descriptors]

    def initialize(self) -> None:
        for descriptor in self._descriptors:
            if not descriptor.experiment.is_initialized:
                descriptor.experiment.initialize()


__all__ = ["ExperimentDescriptor", "ExperimentSet"]
