"""Task farms that evaluate every registered experiment for one parameter vector.

``SequentialFarm`` runs the experiments in registration order in this
process. ``ProcessFarm`` runs them on a pool of worker processes driven by
a master/worker protocol over two pipes per worker:

* control channel: worker -> master ``WorkerStatus``; master -> worker
  ``WorkerCommand``.
* data channel: the parameter vector broadcast that opens a round, the
  experiment index and plugin state of a ``WORK`` unit, the results of a
  finished unit, the worker's round flag and the final result broadcast.

A round runs ``broadcast parameters -> dispatch -> drain -> barrier/reduce
-> broadcast result``. Experiments are dispatched in registration order
while the round is still ok; units already handed out always run to
completion and are collected during the drain. Workers keep the final
broadcast as their view of the round (``FarmWorker.last_measurements``).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
import logging
import multiprocessing
from multiprocessing.connection import Connection, wait
from typing import Any, Optional

import numpy as np

from rxn_calib.errors import ConfigError, DataError, ProtocolError
from rxn_calib.experiment_set import ExperimentSet
from rxn_calib.logging_utils import configure_worker_logging, reporting_errors
from rxn_calib.parameters import ParameterStore

DEFAULT_START_METHOD = "spawn"
DEFAULT_JOIN_TIMEOUT = 10.0


class WorkerStatus(IntEnum):
    READY = 0
    HAVE_RESULTS = 1


class WorkerCommand(IntEnum):
    WORK = 0
    STOP = 1


@dataclass
class RoundStats:
    dispatched: int = 0
    finished: int = 0
    failed: list[int] = field(default_factory=list)


class TaskFarm(ABC):
    """Evaluates all experiments of an ``ExperimentSet`` for the current parameters."""

    def __init__(
        self,
        parameters: ParameterStore,
        experiments: ExperimentSet,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.parameters = parameters
        self.experiments = experiments
        self.logger = logger or logging.getLogger("rxn_calib.farm")
        self.raw_data: list[Optional[np.ndarray]] = []
        self.last_round = RoundStats()

    @abstractmethod
    def run_round(self, values: np.ndarray, measurements: np.ndarray) -> bool:
        """Fill ``measurements`` for ``values``; return the round-level ok flag.

        ``values`` has already been written to the master's parameter store.
        """

    def close(self) -> None:
        """Release workers; a closed farm restarts on the next round."""

    def __enter__(self) -> "TaskFarm":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _reset_round(self) -> None:
        self.raw_data = [None] * len(self.experiments)
        self.last_round = RoundStats()

    def _store_result(
        self,
        index: int,
        success: bool,
        buffer: Any,
        measurements: np.ndarray,
    ) -> None:
        descriptor = self.experiments[index]
        values = np.asarray(buffer, dtype=float)
        if values.shape != (descriptor.count,):
            raise DataError(
                f"Experiment {index} ({descriptor.name}) returned {values.size} values; "
                f"expected {descriptor.count}.",
                context={"experiment": descriptor.name, "index": index},
            )
        self.raw_data[index] = values
        if success:
            measurements[descriptor.region] = values
        else:
            self.last_round.failed.append(index)
            self.logger.error("Experiment %d (%s) failed!", index, descriptor.name)


class SequentialFarm(TaskFarm):
    """Single participant: run experiments in order, stop at the first failure."""

    def run_round(self, values: np.ndarray, measurements: np.ndarray) -> bool:
        self._reset_round()
        for index, descriptor in enumerate(self.experiments):
            buffer = np.zeros(descriptor.count)
            success = bool(descriptor.experiment.measure(buffer))
            self.last_round.dispatched += 1
            self.last_round.finished += 1
            self._store_result(index, success, buffer, measurements)
            if not success:
                return False
        return True


@dataclass
class _WorkerHandle:
    rank: int
    process: Any
    control: Connection
    data: Connection
    current: Optional[int] = None


def _as_status(message: Any) -> WorkerStatus:
    try:
        return WorkerStatus(message)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"Unknown status from worker: {message!r}.") from exc


def _as_command(message: Any) -> WorkerCommand:
    try:
        return WorkerCommand(message)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"Unknown command received: {message!r}.") from exc


class FarmWorker:
    """Worker side of the protocol.

    The result broadcast that closes a round is kept as ``last_measurements``
    and ``last_ok``, so every participant ends the round with the same view.
    """

    def __init__(
        self,
        rank: int,
        control: Connection,
        data: Connection,
        parameters: ParameterStore,
        experiments: ExperimentSet,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.rank = rank
        self.control = control
        self.data = data
        self.parameters = parameters
        self.experiments = experiments
        self.logger = logger or logging.getLogger("rxn_calib.farm")
        self.rounds = 0
        self.last_measurements: Optional[np.ndarray] = None
        self.last_ok: Optional[bool] = None

    def run_round(self) -> bool:
        """Take work units until told to stop; returns this worker's round flag."""
        ok = True
        while True:
            self.control.send(WorkerStatus.READY)
            command = _as_command(self.control.recv())
            if command is WorkerCommand.STOP:
                return ok

            index = self.data.recv()
            descriptor = self.experiments[index]
            experiment = descriptor.experiment
            experiment.import_state(self.data.recv())
            self.logger.debug(
                "Worker %d starting on experiment number %d (%s)",
                self.rank,
                index,
                descriptor.name,
            )
            buffer = np.zeros(descriptor.count)
            success = bool(experiment.measure(buffer))
            ok = ok and success
            self.logger.debug("Worker %d finished experiment number %d", self.rank, index)

            self.control.send(WorkerStatus.HAVE_RESULTS)
            self.data.send(index)
            self.data.send(success)
            self.data.send(buffer)
            self.data.send(experiment.export_state())

    def serve(self) -> None:
        """Run rounds until ``None`` arrives in place of a parameter vector."""
        while True:
            values = self.data.recv()
            if values is None:
                return
            self.parameters.set_values(values)
            self.data.send(self.run_round())
            measurements, ok = self.data.recv()
            self.last_measurements = np.asarray(measurements, dtype=float)
            self.last_ok = bool(ok)
            self.rounds += 1
            self.logger.debug(
                "Worker %d received result of round %d (ok=%s, %d values)",
                self.rank,
                self.rounds,
                self.last_ok,
                self.last_measurements.size,
            )


def worker_main(
    rank: int,
    control: Connection,
    data: Connection,
    parameters: ParameterStore,
    experiments: ExperimentSet,
    log_level: int = logging.WARNING,
) -> None:
    """Worker process entry point."""
    logger = configure_worker_logging(rank, log_level)
    try:
        with reporting_errors(logger, show_traceback=True):
            experiments.initialize()
            FarmWorker(rank, control, data, parameters, experiments, logger).serve()
    finally:
        control.close()
        data.close()


class ProcessFarm(TaskFarm):
    """Master side of the worker pool; the master itself runs no experiments."""

    worker_target = staticmethod(worker_main)

    def __init__(
        self,
        parameters: ParameterStore,
        experiments: ExperimentSet,
        *,
        workers: int = 2,
        start_method: str = DEFAULT_START_METHOD,
        join_timeout: float = DEFAULT_JOIN_TIMEOUT,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(parameters, experiments, logger=logger)
        if isinstance(workers, bool) or int(workers) < 1:
            raise ConfigError("farm.workers must be a positive integer.")
        try:
            self._context = multiprocessing.get_context(start_method)
        except ValueError as exc:
            raise ConfigError(f"Unsupported start method: {start_method!r}.") from exc
        self.num_workers = int(workers)
        self.join_timeout = join_timeout
        self._workers: list[_WorkerHandle] = []

    @property
    def started(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        if self._workers:
            return
        log_level = logging.getLogger("rxn_calib").getEffectiveLevel()
        for rank in range(1, self.num_workers + 1):
            control_master, control_worker = self._context.Pipe()
            data_master, data_worker = self._context.Pipe()
            process = self._context.Process(
                target=self.worker_target,
                args=(
                    rank,
                    control_worker,
                    data_worker,
                    self.parameters,
                    self.experiments,
                    log_level,
                ),
                name=f"rxn-calib-worker-{rank}",
                daemon=True,
            )
            process.start()
            control_worker.close()
            data_worker.close()
            self._workers.append(
                _WorkerHandle(
                    rank=rank,
                    process=process,
                    control=control_master,
                    data=data_master,
                )
            )
        self.logger.info("Started %d worker processes.", self.num_workers)

    def close(self) -> None:
        if not self._workers:
            return
        for handle in self._workers:
            if not handle.process.is_alive():
                continue
            try:
                handle.data.send(None)
            except OSError as exc:
                self.logger.warning("Worker %d did not take shutdown: %s", handle.rank, exc)
        for handle in self._workers:
            handle.process.join(self.join_timeout)
            if handle.process.is_alive():
                self.logger.warning("Terminating unresponsive worker %d.", handle.rank)
                handle.process.terminate()
                handle.process.join()
            handle.control.close()
            handle.data.close()
        self._workers = []

    def _abort(self) -> None:
        for handle in self._workers:
            if handle.process.is_alive():
                handle.process.terminate()
        for handle in self._workers:
            handle.process.join()
            handle.control.close()
            handle.data.close()
        self._workers = []

    def _lost_worker(self, handle: _WorkerHandle, exc: BaseException) -> ProtocolError:
        context = {"worker": handle.rank, "experiment": handle.current}
        self._abort()
        return ProtocolError(
            f"Worker {handle.rank} exited unexpectedly"
            + (f" while running experiment {handle.current}." if handle.current is not None else "."),
            context=context,
        )

    def _send(self, handle: _WorkerHandle, conn: Connection, message: Any) -> None:
        try:
            conn.send(message)
        except OSError as exc:
            raise self._lost_worker(handle, exc) from exc

    def _recv(self, handle: _WorkerHandle, conn: Connection) -> Any:
        try:
            return conn.recv()
        except (EOFError, OSError) as exc:
            raise self._lost_worker(handle, exc) from exc

    def _recv_status(self, handle: _WorkerHandle) -> WorkerStatus:
        message = self._recv(handle, handle.control)
        try:
            return _as_status(message)
        except ProtocolError:
            self._abort()
            raise

    def _wait_any(self) -> _WorkerHandle:
        by_conn = {handle.control: handle for handle in self._workers}
        ready = wait(list(by_conn))
        return by_conn[ready[0]]

    def _dispatch(self, handle: _WorkerHandle, index: int) -> None:
        descriptor = self.experiments[index]
        self._send(handle, handle.control, WorkerCommand.WORK)
        self._send(handle, handle.data, index)
        self._send(handle, handle.data, descriptor.experiment.export_state())
        handle.current = index

    def _collect(self, handle: _WorkerHandle, measurements: np.ndarray) -> bool:
        index = self._recv(handle, handle.data)
        success = self._recv(handle, handle.data)
        buffer = self._recv(handle, handle.data)
        state = self._recv(handle, handle.data)
        if not isinstance(index, int) or not 0 <= index < len(self.experiments):
            self._abort()
            raise ProtocolError(f"Worker {handle.rank} returned unknown experiment {index!r}.")
        self.experiments[index].experiment.import_state(state)
        handle.current = None
        self.last_round.finished += 1
        try:
            self._store_result(index, bool(success), buffer, measurements)
        except DataError:
            self._abort()
            raise
        return bool(success)

    def run_round(self, values: np.ndarray, measurements: np.ndarray) -> bool:
        self.start()
        self._reset_round()
        values = np.asarray(values, dtype=float)
        for handle in self._workers:
            self._send(handle, handle.data, values)
        self.logger.info("Have %d procs", self.num_workers + 1)

        ok = True
        num_experiments = len(self.experiments)
        dispatched = 0
        while dispatched < num_experiments and ok:
            handle = self._wait_any()
            status = self._recv_status(handle)
            if status is WorkerStatus.READY:
                self._dispatch(handle, dispatched)
                dispatched += 1
            else:
                ok = self._collect(handle, measurements) and ok
        self.last_round.dispatched = dispatched

        # Tell every worker to stop, collecting results still in flight.
        for handle in self._workers:
            status = self._recv_status(handle)
            if status is WorkerStatus.HAVE_RESULTS:
                ok = self._collect(handle, measurements) and ok
                status = self._recv_status(handle)
                if status is not WorkerStatus.READY:
                    self._abort()
                    raise ProtocolError(
                        f"Bad status from worker {handle.rank} on cleanup loop."
                    )
            self._send(handle, handle.control, WorkerCommand.STOP)

        self.logger.info(
            "Sent out work for %d experiments and had %d of them done",
            self.last_round.dispatched,
            self.last_round.finished,
        )

        # Barrier and logical-AND reduction of every participant's flag.
        for handle in self._workers:
            worker_ok = self._recv(handle, handle.data)
            if not isinstance(worker_ok, bool):
                self._abort()
                raise ProtocolError(
                    f"Worker {handle.rank} sent {worker_ok!r} instead of its round flag."
                )
            ok = ok and worker_ok
        for handle in self._workers:
            self._send(handle, handle.data, (measurements.copy(), ok))

        if ok:
            for index, descriptor in enumerate(self.experiments):
                if descriptor.count:
                    self.logger.info(
                        "Experiment %d (%s) result: %s",
                        index,
                        descriptor.name,
                        measurements[descriptor.offset],
                    )
        return ok


def build_farm(
    parameters: ParameterStore,
    experiments: ExperimentSet,
    *,
    mode: str = "sequential",
    workers: int = 2,
    start_method: str = DEFAULT_START_METHOD,
    logger: Optional[logging.Logger] = None,
) -> TaskFarm:
    if mode == "sequential":
        return SequentialFarm(parameters, experiments, logger=logger)
    if mode == "process":
        return ProcessFarm(
            parameters,
            experiments,
            workers=workers,
            start_method=start_method,
            logger=logger,
        )
    raise ConfigError(f"Unknown farm.mode {mode!r}; expected 'sequential' or 'process'.")


__all__ = [
    "FarmWorker",
    "ProcessFarm",
    "RoundStats",
    "SequentialFarm",
    "TaskFarm",
    "WorkerCommand",
    "WorkerStatus",
    "build_farm",
    "worker_main",
]
