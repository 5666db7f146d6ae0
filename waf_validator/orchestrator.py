"""Batch orchestration: bounded-concurrency runs with streaming results and cancellation."""

import asyncio
import time
import uuid
from collections import deque
from enum import Enum
from types import MappingProxyType
from typing import AsyncIterator, Callable, Deque, Dict, List, Mapping, Optional, Sequence, Tuple
import logging

from .aggregator import ResultSummary, summarize
from .catalog import AttackPattern
from .errors import ConfigurationError
from .probe import INTERNAL_ERROR, ProbeExecutor, WAFTestResult, error_result
from .targets import TestTarget, require_runnable

logger = logging.getLogger(__name__)

ResultCallback = Callable[[str, WAFTestResult], None]

_END = object()


class RunState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BatchRun:
    """
    One run of a set of patterns against one target.

    The orchestrator is the only writer. Callers read ``state``, ``results``
    and ``summary()`` at any time, iterate ``stream()`` for results as they
    complete, or ``await wait()`` for the final summary.
    """

    def __init__(self, patterns: Sequence[AttackPattern], target: TestTarget, concurrency: int,
                 on_result: Optional[ResultCallback] = None):
        self.run_id = uuid.uuid4().hex
        self.target = target
        self.concurrency = concurrency
        self.pattern_ids: Tuple[str, ...] = tuple(p.id for p in patterns)
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None

        self._state = RunState.IDLE
        self._results: Dict[str, WAFTestResult] = {}
        self._on_result = on_result
        self._events: asyncio.Queue = asyncio.Queue()
        self._done = asyncio.Event()
        self._workers: List[asyncio.Task] = []
        self._supervisor: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return (f"<BatchRun {self.run_id[:8]} {self._state.value} "
                f"{len(self._results)}/{len(self.pattern_ids)}>")

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_finished(self) -> bool:
        return self._state in (RunState.COMPLETED, RunState.CANCELLED)

    @property
    def results(self) -> Mapping[str, WAFTestResult]:
        """Snapshot of the results recorded so far."""
        return MappingProxyType(dict(self._results))

    @property
    def pending_ids(self) -> List[str]:
        return [pid for pid in self.pattern_ids if pid not in self._results]

    @property
    def duration(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    def summary(self) -> ResultSummary:
        return summarize(self._results)

    async def wait(self) -> ResultSummary:
        """Wait until the run completes or is cancelled and return the final summary."""
        await self._done.wait()
        return self.summary()

    async def join(self):
        """Wait for the worker tasks to exit, e.g. before closing the transport."""
        if self._supervisor is not None:
            await asyncio.shield(self._supervisor)

    async def stream(self) -> AsyncIterator[Tuple[str, WAFTestResult]]:
        """Yield ``(attack_id, result)`` pairs in completion order until the run ends."""
        while True:
            if self._events.empty() and self.is_finished:
                return
            item = await self._events.get()
            if item is _END:
                return
            yield item

    def _begin(self):
        self._state = RunState.RUNNING
        self.started_at = time.monotonic()

    def _record(self, result: WAFTestResult) -> bool:
        if self._state is not RunState.RUNNING:
            logger.debug(f"Discarding result for {result.attack_id}: run is {self._state.value}")
            return False

        self._results[result.attack_id] = result
        self._events.put_nowait((result.attack_id, result))

        if self._on_result is not None:
            try:
                self._on_result(result.attack_id, result)
            except Exception:
                logger.exception(f"Result callback failed for {result.attack_id}")

        if self._state is RunState.RUNNING and len(self._results) == len(self.pattern_ids):
            self._finish(RunState.COMPLETED)
        return True

    def _finish(self, state: RunState):
        self._state = state
        self.finished_at = time.monotonic()
        self._done.set()
        self._events.put_nowait(_END)


class BatchOrchestrator:
    """
    Runs patterns through a ProbeExecutor with at most ``concurrency`` probes in flight.

    A fixed pool of worker tasks takes patterns off a shared queue in catalog
    order. Workers only ever touch the run's result mapping from the event
    loop thread and never across an ``await``, so no lock is needed.
    """

    def __init__(self, executor: ProbeExecutor):
        self.executor = executor

    def start(self, patterns: Sequence[AttackPattern], target: TestTarget, concurrency: int = 5,
              on_result: Optional[ResultCallback] = None) -> BatchRun:
        """
        Start a run and return its handle without waiting for any probe.

        Must be called from inside a running event loop. Raises
        ConfigurationError, before any request is made, for a non-runnable
        target, an empty pattern set or a concurrency below 1.
        """
        require_runnable(target)

        unique: List[AttackPattern] = []
        seen = set()
        for pattern in patterns:
            if pattern.id in seen:
                logger.warning(f"Pattern {pattern.id} requested twice, running it once")
                continue
            seen.add(pattern.id)
            unique.append(pattern)

        if not unique:
            raise ConfigurationError("No attack patterns to run")

        if concurrency < 1:
            raise ConfigurationError("Concurrency must be at least 1", details={"concurrency": concurrency})

        loop = asyncio.get_running_loop()

        run = BatchRun(unique, target, concurrency, on_result)
        run._begin()

        queue: Deque[AttackPattern] = deque(unique)
        worker_count = min(concurrency, len(unique))
        run._workers = [loop.create_task(self._worker(run, queue)) for _ in range(worker_count)]
        run._supervisor = loop.create_task(self._supervise(run))

        logger.info(f"Batch {run.run_id[:8]} started: {len(unique)} patterns against "
                    f"{target.base_url} (Host: {target.host_header}), concurrency {concurrency}")
        return run

    async def _worker(self, run: BatchRun, queue: Deque[AttackPattern]):
        while run.state is RunState.RUNNING and queue:
            pattern = queue.popleft()
            try:
                result = await self.executor.execute(pattern, run.target)
            except Exception as e:
                logger.exception(f"Probe {pattern.id} failed unexpectedly")
                result = error_result(
                    pattern,
                    pattern.template.build_url(run.target.base_url),
                    0,
                    f"{INTERNAL_ERROR}: {e}",
                    INTERNAL_ERROR,
                )
            run._record(result)

    async def _supervise(self, run: BatchRun):
        await asyncio.gather(*run._workers, return_exceptions=True)

        if run.state is RunState.RUNNING:
            # only reachable if the workers were cancelled from outside
            logger.error(f"Batch {run.run_id[:8]} workers stopped with {len(run.pending_ids)} patterns pending")
            run._finish(RunState.CANCELLED)

        summary = run.summary()
        logger.info(
            f"Batch {run.run_id[:8]} {run.state.value} in {run.duration:.2f}s: "
            f"{summary.blocked} blocked, {summary.passed} passed, {summary.errored} errored "
            f"of {len(run.pattern_ids)}"
        )

    def cancel(self, run: BatchRun) -> bool:
        """
        Stop issuing probes and abandon the ones in flight.

        Returns immediately; results recorded before the call are kept.
        Returns False if the run had already finished.
        """
        if run.is_finished:
            return False

        pending = len(run.pending_ids)
        run._finish(RunState.CANCELLED)
        for task in run._workers:
            task.cancel()

        logger.info(f"Batch {run.run_id[:8]} cancelled with {pending} patterns not reported")
        return True
