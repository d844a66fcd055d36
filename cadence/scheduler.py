"""Invocation scheduler.

Runs a unit of work on ``threads`` independent worker loops, paces each loop
with the configured delay distribution, times every invocation and evaluates
trial invocations against the attached requirement policies.

The same callback is shared by every worker loop. Nothing it captures is
synchronised by the scheduler; a unit of work touching shared mutable state
from several threads has to bring its own locking.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence

import numpy as np

from .collector import RecordListener, RecordSink
from .config import ScheduleConfig
from .distributions import MAX_DELAY_S, DelayDistribution
from .errors import ConfigurationError
from .records import ErrorInfo, MeasurementRecord, PolicyResult, RunResult
from .requirements import (
    FixedThreshold,
    PercentageDegradation,
    RequirementPolicy,
    ZScorePercentile,
    evaluate_policy,
)
from .stats import StatsCache, StatsProvider

LOGGER = logging.getLogger("cadence.scheduler")

UnitOfWork = Callable[[], object]

_POLICY_TYPES = (FixedThreshold, ZScorePercentile, PercentageDegradation)


class SchedulerState(str, enum.Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class CancellationToken:
    """Shared signal for stopping a run early.

    Worker loops observe it before pacing and before each invocation; an
    invocation already in progress is never interrupted.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; true if cancelled meanwhile."""
        return self._event.wait(timeout=timeout)


@dataclass(frozen=True)
class InvocationInfo:
    test_id: str
    thread_index: int
    invocation_index: int
    is_warmup: bool
    current_repetition: int
    total_repetitions: int


_context = threading.local()


def current_invocation() -> InvocationInfo | None:
    """Describe the invocation running on the calling thread, if any."""
    return getattr(_context, "info", None)


@dataclass
class _Run:
    test_id: str
    config: ScheduleConfig
    policies: tuple[RequirementPolicy, ...]
    callback: UnitOfWork
    distribution: DelayDistribution
    token: CancellationToken
    sink: RecordSink
    cache: StatsCache
    evaluate_warmups: bool


class Scheduler:
    """Drives warmup and trial invocations of one unit of work at a time."""

    def __init__(
        self,
        stats_provider: StatsProvider | None = None,
        listener: RecordListener | None = None,
        evaluate_warmups: bool = False,
        seed: int | None = None,
    ) -> None:
        self._stats_provider = stats_provider
        self._listener = listener
        self._evaluate_warmups = evaluate_warmups
        self._seed = seed
        self._state = SchedulerState.IDLE
        self._state_lock = threading.Lock()
        self._token: CancellationToken | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    def cancel(self) -> None:
        token = self._token
        if token is not None:
            token.cancel()

    def run(
        self,
        config: ScheduleConfig,
        policies: Iterable[RequirementPolicy],
        callback: UnitOfWork,
        test_id: str,
        cancel: CancellationToken | None = None,
    ) -> RunResult:
        with self._state_lock:
            if self._state in (SchedulerState.VALIDATING, SchedulerState.RUNNING):
                raise RuntimeError("scheduler is already running")
            self._state = SchedulerState.VALIDATING

        try:
            result = self._run(config, policies, callback, test_id, cancel)
        except BaseException:
            self._state = SchedulerState.FAILED
            raise
        self._state = SchedulerState.COMPLETED
        return result

    def _run(
        self,
        config: ScheduleConfig,
        policies: Iterable[RequirementPolicy],
        callback: UnitOfWork,
        test_id: str,
        cancel: CancellationToken | None,
    ) -> RunResult:
        try:
            policies = _policy_tuple(policies)
            validate_run(config, policies, callback, test_id)
            validate_seed(self._seed)
        except ConfigurationError as exc:
            LOGGER.error("Rejected schedule for %r: %s", test_id, exc)
            raise

        token = cancel if cancel is not None else CancellationToken()
        self._token = token
        run = _Run(
            test_id=test_id,
            config=config,
            policies=policies,
            callback=callback,
            distribution=config.distribution.distribution,
            token=token,
            sink=RecordSink(self._listener),
            cache=StatsCache(self._stats_provider),
            evaluate_warmups=self._evaluate_warmups,
        )
        seeds = np.random.SeedSequence(self._seed).spawn(config.threads)

        self._state = SchedulerState.RUNNING
        LOGGER.info(
            "Running %s: %d thread(s) x (%d warmup + %d trial) invocation(s), pacing %r",
            test_id,
            config.threads,
            config.warmup_invocations,
            config.invocations,
            run.distribution,
        )
        started_ts = time.time()
        workers = [
            threading.Thread(
                target=self._worker,
                args=(run, thread_index, np.random.default_rng(seeds[thread_index])),
                name=f"cadence-worker-{thread_index}",
                daemon=True,
            )
            for thread_index in range(config.threads)
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()
        finished_ts = time.time()

        result = RunResult(
            test_id=test_id,
            records=run.sink.records(),
            thread_errors=run.sink.thread_errors(),
            started_ts=started_ts,
            finished_ts=finished_ts,
            cancelled=token.cancelled,
        )
        LOGGER.info(
            "Finished %s in %.3fs: %d record(s), %d thread error(s), passed=%s%s",
            test_id,
            result.elapsed_s,
            len(result.records),
            len(result.thread_errors),
            result.passed,
            " (cancelled)" if result.cancelled else "",
        )
        return result

    def _worker(self, run: _Run, thread_index: int, rng: np.random.Generator) -> None:
        try:
            self._loop(run, thread_index, rng)
        except Exception as exc:  # noqa: BLE001
            LOGGER.error(
                "Worker %d of %s failed outside the unit of work",
                thread_index,
                run.test_id,
                exc_info=exc,
            )
            run.sink.add_thread_error(
                ErrorInfo.from_exception(exc, thread_index, None, recorded=False)
            )
        finally:
            _context.info = None

    def _loop(self, run: _Run, thread_index: int, rng: np.random.Generator) -> None:
        config = run.config
        warmups = config.warmup_invocations
        for index in range(config.iterations_per_thread):
            if run.token.cancelled:
                LOGGER.debug("Worker %d of %s cancelled before invocation %d", thread_index, run.test_id, index)
                return
            if index > 0:
                delay = min(run.distribution.sample(rng), MAX_DELAY_S)
                if delay > 0 and run.token.wait(delay):
                    LOGGER.debug("Worker %d of %s cancelled while pacing", thread_index, run.test_id)
                    return
                if run.token.cancelled:
                    return

            is_warmup = index < warmups
            if is_warmup:
                repetition, repetitions = index + 1, warmups
            else:
                repetition, repetitions = index - warmups + 1, config.invocations
            _context.info = InvocationInfo(
                test_id=run.test_id,
                thread_index=thread_index,
                invocation_index=index,
                is_warmup=is_warmup,
                current_repetition=repetition,
                total_repetitions=repetitions,
            )

            error: ErrorInfo | None = None
            start_ts = time.time()
            started = time.perf_counter()
            try:
                run.callback()
            except Exception as exc:  # noqa: BLE001
                error = ErrorInfo.from_exception(exc, thread_index, index)
            finally:
                duration_s = time.perf_counter() - started
                _context.info = None

            policy_results: tuple[PolicyResult, ...] = ()
            if error is None and (not is_warmup or run.evaluate_warmups):
                policy_results = _evaluate(run, duration_s)

            record = MeasurementRecord(
                test_id=run.test_id,
                thread_index=thread_index,
                invocation_index=index,
                is_warmup=is_warmup,
                start_ts=start_ts,
                duration_s=duration_s,
                repetition=repetition,
                repetitions=repetitions,
                error=error,
                policy_results=policy_results,
            )
            if error is not None:
                LOGGER.warning(
                    "Invocation %d on worker %d of %s raised %s; stopping this worker",
                    index,
                    thread_index,
                    run.test_id,
                    error.type_name,
                    exc_info=error.exception,
                )
                run.sink.add_thread_error(error)
                run.sink.append(record)
                return
            run.sink.append(record)

        LOGGER.debug("Worker %d of %s finished %d invocation(s)", thread_index, run.test_id, config.iterations_per_thread)


def _evaluate(run: _Run, duration_s: float) -> tuple[PolicyResult, ...]:
    results = []
    for policy in run.policies:
        stats = run.cache.get(run.test_id, policy.window_days) if policy.needs_baseline else None
        results.append(evaluate_policy(policy, duration_s, stats))
    return tuple(results)


def _policy_tuple(policies: Iterable[RequirementPolicy]) -> tuple[RequirementPolicy, ...]:
    try:
        return tuple(policies)
    except TypeError:
        raise ConfigurationError(
            f"policies must be an iterable of requirement policies, got {policies!r}"
        ) from None


def validate_seed(seed: int | None) -> None:
    if seed is None:
        return
    if isinstance(seed, bool) or not isinstance(seed, (int, np.integer)) or seed < 0:
        raise ConfigurationError(f"seed must be a non-negative integer, got {seed!r}")


def validate_run(
    config: ScheduleConfig,
    policies: Iterable[RequirementPolicy],
    callback: UnitOfWork,
    test_id: str,
) -> None:
    if not isinstance(config, ScheduleConfig):
        raise ConfigurationError(f"expected a ScheduleConfig, got {type(config).__name__}")
    config.validate()
    for policy in _policy_tuple(policies):
        if not isinstance(policy, _POLICY_TYPES):
            raise ConfigurationError(f"unsupported requirement policy {policy!r}")
    if not callable(callback):
        raise ConfigurationError(f"unit of work must be callable, got {callback!r}")
    if not isinstance(test_id, str) or not test_id.strip():
        raise ConfigurationError("test_id must be a non-empty string")


def run(
    config: ScheduleConfig,
    policies: Iterable[RequirementPolicy],
    callback: UnitOfWork,
    test_id: str,
    *,
    stats_provider: StatsProvider | None = None,
    cancel: CancellationToken | None = None,
    listener: RecordListener | None = None,
    evaluate_warmups: bool = False,
    seed: int | None = None,
) -> RunResult:
    """Run ``callback`` under ``config`` and block until every worker finishes."""
    scheduler = Scheduler(
        stats_provider=stats_provider,
        listener=listener,
        evaluate_warmups=evaluate_warmups,
        seed=seed,
    )
    return scheduler.run(config, policies, callback, test_id, cancel=cancel)


@dataclass(frozen=True)
class RoundRobinEntry:
    test_id: str
    callback: UnitOfWork
    config: ScheduleConfig = field(default_factory=ScheduleConfig)
    policies: tuple[RequirementPolicy, ...] = ()


def run_round_robin(
    entries: Sequence[RoundRobinEntry],
    rounds: int,
    *,
    stats_provider: StatsProvider | None = None,
    cancel: CancellationToken | None = None,
    listener: RecordListener | None = None,
    seed: int | None = None,
) -> list[RunResult]:
    """Run every entry once per round, in order: ``A B C A B C ...``.

    All entries are validated before the first one runs. Results come back in
    execution order; a cancelled token stops scheduling further runs.
    """
    validate_seed(seed)
    if isinstance(rounds, bool) or not isinstance(rounds, int) or rounds < 1:
        raise ConfigurationError(f"rounds must be an integer >= 1, got {rounds!r}")
    for entry in entries:
        validate_run(entry.config, entry.policies, entry.callback, entry.test_id)

    scheduler = Scheduler(stats_provider=stats_provider, listener=listener, seed=seed)
    results: list[RunResult] = []
    for round_index in range(rounds):
        for entry in entries:
            if cancel is not None and cancel.cancelled:
                LOGGER.info("Round robin cancelled in round %d", round_index + 1)
                return results
            LOGGER.debug("Round %d/%d: %s", round_index + 1, rounds, entry.test_id)
            results.append(
                scheduler.run(entry.config, entry.policies, entry.callback, entry.test_id, cancel=cancel)
            )
    return results


__all__ = [
    "CancellationToken",
    "InvocationInfo",
    "RoundRobinEntry",
    "Scheduler",
    "SchedulerState",
    "UnitOfWork",
    "current_invocation",
    "run",
    "run_round_robin",
    "validate_run",
    "validate_seed",
]
