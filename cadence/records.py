from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable

from .errors import InvocationError, RequirementViolation
from .identity import display_name

if TYPE_CHECKING:
    import pandas as pd

    from .requirements import RequirementPolicy

WARMUP = "warmup"
TRIAL = "trial"


@dataclass(frozen=True)
class ErrorInfo:
    """An exception captured inside a worker loop.

    ``recorded`` is true when the error came from the unit of work and was
    attached to a measurement record. Errors raised by the scheduler's own
    machinery (listeners, stats providers) are unrecorded and fail the run.
    """

    thread_index: int
    invocation_index: int | None
    type_name: str
    message: str
    traceback: str = ""
    recorded: bool = True
    exception: BaseException | None = field(default=None, compare=False, repr=False)

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        thread_index: int,
        invocation_index: int | None,
        recorded: bool = True,
    ) -> ErrorInfo:
        return cls(
            thread_index=thread_index,
            invocation_index=invocation_index,
            type_name=type(exc).__name__,
            message=str(exc),
            traceback="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            recorded=recorded,
            exception=exc,
        )


@dataclass(frozen=True)
class PolicyResult:
    policy: RequirementPolicy
    passed: bool
    detail: str
    baseline_available: bool = True


@dataclass(frozen=True)
class MeasurementRecord:
    """Outcome of exactly one invocation of a unit of work."""

    test_id: str
    thread_index: int
    invocation_index: int
    is_warmup: bool
    start_ts: float
    duration_s: float
    repetition: int
    repetitions: int
    error: ErrorInfo | None = None
    policy_results: tuple[PolicyResult, ...] = ()

    @property
    def phase(self) -> str:
        return WARMUP if self.is_warmup else TRIAL

    @property
    def display_name(self) -> str:
        return display_name(self.test_id, self.phase, self.repetition, self.repetitions)

    @property
    def failed_results(self) -> tuple[PolicyResult, ...]:
        return tuple(result for result in self.policy_results if not result.passed)

    @property
    def requirements_met(self) -> bool:
        return not self.failed_results

    def to_row(self) -> dict[str, Any]:
        return {
            "test_id": self.test_id,
            "thread_index": self.thread_index,
            "invocation_index": self.invocation_index,
            "phase": self.phase,
            "repetition": self.repetition,
            "start_ts": self.start_ts,
            "duration_s": self.duration_s,
            "error": None if self.error is None else f"{self.error.type_name}: {self.error.message}",
            "policies": len(self.policy_results),
            "policies_failed": len(self.failed_results),
            "requirements_met": self.requirements_met,
        }


@dataclass(frozen=True)
class RunResult:
    """Everything one scheduler run produced.

    Records are ordered by ``(thread_index, invocation_index)``; the order in
    which worker loops appended them is not preserved.
    """

    test_id: str
    records: tuple[MeasurementRecord, ...]
    thread_errors: tuple[ErrorInfo, ...] = ()
    started_ts: float = 0.0
    finished_ts: float = 0.0
    cancelled: bool = False

    @property
    def passed(self) -> bool:
        if any(not error.recorded for error in self.thread_errors):
            return False
        return all(record.requirements_met for record in self.trials())

    @property
    def succeeded(self) -> bool:
        return self.passed and not self.thread_errors

    @property
    def elapsed_s(self) -> float:
        return max(self.finished_ts - self.started_ts, 0.0)

    def trials(self) -> list[MeasurementRecord]:
        return [record for record in self.records if not record.is_warmup]

    def warmups(self) -> list[MeasurementRecord]:
        return [record for record in self.records if record.is_warmup]

    def for_thread(self, thread_index: int) -> list[MeasurementRecord]:
        return [record for record in self.records if record.thread_index == thread_index]

    def violations(self) -> list[RequirementViolation]:
        return [
            RequirementViolation(record, result)
            for record in self.trials()
            for result in record.failed_results
        ]

    def raise_for_status(self) -> None:
        """Raise the first thread error, else the first requirement violation."""
        if self.thread_errors:
            error = self.thread_errors[0]
            raise InvocationError(error) from error.exception
        violations = self.violations()
        if violations:
            raise violations[0]

    def to_dataframe(self) -> pd.DataFrame:
        from .collector import records_frame

        return records_frame(self.records)

    def summary(self) -> dict[str, Any]:
        frame = self.to_dataframe()
        trials = frame[(frame["phase"] == TRIAL) & frame["error"].isna()]["duration_s"]
        summary: dict[str, Any] = {
            "test_id": self.test_id,
            "records": len(frame),
            "warmups": int((frame["phase"] == WARMUP).sum()),
            "trials": int(len(trials)),
            "errors": int(frame["error"].notna().sum()),
            "thread_errors": len(self.thread_errors),
            "violations": len(self.violations()),
            "passed": self.passed,
            "elapsed_s": self.elapsed_s,
        }
        if trials.empty:
            for key in ("mean_s", "stddev_s", "min_s", "p50_s", "p95_s", "p99_s", "max_s"):
                summary[key] = None
            return summary
        quantiles = trials.quantile([0.5, 0.95, 0.99])
        summary.update(
            {
                "mean_s": float(trials.mean()),
                "stddev_s": float(trials.std(ddof=1)) if len(trials) > 1 else 0.0,
                "min_s": float(trials.min()),
                "p50_s": float(quantiles.loc[0.5]),
                "p95_s": float(quantiles.loc[0.95]),
                "p99_s": float(quantiles.loc[0.99]),
                "max_s": float(trials.max()),
            }
        )
        return summary


def sort_records(records: Iterable[MeasurementRecord]) -> tuple[MeasurementRecord, ...]:
    return tuple(sorted(records, key=lambda r: (r.thread_index, r.invocation_index)))


__all__ = [
    "ErrorInfo",
    "MeasurementRecord",
    "PolicyResult",
    "RunResult",
    "TRIAL",
    "WARMUP",
    "sort_records",
]
