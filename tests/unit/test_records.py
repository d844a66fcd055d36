"""Unit tests for measurement records, run results and the record sink."""

from __future__ import annotations

import threading

import pytest

from cadence.collector import RECORD_COLUMNS, RecordSink, records_frame
from cadence.errors import InvocationError, RequirementViolation
from cadence.records import ErrorInfo, MeasurementRecord, PolicyResult, RunResult
from cadence.requirements import FixedThreshold


def _record(
    thread_index: int = 0,
    invocation_index: int = 0,
    *,
    is_warmup: bool = False,
    duration_s: float = 0.1,
    error: ErrorInfo | None = None,
    passed: bool | None = None,
) -> MeasurementRecord:
    results: tuple[PolicyResult, ...] = ()
    if passed is not None:
        results = (PolicyResult(FixedThreshold(0.5), passed, "fixed detail"),)
    return MeasurementRecord(
        test_id="suite.test",
        thread_index=thread_index,
        invocation_index=invocation_index,
        is_warmup=is_warmup,
        start_ts=1000.0 + invocation_index,
        duration_s=duration_s,
        repetition=invocation_index + 1,
        repetitions=4,
        error=error,
        policy_results=results,
    )


def _error(recorded: bool = True) -> ErrorInfo:
    try:
        raise KeyError("missing")
    except KeyError as exc:
        return ErrorInfo.from_exception(exc, 1, 2 if recorded else None, recorded=recorded)


def test_error_info_from_exception() -> None:
    error = _error()
    assert error.type_name == "KeyError"
    assert error.message == "'missing'"
    assert "Traceback" in error.traceback
    assert isinstance(error.exception, KeyError)
    assert error.recorded


def test_record_properties() -> None:
    record = _record(invocation_index=2, passed=False)
    assert record.phase == "trial"
    assert record.display_name == "suite.test [trial 3 of 4]"
    assert not record.requirements_met
    assert len(record.failed_results) == 1
    assert _record(is_warmup=True).phase == "warmup"
    assert _record().requirements_met


def test_passed_ignores_warmup_failures() -> None:
    result = RunResult(
        test_id="suite.test",
        records=(_record(0, 0, is_warmup=True, passed=False), _record(0, 1, passed=True)),
    )
    assert result.passed
    assert result.succeeded
    assert result.violations() == []


def test_trial_violation_fails_the_run() -> None:
    result = RunResult(
        test_id="suite.test",
        records=(_record(0, 0, passed=True), _record(0, 1, passed=False, duration_s=0.75)),
    )
    assert not result.passed
    violations = result.violations()
    assert len(violations) == 1
    assert violations[0].record.invocation_index == 1
    with pytest.raises(RequirementViolation, match=r"suite.test \[trial 2 of 4\] took 0.750000s"):
        result.raise_for_status()


def test_recorded_errors_do_not_fail_requirements() -> None:
    error = _error()
    result = RunResult(
        test_id="suite.test",
        records=(_record(1, 0, passed=True), _record(1, 1, error=error)),
        thread_errors=(error,),
    )
    assert result.passed
    assert not result.succeeded
    with pytest.raises(InvocationError, match="KeyError in thread 1, invocation 2") as excinfo:
        result.raise_for_status()
    assert isinstance(excinfo.value.__cause__, KeyError)
    assert excinfo.value.error is error


def test_unrecorded_errors_fail_the_run() -> None:
    result = RunResult(
        test_id="suite.test",
        records=(_record(passed=True),),
        thread_errors=(_error(recorded=False),),
    )
    assert not result.passed
    assert not result.succeeded


def test_record_selection_helpers() -> None:
    result = RunResult(
        test_id="suite.test",
        records=(
            _record(0, 0, is_warmup=True),
            _record(0, 1),
            _record(1, 0, is_warmup=True),
            _record(1, 1),
        ),
        started_ts=10.0,
        finished_ts=12.5,
    )
    assert len(result.warmups()) == 2
    assert len(result.trials()) == 2
    assert [r.invocation_index for r in result.for_thread(1)] == [0, 1]
    assert result.elapsed_s == pytest.approx(2.5)


def test_to_dataframe_and_summary() -> None:
    result = RunResult(
        test_id="suite.test",
        records=(
            _record(0, 0, is_warmup=True, duration_s=0.9),
            _record(0, 1, duration_s=0.1, passed=True),
            _record(0, 2, duration_s=0.3, passed=False),
            _record(0, 3, duration_s=5.0, error=_error()),
        ),
    )
    frame = result.to_dataframe()
    assert list(frame.columns) == RECORD_COLUMNS
    assert frame["phase"].tolist() == ["warmup", "trial", "trial", "trial"]
    assert frame["error"].tolist()[3] == "KeyError: 'missing'"
    assert frame["requirements_met"].tolist() == [True, True, False, True]

    summary = result.summary()
    assert summary["records"] == 4
    assert summary["warmups"] == 1
    assert summary["trials"] == 2
    assert summary["errors"] == 1
    assert summary["violations"] == 1
    assert summary["passed"] is False
    assert summary["mean_s"] == pytest.approx(0.2)
    assert summary["min_s"] == pytest.approx(0.1)
    assert summary["max_s"] == pytest.approx(0.3)
    assert summary["p50_s"] == pytest.approx(0.2)


def test_summary_without_trials() -> None:
    result = RunResult(test_id="suite.test", records=())
    assert result.to_dataframe().empty
    assert list(records_frame([]).columns) == RECORD_COLUMNS
    summary = result.summary()
    assert summary["trials"] == 0
    assert summary["p95_s"] is None
    assert summary["passed"] is True


def test_sink_collects_from_many_threads_in_stable_order() -> None:
    seen: list[MeasurementRecord] = []
    seen_lock = threading.Lock()

    def listener(record: MeasurementRecord) -> None:
        with seen_lock:
            seen.append(record)

    sink = RecordSink(listener)

    def worker(thread_index: int) -> None:
        for index in reversed(range(50)):
            sink.append(_record(thread_index, index, is_warmup=index < 5))

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    records = sink.records()
    assert len(sink) == 200
    assert len(seen) == 200
    assert [(r.thread_index, r.invocation_index) for r in records] == [
        (t, i) for t in range(4) for i in range(50)
    ]
    assert sink.summaries() == {"warmup": 20, "trial": 180}
    assert len(sink.build_dataframe(include_warmups=False)) == 180


def test_sink_thread_errors_sorted() -> None:
    sink = RecordSink()
    late = ErrorInfo(thread_index=2, invocation_index=3, type_name="A", message="a")
    machinery = ErrorInfo(thread_index=0, invocation_index=None, type_name="B", message="b", recorded=False)
    early = ErrorInfo(thread_index=0, invocation_index=1, type_name="C", message="c")
    for error in (late, early, machinery):
        sink.add_thread_error(error)
    assert sink.thread_errors() == (machinery, early, late)

    sink.append(_record(error=early))
    assert sink.summaries() == {"error": 1}
