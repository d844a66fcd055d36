from __future__ import annotations

import collections
import threading
from typing import Callable, Iterable

import pandas as pd

from .records import ErrorInfo, MeasurementRecord, sort_records

RECORD_COLUMNS = [
    "test_id",
    "thread_index",
    "invocation_index",
    "phase",
    "repetition",
    "start_ts",
    "duration_s",
    "error",
    "policies",
    "policies_failed",
    "requirements_met",
]

RecordListener = Callable[[MeasurementRecord], None]


class RecordSink:
    """Append-only collection shared by every worker loop of a run."""

    def __init__(self, listener: RecordListener | None = None) -> None:
        self._listener = listener
        self._lock = threading.Lock()
        self._records: list[MeasurementRecord] = []
        self._thread_errors: list[ErrorInfo] = []

    def append(self, record: MeasurementRecord) -> None:
        with self._lock:
            self._records.append(record)
        # listeners run on the worker thread, outside the lock
        if self._listener is not None:
            self._listener(record)

    def add_thread_error(self, error: ErrorInfo) -> None:
        with self._lock:
            self._thread_errors.append(error)

    def records(self) -> tuple[MeasurementRecord, ...]:
        with self._lock:
            rows = list(self._records)
        return sort_records(rows)

    def thread_errors(self) -> tuple[ErrorInfo, ...]:
        with self._lock:
            errors = list(self._thread_errors)
        return tuple(
            sorted(errors, key=lambda e: (e.thread_index, e.invocation_index if e.invocation_index is not None else -1))
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def build_dataframe(self, include_warmups: bool = True) -> pd.DataFrame:
        records = self.records()
        if not include_warmups:
            records = tuple(record for record in records if not record.is_warmup)
        return records_frame(records)

    def summaries(self) -> dict[str, int]:
        with self._lock:
            counter = collections.Counter(
                "error" if record.error is not None else record.phase for record in self._records
            )
        return dict(counter)


def records_frame(records: Iterable[MeasurementRecord]) -> pd.DataFrame:
    rows = [record.to_row() for record in records]
    if not rows:
        return pd.DataFrame(columns=RECORD_COLUMNS)
    return pd.DataFrame(rows, columns=RECORD_COLUMNS)


__all__ = ["RECORD_COLUMNS", "RecordListener", "RecordSink", "records_frame"]
