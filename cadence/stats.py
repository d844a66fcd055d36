from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, Union

import pandas as pd

from .errors import ConfigurationError, StatsUnavailable
from .records import TRIAL

if TYPE_CHECKING:
    from .records import RunResult

LOGGER = logging.getLogger("cadence.stats")

HISTORY_COLUMNS = ("test_id", "recorded_at", "duration_s")


@dataclass(frozen=True)
class HistoricalStats:
    """Baseline response times of a test identity over a trailing window."""

    mean_s: float
    stddev_s: float
    sample_count: int
    window_days: int

    def __post_init__(self) -> None:
        if not math.isfinite(self.mean_s) or self.mean_s < 0:
            raise ValueError(f"mean_s must be >= 0, got {self.mean_s!r}")
        if not math.isfinite(self.stddev_s) or self.stddev_s < 0:
            raise ValueError(f"stddev_s must be >= 0, got {self.stddev_s!r}")
        if self.sample_count < 0:
            raise ValueError("sample_count must be >= 0")


class StatsProvider(Protocol):
    def fetch(self, test_id: str, window_days: int) -> HistoricalStats:
        """Return the baseline or raise :class:`StatsUnavailable`."""
        ...


_Entry = Union[HistoricalStats, None, BaseException]


class StatsCache:
    """Per-run cache fetching each ``(test_id, window_days)`` at most once.

    Worker loops asking for a key that is being fetched wait for the first
    fetch instead of issuing their own. Unavailable baselines are cached as
    ``None``; unexpected provider errors are cached and re-raised.
    """

    def __init__(self, provider: StatsProvider | None) -> None:
        self._provider = provider
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, int], _Entry] = {}
        self._key_locks: dict[tuple[str, int], threading.Lock] = {}
        self.fetch_count = 0

    def get(self, test_id: str, window_days: int) -> HistoricalStats | None:
        key = (test_id, window_days)
        with self._lock:
            if key in self._entries:
                return self._unwrap(self._entries[key])
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        with key_lock:
            with self._lock:
                if key in self._entries:
                    return self._unwrap(self._entries[key])
            entry = self._fetch(test_id, window_days)
            with self._lock:
                self._entries[key] = entry
        return self._unwrap(entry)

    def _fetch(self, test_id: str, window_days: int) -> _Entry:
        if self._provider is None:
            LOGGER.info("No stats provider configured for %s; baseline policies pass", test_id)
            return None
        with self._lock:
            self.fetch_count += 1
        try:
            stats = self._provider.fetch(test_id, window_days)
        except StatsUnavailable as exc:
            LOGGER.info("Baseline unavailable for %s (%d days): %s", test_id, window_days, exc.reason)
            return None
        except Exception as exc:  # noqa: BLE001
            return exc
        if stats.sample_count == 0:
            LOGGER.info("Baseline for %s has no samples in %d days", test_id, window_days)
            return None
        return stats

    @staticmethod
    def _unwrap(entry: _Entry) -> HistoricalStats | None:
        if isinstance(entry, BaseException):
            raise entry
        return entry


class FrameStatsProvider:
    """Baselines computed from a frame of earlier trial measurements.

    The frame needs ``test_id``, ``recorded_at`` and ``duration_s`` columns.
    Only rows recorded within the trailing window count toward the baseline.
    """

    def __init__(
        self,
        frame: pd.DataFrame,
        now: pd.Timestamp | None = None,
        min_samples: int = 2,
    ) -> None:
        missing = [column for column in HISTORY_COLUMNS if column not in frame.columns]
        if missing:
            raise ConfigurationError(f"history frame is missing columns: {', '.join(missing)}")
        if min_samples < 1:
            raise ConfigurationError("min_samples must be >= 1")
        frame = frame.loc[:, list(HISTORY_COLUMNS)].copy()
        frame["recorded_at"] = pd.to_datetime(frame["recorded_at"], utc=True, format="ISO8601")
        frame["duration_s"] = frame["duration_s"].astype(float)
        self._frame = frame
        self._now = now
        self._min_samples = min_samples

    @classmethod
    def from_csv(cls, path: Path | str, **kwargs) -> FrameStatsProvider:
        return cls(pd.read_csv(path), **kwargs)

    def fetch(self, test_id: str, window_days: int) -> HistoricalStats:
        now = self._now if self._now is not None else pd.Timestamp.now(tz="UTC")
        cutoff = now - pd.Timedelta(days=window_days)
        frame = self._frame
        durations = frame.loc[
            (frame["test_id"] == test_id) & (frame["recorded_at"] >= cutoff), "duration_s"
        ]
        if len(durations) < self._min_samples:
            raise StatsUnavailable(
                test_id,
                f"only {len(durations)} sample(s) in the last {window_days} day(s)",
            )
        return HistoricalStats(
            mean_s=float(durations.mean()),
            stddev_s=float(durations.std(ddof=1)) if len(durations) > 1 else 0.0,
            sample_count=int(len(durations)),
            window_days=window_days,
        )


def history_frame(result: RunResult, recorded_at: pd.Timestamp | None = None) -> pd.DataFrame:
    """Rows suitable for appending to a baseline history from one run.

    Warmups and errored invocations are left out.
    """
    frame = result.to_dataframe()
    frame = frame[(frame["phase"] == TRIAL) & frame["error"].isna()]
    if recorded_at is None:
        recorded = pd.to_datetime(frame["start_ts"], unit="s", utc=True)
    else:
        recorded = pd.Series(recorded_at, index=frame.index)
    return pd.DataFrame(
        {
            "test_id": frame["test_id"],
            "recorded_at": recorded,
            "duration_s": frame["duration_s"],
        },
        columns=list(HISTORY_COLUMNS),
    ).reset_index(drop=True)


__all__ = [
    "FrameStatsProvider",
    "HISTORY_COLUMNS",
    "HistoricalStats",
    "StatsCache",
    "StatsProvider",
    "history_frame",
]
