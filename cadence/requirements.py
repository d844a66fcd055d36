"""Response-time requirement policies.

A policy is a frozen value; ``evaluate_policy`` is the single place verdicts are
computed, dispatching over the closed set of policy types. Evaluation is pure:
the same duration and stats always yield the same verdict.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar, Union

from .errors import ConfigurationError
from .records import PolicyResult

if TYPE_CHECKING:
    from .stats import HistoricalStats

DEFAULT_WINDOW_DAYS = 30

_TIME_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "nanoseconds": 1e-9,
    "us": 1e-6,
    "microseconds": 1e-6,
    "ms": 1e-3,
    "milliseconds": 1e-3,
    "s": 1.0,
    "seconds": 1.0,
    "m": 60.0,
    "min": 60.0,
    "minutes": 60.0,
    "h": 3600.0,
    "hours": 3600.0,
}

NO_BASELINE = "no baseline available"


def parse_time_unit(unit: str) -> float:
    """Return the number of seconds in one ``unit``."""
    try:
        return _TIME_UNITS[unit.strip().lower()]
    except KeyError:
        raise ConfigurationError(f"unknown time unit {unit!r}") from None


def normal_cdf(z: float) -> float:
    return 0.5 * math.erfc(-z / math.sqrt(2.0))


def _check_window(window_days: int) -> None:
    if isinstance(window_days, bool) or not isinstance(window_days, int) or window_days < 1:
        raise ConfigurationError(f"window_days must be an integer >= 1, got {window_days!r}")


@dataclass(frozen=True)
class FixedThreshold:
    """Every trial must finish within ``max_response_time_s`` seconds."""

    max_response_time_s: float

    kind: ClassVar[str] = "fixed_threshold"
    needs_baseline: ClassVar[bool] = False

    def __post_init__(self) -> None:
        if not math.isfinite(self.max_response_time_s) or self.max_response_time_s <= 0:
            raise ConfigurationError(
                f"max_response_time must be > 0, got {self.max_response_time_s!r}"
            )

    @classmethod
    def of(cls, value: float, unit: str = "s") -> FixedThreshold:
        return cls(max_response_time_s=float(value) * parse_time_unit(unit))


@dataclass(frozen=True)
class ZScorePercentile:
    """Fail trials slower than ``percentile`` of a gaussian fitted to the baseline.

    Baselines with very low variance make this policy brittle; a zero stddev
    is resolved deterministically (faster than or equal to the mean passes).
    """

    percentile: float
    window_days: int = DEFAULT_WINDOW_DAYS

    kind: ClassVar[str] = "zscore_percentile"
    needs_baseline: ClassVar[bool] = True

    def __post_init__(self) -> None:
        if not 0.0 < self.percentile < 1.0:
            raise ConfigurationError(
                f"percentile must be in (0, 1), got {self.percentile!r}"
            )
        _check_window(self.window_days)


@dataclass(frozen=True)
class PercentageDegradation:
    """Fail trials more than ``percentage`` percent slower than the baseline mean."""

    percentage: float
    window_days: int = DEFAULT_WINDOW_DAYS

    kind: ClassVar[str] = "percentage_degradation"
    needs_baseline: ClassVar[bool] = True

    def __post_init__(self) -> None:
        if not math.isfinite(self.percentage) or self.percentage <= 0:
            raise ConfigurationError(f"percentage must be > 0, got {self.percentage!r}")
        _check_window(self.window_days)


RequirementPolicy = Union[FixedThreshold, ZScorePercentile, PercentageDegradation]


def zscore_probability(duration_s: float, stats: HistoricalStats) -> tuple[float | None, float]:
    """Return ``(z, p)`` for a duration against a baseline.

    ``z`` is ``None`` when the baseline stddev is zero.
    """
    if stats.stddev_s == 0:
        return None, (0.0 if duration_s <= stats.mean_s else 1.0)
    z = (duration_s - stats.mean_s) / stats.stddev_s
    return z, normal_cdf(z)


def evaluate_policy(
    policy: RequirementPolicy,
    duration_s: float,
    stats: HistoricalStats | None = None,
) -> PolicyResult:
    if isinstance(policy, FixedThreshold):
        passed = duration_s <= policy.max_response_time_s
        op = "<=" if passed else ">"
        return PolicyResult(
            policy=policy,
            passed=passed,
            detail=f"{duration_s:.6f}s {op} max {policy.max_response_time_s:.6f}s",
        )

    if isinstance(policy, (ZScorePercentile, PercentageDegradation)) and stats is None:
        return PolicyResult(
            policy=policy,
            passed=True,
            detail=NO_BASELINE,
            baseline_available=False,
        )

    if isinstance(policy, ZScorePercentile):
        z, probability = zscore_probability(duration_s, stats)
        passed = probability <= policy.percentile
        op = "<=" if passed else ">"
        z_text = "n/a" if z is None else f"{z:.4f}"
        return PolicyResult(
            policy=policy,
            passed=passed,
            detail=(
                f"z={z_text} percentile {probability:.4f} {op} {policy.percentile:.4f} "
                f"(mean {stats.mean_s:.6f}s, stddev {stats.stddev_s:.6f}s)"
            ),
        )

    if isinstance(policy, PercentageDegradation):
        threshold = stats.mean_s * (1.0 + policy.percentage / 100.0)
        passed = duration_s <= threshold
        op = "<=" if passed else ">"
        return PolicyResult(
            policy=policy,
            passed=passed,
            detail=(
                f"{duration_s:.6f}s {op} {threshold:.6f}s "
                f"({policy.percentage:g}% over mean {stats.mean_s:.6f}s)"
            ),
        )

    raise TypeError(f"unsupported requirement policy: {policy!r}")


__all__ = [
    "DEFAULT_WINDOW_DAYS",
    "FixedThreshold",
    "NO_BASELINE",
    "PercentageDegradation",
    "RequirementPolicy",
    "ZScorePercentile",
    "evaluate_policy",
    "normal_cdf",
    "parse_time_unit",
    "zscore_probability",
]
