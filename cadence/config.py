from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from .distributions import DelayDistribution, create_distribution
from .errors import ConfigurationError
from .requirements import (
    DEFAULT_WINDOW_DAYS,
    FixedThreshold,
    PercentageDegradation,
    RequirementPolicy,
    ZScorePercentile,
)

INVOCATIONS_DEFAULT = 1
WARMUP_INVOCATIONS_DEFAULT = 0
THREADS_DEFAULT = 1

ZSCORE_PERCENTILE_ENV = "CADENCE_ZSCORE_PERCENTILE_THRESHOLD"
PERCENTAGE_DEGRADATION_ENV = "CADENCE_PERCENTAGE_DEGRADATION_THRESHOLD"
WINDOW_DAYS_ENV = "CADENCE_BASELINE_WINDOW_DAYS"


@dataclass(frozen=True)
class DistributionSpec:
    """Kind name plus parameter vector for the pacing delay, validated eagerly."""

    kind: str = "null"
    parameters: tuple[float, ...] = ()
    _distribution: DelayDistribution = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.kind, str):
            raise ConfigurationError(f"distribution kind must be a string, got {self.kind!r}")
        if isinstance(self.parameters, (str, bytes)) or not isinstance(self.parameters, Sequence):
            raise ConfigurationError(
                f"distribution parameters must be a sequence, got {self.parameters!r}"
            )
        distribution = create_distribution(self.kind, self.parameters)
        object.__setattr__(self, "kind", distribution.kind)
        object.__setattr__(self, "parameters", distribution.parameters)
        object.__setattr__(self, "_distribution", distribution)

    @property
    def distribution(self) -> DelayDistribution:
        return self._distribution

    @classmethod
    def from_value(cls, value: DistributionSpec | Mapping[str, Any] | str | None) -> DistributionSpec:
        if value is None:
            return cls()
        if isinstance(value, DistributionSpec):
            return value
        if isinstance(value, str):
            return cls(kind=value)
        if isinstance(value, Mapping):
            unknown = set(value) - {"kind", "clazz", "parameters"}
            if unknown:
                raise ConfigurationError(
                    f"unknown distribution option(s): {', '.join(sorted(unknown))}"
                )
            kind = value.get("kind", value.get("clazz", "null"))
            return cls(kind=kind, parameters=tuple(value.get("parameters", ())))
        raise ConfigurationError(f"cannot build a distribution from {value!r}")


def _require_int(name: str, value: Any, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")


@dataclass(frozen=True)
class ScheduleConfig:
    """How a unit of work is invoked.

    Counts are per worker loop: with ``threads=t`` the unit of work runs
    ``t * (warmup_invocations + invocations)`` times in total.
    """

    invocations: int = INVOCATIONS_DEFAULT
    warmup_invocations: int = WARMUP_INVOCATIONS_DEFAULT
    threads: int = THREADS_DEFAULT
    distribution: DistributionSpec = field(default_factory=DistributionSpec)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        _require_int("invocations", self.invocations, 1)
        _require_int("warmup_invocations", self.warmup_invocations, 0)
        _require_int("threads", self.threads, 1)
        if not isinstance(self.distribution, DistributionSpec):
            raise ConfigurationError(
                f"distribution must be a DistributionSpec, got {type(self.distribution).__name__}"
            )

    @property
    def iterations_per_thread(self) -> int:
        return self.warmup_invocations + self.invocations

    @property
    def total_invocations(self) -> int:
        return self.threads * self.iterations_per_thread


@dataclass(frozen=True)
class RequirementDefaults:
    """Fallback thresholds for baseline policies declared without values."""

    zscore_percentile: float = 0.99
    percentage_degradation: float = 10.0
    window_days: int = DEFAULT_WINDOW_DAYS

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> RequirementDefaults:
        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            zscore_percentile=_env_number(
                env, ZSCORE_PERCENTILE_ENV, defaults.zscore_percentile, float
            ),
            percentage_degradation=_env_number(
                env, PERCENTAGE_DEGRADATION_ENV, defaults.percentage_degradation, float
            ),
            window_days=_env_number(env, WINDOW_DAYS_ENV, defaults.window_days, int),
        )


def _env_number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigurationError(f"invalid {name} value {raw!r}") from exc


_SCHEDULE_KEYS = {
    "invocations": "invocations",
    "trials": "invocations",
    "warmupInvocations": "warmup_invocations",
    "warmup_invocations": "warmup_invocations",
    "warmups": "warmup_invocations",
    "threads": "threads",
    "distribution": "distribution",
}


def schedule_from_mapping(mapping: Mapping[str, Any]) -> ScheduleConfig:
    """Build a :class:`ScheduleConfig` from plain option values."""
    options: dict[str, Any] = {}
    for key, value in mapping.items():
        target = _SCHEDULE_KEYS.get(key)
        if target is None:
            raise ConfigurationError(f"unknown schedule option {key!r}")
        if target in options:
            raise ConfigurationError(f"schedule option {target!r} given more than once")
        options[target] = value
    options["distribution"] = DistributionSpec.from_value(options.get("distribution"))
    return ScheduleConfig(**options)


def _baseline_options(
    name: str, value: Any, value_key: str, default: float, window_days: int
) -> tuple[float, int]:
    if value is True:
        return default, window_days
    if isinstance(value, bool) or value is None:
        raise ConfigurationError(f"{name} must be true, a number or a mapping, got {value!r}")
    if isinstance(value, (int, float)):
        return float(value), window_days
    if isinstance(value, Mapping):
        unknown = set(value) - {value_key, "windowDays", "window_days"}
        if unknown:
            raise ConfigurationError(f"unknown {name} option(s): {', '.join(sorted(unknown))}")
        threshold = value.get(value_key, default)
        window = value.get("windowDays", value.get("window_days", window_days))
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            raise ConfigurationError(f"{name} {value_key} must be a number, got {threshold!r}")
        return float(threshold), window
    raise ConfigurationError(f"{name} must be true, a number or a mapping, got {value!r}")


def policies_from_mapping(
    mapping: Mapping[str, Any],
    defaults: RequirementDefaults | None = None,
) -> list[RequirementPolicy]:
    """Build requirement policies from plain option values.

    Recognised keys: ``maxResponseTime`` (with optional ``timeUnit``, seconds
    by default), ``zscore`` and ``percentageDegradation``. A baseline policy
    given as ``true`` takes its threshold from ``defaults``.
    """
    defaults = defaults or RequirementDefaults()
    policies: list[RequirementPolicy] = []
    seen: set[str] = set()
    unit = mapping.get("timeUnit", mapping.get("time_unit", "s"))

    for key, value in mapping.items():
        if key in ("timeUnit", "time_unit"):
            continue
        if key in ("maxResponseTime", "max_response_time"):
            kind = FixedThreshold.kind
        elif key in ("zscore", "zScore", "zscore_percentile"):
            kind = ZScorePercentile.kind
        elif key in ("percentageDegradation", "percentage_degradation"):
            kind = PercentageDegradation.kind
        else:
            raise ConfigurationError(f"unknown requirement option {key!r}")
        if kind in seen:
            raise ConfigurationError(f"requirement {kind!r} given more than once")
        seen.add(kind)

        if kind == FixedThreshold.kind:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(f"maxResponseTime must be a number, got {value!r}")
            policies.append(FixedThreshold.of(value, unit))
        elif kind == ZScorePercentile.kind:
            percentile, window = _baseline_options(
                key, value, "percentile", defaults.zscore_percentile, defaults.window_days
            )
            policies.append(ZScorePercentile(percentile=percentile, window_days=window))
        else:
            percentage, window = _baseline_options(
                key, value, "percentage", defaults.percentage_degradation, defaults.window_days
            )
            policies.append(PercentageDegradation(percentage=percentage, window_days=window))

    if "timeUnit" in mapping or "time_unit" in mapping:
        if FixedThreshold.kind not in seen:
            raise ConfigurationError("timeUnit given without maxResponseTime")
    return policies


__all__ = [
    "DistributionSpec",
    "INVOCATIONS_DEFAULT",
    "PERCENTAGE_DEGRADATION_ENV",
    "RequirementDefaults",
    "ScheduleConfig",
    "THREADS_DEFAULT",
    "WARMUP_INVOCATIONS_DEFAULT",
    "WINDOW_DAYS_ENV",
    "ZSCORE_PERCENTILE_ENV",
    "policies_from_mapping",
    "schedule_from_mapping",
]
