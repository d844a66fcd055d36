from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Mapping

from ..config import (
    DistributionSpec,
    RequirementDefaults,
    ScheduleConfig,
    policies_from_mapping,
    schedule_from_mapping,
)
from ..errors import ConfigurationError
from ..requirements import FixedThreshold, PercentageDegradation, RequirementPolicy
from .workloads import WorkloadSpec


@dataclass(frozen=True)
class BenchmarkCase:
    """One unit of work with the schedule and requirements it runs under."""

    name: str
    workload: WorkloadSpec
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    policies: tuple[RequirementPolicy, ...] = ()
    notes: str | None = None

    @property
    def test_id(self) -> str:
        return f"cadence.bench.{self.name}"


@dataclass
class BenchmarkPlan:
    """Ordered set of benchmark cases the harness will execute."""

    cases: list[BenchmarkCase] = field(default_factory=list)

    def __iter__(self) -> Iterator[BenchmarkCase]:
        return iter(self.cases)

    def __len__(self) -> int:
        return len(self.cases)


def default_benchmark_plan() -> BenchmarkPlan:
    """Return the built-in suite of small synthetic cases."""

    quick_sleep = WorkloadSpec("sleep", {"mean_s": 0.005, "jitter_s": 0.001})
    cases = [
        BenchmarkCase(
            name="sleep-single-thread",
            workload=quick_sleep,
            schedule=ScheduleConfig(invocations=20, warmup_invocations=5),
            policies=(FixedThreshold.of(50, "ms"), PercentageDegradation(percentage=50.0)),
            notes="Baseline sleep workload without pacing.",
        ),
        BenchmarkCase(
            name="sleep-concurrent-gaussian",
            workload=quick_sleep,
            schedule=ScheduleConfig(
                invocations=15,
                warmup_invocations=3,
                threads=4,
                distribution=DistributionSpec("gaussian", (0.004, 0.002)),
            ),
            policies=(FixedThreshold.of(50, "ms"),),
        ),
        BenchmarkCase(
            name="sleep-poisson-arrivals",
            workload=quick_sleep,
            schedule=ScheduleConfig(
                invocations=15,
                threads=2,
                distribution=DistributionSpec("exponential", (200.0,)),
            ),
            policies=(FixedThreshold.of(50, "ms"),),
        ),
        BenchmarkCase(
            name="spin-uniform",
            workload=WorkloadSpec("spin", {"iterations": 20_000}),
            schedule=ScheduleConfig(
                invocations=10,
                warmup_invocations=2,
                threads=2,
                distribution=DistributionSpec("uniform", (0.001, 0.003)),
            ),
            policies=(FixedThreshold.of(1, "s"),),
            notes="CPU bound; threads contend for the interpreter lock.",
        ),
    ]
    return BenchmarkPlan(cases=cases)


def case_from_mapping(
    mapping: Mapping[str, Any], defaults: RequirementDefaults | None = None
) -> BenchmarkCase:
    unknown = set(mapping) - {"name", "workload", "schedule", "requirements", "notes"}
    if unknown:
        raise ConfigurationError(f"unknown benchmark case option(s): {', '.join(sorted(unknown))}")
    try:
        name = mapping["name"]
        workload = mapping["workload"]
    except KeyError as exc:
        raise ConfigurationError(f"benchmark case requires {exc.args[0]!r}") from None
    return BenchmarkCase(
        name=name,
        workload=WorkloadSpec.from_mapping(workload),
        schedule=schedule_from_mapping(mapping.get("schedule", {})),
        policies=tuple(policies_from_mapping(mapping.get("requirements", {}), defaults)),
        notes=mapping.get("notes"),
    )


def load_plan(path: str | Path | None, defaults: RequirementDefaults | None = None) -> BenchmarkPlan:
    """Load a plan from a JSON file, or the default plan when no path is given.

    The file holds ``{"cases": [...]}``; each case has a ``name``, a
    ``workload`` (``{"kind": ..., **options}``) and optional ``schedule``,
    ``requirements`` and ``notes``.
    """
    if not path:
        return default_benchmark_plan()
    try:
        document = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"invalid benchmark plan {path}: {exc}") from exc
    cases = document.get("cases") if isinstance(document, dict) else None
    if not isinstance(cases, list) or not cases:
        raise ConfigurationError(f"benchmark plan {path} must define a non-empty 'cases' list")
    plan = BenchmarkPlan(cases=[case_from_mapping(case, defaults) for case in cases])
    names = [case.name for case in plan]
    if len(set(names)) != len(names):
        raise ConfigurationError(f"benchmark plan {path} has duplicate case names")
    return plan


__all__ = [
    "BenchmarkCase",
    "BenchmarkPlan",
    "case_from_mapping",
    "default_benchmark_plan",
    "load_plan",
]
