"""Unit tests for benchmark plans."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from cadence.bench.plan import case_from_mapping, default_benchmark_plan, load_plan
from cadence.config import RequirementDefaults
from cadence.errors import ConfigurationError
from cadence.requirements import FixedThreshold, ZScorePercentile


def _write(tmp_path: Path, document) -> Path:
    path = tmp_path / "plan.json"
    path.write_text(json.dumps(document), encoding="utf-8")
    return path


def test_default_plan() -> None:
    plan = default_benchmark_plan()
    names = [case.name for case in plan]
    assert len(plan) == 4
    assert len(set(names)) == 4
    assert all(case.test_id == f"cadence.bench.{case.name}" for case in plan)
    assert load_plan(None).cases == plan.cases


def test_case_from_mapping() -> None:
    case = case_from_mapping(
        {
            "name": "checkout",
            "workload": {"kind": "sleep", "mean_s": 0.001},
            "schedule": {"trials": 3, "warmups": 1, "threads": 2, "distribution": "null"},
            "requirements": {"maxResponseTime": 250, "timeUnit": "ms", "zscore": True},
        },
        RequirementDefaults(zscore_percentile=0.95),
    )
    assert case.schedule.invocations == 3
    assert case.schedule.warmup_invocations == 1
    assert case.schedule.threads == 2
    fixed, zscore = case.policies
    assert isinstance(fixed, FixedThreshold)
    assert fixed.max_response_time_s == pytest.approx(0.25)
    assert zscore == ZScorePercentile(0.95)


def test_case_requires_name_and_workload() -> None:
    with pytest.raises(ConfigurationError, match="'workload'"):
        case_from_mapping({"name": "x"})
    with pytest.raises(ConfigurationError, match="unknown benchmark case option"):
        case_from_mapping({"name": "x", "workload": {"kind": "spin"}, "repeat": 2})


def test_load_plan_from_file(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        {"cases": [{"name": "spin", "workload": {"kind": "spin", "iterations": 10}}]},
    )
    plan = load_plan(path)
    assert [case.name for case in plan] == ["spin"]
    assert plan.cases[0].policies == ()


@pytest.mark.parametrize(
    "document, message",
    [
        ({"cases": []}, "non-empty 'cases'"),
        ([1, 2], "non-empty 'cases'"),
        (
            {
                "cases": [
                    {"name": "dup", "workload": {"kind": "spin"}},
                    {"name": "dup", "workload": {"kind": "spin"}},
                ]
            },
            "duplicate case names",
        ),
    ],
)
def test_load_plan_rejects_bad_documents(tmp_path: Path, document, message) -> None:
    with pytest.raises(ConfigurationError, match=message):
        load_plan(_write(tmp_path, document))


def test_load_plan_rejects_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "plan.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="invalid benchmark plan"):
        load_plan(path)
