from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

import pandas as pd

from ..config import RequirementDefaults
from ..errors import ConfigurationError
from ..logs import close_logger, configure_logger, record_logger, setup_logging
from ..records import RunResult
from ..scheduler import Scheduler
from ..stats import HISTORY_COLUMNS, FrameStatsProvider, history_frame
from .charts import render_case_charts, render_summary_chart
from .plan import BenchmarkCase, BenchmarkPlan, load_plan

LOGGER = logging.getLogger("cadence.bench")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="cadence benchmark harness")
    parser.add_argument(
        "--output-dir",
        default=os.environ.get("CADENCE_OUTPUT_DIR", "benchmark-results"),
        help="Directory to store benchmark artefacts (CSV files, charts, manifest)",
    )
    parser.add_argument(
        "--plan-path",
        default=os.environ.get("CADENCE_PLAN_PATH"),
        help="Optional JSON file describing a custom benchmark plan",
    )
    parser.add_argument(
        "--baseline-path",
        default=os.environ.get("CADENCE_BASELINE_PATH"),
        help="CSV history of earlier trial measurements used by baseline requirements",
    )
    parser.add_argument(
        "--update-baseline",
        action="store_true",
        help="Append this run's trial measurements to --baseline-path",
    )
    parser.add_argument(
        "--record-log",
        default=None,
        help="Write one line per measurement record to this file",
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed for pacing delays")
    parser.add_argument(
        "--evaluate-warmups",
        action="store_true",
        help="Also evaluate requirements on warmup invocations (never fails a case)",
    )
    parser.add_argument("--skip-charts", action="store_true", help="Do not render charts")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print the planned benchmark cases without executing them",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("CADENCE_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    return parser.parse_args(argv)


def load_baseline(path: str | None) -> FrameStatsProvider | None:
    if not path:
        return None
    baseline_path = Path(path)
    if not baseline_path.exists():
        LOGGER.info("Baseline %s does not exist yet; baseline requirements will pass", baseline_path)
        return None
    return FrameStatsProvider.from_csv(baseline_path)


def update_baseline(path: Path, results: list[RunResult]) -> int:
    frames = [history_frame(result) for result in results]
    new_rows = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame(columns=list(HISTORY_COLUMNS))
    if path.exists():
        combined = pd.concat([pd.read_csv(path), new_rows], ignore_index=True)
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
        combined = new_rows
    combined.to_csv(path, index=False)
    return len(new_rows)


def run_case(case: BenchmarkCase, scheduler: Scheduler) -> RunResult:
    LOGGER.info(
        "Running case %s (workload=%s, threads=%d, warmups=%d, trials=%d)",
        case.name,
        case.workload.describe(),
        case.schedule.threads,
        case.schedule.warmup_invocations,
        case.schedule.invocations,
    )
    return scheduler.run(case.schedule, case.policies, case.workload.build(), case.test_id)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        plan = load_plan(args.plan_path, RequirementDefaults.from_env())
    except ConfigurationError as exc:
        LOGGER.error("Invalid benchmark plan: %s", exc)
        return 2

    if args.dry_run:
        _print_plan(plan)
        return 0

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    LOGGER.info("Benchmark output directory: %s", output_dir)

    record_log = configure_logger(Path(args.record_log)) if args.record_log else None
    scheduler = Scheduler(
        stats_provider=load_baseline(args.baseline_path),
        listener=record_logger(record_log) if record_log is not None else None,
        evaluate_warmups=args.evaluate_warmups,
        seed=args.seed,
    )

    results: list[RunResult] = []
    summaries: dict[str, dict[str, Any]] = {}
    manifest: dict[str, Any] = {"cases": {}}
    try:
        for case in plan:
            result = run_case(case, scheduler)
            results.append(result)

            df = result.to_dataframe()
            df_path = output_dir / f"{case.name}.csv"
            df.to_csv(df_path, index=False)
            summary = result.summary()
            summaries[case.name] = summary
            LOGGER.info(
                "Saved %s (%d rows, p95 %s, passed=%s)",
                df_path,
                len(df),
                "n/a" if summary["p95_s"] is None else f"{summary['p95_s'] * 1000.0:.2f}ms",
                result.passed,
            )
            for violation in result.violations():
                LOGGER.warning("Requirement failed: %s", violation)

            charts: list[str] = []
            if not args.skip_charts:
                charts = [str(path) for path in render_case_charts(case.name, df, output_dir)]
            manifest["cases"][case.name] = {
                "csv": str(df_path),
                "charts": charts,
                "succeeded": result.succeeded,
                "summary": summary,
                "thread_errors": [
                    f"thread {error.thread_index}: {error.type_name}: {error.message}"
                    for error in result.thread_errors
                ],
            }
    finally:
        if record_log is not None:
            close_logger(record_log)

    if not args.skip_charts:
        summary_chart = render_summary_chart(summaries, output_dir / "summary.png")
        manifest["summary_chart"] = str(summary_chart) if summary_chart else None

    if args.update_baseline:
        if not args.baseline_path:
            LOGGER.warning("--update-baseline given without --baseline-path; nothing written")
        else:
            added = update_baseline(Path(args.baseline_path), results)
            LOGGER.info("Appended %d measurement(s) to baseline %s", added, args.baseline_path)

    succeeded = all(result.succeeded for result in results)
    manifest["succeeded"] = succeeded
    manifest_path = output_dir / "benchmark_manifest.json"
    with open(manifest_path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2)
    LOGGER.info("Benchmark manifest written to %s", manifest_path)
    return 0 if succeeded else 1


def _print_plan(plan: BenchmarkPlan) -> None:
    for case in plan:
        schedule = case.schedule
        policies = ", ".join(policy.kind for policy in case.policies) or "none"
        print(
            f"  - {case.name}: workload={case.workload.describe()}, threads={schedule.threads}, "
            f"warmups={schedule.warmup_invocations} trials={schedule.invocations}, "
            f"distribution={schedule.distribution.kind}{list(schedule.distribution.parameters)}, "
            f"requirements={policies}"
        )
        if case.notes:
            print(f"      {case.notes}")


if __name__ == "__main__":
    sys.exit(main())
