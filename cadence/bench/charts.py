from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

LOGGER = logging.getLogger("cadence.bench.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 150
plt.rcParams["font.size"] = 10
plt.rcParams["axes.labelsize"] = 11
plt.rcParams["axes.titlesize"] = 13
plt.rcParams["legend.fontsize"] = 9

PHASE_COLORS = {
    "warmup": "#F18F01",
    "trial": "#2E86AB",
}
FAILED_COLOR = "#C73E1D"


def render_case_charts(case_name: str, frame: pd.DataFrame, output_dir: Path) -> list[Path]:
    """Render the per-thread box plot and the start-time timeline for one case."""
    if frame.empty:
        LOGGER.warning("No records for %s; skipping charts", case_name)
        return []

    df = frame[frame["error"].isna()].copy()
    if df.empty:
        LOGGER.warning("Every invocation of %s failed; skipping charts", case_name)
        return []
    df["duration_ms"] = df["duration_s"].astype(float) * 1000.0
    df["offset_s"] = df["start_ts"].astype(float) - float(frame["start_ts"].min())

    paths = [
        _render_thread_boxplot(case_name, df, output_dir / f"{case_name}__threads.png"),
        _render_timeline(case_name, df, output_dir / f"{case_name}__timeline.png"),
    ]
    return paths


def _render_thread_boxplot(case_name: str, df: pd.DataFrame, chart_path: Path) -> Path:
    fig, ax = plt.subplots(figsize=(10, 6))
    hue_order = [phase for phase in ("warmup", "trial") if phase in set(df["phase"])]
    sns.boxplot(
        data=df,
        x="thread_index",
        y="duration_ms",
        hue="phase",
        hue_order=hue_order,
        palette=[PHASE_COLORS[phase] for phase in hue_order],
        ax=ax,
        linewidth=1.5,
        width=0.7,
    )
    ax.set_xlabel("Worker thread", fontweight="semibold")
    ax.set_ylabel("Response time (ms)", fontweight="semibold")
    ax.set_ylim(bottom=0)
    ax.set_title(f"{case_name}: response time by thread", fontweight="bold", pad=15)
    ax.grid(True, alpha=0.3, linestyle="--", axis="y")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)

    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path


def _render_timeline(case_name: str, df: pd.DataFrame, chart_path: Path) -> Path:
    fig, ax = plt.subplots(figsize=(12, 5))
    for phase, color in PHASE_COLORS.items():
        subset = df[df["phase"] == phase]
        if subset.empty:
            continue
        ax.scatter(subset["offset_s"], subset["duration_ms"], s=18, alpha=0.75, color=color, label=phase)

    failed = df[~df["requirements_met"].astype(bool)]
    if not failed.empty:
        ax.scatter(
            failed["offset_s"],
            failed["duration_ms"],
            s=60,
            marker="x",
            color=FAILED_COLOR,
            label="requirement failed",
        )

    ax.set_xlabel("Seconds since first invocation", fontweight="semibold")
    ax.set_ylabel("Response time (ms)", fontweight="semibold")
    ax.set_title(f"{case_name}: response time over the run", fontweight="bold", pad=15)
    ax.legend(loc="upper right", frameon=True)
    ax.grid(True, alpha=0.3, linestyle="--")

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path


def render_summary_chart(summaries: Mapping[str, Mapping[str, Any]], chart_path: Path) -> Path | None:
    """Grouped bars of p50/p95/p99 trial response time per case."""
    rows = {name: summary for name, summary in summaries.items() if summary.get("p50_s") is not None}
    if not rows:
        LOGGER.warning("No trial measurements to summarise")
        return None

    names = list(rows)
    quantiles = [("p50_s", "p50", "#2E86AB"), ("p95_s", "p95", "#A23B72"), ("p99_s", "p99", "#F18F01")]
    x = np.arange(len(names))
    width = 0.25

    fig, ax = plt.subplots(figsize=(max(8, 2.2 * len(names)), 6))
    for offset, (key, label, color) in enumerate(quantiles):
        values = [rows[name][key] * 1000.0 for name in names]
        bars = ax.bar(x + (offset - 1) * width, values, width, label=label, color=color, alpha=0.85)
        for bar in bars:
            height = bar.get_height()
            ax.text(
                bar.get_x() + bar.get_width() / 2.0,
                height,
                f"{height:.1f}",
                ha="center",
                va="bottom",
                fontsize=8,
            )

    ax.set_xticks(x)
    ax.set_xticklabels(names, rotation=15, ha="right")
    ax.set_ylabel("Response time (ms)", fontweight="semibold")
    ax.set_title("Trial response time percentiles", fontweight="bold", pad=15)
    ax.legend(frameon=True)
    ax.grid(True, alpha=0.3, axis="y", linestyle="--")

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path


__all__ = ["render_case_charts", "render_summary_chart"]
