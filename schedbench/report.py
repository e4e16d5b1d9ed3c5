# Result Summaries and Throughput Charts
# Descriptive post-processing of a results CSV: per (scenario, concurrency)
# medians and a throughput-vs-concurrency chart. No intervals or outlier
# rejection; the raw rows remain the source of truth.

import os
from typing import Optional

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd


REQUIRED_COLUMNS = [
    "Scenario", "Concurrency", "Iteration",
    "Throughput_RPS", "P99_ms", "Success_Rate",
]

# Colors follow strategy: pool scenarios warm, per-task scenarios cool
COLORS = {
    "PT_CPU_Heavy": "#ff7f0e",
    "PT_IO_Wait": "#d62728",
    "VT_CPU_Heavy": "#1f77b4",
    "VT_IO_Wait": "#2ca02c",
}


def load_results(path: str) -> pd.DataFrame:
    """
    Load a results CSV written by CsvResultSink.

    Raises:
        ValueError: If a required column is missing.
    """
    frame = pd.read_csv(path)
    missing = [c for c in REQUIRED_COLUMNS if c not in frame.columns]
    if missing:
        raise ValueError(f"{path} is missing columns: {missing}")
    return frame


def summarize(frame: pd.DataFrame) -> pd.DataFrame:
    """
    Collapse iterations into one row per (Scenario, Concurrency).

    Returns:
        DataFrame with Samples, Throughput_RPS_median, P99_ms_median,
        Success_Rate_mean and, when present, Heap_MB_max and
        Thread_Count_max columns.
    """
    aggregations = {
        "Samples": ("Iteration", "count"),
        "Throughput_RPS_median": ("Throughput_RPS", "median"),
        "P99_ms_median": ("P99_ms", "median"),
        "Success_Rate_mean": ("Success_Rate", "mean"),
    }
    if "Heap_MB" in frame.columns:
        aggregations["Heap_MB_max"] = ("Heap_MB", "max")
    if "Thread_Count" in frame.columns:
        aggregations["Thread_Count_max"] = ("Thread_Count", "max")

    summary = (
        frame.groupby(["Scenario", "Concurrency"], sort=False)
        .agg(**aggregations)
        .reset_index()
        .sort_values(["Scenario", "Concurrency"], kind="stable")
        .reset_index(drop=True)
    )
    return summary


def plot_throughput(frame: pd.DataFrame, output_path: str, title: Optional[str] = None) -> str:
    """
    Plot median throughput against concurrency, one line per scenario.

    Args:
        frame: Raw results as returned by load_results.
        output_path: Where to save the figure (format from extension).
        title: Optional figure title.

    Returns:
        Path to the saved figure.
    """
    summary = summarize(frame)

    directory = os.path.dirname(output_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    fig, ax = plt.subplots(figsize=(8, 5))
    for scenario, group in summary.groupby("Scenario", sort=False):
        ax.plot(
            group["Concurrency"],
            group["Throughput_RPS_median"],
            marker="o",
            linewidth=2,
            color=COLORS.get(scenario),
            label=scenario,
        )

    ax.set_xscale("log", base=2)
    ax.set_xlabel("Concurrent users")
    ax.set_ylabel("Throughput (req/s, median)")
    ax.set_title(title or "Throughput vs. concurrency")
    ax.grid(True, alpha=0.3)
    ax.legend()

    fig.savefig(output_path, bbox_inches="tight")
    plt.close(fig)
    return output_path
