"""
Command Line Entry Point

    schedbench run [--profile scalability|sensitivity] [options]
    schedbench report RESULTS.csv [--plot FIGURE.png]

The store DSN defaults to SCHEDBENCH_STORE_DSN (a .env file in the working
directory is honoured) and falls back to a local SQLite file that is seeded
on first use.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence
import argparse
import logging
import os
import sys

from dotenv import load_dotenv

from schedbench.benchmark import (
    BenchmarkConfig,
    BenchmarkRunner,
    ScenarioDefinition,
    scalability_config,
    sensitivity_config,
)
from schedbench.report import load_results, plot_throughput, summarize
from schedbench.sink import CsvResultSink, columns_for
from schedbench.store import DEFAULT_POOL_SIZE, InvoiceStore, SqliteInvoiceStore, open_store


logger = logging.getLogger(__name__)

DSN_ENV_VAR = "SCHEDBENCH_STORE_DSN"
DEFAULT_SQLITE_PATH = "bench_store.db"

OUTPUT_PREFIXES = {
    "scalability": "research_result_FULL_METRICS_",
    "sensitivity": "research_result_POOL_SENSITIVITY_",
}


def parse_levels(text: str) -> List[int]:
    """Parse a comma separated list of positive integers."""
    try:
        levels = [int(part.strip()) for part in text.split(",") if part.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid concurrency list: {text!r}") from None
    if not levels or any(level < 1 for level in levels):
        raise argparse.ArgumentTypeError("concurrency levels must be positive integers")
    return levels


def build_parser() -> argparse.ArgumentParser:
    # Shared by every subcommand so the flag follows the command name
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )

    parser = argparse.ArgumentParser(
        prog="schedbench",
        description="Bounded pool vs per-task thread scheduling benchmark",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", parents=[common], help="Run a benchmark sweep")
    run.add_argument("--profile", choices=sorted(OUTPUT_PREFIXES), default="scalability")
    run.add_argument("--concurrency", type=parse_levels, help="e.g. 100,500,1000")
    run.add_argument("--iterations", type=int, help="Iterations per pair")
    run.add_argument("--warmup", type=int, help="Warmup iterations to discard")
    run.add_argument("--multiplier", type=int, help="Requests per run = concurrency * multiplier")
    run.add_argument("--deadline", type=float, help="Per-run completion deadline in seconds")
    run.add_argument("--settle", type=float, help="Pause before each run in seconds")
    run.add_argument("--scenario", action="append", dest="scenarios", metavar="NAME",
                     help="Restrict to a scenario (repeatable)")
    run.add_argument("--cpu-iterations", type=int)
    run.add_argument("--io-delay-ms", type=float)
    run.add_argument("--store-dsn", help=f"Store DSN (default: ${DSN_ENV_VAR} or {DEFAULT_SQLITE_PATH})")
    run.add_argument("--pool-size", type=int, help="Store connection pool size")
    run.add_argument("--seed-rows", type=int, default=5000,
                     help="Invoices to seed into a SQLite store")
    run.add_argument("--no-system-metrics", action="store_true",
                     help="Skip Heap_MB and Thread_Count")
    run.add_argument("--output", help="Results CSV path")

    report = sub.add_parser("report", parents=[common], help="Summarize a results CSV")
    report.add_argument("results", help="Results CSV written by 'run'")
    report.add_argument("--plot", help="Write a throughput chart to this path")

    return parser


def build_config(args: argparse.Namespace) -> BenchmarkConfig:
    overrides = {}
    for attr, field_name in (
        ("concurrency", "concurrency_levels"),
        ("iterations", "total_iterations"),
        ("warmup", "warmup_rounds"),
        ("multiplier", "request_multiplier"),
        ("deadline", "deadline_sec"),
        ("settle", "settle_sec"),
        ("cpu_iterations", "cpu_iterations"),
        ("io_delay_ms", "io_delay_ms"),
        ("pool_size", "pool_size"),
    ):
        value = getattr(args, attr)
        if value is not None:
            overrides[field_name] = value
    if args.no_system_metrics:
        overrides["capture_system"] = False

    if args.profile == "sensitivity":
        config = sensitivity_config(**overrides)
    else:
        config = scalability_config(**overrides)

    if args.scenarios:
        config = config.select_scenarios(args.scenarios)
    return config


def open_configured_store(args: argparse.Namespace, config: BenchmarkConfig) -> InvoiceStore:
    dsn = args.store_dsn or os.environ.get(DSN_ENV_VAR) or DEFAULT_SQLITE_PATH
    pool_size = config.pool_size or DEFAULT_POOL_SIZE
    min_idle = min(config.store_min_idle or 0, pool_size)
    store = open_store(dsn, pool_size=pool_size, min_idle=min_idle)
    if isinstance(store, SqliteInvoiceStore):
        store.seed(store_id=config.store_id, rows=args.seed_rows)
    return store


def print_progress(event: str, scenario: ScenarioDefinition, level: int) -> None:
    if event == "start":
        print(f"Running {scenario.name} - Users: {level}... ", end="", flush=True)
    elif event == "done":
        print("DONE", flush=True)
    else:
        print("ABORTED", flush=True)


def run_command(args: argparse.Namespace) -> int:
    config = build_config(args)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    output = args.output or f"{OUTPUT_PREFIXES[args.profile]}{timestamp}.csv"
    columns = columns_for(config.capture_system, args.profile)

    print(f"=== {args.profile.upper()} BENCHMARK STARTED ===")
    print(f"Data file: {output}")

    store = open_configured_store(args, config) if config.needs_store else None
    try:
        with CsvResultSink(output, columns) as sink:
            runner = BenchmarkRunner(config, sink, store=store, progress=print_progress)
            records = runner.run()
    finally:
        if store is not None:
            store.close()

    print(f"=== BENCHMARK COMPLETED: {len(records)} rows ===")
    if runner.aborted_pairs:
        logger.error(f"Aborted pairs: {runner.aborted_pairs}")
        return 1
    return 0


def report_command(args: argparse.Namespace) -> int:
    frame = load_results(args.results)
    print(summarize(frame).to_string(index=False))
    if args.plot:
        path = plot_throughput(frame, args.plot)
        print(f"\nFigure saved to {path}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point; returns the process exit code."""
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "run":
            return run_command(args)
        return report_command(args)
    except ValueError as e:
        logger.error(str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
