"""
CSV Result Sink

Append-only writer for per-iteration result rows. Every row is flushed as
soon as it is written so that a crash mid-sweep loses at most the run in
progress.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Sequence
import csv
import logging
import os


logger = logging.getLogger(__name__)

BASIC_COLUMNS = [
    "Scenario", "Type", "Concurrency", "Iteration",
    "Throughput_RPS", "P99_ms", "Success_Rate",
]

FULL_COLUMNS = BASIC_COLUMNS + ["Heap_MB", "Thread_Count"]

SENSITIVITY_COLUMNS = [
    "Scenario", "Concurrency", "Iteration",
    "Throughput_RPS", "P99_ms", "Success_Rate",
    "Heap_MB", "Thread_Count", "Pool_Size",
]


def format_value(value: Any) -> Any:
    """Render floats with two decimals; leave everything else alone."""
    if isinstance(value, float):
        return f"{value:.2f}"
    return value


class CsvResultSink:
    """
    Writes result rows to a CSV file with a fixed column schema.

    The header is written only when the file is new or empty, so several
    sweeps can append to the same file.

    Example:
        with CsvResultSink("results.csv", FULL_COLUMNS) as sink:
            sink.write(record.to_row())
    """

    def __init__(self, path: str, columns: Sequence[str] = FULL_COLUMNS):
        self.path = path
        self.columns: List[str] = list(columns)
        self.rows_written = 0

        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        needs_header = not os.path.exists(path) or os.path.getsize(path) == 0
        self._file = open(path, "a", newline="")
        self._writer = csv.DictWriter(self._file, fieldnames=self.columns, extrasaction="ignore")
        if needs_header:
            self._writer.writeheader()
            self._file.flush()

    def write(self, row: Dict[str, Any]) -> None:
        """
        Append one row and flush it to disk.

        Raises:
            ValueError: If the row lacks a column of the schema, or the sink
                is closed.
        """
        if self._file.closed:
            raise ValueError("sink is closed")
        missing = [c for c in self.columns if c not in row]
        if missing:
            raise ValueError(f"row is missing columns: {missing}")
        self._writer.writerow({c: format_value(row[c]) for c in self.columns})
        self._file.flush()
        self.rows_written += 1

    def write_all(self, rows: Iterable[Dict[str, Any]]) -> None:
        for row in rows:
            self.write(row)

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()
            logger.debug(f"Closed {self.path} after {self.rows_written} rows")

    def __enter__(self) -> "CsvResultSink":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        self.close()
        return False


def columns_for(capture_system: bool, profile: str = "scalability") -> List[str]:
    """
    Pick the column schema for a benchmark profile.

    Scalability runs always carry Type and never Pool_Size; sensitivity runs
    use the Pool_Size layout without Type.
    """
    if profile == "sensitivity":
        if capture_system:
            return list(SENSITIVITY_COLUMNS)
        return [c for c in SENSITIVITY_COLUMNS if c not in ("Heap_MB", "Thread_Count")]
    return list(FULL_COLUMNS if capture_system else BASIC_COLUMNS)
