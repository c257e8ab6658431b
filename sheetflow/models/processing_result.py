from __future__ import annotations

import statistics
from dataclasses import dataclass, field

from .row_data import DataRow, ValidationError

"""Processing result models.

Aggregates the outcome of one processing run (rows, flattened errors, counts,
timing) and the per-batch snapshots the chunk engine publishes while a run is
in flight.
"""

__all__ = [
    "ChunkUpdate",
    "ProcessingResult",
    "BatchStatsAccumulator",
]


@dataclass(frozen=True)
class ChunkUpdate:
    """Snapshot published after each batch (and once more on completion).

    ``rows`` is always a prefix of the import order. ``errors`` is only filled
    on the final update, after the uniqueness pass.
    """
    rows: list[DataRow]
    progress: float  # 0..1
    done: bool = False
    errors: list[ValidationError] = field(default_factory=list)
    run_id: int = 0


@dataclass(frozen=True)
class ProcessingResult:
    """Aggregated result of a completed run (rows + SUMMARY metrics)."""
    rows: list[DataRow]
    errors: list[ValidationError]
    total_rows: int
    valid_rows: int
    invalid_rows: int
    elapsed_seconds: float
    throughput_rows_per_sec: float
    # バッチ計測
    total_batches: int = 0
    avg_batch_seconds: float = 0.0
    p95_batch_seconds: float = 0.0

    @staticmethod
    def build(
        rows: list[DataRow],
        elapsed_seconds: float,
        batch_stats: BatchStatsAccumulator | None = None,
    ) -> ProcessingResult:
        errors = [e for r in rows for e in r.errors]
        valid = sum(1 for r in rows if r.is_valid)
        throughput = len(rows) / elapsed_seconds if elapsed_seconds > 0 else 0.0
        total_batches, avg_batch, p95_batch = (
            batch_stats.get_stats() if batch_stats is not None else (0, 0.0, 0.0)
        )
        return ProcessingResult(
            rows=rows,
            errors=errors,
            total_rows=len(rows),
            valid_rows=valid,
            invalid_rows=len(rows) - valid,
            elapsed_seconds=elapsed_seconds,
            throughput_rows_per_sec=round(throughput, 1),
            total_batches=total_batches,
            avg_batch_seconds=avg_batch,
            p95_batch_seconds=p95_batch,
        )


class BatchStatsAccumulator:
    """Helper class to accumulate batch timing statistics.

    Collects individual batch timing data and calculates summary statistics.
    """

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        """Add a batch timing measurement."""
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Calculate batch statistics.

        Returns:
            tuple: (total_batches, avg_batch_seconds, p95_batch_seconds)
        """
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            # 95th percentile (19th out of 20 quantiles, 0-indexed)
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method='inclusive'
            )[18]

        return (total_batches, avg_batch_seconds, p95_batch_seconds)
