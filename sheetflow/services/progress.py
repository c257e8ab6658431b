from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

from ..models.processing_result import ChunkUpdate

"""Row progress display with tqdm (TTY only).

A single bar counts processed rows. It is fed by the chunk engine's
``ChunkUpdate`` snapshots, so it advances once per batch. In non-TTY
environments (CI, redirected output) no bar is created.
"""

__all__ = [
    "RowProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class RowProgressTracker:
    """Progress bar over the rows of one processing run."""

    def __init__(self, total_rows: int, *, description: str = "Processing rows", enabled: bool | None = None) -> None:
        """Initialize progress tracker.

        Args:
            total_rows: Number of rows the run will process
            description: Description for the progress bar
            enabled: Force the bar on/off; defaults to TTY detection
        """
        self.total_rows = total_rows
        self.description = description
        self.processed = 0
        self.invalid = 0

        self.enabled = is_tty_enabled() if enabled is None else enabled
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_rows,
                desc=description,
                unit="row",
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def on_update(self, update: ChunkUpdate) -> None:
        """Advance to the size of the snapshot's row prefix."""
        done_rows = len(update.rows)
        delta = done_rows - self.processed
        self.processed = done_rows
        self.invalid = sum(1 for r in update.rows if not r.is_valid)
        if self.pbar is not None:
            if delta > 0:
                self.pbar.update(delta)
            self.pbar.set_postfix(invalid=self.invalid)

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> RowProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
