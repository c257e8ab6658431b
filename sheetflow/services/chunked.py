from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any

from ..models.config_models import DEFAULT_CHUNK_SIZE, FieldConfig
from ..models.field_mapping import FieldMapping, PipelineMappings
from ..models.processing_result import BatchStatsAccumulator, ChunkUpdate, ProcessingResult
from ..models.row_data import DataRow
from .row_processor import apply_uniqueness, fields_by_key, process_row
from .transforms import DEFAULT_TRANSFORMS, TransformRegistry
from .validation import ValidationRegistry

"""Chunked, cancelable processing engine.

Runs the row pipeline over a dataset in batches of ``batch_size`` rows and
yields control to the event loop once per batch boundary, so a single
blocking slice never exceeds one batch.

Each engine instance owns a generation counter. Starting a run bumps it and
captures the new value; the run compares its captured id with the current
counter before every row and every batch and simply stops (no further
updates, no exception) when they differ. Starting a newer run or calling
``cancel()`` is therefore enough to abandon an in-flight run at its next
boundary check.

State: Idle -> Running(run_id) -> Idle (completed) | Superseded | Cancelled
"""

__all__ = [
    "ChunkedProcessor",
    "ProgressCallback",
]

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ChunkUpdate], None]


class ChunkedProcessor:
    """Cooperative batch driver for the row pipeline."""

    def __init__(self, batch_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1 (got {batch_size})")
        self.batch_size = batch_size
        self._generation = 0
        self._active: int | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_running(self) -> bool:
        return self._active is not None and self._active == self._generation

    def cancel(self) -> None:
        """Invalidate any in-flight run; it stops at its next boundary check."""
        self._generation += 1
        logger.debug(f"processing cancelled (generation={self._generation})")

    def _is_current(self, run_id: int) -> bool:
        return run_id == self._generation

    def process(
        self,
        rows: Sequence[dict[str, Any]],
        fields: Sequence[FieldConfig],
        pipeline: PipelineMappings | Sequence[FieldMapping],
        transforms: TransformRegistry | None = DEFAULT_TRANSFORMS,
        validators: ValidationRegistry | None = None,
        batch_size: int | None = None,
    ) -> AsyncIterator[ChunkUpdate]:
        """Start a run and return its update stream.

        The generation is bumped here, at call time, so any older run is
        superseded even before the returned iterator is first awaited.
        """
        self._generation += 1
        run_id = self._generation
        mappings = pipeline.field_mappings if isinstance(pipeline, PipelineMappings) else tuple(pipeline)
        size = batch_size or self.batch_size
        if size < 1:
            raise ValueError(f"batch_size must be >= 1 (got {size})")
        return self._run(run_id, list(rows), tuple(fields), tuple(mappings), transforms, validators, size)

    async def _run(
        self,
        run_id: int,
        rows: list[dict[str, Any]],
        fields: tuple[FieldConfig, ...],
        mappings: tuple[FieldMapping, ...],
        transforms: TransformRegistry | None,
        validators: ValidationRegistry | None,
        batch_size: int,
    ) -> AsyncIterator[ChunkUpdate]:
        self._active = run_id
        by_key = fields_by_key(fields)
        total = len(rows)
        processed: list[DataRow] = []
        logger.debug(f"run {run_id} started: rows={total} batch_size={batch_size}")

        try:
            for start in range(0, total, batch_size):
                if not self._is_current(run_id):
                    logger.debug(f"run {run_id} superseded at row {start}")
                    return
                for idx in range(start, min(start + batch_size, total)):
                    if not self._is_current(run_id):
                        logger.debug(f"run {run_id} superseded at row {idx}")
                        return
                    processed.append(process_row(rows[idx], idx, by_key, mappings, transforms, validators))

                progress = len(processed) / total
                if len(processed) < total:
                    yield ChunkUpdate(rows=list(processed), progress=progress, run_id=run_id)
                # バッチ境界でイベントループへ制御を返す
                await asyncio.sleep(0)

            if not self._is_current(run_id):
                logger.debug(f"run {run_id} superseded before uniqueness pass")
                return
            apply_uniqueness(processed, fields)
            errors = [e for r in processed for e in r.errors]
            logger.debug(f"run {run_id} completed: rows={total} errors={len(errors)}")
            yield ChunkUpdate(rows=processed, progress=1.0, done=True, errors=errors, run_id=run_id)
        finally:
            if self._active == run_id:
                self._active = None

    async def run(
        self,
        rows: Sequence[dict[str, Any]],
        fields: Sequence[FieldConfig],
        pipeline: PipelineMappings | Sequence[FieldMapping],
        transforms: TransformRegistry | None = DEFAULT_TRANSFORMS,
        validators: ValidationRegistry | None = None,
        batch_size: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ProcessingResult | None:
        """Drive a run to completion.

        Returns the ProcessingResult, or ``None`` when the run was superseded
        or cancelled (partial output is discarded).
        """
        stream = self.process(rows, fields, pipeline, transforms, validators, batch_size)
        stats = BatchStatsAccumulator()
        started = time.perf_counter()
        batch_started = started
        final: ChunkUpdate | None = None
        async for update in stream:
            now = time.perf_counter()
            stats.add_batch_time(now - batch_started)
            if on_progress is not None:
                on_progress(update)
            if update.done:
                final = update
            batch_started = time.perf_counter()
        if final is None:
            return None
        return ProcessingResult.build(final.rows, time.perf_counter() - started, stats)
