from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Iterator
from typing import Any

from ..models.config_models import SheetConfig, WorkbookConfig
from ..models.field_mapping import FieldMapping, MappingState, PipelineMappings
from ..models.imported_data import ImportedData
from ..models.processing_result import ChunkUpdate, ProcessingResult
from ..models.row_data import DataRow, ValidationError, row_id_for
from .auto_mapper import auto_map_field_mappings
from .chunked import ChunkedProcessor, ProgressCallback
from .mapping_state import MappingStateController, filter_seed_mappings, validate_pipeline_config
from .mapping_storage import MappingStore
from .row_processor import process_imported_data, process_rows, revalidate_cell
from .transforms import DEFAULT_TRANSFORMS, TransformRegistry
from .validation import ValidationRegistry

"""Workbook session: one in-memory dataset for one configured sheet.

Holds the workbook config, the current sheet, the imported data, the mapping
controller and the processed rows. Mapping mutations drop the processed rows
and supersede any in-flight run. When ``auto_process`` is on and an event
loop is running, the reprocess is scheduled on the chunked engine as a task
(``wait_for_processing`` awaits it); without a loop the session only marks
``needs_processing``.

Mapping precedence on import:
1. the sheet's configured ``pipeline_mappings`` (seed), filtered to headers
   present in the file, first mapping per target kept
2. the last mapping saved for this sheet in the MappingStore
3. the fuzzy auto-mapper
"""

__all__ = [
    "UnknownSheetError",
    "WorkbookSession",
    "ROW_FILTERS",
]

logger = logging.getLogger(__name__)

ROW_FILTERS = ("all", "valid", "invalid")


class UnknownSheetError(Exception):
    pass


class WorkbookSession:
    """Host-facing facade over the onboarding pipeline."""

    def __init__(
        self,
        config: WorkbookConfig,
        *,
        store: MappingStore | None = None,
        transforms: TransformRegistry | None = None,
        validators: ValidationRegistry | None = None,
        auto_process: bool = True,
    ) -> None:
        self.config = config
        self.store = store
        self.transforms: TransformRegistry = dict(transforms or DEFAULT_TRANSFORMS)
        self.validators: ValidationRegistry = dict(validators or {})
        self.auto_process = auto_process
        self.engine = ChunkedProcessor(config.processing.chunk_size)
        self._pending: asyncio.Task[ProcessingResult | None] | None = None
        self.mappings = MappingStateController(on_change=self._on_mapping_change)

        self._sheet: SheetConfig | None = None
        self.imported: ImportedData | None = None
        self.rows: list[DataRow] = []
        self.last_result: ProcessingResult | None = None
        self.needs_processing = False

        if config.sheets:
            self.set_current_sheet(config.sheets[0].slug)

    # --- sheet / import ------------------------------------------------------

    @property
    def sheet(self) -> SheetConfig:
        if self._sheet is None:
            raise UnknownSheetError("no sheet selected")
        return self._sheet

    def set_current_sheet(self, slug: str) -> SheetConfig:
        """Switch sheets. Imported data, mappings and rows are cleared."""
        sheet = self.config.sheet_by_slug(slug)
        if sheet is None:
            raise UnknownSheetError(f"unknown sheet: {slug}")
        self._cancel_pending()
        self._sheet = sheet
        self.imported = None
        self.rows = []
        self.last_result = None
        self.needs_processing = False
        self.mappings.reset(fields=sheet.fields, headers=(), pipeline=sheet.pipeline_mappings)
        logger.debug(f"current sheet: {slug}")
        return sheet

    def import_data(self, data: ImportedData, *, process: bool | None = None) -> list[FieldMapping]:
        """Load a dataset and pick its initial mapping.

        Returns the effective field mappings. When ``process`` (default:
        ``auto_process``) is true, rows are processed by a chunked run scheduled
        on the running event loop, or synchronously when no loop is running.
        """
        sheet = self.sheet
        self._cancel_pending()
        self.imported = data

        source = "auto"
        mappings: list[FieldMapping] | None = None
        if sheet.pipeline_mappings is not None:
            mappings = filter_seed_mappings(sheet.pipeline_mappings.field_mappings, data.headers)
            source = "config"
        elif self.store is not None:
            stored = self.store.load(self.config.storage_namespace, sheet.slug, sheet.fields)
            if stored is not None:
                mappings = filter_seed_mappings(stored, data.headers)
                source = "stored"
        if mappings is None:
            mappings = auto_map_field_mappings(data.headers, sheet.fields, sheet.mapping_confidence_threshold)

        # options は設定値を引き継ぎ、通知なしで差し替える
        base = sheet.pipeline_mappings or PipelineMappings()
        self.mappings.reset(headers=data.headers, pipeline=base.with_mappings(mappings))
        logger.info(f"imported {data.row_count} rows ({len(data.headers)} columns), mapping source={source}")

        self.rows = []
        self.last_result = None
        self.needs_processing = True
        if self.auto_process if process is None else process:
            # イベントループ外では初回処理のみ同期で実行する
            if not self._schedule_processing():
                self.process_data()
        return list(self.mappings.field_mappings)

    def clear_imported_data(self) -> None:
        self._cancel_pending()
        self.imported = None
        self.rows = []
        self.last_result = None
        self.needs_processing = False
        self.mappings.reset(headers=(), pipeline=self.sheet.pipeline_mappings)

    def reset(self) -> None:
        """Back to the initial state (first sheet, default registries)."""
        self._cancel_pending()
        self.transforms = dict(DEFAULT_TRANSFORMS)
        self._sheet = None
        self.imported = None
        self.rows = []
        self.last_result = None
        self.needs_processing = False
        self.mappings.reset(fields=(), headers=())
        if self.config.sheets:
            self.set_current_sheet(self.config.sheets[0].slug)

    # --- mapping -------------------------------------------------------------

    @property
    def mapping_state(self) -> MappingState:
        return self.mappings.mapping_state

    @property
    def field_mappings(self) -> tuple[FieldMapping, ...]:
        return self.mappings.field_mappings

    def generate_auto_mapping(self) -> list[FieldMapping]:
        """Replace the current mapping with a fresh auto-mapper proposal."""
        if self.imported is None:
            return []
        sheet = self.sheet
        proposal = auto_map_field_mappings(self.imported.headers, sheet.fields, sheet.mapping_confidence_threshold)
        self.mappings.set_field_mappings(proposal)
        return proposal

    def set_mapping(self, source: str, target: str | None) -> None:
        self.mappings.set_mapping(source, target)

    def set_mapping_state(self, mapping: MappingState) -> None:
        self.mappings.set_mapping_state(mapping)

    def set_field_mappings(self, mappings: Iterable[FieldMapping]) -> None:
        self.mappings.set_field_mappings(mappings)

    def set_transform(self, target: str, transform: str | None) -> None:
        self.mappings.set_transform(target, transform)

    def mapping_problems(self) -> list[str]:
        return validate_pipeline_config(self.sheet.fields, self.mappings.pipeline, self.transforms)

    def save_mapping(self) -> bool:
        if self.store is None:
            return False
        self.store.save(self.config.storage_namespace, self.sheet.slug, self.field_mappings, self.sheet.fields)
        return True

    def load_saved_mapping(self) -> bool:
        """Apply the stored mapping for this sheet, if one matches the current schema."""
        if self.store is None:
            return False
        stored = self.store.load(self.config.storage_namespace, self.sheet.slug, self.sheet.fields)
        if stored is None:
            return False
        if self.imported is not None:
            stored = filter_seed_mappings(stored, self.imported.headers)
        self.mappings.set_field_mappings(stored)
        return True

    def clear_saved_mapping(self) -> None:
        if self.store is not None:
            self.store.clear(self.config.storage_namespace, self.sheet.slug)

    def _on_mapping_change(self) -> None:
        # 処理済みデータは無効化し、実行中の非同期処理は打ち切る
        self._cancel_pending()
        self.rows = []
        self.last_result = None
        if self.imported is None:
            return
        self.needs_processing = True
        if self.auto_process:
            # ループ外では needs_processing のまま (process_data / process_data_async 待ち)
            self._schedule_processing()

    def _schedule_processing(self) -> bool:
        """Start a chunked run as a task on the running loop; False when there is none."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        self._pending = loop.create_task(self.process_data_async())
        self._pending.add_done_callback(_log_task_failure)
        return True

    def _cancel_pending(self) -> None:
        self.engine.cancel()
        task = self._pending
        self._pending = None
        # 実行中のタスク自身は世代チェックで停止させる
        if task is not None and not task.done() and not _is_current_task(task):
            task.cancel()

    async def wait_for_processing(self) -> ProcessingResult | None:
        """Await the scheduled run (and any run that superseded it).

        Returns the latest result, or None when nothing produced one.
        """
        while self._pending is not None:
            task = self._pending
            await asyncio.wait({task})
            if task is self._pending:
                self._pending = None
                if not task.cancelled():
                    return task.result()
        return self.last_result

    # --- registries ----------------------------------------------------------

    def set_transform_registry(self, registry: TransformRegistry) -> None:
        self.transforms = dict(registry)
        self._on_mapping_change()

    def set_validation_registry(self, registry: ValidationRegistry) -> None:
        self.validators = dict(registry)
        self._on_mapping_change()

    # --- processing ----------------------------------------------------------

    def process_data(self) -> list[DataRow]:
        """Synchronous full pass over the imported rows."""
        if self.imported is None:
            return []
        self._cancel_pending()
        self.rows = process_rows(
            self.imported.rows,
            self.sheet.fields,
            self.mappings.field_mappings,
            self.transforms,
            self.validators,
        )
        self.needs_processing = False
        return self.rows

    def process_legacy(self) -> list[DataRow]:
        """Process through the flat map only (no transforms, no uniqueness pass)."""
        if self.imported is None:
            return []
        self.rows = process_imported_data(self.imported.rows, self.sheet.fields, self.mapping_state, self.validators)
        self.needs_processing = False
        return self.rows

    async def process_data_async(
        self,
        on_progress: ProgressCallback | None = None,
        batch_size: int | None = None,
    ) -> ProcessingResult | None:
        """Chunked run; returns None when superseded (the session keeps its rows then)."""
        if self.imported is None:
            return None

        def _publish(update: ChunkUpdate) -> None:
            if update.run_id != self.engine.generation:
                return
            self.rows = update.rows
            if on_progress is not None:
                on_progress(update)

        result = await self.engine.run(
            self.imported.rows,
            self.sheet.fields,
            self.mappings.pipeline,
            self.transforms,
            self.validators,
            batch_size,
            _publish,
        )
        if result is not None:
            self.rows = result.rows
            self.last_result = result
            self.needs_processing = False
        return result

    def cancel_processing(self) -> None:
        self._cancel_pending()

    @property
    def is_processing(self) -> bool:
        pending = self._pending is not None and not self._pending.done()
        return pending or self.engine.is_running

    # --- row review ----------------------------------------------------------

    def _find(self, row_id: str) -> DataRow | None:
        return next((r for r in self.rows if r.id == row_id), None)

    def update_row_data(self, row_id: str, field_key: str, value: Any) -> DataRow | None:
        """Single-cell edit; only that field's errors are recomputed."""
        row = self._find(row_id)
        if row is None:
            return None
        field = self.sheet.field_by_key(field_key)
        if field is None:
            row.data[field_key] = value
            return row
        return revalidate_cell(row, field, value, self.validators)

    def delete_row(self, row_id: str) -> bool:
        before = len(self.rows)
        self.rows = [r for r in self.rows if r.id != row_id]
        return len(self.rows) < before

    def add_row(self) -> DataRow:
        """Append an empty, not-yet-valid row."""
        index = max((r.index for r in self.rows), default=-1) + 1
        if self.imported is not None:
            index = max(index, self.imported.row_count)
        row = DataRow(id=row_id_for(index), index=index, is_valid=False)
        self.rows.append(row)
        return row

    def filtered_rows(self, which: str = "all") -> list[DataRow]:
        if which not in ROW_FILTERS:
            raise ValueError(f"unknown row filter: {which}")
        if which == "valid":
            return [r for r in self.rows if r.is_valid]
        if which == "invalid":
            return [r for r in self.rows if not r.is_valid]
        return list(self.rows)

    def first_error(self, row_id: str, field_key: str) -> ValidationError | None:
        row = self._find(row_id)
        if row is None:
            return None
        errors = row.errors_for(field_key)
        return errors[0] if errors else None

    def row_counts(self) -> dict[str, int]:
        valid = sum(1 for r in self.rows if r.is_valid)
        return {"all": len(self.rows), "valid": valid, "invalid": len(self.rows) - valid}

    @property
    def validation_errors(self) -> list[ValidationError]:
        return [e for r in self.rows for e in r.errors]

    def iter_submit_chunks(self, chunk_size: int | None = None) -> Iterator[list[dict[str, Any]]]:
        """Yield the processed row data in submission-sized slices."""
        size = chunk_size or self.config.processing.chunk_size
        if size < 1:
            raise ValueError(f"chunk_size must be >= 1 (got {size})")
        data = [dict(r.data) for r in self.rows]
        if not self.config.processing.submit_in_chunks and chunk_size is None:
            if data:
                yield data
            return
        for start in range(0, len(data), size):
            yield data[start : start + size]


def _log_task_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error(f"background processing failed: {task.exception()}")


def _is_current_task(task: asyncio.Task) -> bool:
    try:
        return task is asyncio.current_task()
    except RuntimeError:
        # ループ外
        return False
