from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

import pytest

from sheetflow.models.config_models import FieldConfig, ProcessingOptions, SheetConfig, WorkbookConfig
from sheetflow.models.field_mapping import FieldMapping, PipelineMappings
from sheetflow.models.imported_data import ImportedData
from sheetflow.services.mapping_storage import MappingStore
from sheetflow.services.transforms import DEFAULT_TRANSFORMS
from sheetflow.services.workbook import UnknownSheetError, WorkbookSession

HEADERS = ["Full Name", "Email Address", "Age"]


def _data(*rows: tuple[str, str, str]) -> ImportedData:
    return ImportedData(headers=list(HEADERS), rows=[dict(zip(HEADERS, r, strict=True)) for r in rows])


ROWS = _data(
    ("Alice", "alice@example.com", "30"),
    ("Bob", "bob@example.com", "15"),
    ("Carol", "ALICE@example.com", "41"),
)


def test_import_auto_maps_and_processes(workbook):
    session = WorkbookSession(workbook)
    mappings = session.import_data(ROWS)
    assert [(m.source, m.target) for m in mappings] == [
        ("Full Name", "name"),
        ("Email Address", "email"),
        ("Age", "age"),
    ]
    assert session.row_counts() == {"all": 3, "valid": 0, "invalid": 3}
    assert session.first_error("row-1", "age").message == "Must be 18 or older"
    assert session.first_error("row-0", "email").message.startswith("Email Address must be unique")
    assert session.first_error("row-0", "name") is None
    assert len(session.validation_errors) == 3


def test_unknown_sheet(workbook):
    session = WorkbookSession(workbook)
    with pytest.raises(UnknownSheetError):
        session.set_current_sheet("nope")


def test_switching_sheet_clears_data(workbook, contact_sheet):
    other = SheetConfig(name="Other", slug="other", fields=(FieldConfig(key="x", label="X"),))
    session = WorkbookSession(replace(workbook, sheets=(contact_sheet, other)))
    session.import_data(ROWS)
    session.set_current_sheet("other")
    assert session.imported is None
    assert session.rows == []
    assert session.field_mappings == ()


def test_seed_mappings_win_and_are_filtered(workbook, contact_sheet):
    seed = PipelineMappings(
        field_mappings=(
            FieldMapping("Missing", "name"),
            FieldMapping("Full Name", "name", transform="toUpperCase"),
            FieldMapping("Age", "name"),
            FieldMapping("Email Address", "email"),
        )
    )
    sheet = replace(contact_sheet, pipeline_mappings=seed)
    session = WorkbookSession(replace(workbook, sheets=(sheet,)))
    mappings = session.import_data(ROWS)
    assert [(m.source, m.target) for m in mappings] == [("Full Name", "name"), ("Email Address", "email")]
    assert session.rows[0].data["name"] == "ALICE"
    assert "age" not in session.rows[0].data


def test_stored_mapping_used_before_auto_map(workbook, tmp_path: Path, contact_fields):
    store = MappingStore(tmp_path / "m.json")
    store.save("acme", "contacts", [FieldMapping("Age", "name")], contact_fields)
    session = WorkbookSession(workbook, store=store)
    mappings = session.import_data(ROWS)
    assert [(m.source, m.target) for m in mappings] == [("Age", "name")]


def test_save_and_load_mapping(workbook, tmp_path: Path):
    store = MappingStore(tmp_path / "m.json")
    session = WorkbookSession(workbook, store=store)
    session.import_data(ROWS)
    session.set_mapping("Age", None)
    assert session.save_mapping() is True

    fresh = WorkbookSession(workbook, store=store)
    fresh.import_data(ROWS)
    assert fresh.mapping_state == {"Full Name": "name", "Email Address": "email", "Age": None}

    fresh.generate_auto_mapping()
    assert fresh.mapping_state["Age"] == "age"
    assert fresh.load_saved_mapping() is True
    assert fresh.mapping_state["Age"] is None

    fresh.clear_saved_mapping()
    assert fresh.load_saved_mapping() is False
    assert WorkbookSession(workbook).save_mapping() is False


def test_mapping_mutation_reprocesses(workbook):
    async def scenario():
        session = WorkbookSession(workbook)
        session.import_data(ROWS)
        await session.wait_for_processing()
        with patch.object(session.engine, "run", wraps=session.engine.run) as run:
            session.set_mapping("Full Name", "email")
            assert session.is_processing is True
            result = await session.wait_for_processing()
        assert run.call_count == 1
        return session, result

    session, result = asyncio.run(scenario())
    assert session.mapping_state == {"Full Name": "email", "Email Address": None, "Age": "age"}
    assert result is session.last_result and session.rows is result.rows
    assert session.needs_processing is False
    # 名前列をメールとして検証 -> 形式エラー, 氏名は未マッピング
    messages = {e.message for e in session.validation_errors if e.row == 0}
    assert "Full Name is required but not mapped" in messages
    assert "Email Address must be a valid email address" in messages


def test_mapping_mutation_outside_loop_only_marks_dirty(workbook):
    session = WorkbookSession(workbook)
    session.import_data(ROWS)
    assert len(session.rows) == 3
    with patch.object(session.engine, "run") as run:
        session.set_mapping("Age", None)
    run.assert_not_called()
    assert session.rows == [] and session.needs_processing is True
    assert session.is_processing is False
    session.process_data()
    assert "age" not in session.rows[0].data and session.needs_processing is False


def test_rapid_mapping_changes_keep_latest(workbook):
    async def scenario():
        session = WorkbookSession(replace(workbook, processing=ProcessingOptions(chunk_size=1)))
        session.import_data(ROWS)
        first = session._pending
        session.set_mapping("Age", None)
        second = session._pending
        session.set_mapping("Email Address", None)
        result = await session.wait_for_processing()
        return session, first, second, result

    session, first, second, result = asyncio.run(scenario())
    assert first.cancelled() and second.cancelled()
    assert result.total_rows == 3
    assert all("age" not in r.data and "email" not in r.data for r in session.rows)
    assert session.is_processing is False


def test_auto_process_off_marks_dirty(workbook):
    session = WorkbookSession(workbook, auto_process=False)
    session.import_data(ROWS)
    assert session.rows == [] and session.needs_processing is True
    session.process_data()
    assert len(session.rows) == 3 and session.needs_processing is False
    session.set_mapping("Age", None)
    assert session.rows == [] and session.needs_processing is True


def test_transform_registry_change_reprocesses(workbook):
    async def scenario():
        session = WorkbookSession(workbook)
        session.import_data(_data(("alice", "a@example.com", "30")))
        await session.wait_for_processing()
        session.set_transform_registry({**DEFAULT_TRANSFORMS, "trim": lambda v: str(v).strip().title()})
        await session.wait_for_processing()
        return session

    assert asyncio.run(scenario()).rows[0].data["name"] == "Alice"


def test_update_delete_add_rows(workbook):
    session = WorkbookSession(workbook)
    session.import_data(ROWS)

    row = session.update_row_data("row-1", "age", "19")
    assert row.data["age"] == 19
    assert row.is_valid is True
    assert session.update_row_data("row-99", "age", "1") is None

    assert session.delete_row("row-0") is True
    assert session.delete_row("row-0") is False
    # 重複相手の削除後もエラーは残る (再処理まで)
    assert session.first_error("row-2", "email") is not None

    new = session.add_row()
    assert new.id == "row-3" and new.is_valid is False and new.data == {}
    assert [r.id for r in session.filtered_rows("invalid")] == ["row-2", "row-3"]
    assert [r.id for r in session.filtered_rows("valid")] == ["row-1"]
    with pytest.raises(ValueError):
        session.filtered_rows("some")


def test_process_data_async_publishes_progress(workbook):
    session = WorkbookSession(replace(workbook, processing=ProcessingOptions(chunk_size=1)), auto_process=False)
    session.import_data(ROWS)
    seen = []
    result = asyncio.run(session.process_data_async(lambda u: seen.append(len(u.rows))))
    assert seen == [1, 2, 3]
    assert result.total_rows == 3
    assert session.last_result is result
    assert session.rows is result.rows


def test_async_run_superseded_by_mapping_change(workbook):
    session = WorkbookSession(replace(workbook, processing=ProcessingOptions(chunk_size=1)), auto_process=False)
    session.import_data(ROWS)

    def mutate(update):
        if len(update.rows) == 1:
            session.set_mapping("Age", None)

    result = asyncio.run(session.process_data_async(mutate))
    assert result is None
    assert session.rows == []
    assert session.needs_processing is True


def test_cancel_processing(workbook):
    session = WorkbookSession(replace(workbook, processing=ProcessingOptions(chunk_size=1)), auto_process=False)
    session.import_data(ROWS)

    def cancel(update):
        session.cancel_processing()

    assert asyncio.run(session.process_data_async(cancel)) is None
    assert session.is_processing is False


def test_legacy_processing_path(workbook):
    session = WorkbookSession(workbook, auto_process=False)
    session.import_data(_data(("  Al  ", "A@Example.com", "30"), ("B", "A@Example.com", "30")))
    rows = session.process_legacy()
    assert rows[0].data["email"] == "A@Example.com"
    assert all(r.is_valid for r in rows)


def test_iter_submit_chunks(workbook):
    session = WorkbookSession(workbook)
    session.import_data(ROWS)
    assert [len(c) for c in session.iter_submit_chunks()] == [3]
    assert [len(c) for c in session.iter_submit_chunks(2)] == [2, 1]
    chunked = WorkbookSession(replace(workbook, processing=ProcessingOptions(chunk_size=2, submit_in_chunks=True)))
    chunked.import_data(ROWS)
    assert [len(c) for c in chunked.iter_submit_chunks()] == [2, 1]


def test_mapping_problems(workbook):
    session = WorkbookSession(workbook)
    session.import_data(ROWS)
    assert session.mapping_problems() == []
    session.set_mapping("Email Address", None)
    assert session.mapping_problems() == ["Missing mapping for required field 'email'"]


def test_clear_and_reset(workbook):
    session = WorkbookSession(workbook)
    session.import_data(ROWS)
    session.clear_imported_data()
    assert session.imported is None and session.rows == [] and session.field_mappings == ()
    session.import_data(ROWS)
    session.set_transform_registry({})
    session.reset()
    assert session.imported is None
    assert session.transforms == DEFAULT_TRANSFORMS
    assert session.sheet.slug == "contacts"


def test_empty_workbook_has_no_sheet():
    session = WorkbookSession(WorkbookConfig(name="empty"))
    with pytest.raises(UnknownSheetError):
        session.import_data(ROWS)
