from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from ..models.config_models import FieldConfig
from ..models.field_mapping import FieldMapping, MappingState, mapping_state_to_field_mappings
from ..models.row_data import SEVERITY_ERROR, DataRow, ValidationError, row_id_for
from .coercion import coerce, is_empty, stringify
from .transforms import DEFAULT_TRANSFORMS, TransformRegistry, apply_named_transform
from .validation import ValidationRegistry, validate_field

"""Row processor: mapping -> transform -> coercion -> validation per row.

``process_row`` handles one imported row. ``apply_uniqueness`` is the
separate full-dataset pass for ``unique`` fields and must only run once every
row has been processed. ``revalidate_cell`` patches a single edited cell.
"""

__all__ = [
    "fields_by_key",
    "process_row",
    "process_rows",
    "apply_uniqueness",
    "revalidate_cell",
    "process_imported_data",
]


def fields_by_key(fields: Iterable[FieldConfig]) -> dict[str, FieldConfig]:
    return {f.key: f for f in fields}


def process_row(
    raw: dict[str, Any],
    row_index: int,
    by_key: dict[str, FieldConfig],
    field_mappings: Sequence[FieldMapping],
    transforms: TransformRegistry | None = None,
    validators: ValidationRegistry | None = None,
    *,
    apply_transforms: bool = True,
) -> DataRow:
    """Build the DataRow for one imported row.

    Mappings whose source header is absent from ``raw`` are skipped; required
    fields that end up unpopulated get a "required but not mapped" error.
    Custom validators see the values processed so far in this row.
    """
    processed: dict[str, Any] = {}
    errors: list[ValidationError] = []

    for m in field_mappings:
        if m.source not in raw:
            continue
        field = by_key.get(m.target)
        if field is None:
            continue
        value = raw[m.source]
        if apply_transforms:
            value = apply_named_transform(value, m.transform or field.default_transform, transforms)
        coerced = coerce(value, field.type)
        processed[field.key] = coerced
        errors.extend(validate_field(coerced, field, row_index, processed, validators))

    for field in by_key.values():
        if field.required and field.key not in processed:
            errors.append(
                ValidationError(
                    row=row_index,
                    field=field.key,
                    message=f"{field.label} is required but not mapped",
                    severity=SEVERITY_ERROR,
                )
            )

    row = DataRow(id=row_id_for(row_index), index=row_index, data=processed, errors=errors)
    row.recompute_validity()
    return row


def apply_uniqueness(rows: list[DataRow], fields: Iterable[FieldConfig]) -> None:
    """Flag duplicate values of ``unique`` fields across the whole row set.

    The first occurrence and every repeat get an error; empty values are
    exempt. Mutates ``rows`` in place.
    """
    for field in fields:
        if not field.unique:
            continue
        first_seen: dict[str, int] = {}
        for pos, row in enumerate(rows):
            value = row.data.get(field.key)
            if is_empty(value):
                continue
            key = stringify(value)
            if key not in first_seen:
                first_seen[key] = pos
                continue
            for target in (rows[first_seen[key]], row):
                target.errors.append(
                    ValidationError(
                        row=target.index,
                        field=field.key,
                        message=f"{field.label} must be unique. Duplicate value '{key}' found",
                        severity=SEVERITY_ERROR,
                    )
                )
                target.is_valid = False


def process_rows(
    rows: Sequence[dict[str, Any]],
    fields: Sequence[FieldConfig],
    field_mappings: Sequence[FieldMapping],
    transforms: TransformRegistry | None = DEFAULT_TRANSFORMS,
    validators: ValidationRegistry | None = None,
) -> list[DataRow]:
    """Single synchronous pass over all rows (per-row pipeline + uniqueness)."""
    by_key = fields_by_key(fields)
    out = [
        process_row(raw, idx, by_key, field_mappings, transforms, validators)
        for idx, raw in enumerate(rows)
    ]
    apply_uniqueness(out, fields)
    return out


def revalidate_cell(
    row: DataRow,
    field: FieldConfig,
    raw_value: Any,
    validators: ValidationRegistry | None = None,
) -> DataRow:
    """Coerce and validate one edited cell, patching ``row`` in place.

    Only ``field``'s errors are replaced; the uniqueness pass is not re-run,
    so a former duplicate partner keeps its error until the next full pass.
    """
    coerced = coerce(raw_value, field.type)
    row.data[field.key] = coerced
    # 全体処理と同じく、編集中の項目自身の値も含めて渡す
    context = dict(row.data)
    kept = [e for e in row.errors if e.field != field.key]
    kept.extend(validate_field(coerced, field, row.index, context, validators))
    row.errors = kept
    row.recompute_validity()
    return row


def process_imported_data(
    rows: Sequence[dict[str, Any]],
    fields: Sequence[FieldConfig],
    mapping: MappingState,
    validators: ValidationRegistry | None = None,
) -> list[DataRow]:
    """Legacy path for hosts holding only a flat mapping: coerce + validate, no transforms."""
    by_key = fields_by_key(fields)
    field_mappings = mapping_state_to_field_mappings(mapping)
    return [
        process_row(raw, idx, by_key, field_mappings, None, validators, apply_transforms=False)
        for idx, raw in enumerate(rows)
    ]
