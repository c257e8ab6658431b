from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence

from ..models.config_models import FieldConfig
from ..models.field_mapping import (
    FieldMapping,
    MappingState,
    PipelineMappings,
    field_mappings_to_mapping_state,
    mapping_state_to_field_mappings,
)
from .transforms import DEFAULT_TRANSFORMS

"""Mapping state controller.

Owns the canonical ``PipelineMappings`` for the current sheet; the legacy
flat map is derived on demand and never stored. Invariants kept after every
mutation:

- at most one mapping per target field (last write wins)
- at most one mapping per source header

Every mutation calls ``on_change`` so the owner can drop processed rows and
schedule a new processing pass.
"""

__all__ = [
    "MappingStateController",
    "compact_field_mappings",
    "filter_seed_mappings",
    "validate_pipeline_config",
]

logger = logging.getLogger(__name__)


def compact_field_mappings(mappings: Iterable[FieldMapping]) -> list[FieldMapping]:
    """Drop target-less entries and keep the last mapping per target and per source.

    Order follows the first position each surviving target appeared at.
    """
    by_target: dict[str, tuple[int, FieldMapping]] = {}
    for pos, m in enumerate(mappings):
        if not m.target:
            continue
        by_target[m.target] = (pos, m)  # dict は初出位置を保持し値のみ上書き
    # source 重複: 入力順で後勝ち
    last_for_source: dict[str, int] = {}
    for pos, m in by_target.values():
        if pos > last_for_source.get(m.source, -1):
            last_for_source[m.source] = pos
    return [m for pos, m in by_target.values() if last_for_source[m.source] == pos]


def filter_seed_mappings(mappings: Iterable[FieldMapping], headers: Sequence[str]) -> list[FieldMapping]:
    """Restrict seeded mappings to headers present in the file, first mapping per target kept."""
    present = set(headers)
    seen_targets: set[str] = set()
    out: list[FieldMapping] = []
    for m in mappings:
        if m.source not in present or not m.target:
            continue
        if m.target in seen_targets:
            continue
        seen_targets.add(m.target)
        out.append(m)
    return out


def validate_pipeline_config(
    fields: Sequence[FieldConfig],
    pipeline: PipelineMappings,
    available_transforms: Iterable[str] | None = None,
) -> list[str]:
    """Return human-readable problems with a mapping set (empty when usable)."""
    available = set(available_transforms if available_transforms is not None else DEFAULT_TRANSFORMS)
    problems: list[str] = []
    mapped_targets: set[str] = set()
    for m in pipeline.field_mappings:
        if m.target:
            mapped_targets.add(m.target)
        if m.transform and m.transform not in available:
            problems.append(
                f"Transform '{m.transform}' referenced by mapping {m.source} -> {m.target} is not available"
            )
    for f in fields:
        if f.required and f.key not in mapped_targets:
            problems.append(f"Missing mapping for required field '{f.key}'")
    return problems


class MappingStateController:
    """Single owner of the header -> field assignment for one sheet."""

    def __init__(
        self,
        fields: Sequence[FieldConfig] = (),
        headers: Sequence[str] = (),
        pipeline: PipelineMappings | None = None,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._fields = {f.key: f for f in fields}
        self._headers = list(headers)
        self._pipeline = pipeline or PipelineMappings()
        self._on_change = on_change

    # --- read side ---------------------------------------------------------

    @property
    def pipeline(self) -> PipelineMappings:
        return self._pipeline

    @property
    def field_mappings(self) -> tuple[FieldMapping, ...]:
        return self._pipeline.field_mappings

    @property
    def headers(self) -> list[str]:
        return list(self._headers)

    @property
    def mapping_state(self) -> MappingState:
        """Legacy flat map derived from the canonical list."""
        return field_mappings_to_mapping_state(self._pipeline.field_mappings, self._headers)

    def target_for(self, source: str) -> str | None:
        m = self._pipeline.mapping_for_source(source)
        return m.target if m else None

    # --- mutations -----------------------------------------------------------

    def reset(
        self,
        fields: Sequence[FieldConfig] | None = None,
        headers: Sequence[str] | None = None,
        pipeline: PipelineMappings | None = None,
        notify: bool = False,
    ) -> None:
        """Replace schema/headers/mappings wholesale (new sheet or new file)."""
        if fields is not None:
            self._fields = {f.key: f for f in fields}
        if headers is not None:
            self._headers = list(headers)
        self._pipeline = pipeline or PipelineMappings()
        if notify:
            self._notify()

    def set_mapping(self, source: str, target: str | None) -> None:
        """Assign ``source`` to ``target`` (or unmap it with ``None``).

        Any other source currently pointing at ``target`` is unmapped first.
        The transform carried over is the one already chosen for ``target``,
        falling back to the field's ``default_transform``.
        """
        current = list(self._pipeline.field_mappings)
        position = next((i for i, m in enumerate(current) if m.source == source), None)

        new_mapping: FieldMapping | None = None
        if target:
            existing = self._pipeline.mapping_for_target(target)
            transform = existing.transform if existing and existing.transform else None
            if transform is None:
                field = self._fields.get(target)
                transform = field.default_transform if field else None
            new_mapping = FieldMapping(source=source, target=target, transform=transform)
            if existing is not None and existing.source != source:
                logger.debug(f"mapping: '{existing.source}' released target '{target}' to '{source}'")

        kept: list[FieldMapping] = []
        insert_at = None
        for i, m in enumerate(current):
            if i == position:
                insert_at = len(kept)
                continue
            if target and m.target == target:
                continue
            kept.append(m)
        if new_mapping is not None:
            if insert_at is None:
                kept.append(new_mapping)
            else:
                kept.insert(insert_at, new_mapping)

        self._pipeline = self._pipeline.with_mappings(kept)
        self._notify()

    def set_mapping_state(self, mapping: MappingState) -> None:
        """Replace everything from a legacy flat map."""
        self._pipeline = self._pipeline.with_mappings(
            compact_field_mappings(mapping_state_to_field_mappings(mapping))
        )
        self._notify()

    def set_field_mappings(self, mappings: Iterable[FieldMapping]) -> None:
        """Replace everything from a structured list (compacted, last occurrence wins)."""
        self._pipeline = self._pipeline.with_mappings(compact_field_mappings(mappings))
        self._notify()

    def set_transform(self, target: str, transform: str | None) -> None:
        """Change the mapping-level transform of the mapping for ``target``."""
        updated = [
            FieldMapping(m.source, m.target, transform, m.confidence) if m.target == target else m
            for m in self._pipeline.field_mappings
        ]
        self._pipeline = self._pipeline.with_mappings(updated)
        self._notify()

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change()
