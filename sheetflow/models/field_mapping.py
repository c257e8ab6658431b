from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

"""Field mapping models.

``PipelineMappings`` is the canonical mapping representation. The legacy flat
map (header -> field key or None) is always derived from it with
``field_mappings_to_mapping_state`` and converted back with
``mapping_state_to_field_mappings``; the assignment itself survives the round
trip, per-mapping transform and confidence do not.
"""

__all__ = [
    "FieldMapping",
    "PipelineOptions",
    "PipelineMappings",
    "MappingState",
    "mapping_state_to_field_mappings",
    "field_mappings_to_mapping_state",
]

MappingState = dict[str, "str | None"]


@dataclass(frozen=True)
class FieldMapping:
    """Assignment of one imported header to one target field key."""
    source: str  # imported header
    target: str  # field key
    transform: str | None = None  # transform registry name
    confidence: float | None = None  # auto-mapper score (0..1)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"source": self.source, "target": self.target}
        if self.transform is not None:
            out["transform"] = self.transform
        if self.confidence is not None:
            out["confidence"] = self.confidence
        return out

    @staticmethod
    def from_dict(data: dict[str, Any]) -> FieldMapping:
        return FieldMapping(
            source=str(data["source"]),
            target=str(data.get("target") or ""),
            transform=data.get("transform"),
            confidence=data.get("confidence"),
        )


@dataclass(frozen=True)
class PipelineOptions:
    delimiter: str | None = None
    skip_header_row: bool | None = None
    detect_types: bool | None = None
    validate_data: bool | None = None


@dataclass(frozen=True)
class PipelineMappings:
    """Ordered field mappings plus optional parsing/validation options."""
    field_mappings: tuple[FieldMapping, ...] = ()
    options: PipelineOptions | None = None

    def with_mappings(self, mappings: list[FieldMapping] | tuple[FieldMapping, ...]) -> PipelineMappings:
        return replace(self, field_mappings=tuple(mappings))

    def mapping_for_target(self, target: str) -> FieldMapping | None:
        for m in self.field_mappings:
            if m.target == target:
                return m
        return None

    def mapping_for_source(self, source: str) -> FieldMapping | None:
        for m in self.field_mappings:
            if m.source == source:
                return m
        return None


def mapping_state_to_field_mappings(mapping: MappingState) -> list[FieldMapping]:
    """Flat map -> structured list (unmapped headers are dropped)."""
    return [
        FieldMapping(source=source, target=target)
        for source, target in mapping.items()
        if target
    ]


def field_mappings_to_mapping_state(
    field_mappings: list[FieldMapping] | tuple[FieldMapping, ...],
    headers: list[str] | None = None,
) -> MappingState:
    """Structured list -> flat map.

    When ``headers`` is given every header gets an entry, ``None`` for the
    ones without a mapping, so the flat map keeps the import column order.
    """
    out: MappingState = {}
    if headers:
        for h in headers:
            out[h] = None
    for m in field_mappings:
        out[m.source] = m.target or None
    return out
