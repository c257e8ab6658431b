from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .field_mapping import PipelineMappings

"""Workbook configuration dataclasses.

These describe the target schema a host application supplies: one workbook
with one or more sheets, each sheet holding its field list. The loader in
sheetflow/config/loader.py builds them from YAML; hosts embedding the core can
also construct them directly.
"""

__all__ = [
    "FIELD_TYPES",
    "RULE_TYPES",
    "ValidationRule",
    "FieldConfig",
    "SheetConfig",
    "ProcessingOptions",
    "WorkbookConfig",
    "DEFAULT_CONFIDENCE_THRESHOLD",
    "DEFAULT_CHUNK_SIZE",
]

FIELD_TYPES = ("string", "number", "email", "date", "boolean")
RULE_TYPES = ("regex", "min", "max", "custom")

DEFAULT_CONFIDENCE_THRESHOLD = 0.7
DEFAULT_CHUNK_SIZE = 2000


@dataclass(frozen=True)
class ValidationRule:
    """Declarative rule attached to a field.

    For ``custom`` rules ``name`` is the lookup key into the validation
    registry and ``args`` is passed through to the validator untouched.
    """
    type: str  # regex | min | max | custom
    message: str
    value: Any = None  # pattern (regex) or threshold (min/max)
    name: str | None = None
    args: Any = None


@dataclass(frozen=True)
class FieldConfig:
    """One target field of a sheet schema."""
    key: str  # シート内で一意
    label: str
    type: str = "string"
    required: bool = False
    unique: bool = False
    validations: tuple[ValidationRule, ...] = ()
    description: str | None = None
    default_transform: str | None = None  # mapping 側で transform 未指定時に適用


@dataclass(frozen=True)
class SheetConfig:
    """Named table schema within a workbook."""
    name: str
    slug: str
    fields: tuple[FieldConfig, ...]
    mapping_confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    pipeline_mappings: PipelineMappings | None = None  # seed: auto-map を省略

    def field_by_key(self, key: str) -> FieldConfig | None:
        for f in self.fields:
            if f.key == key:
                return f
        return None


@dataclass(frozen=True)
class ProcessingOptions:
    """Controls how client-side processing runs."""
    chunk_size: int = DEFAULT_CHUNK_SIZE  # rows per batch
    submit_in_chunks: bool = False


@dataclass(frozen=True)
class WorkbookConfig:
    """Root configuration object for an onboarding session."""
    name: str
    sheets: tuple[SheetConfig, ...] = ()
    namespace: str | None = None
    processing: ProcessingOptions = field(default_factory=ProcessingOptions)
    mapping_store_path: str | None = None

    @property
    def storage_namespace(self) -> str:
        return self.namespace or self.name or "default"

    def sheet_by_slug(self, slug: str) -> SheetConfig | None:
        for s in self.sheets:
            if s.slug == slug:
                return s
        return None
