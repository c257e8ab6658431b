from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CONFIDENCE_THRESHOLD,
    FieldConfig,
    ProcessingOptions,
    SheetConfig,
    ValidationRule,
    WorkbookConfig,
)
from ..models.field_mapping import FieldMapping, PipelineMappings, PipelineOptions

"""Workbook config loader.

Responsibilities:
- Load the YAML workbook file (default config/workbook.yml)
- Validate it against workbook_schema.json
- Apply defaults (threshold 0.7, chunk_size 2000, namespace = name)
- Apply environment overrides (SHEETFLOW_CHUNK_SIZE, SHEETFLOW_MAPPING_STORE)
- Build the frozen config dataclasses
"""

SCHEMA_PATH = Path(__file__).parent / "workbook_schema.json"

ENV_CHUNK_SIZE = "SHEETFLOW_CHUNK_SIZE"
ENV_MAPPING_STORE = "SHEETFLOW_MAPPING_STORE"


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: If the schema file is missing or not valid JSON, or if
            the config data fails schema validation.
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _build_rule(raw: dict[str, Any]) -> ValidationRule:
    return ValidationRule(
        type=raw["type"],
        message=raw["message"],
        value=raw.get("value"),
        name=raw.get("name"),
        args=raw.get("args"),
    )


def _build_field(raw: dict[str, Any]) -> FieldConfig:
    return FieldConfig(
        key=raw["key"],
        label=raw["label"],
        type=raw.get("type", "string"),
        required=bool(raw.get("required", False)),
        unique=bool(raw.get("unique", False)),
        validations=tuple(_build_rule(r) for r in raw.get("validations", [])),
        description=raw.get("description"),
        default_transform=raw.get("default_transform"),
    )


def build_pipeline_mappings(raw: dict[str, Any] | None) -> PipelineMappings | None:
    if raw is None:
        return None
    opts_raw = raw.get("options")
    options = PipelineOptions(**opts_raw) if opts_raw else None
    mappings = tuple(FieldMapping.from_dict(m) for m in raw.get("field_mappings", []))
    return PipelineMappings(field_mappings=mappings, options=options)


def _build_sheet(raw: dict[str, Any]) -> SheetConfig:
    fields = tuple(_build_field(f) for f in raw["fields"])
    keys = [f.key for f in fields]
    dupes = sorted({k for k in keys if keys.count(k) > 1})
    if dupes:  # key はシート内で一意
        raise ConfigError(f"sheet '{raw['slug']}' has duplicate field keys: {dupes}")
    return SheetConfig(
        name=raw["name"],
        slug=raw["slug"],
        fields=fields,
        mapping_confidence_threshold=raw.get("mapping_confidence_threshold", DEFAULT_CONFIDENCE_THRESHOLD),
        pipeline_mappings=build_pipeline_mappings(raw.get("pipeline_mappings")),
    )


def _env_chunk_size(default: int) -> int:
    raw = os.getenv(ENV_CHUNK_SIZE)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{ENV_CHUNK_SIZE} must be an integer (got {raw!r})") from e
    if value < 1:
        raise ConfigError(f"{ENV_CHUNK_SIZE} must be >= 1 (got {value})")
    return value


def build_config(data: dict[str, Any]) -> WorkbookConfig:
    """Validate a parsed config mapping and build the WorkbookConfig."""
    _validate_config_schema(data)

    proc_raw = data.get("processing", {})
    processing = ProcessingOptions(
        chunk_size=_env_chunk_size(proc_raw.get("chunk_size", DEFAULT_CHUNK_SIZE)),
        submit_in_chunks=proc_raw.get("submit_in_chunks", False),
    )
    sheets = tuple(_build_sheet(s) for s in data["sheets"])
    slugs = [s.slug for s in sheets]
    if len(set(slugs)) != len(slugs):
        raise ConfigError(f"duplicate sheet slugs: {slugs}")
    return WorkbookConfig(
        name=data["name"],
        sheets=sheets,
        namespace=data.get("namespace") or data["name"],
        processing=processing,
        mapping_store_path=os.getenv(ENV_MAPPING_STORE) or data.get("mapping_store_path"),
    )


def load_config(path: Path) -> WorkbookConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")
    return build_config(data)
