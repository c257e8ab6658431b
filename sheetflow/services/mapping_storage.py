from __future__ import annotations

import json
import logging
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from ..models.config_models import FieldConfig
from ..models.field_mapping import FieldMapping

"""Last-used mapping persistence.

Stores field mappings per (namespace, sheet slug) in one JSON file. Each
entry carries a schema signature (sorted field keys); a stored mapping is only
returned while the sheet's field list still produces the same signature.

Persistence is opportunistic: read/write failures are logged and ignored,
``load`` returns ``None`` for anything missing, stale or unreadable.
"""

__all__ = [
    "STORAGE_PREFIX",
    "STORAGE_VERSION",
    "MappingStore",
    "schema_signature",
    "storage_key",
]

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "sheetflow:mapping:"
STORAGE_VERSION = 1


def storage_key(namespace: str, sheet_slug: str) -> str:
    return f"{STORAGE_PREFIX}{namespace or 'default'}:{sheet_slug}"


def schema_signature(fields: Sequence[FieldConfig]) -> str:
    return json.dumps(sorted(f.key for f in fields))


class MappingStore:
    """JSON-file backed mapping store."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def _read_all(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.debug(f"mapping store unreadable ({self.path}): {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as e:
            logger.debug(f"mapping store not writable ({self.path}): {e}")

    def save(
        self,
        namespace: str,
        sheet_slug: str,
        mappings: Sequence[FieldMapping],
        fields: Sequence[FieldConfig],
    ) -> None:
        data = self._read_all()
        data[storage_key(namespace, sheet_slug)] = {
            "version": STORAGE_VERSION,
            "schema": schema_signature(fields),
            "mappings": [m.to_dict() for m in mappings],
            "saved_at": int(time.time() * 1000),
        }
        self._write_all(data)

    def load(
        self,
        namespace: str,
        sheet_slug: str,
        fields: Sequence[FieldConfig],
    ) -> list[FieldMapping] | None:
        payload = self._read_all().get(storage_key(namespace, sheet_slug))
        if not isinstance(payload, dict):
            return None
        if not payload.get("mappings") or not payload.get("schema"):
            return None
        if payload["schema"] != schema_signature(fields):
            logger.debug(f"stored mapping for '{sheet_slug}' ignored: schema changed")
            return None
        try:
            return [FieldMapping.from_dict(m) for m in payload["mappings"]]
        except (KeyError, TypeError, AttributeError) as e:
            logger.debug(f"stored mapping for '{sheet_slug}' ignored: {e}")
            return None

    def clear(self, namespace: str, sheet_slug: str) -> None:
        data = self._read_all()
        if data.pop(storage_key(namespace, sheet_slug), None) is not None:
            self._write_all(data)
