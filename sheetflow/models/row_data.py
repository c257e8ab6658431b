from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

"""Processed row and validation error models.

A ``DataRow`` is produced by the row processor for each imported row. Unlike
most models in this package it is mutable: the uniqueness pass appends errors
after the per-row pass, and single-cell edits patch ``data`` / ``errors`` in
place.
"""

__all__ = [
    "SEVERITY_ERROR",
    "SEVERITY_WARNING",
    "ValidationError",
    "DataRow",
    "row_id_for",
]

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"


def row_id_for(index: int) -> str:
    return f"row-{index}"


@dataclass(frozen=True)
class ValidationError:
    """One per-cell finding.

    ``row`` is the 0-based index of the row in the imported file, not its
    position in a filtered or edited list.
    """
    row: int
    field: str
    message: str
    severity: str = SEVERITY_ERROR  # error | warning

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DataRow:
    """Processed row (stable id, coerced data, errors)."""
    id: str
    index: int  # original row index
    data: dict[str, Any] = field(default_factory=dict)
    errors: list[ValidationError] = field(default_factory=list)
    is_valid: bool = True

    def recompute_validity(self) -> bool:
        self.is_valid = not any(e.severity == SEVERITY_ERROR for e in self.errors)
        return self.is_valid

    def errors_for(self, field_key: str) -> list[ValidationError]:
        return [e for e in self.errors if e.field == field_key]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "data": dict(self.data),
            "errors": [e.to_dict() for e in self.errors],
            "is_valid": self.is_valid,
        }
