from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

from .row_data import ValidationError

"""ErrorRecord model for the validation error log.

Each record is one ``ValidationError`` enriched with the file and sheet it
came from and a UTC timestamp. ``row`` is the 0-based import index; -1 marks
a file-level problem where no row applies.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: Imported file name
        sheet: Sheet slug the file was mapped onto
        row: 0-based import row index, -1 for file-level errors
        field: Target field key ("" for file-level errors)
        severity: error | warning
        message: Human-readable message
    """
    timestamp: str
    file: str
    sheet: str
    row: int
    field: str
    severity: str
    message: str

    @staticmethod
    def create(file: str, sheet: str, row: int, field: str, severity: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            sheet=sheet,
            row=row,
            field=field,
            severity=severity,
            message=message,
        )

    @staticmethod
    def from_validation_error(file: str, sheet: str, error: ValidationError) -> ErrorRecord:
        return ErrorRecord.create(
            file=file,
            sheet=sheet,
            row=error.row,
            field=error.field,
            severity=error.severity,
            message=error.message,
        )

    def to_json_line(self) -> str:
        # 追加キー阻止: dataclass -> dict して json.dumps
        return json.dumps(asdict(self), ensure_ascii=False)
