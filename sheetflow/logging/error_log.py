from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from ..models.error_record import ErrorRecord
from ..models.row_data import ValidationError

"""Validation error log (JSON Lines).

- One fixed-schema record per line (see ErrorRecord)
- One file per run: ``<logs_dir>/errors-YYYYMMDD-HHMMSS.log`` (UTC), created
  lazily on the first flush that has records
- Records are buffered and appended on ``flush``
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """In-memory buffer for error records. Flush writes JSON Lines.

    シリアル実行前提 (スレッド安全性不要)
    """

    def __init__(self, logs_dir: Path = LOGS_DIR) -> None:
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None
        self.logs_dir = logs_dir

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self.logs_dir / f"errors-{stamp}.log"
        return self._file_path

    @property
    def written(self) -> bool:
        return self._file_path is not None and self._file_path.exists()

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def extend_validation_errors(self, file: str, sheet: str, errors: Iterable[ValidationError]) -> int:
        count = 0
        for error in errors:
            self._records.append(ErrorRecord.from_validation_error(file, sheet, error))
            count += 1
        return count

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        """Append buffered records; returns the file path, or None when nothing was written."""
        if not self._records:
            return self._file_path if self.written else None
        fp = self.file_path
        fp.parent.mkdir(parents=True, exist_ok=True)
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
