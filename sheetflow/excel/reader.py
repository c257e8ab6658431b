from __future__ import annotations

import zipfile
from datetime import datetime
from pathlib import Path
from typing import Any

import pandas as pd

from ..models.imported_data import ImportedData, dedupe_headers

"""Tabular file reader (CSV / XLSX -> ImportedData).

- First row is the header row; duplicate header names get ``_2``, ``_3``...
- CSV: text is decoded as UTF-8 (BOM tolerated) and falls back to cp1252.
  When the default comma yields a single column, ``; \\t | ,`` are tried and
  the first delimiter producing at least two columns wins.
- CSV cells are kept as strings (no NA conversion), whitespace-trimmed.
- XLSX: first sheet only; native cell types are kept (numbers, datetimes),
  empty cells become "" and fully empty rows are skipped.
"""

__all__ = [
    "FileReadError",
    "CSV_DELIMITER_CANDIDATES",
    "read_csv_file",
    "read_excel_file",
    "read_tabular_file",
]

CSV_DELIMITER_CANDIDATES = [";", "\t", "|", ","]
_ENCODINGS = ("utf-8-sig", "cp1252")


class FileReadError(Exception):
    """Raised when a file cannot be decoded or parsed."""


def _read_csv_frame(path: Path, sep: str, encoding: str) -> pd.DataFrame:
    return pd.read_csv(
        path,
        sep=sep,
        header=None,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        encoding=encoding,
    )


def _read_csv_any_encoding(path: Path, sep: str) -> pd.DataFrame:
    last_error: Exception | None = None
    for encoding in _ENCODINGS:
        try:
            return _read_csv_frame(path, sep, encoding)
        except UnicodeDecodeError as e:
            last_error = e
    raise FileReadError(f"cannot decode '{path.name}': {last_error}")


def _frame_to_imported(df: pd.DataFrame, path: Path, file_type: str) -> ImportedData:
    if df.shape[0] == 0:
        raise FileReadError(f"'{path.name}' has no header row")
    headers = dedupe_headers([_cell(v) for v in df.iloc[0].tolist()])
    rows: list[dict[str, Any]] = []
    for _, raw in df.iloc[1:].iterrows():
        if raw.isna().all():
            continue
        values = [_cell(v) for v in raw.tolist()]
        rows.append(dict(zip(headers, values, strict=False)))
    return ImportedData(headers=headers, rows=rows, file_name=path.name, file_type=file_type)


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime() if not pd.isna(value) else ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, datetime):
        return value
    if hasattr(value, "item"):
        # numpy scalar -> python
        return value.item()
    return value


def read_csv_file(path: Path) -> ImportedData:
    try:
        df = _read_csv_any_encoding(path, ",")
        if df.shape[1] <= 1:
            best = df
            for sep in CSV_DELIMITER_CANDIDATES:
                try:
                    candidate = _read_csv_any_encoding(path, sep)
                except pd.errors.ParserError:
                    continue
                if candidate.shape[1] > best.shape[1]:
                    best = candidate
                if candidate.shape[1] >= 2:
                    break
            df = best
    except pd.errors.EmptyDataError as e:
        raise FileReadError(f"'{path.name}' is empty") from e
    except pd.errors.ParserError as e:
        raise FileReadError(f"CSV parsing error: {e}") from e
    except OSError as e:
        raise FileReadError(f"cannot read '{path}': {e}") from e
    return _frame_to_imported(df, path, "csv")


def read_excel_file(path: Path) -> ImportedData:
    """Read the first sheet of an Excel workbook."""
    try:
        xls = pd.ExcelFile(path)
        if not xls.sheet_names:
            raise FileReadError(f"'{path.name}' has no sheets")
        # ヘッダなしで生読み (先頭行をヘッダとして扱う)
        df = xls.parse(xls.sheet_names[0], header=None, dtype=object)
    except FileReadError:
        raise
    except (OSError, ValueError, zipfile.BadZipFile) as e:
        raise FileReadError(f"cannot read '{path.name}': {e}") from e
    if df.shape[0] == 0:
        raise FileReadError("Empty Excel file")
    return _frame_to_imported(df, path, "excel")


def read_tabular_file(path: Path) -> ImportedData:
    """Dispatch on suffix: .csv -> CSV, anything else -> Excel."""
    if not path.exists():
        raise FileReadError(f"file not found: {path}")
    if path.suffix.lower() == ".csv":
        return read_csv_file(path)
    return read_excel_file(path)
