from __future__ import annotations

import math
import warnings
from datetime import UTC, date, datetime, timedelta
from typing import Any

import pandas as pd

"""Type coercion: raw cell value -> canonical value for a declared field type.

Rules
-----
- None / "" pass through for every type.
- string  -> trimmed str
- number  -> int/float (``nan`` when unparseable; validation reports it)
- boolean -> True iff the lowercase string form is "true", "1" or "yes"
- date    -> ISO-8601 UTC string ``YYYY-MM-DDTHH:MM:SS.mmmZ``
             numbers in (59, 600000) are Excel serials (1899-12-30 epoch),
             other numbers are Unix milliseconds; unparseable strings are
             kept as-is so the date check can flag them.
- anything else passes through.

Coercion never raises.
"""

__all__ = [
    "EXCEL_EPOCH",
    "EXCEL_SERIAL_MIN",
    "EXCEL_SERIAL_MAX",
    "is_empty",
    "stringify",
    "to_number",
    "parse_date",
    "to_iso_string",
    "coerce",
]

EXCEL_EPOCH = datetime(1899, 12, 30, tzinfo=UTC)
EXCEL_SERIAL_MIN = 59  # exclusive
EXCEL_SERIAL_MAX = 600_000  # exclusive
MS_PER_DAY = 86_400_000

_TRUTHY = {"true", "1", "yes"}
_RADIX_PREFIXES = {"0x": 16, "0o": 8, "0b": 2}


def is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def _is_real_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def stringify(value: Any) -> str:
    """String form used for comparisons (regex, length, uniqueness keys).

    Booleans render as "true"/"false" and integral floats without the
    trailing ".0" so that 15 and 15.0 compare equal.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, datetime):
        return to_iso_string(value) or str(value)
    return str(value)


def to_number(value: Any) -> int | float:
    """Numeric conversion; unparseable input gives ``nan`` instead of raising."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if _is_real_number(value):
        return value
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    if not isinstance(value, str):
        return math.nan
    s = value.strip()
    if s == "":
        return 0
    bare = s.lstrip("+-")
    if bare.lower() in ("inf", "infinity", "nan"):
        # 英字の特殊値は "Infinity" のみ許容
        if bare == "Infinity":
            return -math.inf if s.startswith("-") else math.inf
        return math.nan
    # 非 ASCII 数字 ("١٢" 等) は数値として扱わない
    if "_" in s or not s.isascii():
        return math.nan
    base = _RADIX_PREFIXES.get(s[:2].lower())
    if base is not None:
        try:
            return int(s, base)
        except ValueError:
            return math.nan
    try:
        return int(s)
    except ValueError:
        pass
    try:
        return float(s)
    except ValueError:
        return math.nan


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def parse_date(value: Any) -> datetime | None:
    """Best-effort parse to an aware UTC datetime, ``None`` when invalid."""
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    if _is_real_number(value):
        return _from_number(value)
    s = str(value).strip()
    if s == "":
        return None
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            ts = pd.to_datetime(s, utc=True)
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(ts):
        return None
    return ts.to_pydatetime()


def _from_number(value: int | float) -> datetime | None:
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None
    try:
        if EXCEL_SERIAL_MIN < value < EXCEL_SERIAL_MAX:
            return EXCEL_EPOCH + timedelta(milliseconds=round(value * MS_PER_DAY))
        return datetime(1970, 1, 1, tzinfo=UTC) + timedelta(milliseconds=value)
    except (OverflowError, ValueError):
        return None


def to_iso_string(value: datetime) -> str | None:
    try:
        ts = _as_utc(value)
    except (ValueError, OverflowError):
        return None
    return f"{ts.strftime('%Y-%m-%dT%H:%M:%S')}.{ts.microsecond // 1000:03d}Z"


def _coerce_date(value: Any) -> Any:
    parsed = parse_date(value)
    if parsed is None:
        # 解析不可: 元の値のまま (date 型チェックで検出)
        return value
    return to_iso_string(parsed) or value


def coerce(value: Any, field_type: str) -> Any:
    if is_empty(value):
        return value
    if field_type == "string":
        return stringify(value).strip()
    if field_type == "number":
        return to_number(value)
    if field_type == "boolean":
        return stringify(value).lower() in _TRUTHY
    if field_type == "date":
        return _coerce_date(value)
    return value
