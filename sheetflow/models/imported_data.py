from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

"""ImportedData model: decoded file contents handed to the mapping core."""

__all__ = [
    "ImportedData",
    "dedupe_headers",
]


def dedupe_headers(headers: list[Any]) -> list[str]:
    """Make header names unique by suffixing ``_2``, ``_3``, ... on collision.

    >>> dedupe_headers(["Name", "Email", "Name", "Name"])
    ['Name', 'Email', 'Name_2', 'Name_3']
    """
    seen: dict[str, int] = {}
    taken: set[str] = set()
    out: list[str] = []
    for raw in headers:
        name = "" if raw is None else str(raw).strip()
        if name not in taken:
            seen.setdefault(name, 1)
            taken.add(name)
            out.append(name)
            continue
        n = seen.get(name, 1)
        candidate = f"{name}_{n + 1}"
        while candidate in taken:
            n += 1
            candidate = f"{name}_{n + 1}"
        seen[name] = n + 1
        taken.add(candidate)
        out.append(candidate)
    return out


@dataclass(frozen=True)
class ImportedData:
    headers: list[str]
    rows: list[dict[str, Any]] = field(default_factory=list)  # header -> raw value
    file_name: str | None = None
    file_type: str | None = None  # csv | excel

    @property
    def row_count(self) -> int:
        return len(self.rows)
