from __future__ import annotations

from collections.abc import Sequence

import Levenshtein

from ..models.config_models import DEFAULT_CONFIDENCE_THRESHOLD, FieldConfig
from ..models.field_mapping import FieldMapping, MappingState

"""Auto field mapper.

Proposes a header -> field assignment from normalized Levenshtein similarity.

Every (header, field) pair whose score is strictly above the threshold is a
candidate. Candidates are ranked globally by score (stable sort, so ties keep
header order, then field order) and assigned greedily: a pair is skipped when
its field was already claimed or its header already assigned. Two headers that
both look like the same field therefore resolve by score, not by column order.
"""

__all__ = [
    "similarity",
    "field_score",
    "auto_map_field_mappings",
    "auto_map",
]


def similarity(a: str, b: str) -> float:
    """``1 - distance / max(len)`` on lowercased strings (1.0 for two empty strings)."""
    a = a.lower()
    b = b.lower()
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1 - Levenshtein.distance(a, b) / longest


def field_score(header: str, field: FieldConfig) -> float:
    """Best of label and key similarity."""
    return max(similarity(header, field.label), similarity(header, field.key))


def auto_map_field_mappings(
    headers: Sequence[str],
    fields: Sequence[FieldConfig],
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> list[FieldMapping]:
    """Greedy global assignment; returns mappings (with confidence) in header order."""
    candidates: list[tuple[float, int, FieldConfig]] = []
    for h_idx, header in enumerate(headers):
        for field in fields:
            score = field_score(header, field)
            if score > threshold:
                candidates.append((score, h_idx, field))

    candidates.sort(key=lambda c: c[0], reverse=True)  # stable

    claimed: set[str] = set()
    assigned: dict[int, FieldMapping] = {}
    for score, h_idx, field in candidates:
        if field.key in claimed or h_idx in assigned:
            continue
        claimed.add(field.key)
        assigned[h_idx] = FieldMapping(
            source=headers[h_idx],
            target=field.key,
            confidence=round(score, 4),
        )

    return [assigned[i] for i in sorted(assigned)]


def auto_map(
    headers: Sequence[str],
    fields: Sequence[FieldConfig],
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> MappingState:
    """Flat ``{header: field_key | None}`` proposal for every header."""
    mapping: MappingState = {h: None for h in headers}
    for m in auto_map_field_mappings(headers, fields, threshold):
        mapping[m.source] = m.target
    return mapping
