from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from typing import Any

from .coercion import to_number

"""Transform registry: named value -> value functions applied before coercion.

Hosts extend the registry by passing their own mapping (usually
``{**DEFAULT_TRANSFORMS, "myTransform": fn}``). Lookups are fail-open: an
unknown name or a transform that raises leaves the value unchanged.
"""

__all__ = [
    "Transform",
    "TransformRegistry",
    "DEFAULT_TRANSFORMS",
    "apply_named_transform",
]

logger = logging.getLogger(__name__)

Transform = Callable[[Any], Any]
TransformRegistry = Mapping[str, Transform]

_WORD_START = re.compile(r"\b\w")
_NON_DIGIT = re.compile(r"[^0-9]")


def _trim(v: Any) -> Any:
    return v if v is None else str(v).strip()


def _to_lower(v: Any) -> Any:
    return v if v is None else str(v).lower()


def _to_upper(v: Any) -> Any:
    return v if v is None else str(v).upper()


def _capitalize(v: Any) -> Any:
    if v is None:
        return v
    return _WORD_START.sub(lambda m: m.group(0).upper(), str(v).lower())


def _to_number(v: Any) -> Any:
    if v is None or v == "":
        return None
    return to_number(v)


def _format_phone(v: Any) -> Any:
    return v if v is None else _NON_DIGIT.sub("", str(v))


def _format_email(v: Any) -> Any:
    return v if v is None else str(v).strip().lower()


DEFAULT_TRANSFORMS: dict[str, Transform] = {
    "trim": _trim,
    "toLowerCase": _to_lower,
    "toUpperCase": _to_upper,
    "capitalize": _capitalize,
    "toNumber": _to_number,
    "formatPhoneNumber": _format_phone,
    "formatEmail": _format_email,
}


def apply_named_transform(
    value: Any,
    transform_name: str | None,
    registry: TransformRegistry | None = None,
) -> Any:
    """Apply ``registry[transform_name]`` to ``value``.

    No name, an unknown name, a non-callable entry or a raising transform all
    return ``value`` unchanged.
    """
    if not transform_name:
        return value
    fn = (registry if registry is not None else DEFAULT_TRANSFORMS).get(transform_name)
    if not callable(fn):
        return value
    try:
        return fn(value)
    except Exception as e:
        logger.debug(f"transform '{transform_name}' failed, keeping original value: {e}")
        return value
