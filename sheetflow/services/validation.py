from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Mapping
from functools import lru_cache
from typing import Any

from ..models.config_models import FieldConfig, ValidationRule
from ..models.row_data import SEVERITY_ERROR, ValidationError
from .coercion import is_empty, parse_date, stringify, to_number

"""Per-cell validation engine.

Order of checks for one value (fixed):

1. required  - empty value on a required field emits one error and stops
2. type      - number / email / date / boolean format check
3. rules     - the field's declared ``validations`` in order

All findings accumulate into the returned list. Cross-row uniqueness is not
checked here; see ``row_processor.apply_uniqueness``.
"""

__all__ = [
    "EMAIL_PATTERN",
    "CustomValidator",
    "ValidationRegistry",
    "validate_field",
    "validate_rule",
]

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
BOOLEAN_LITERALS = {"true", "false", "1", "0", "yes", "no"}

# (value, field, row_index, row_data, args) -> bool | str | ValidationError | dict | None
CustomValidator = Callable[[Any, FieldConfig, int, dict[str, Any], Any], Any]
ValidationRegistry = Mapping[str, CustomValidator]


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern)


def _error(field: FieldConfig, row_index: int, message: str) -> ValidationError:
    return ValidationError(row=row_index, field=field.key, message=message, severity=SEVERITY_ERROR)


def _type_error(value: Any, field: FieldConfig, row_index: int) -> ValidationError | None:
    if field.type == "number":
        if math.isnan(to_number(value)):
            return _error(field, row_index, f"{field.label} must be a valid number")
    elif field.type == "email":
        if not EMAIL_PATTERN.match(stringify(value)):
            return _error(field, row_index, f"{field.label} must be a valid email address")
    elif field.type == "date":
        if parse_date(stringify(value)) is None:
            return _error(field, row_index, f"{field.label} must be a valid date")
    elif field.type == "boolean":
        if stringify(value).lower() not in BOOLEAN_LITERALS:
            return _error(field, row_index, f"{field.label} must be a valid boolean value")
    return None


def _out_of_bounds(value: Any, rule: ValidationRule, field: FieldConfig) -> bool:
    if rule.value is None:
        return False
    threshold = to_number(rule.value)
    if math.isnan(threshold):
        return False
    if field.type == "number":
        measured = to_number(value)
    elif field.type == "string":
        measured = len(stringify(value))
    else:
        return False
    # 空値は 0 (数値) / 長さ 0 (文字列) として比較、nan との比較は常に False
    if rule.type == "min":
        return measured < threshold
    return measured > threshold


def _custom_result(
    result: Any, rule: ValidationRule, field: FieldConfig, row_index: int
) -> ValidationError | None:
    if result is None or result is True:
        return None
    if result is False:
        return _error(field, row_index, rule.message)
    if isinstance(result, str):
        return _error(field, row_index, result or rule.message)
    if isinstance(result, ValidationError):
        return result
    if isinstance(result, Mapping):
        return ValidationError(
            row=result.get("row", row_index),
            field=result.get("field", field.key),
            message=result.get("message", rule.message),
            severity=result.get("severity", SEVERITY_ERROR),
        )
    logger.debug(f"custom validator '{rule.name}' returned unsupported {type(result).__name__}; ignored")
    return None


def validate_rule(
    value: Any,
    rule: ValidationRule,
    field: FieldConfig,
    row_index: int,
    row_data: dict[str, Any] | None = None,
    registry: ValidationRegistry | None = None,
) -> ValidationError | None:
    """Evaluate one declared rule; ``None`` means the value passes."""
    if rule.type == "regex":
        if not value or rule.value is None:
            return None
        try:
            pattern = _compile(str(rule.value))
        except re.error as e:
            logger.warning(f"invalid regex for field '{field.key}': {e}; rule skipped")
            return None
        if not pattern.search(stringify(value)):
            return _error(field, row_index, rule.message)
        return None

    if rule.type in ("min", "max"):
        if _out_of_bounds(value, rule, field):
            return _error(field, row_index, rule.message)
        return None

    if rule.type == "custom":
        fn = registry.get(rule.name) if (registry is not None and rule.name) else None
        if not callable(fn):
            return None  # 未登録の validator は no-op
        try:
            result = fn(value, field, row_index, dict(row_data or {}), rule.args)
        except Exception as e:
            logger.warning(f"custom validator '{rule.name}' raised on row {row_index}: {e}")
            return _error(field, row_index, rule.message)
        return _custom_result(result, rule, field, row_index)

    return None


def validate_field(
    value: Any,
    field: FieldConfig,
    row_index: int,
    row_data: dict[str, Any] | None = None,
    registry: ValidationRegistry | None = None,
) -> list[ValidationError]:
    """Validate a coerced value against its field config.

    Parameters
    ----------
    value: coerced cell value
    field: target field configuration
    row_index: 0-based import row index (written into each error)
    row_data: already-processed values of the same row (custom validator context)
    registry: name -> custom validator lookup

    Returns
    -------
    list of ValidationError (empty when the value is valid)
    """
    errors: list[ValidationError] = []

    if field.required and is_empty(value):
        errors.append(_error(field, row_index, f"{field.label} is required"))
        return errors

    if not is_empty(value):
        type_error = _type_error(value, field, row_index)
        if type_error is not None:
            errors.append(type_error)

    for rule in field.validations:
        rule_error = validate_rule(value, rule, field, row_index, row_data, registry)
        if rule_error is not None:
            errors.append(rule_error)

    return errors
