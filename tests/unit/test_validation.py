from __future__ import annotations

import logging

from sheetflow.models.config_models import FieldConfig, ValidationRule
from sheetflow.models.row_data import ValidationError
from sheetflow.services.coercion import coerce
from sheetflow.services.validation import validate_field, validate_rule


def _field(**kw) -> FieldConfig:
    base = {"key": "f", "label": "Field"}
    base.update(kw)
    return FieldConfig(**base)


def test_required_short_circuits():
    field = _field(
        type="email",
        required=True,
        validations=(ValidationRule(type="regex", value="x", message="regex"),),
    )
    errors = validate_field("", field, 3)
    assert errors == [ValidationError(row=3, field="f", message="Field is required")]


def test_min_rule_on_age_string():
    field = _field(
        key="age",
        label="Age",
        type="number",
        validations=(ValidationRule(type="min", value=18, message="Must be 18 or older"),),
    )
    errors = validate_field(coerce("15", "number"), field, 0)
    assert [e.message for e in errors] == ["Must be 18 or older"]
    assert validate_field(coerce("18", "number"), field, 0) == []


def test_type_checks():
    assert validate_field(float("nan"), _field(type="number"), 0)[0].message == "Field must be a valid number"
    assert validate_field("a@b", _field(type="email"), 0)[0].message == "Field must be a valid email address"
    assert validate_field("nope", _field(type="date"), 0)[0].message == "Field must be a valid date"
    assert validate_field("maybe", _field(type="boolean"), 0)[0].message == "Field must be a valid boolean value"
    assert validate_field("a@b.com", _field(type="email"), 0) == []
    assert validate_field(True, _field(type="boolean"), 0) == []


def test_string_length_bounds():
    field = _field(
        validations=(
            ValidationRule(type="min", value=2, message="too short"),
            ValidationRule(type="max", value=4, message="too long"),
        )
    )
    assert [e.message for e in validate_field("a", field, 0)] == ["too short"]
    assert [e.message for e in validate_field("abcde", field, 0)] == ["too long"]
    assert validate_field("abc", field, 0) == []
    # 空値は長さ 0 として比較される
    assert [e.message for e in validate_field("", field, 0)] == ["too short"]


def test_min_rule_applies_to_empty_optional_number():
    field = _field(
        key="age",
        label="Age",
        type="number",
        validations=(ValidationRule(type="min", value=18, message="Must be 18 or older"),),
    )
    # 空値は 0 として比較される (必須でなくても)
    assert [e.message for e in validate_field("", field, 0)] == ["Must be 18 or older"]
    max_only = _field(type="number", validations=(ValidationRule(type="max", value=10, message="too big"),))
    assert validate_field("", max_only, 0) == []


def test_regex_only_checked_for_truthy_values():
    field = _field(validations=(ValidationRule(type="regex", value=r"^\d+$", message="digits"),))
    assert validate_field("", field, 0) == []
    assert [e.message for e in validate_field("12a", field, 0)] == ["digits"]
    assert validate_field("123", field, 0) == []


def test_invalid_regex_is_skipped(caplog):
    field = _field(validations=(ValidationRule(type="regex", value="(", message="bad"),))
    with caplog.at_level(logging.WARNING):
        assert validate_field("x", field, 0) == []
    assert "invalid regex" in caplog.text


def test_custom_validator_results():
    rule = ValidationRule(type="custom", name="check", message="rule message", args={"n": 1})
    field = _field(validations=(rule,))
    seen = {}

    def check(value, fld, row_index, row_data, args):
        seen.update(value=value, key=fld.key, row=row_index, data=row_data, args=args)
        return {"True": True, "None": None, "False": False, "msg": "custom msg", "empty": ""}.get(value, value)

    registry = {"check": check}
    assert validate_field("True", field, 1, {"other": 1}, registry) == []
    assert seen == {"value": "True", "key": "f", "row": 1, "data": {"other": 1}, "args": {"n": 1}}
    assert validate_field("None", field, 1, None, registry) == []
    assert validate_field("False", field, 1, None, registry)[0].message == "rule message"
    assert validate_field("msg", field, 1, None, registry)[0].message == "custom msg"
    assert validate_field("empty", field, 1, None, registry)[0].message == "rule message"


def test_custom_validator_mapping_result_with_fallbacks():
    rule = ValidationRule(type="custom", name="warn", message="fallback")
    field = _field()
    err = validate_rule("x", rule, field, 4, {}, {"warn": lambda *a: {"severity": "warning"}})
    assert err == ValidationError(row=4, field="f", message="fallback", severity="warning")


def test_missing_custom_validator_is_noop():
    rule = ValidationRule(type="custom", name="missing", message="m")
    assert validate_rule("x", rule, _field(), 0, {}, {}) is None
    assert validate_rule("x", rule, _field(), 0, {}, None) is None


def test_raising_custom_validator_reports_rule_message(caplog):
    def boom(*args):
        raise ValueError("kaboom")

    rule = ValidationRule(type="custom", name="boom", message="could not validate")
    with caplog.at_level(logging.WARNING):
        err = validate_rule("x", rule, _field(), 2, {}, {"boom": boom})
    assert err is not None and err.message == "could not validate"
    assert "kaboom" in caplog.text


def test_error_order_type_then_rules():
    field = _field(
        type="number",
        validations=(ValidationRule(type="regex", value="^[0-9]+$", message="digits only"),),
    )
    errors = validate_field(coerce("abc", "number"), field, 0)
    assert [e.message for e in errors] == ["Field must be a valid number", "digits only"]
