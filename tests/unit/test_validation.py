"""Unit tests for field validation rules."""

import logging

import pytest

from services.mapping.schema import FieldMapping, FieldMappingUpdate
from services.mapping.validation import (
    FieldIssue,
    ValidationRule,
    ValidationType,
    negative_amount_issues,
    validate,
    validate_fields,
)


@pytest.mark.parametrize(
    ("kind", "good", "bad"),
    [
        (ValidationType.EMAIL, "billing@acme.com", "billing@acme"),
        (ValidationType.PHONE, "+14155550123", "call me"),
        (ValidationType.DATE, "2024-02-29", "29/02/2024"),
        (ValidationType.NUMBER, "-12.50", "12,50"),
        (ValidationType.CURRENCY, "$1200.00", "1200.5"),
    ],
)
def test_typed_kinds_use_default_patterns(kind: ValidationType, good: str, bad: str) -> None:
    rule = ValidationRule(kind=kind)

    assert validate(good, rule).valid is True
    assert validate(bad, rule).valid is False


@pytest.mark.parametrize(
    ("kind", "value", "expected"),
    [
        (ValidationType.EMAIL, "a@b.co", True),
        (ValidationType.EMAIL, "not-an-email", False),
        (ValidationType.EMAIL, "a@b.c", False),
        (ValidationType.EMAIL, "a@b.museum", False),
        (ValidationType.EMAIL, "first.last@mail.example.info", True),
        (ValidationType.DATE, "2024-13-40", False),
        (ValidationType.DATE, "2024-00-10", False),
        (ValidationType.DATE, "2024-12-00", False),
        (ValidationType.DATE, "2024-12-32", False),
        (ValidationType.DATE, "2024-01-31", True),
        (ValidationType.DATE, "2024-12-01", True),
    ],
)
def test_default_pattern_bounds(kind: ValidationType, value: str, expected: bool) -> None:
    assert validate(value, ValidationRule(kind=kind)).valid is expected


def test_none_kind_accepts_anything() -> None:
    assert validate("anything at all", ValidationRule()).valid is True


def test_regex_must_match_whole_value() -> None:
    rule = ValidationRule(kind=ValidationType.PATTERN, pattern=r"INV-\d+")

    assert validate("INV-42", rule).valid is True
    assert validate("INV-42-extra", rule).valid is False


def test_custom_pattern_overrides_typed_default() -> None:
    rule = ValidationRule(kind=ValidationType.NUMBER, pattern=r"\d{3}")

    assert validate("123", rule).valid is True
    assert validate("1234", rule).valid is False


def test_custom_message_is_used() -> None:
    rule = ValidationRule(kind=ValidationType.EMAIL, message="Enter a real address")

    outcome = validate("nope", rule, field_name="contact")

    assert outcome.valid is False
    assert outcome.message == "Enter a real address"


def test_default_message_names_field() -> None:
    outcome = validate("nope", ValidationRule(kind=ValidationType.EMAIL), field_name="contact")

    assert outcome.message == "Invalid value for field contact"


def test_invalid_regex_is_inert(caplog: pytest.LogCaptureFixture) -> None:
    rule = ValidationRule(kind=ValidationType.PATTERN, pattern="([unclosed")

    with caplog.at_level(logging.WARNING):
        outcome = validate("whatever", rule, field_name="code")

    assert outcome.valid is True
    assert "Invalid pattern" in caplog.text


def test_empty_regex_is_inert() -> None:
    assert validate("x", ValidationRule(kind=ValidationType.PATTERN, pattern="")).valid is True


def test_pattern_alias_and_case() -> None:
    assert ValidationType("pattern") is ValidationType.PATTERN
    assert ValidationType("REGEX") is ValidationType.PATTERN
    assert ValidationType("Email") is ValidationType.EMAIL
    with pytest.raises(ValueError):
        ValidationType("zipcode")


def test_validate_fields_reports_required_and_invalid() -> None:
    rules = {
        "vendor_name": ValidationRule(required=True),
        "contact": ValidationRule(kind=ValidationType.EMAIL),
        "po": ValidationRule(kind=ValidationType.NUMBER),
    }
    fields = {"vendor_name": "  ", "contact": "bad", "po": None}

    issues = validate_fields(fields, rules)

    assert issues == [
        FieldIssue(field_name="vendor_name", message="vendor_name is required"),
        FieldIssue(field_name="contact", message="Invalid value for field contact"),
    ]


def test_negative_amounts_are_reported() -> None:
    issues = negative_amount_issues(
        {"total_amount": -5.0, "tax_amount": 1.0}, ["total_amount", "tax_amount", "subtotal"]
    )

    assert [i.field_name for i in issues] == ["total_amount"]


def test_bare_regex_mapping_becomes_regex_rule() -> None:
    mapping = FieldMapping(id="m1", user_id="u1", field_name="code", validation_regex=r"[A-Z]+")

    rule = mapping.to_rule()

    assert rule.kind is ValidationType.PATTERN
    assert validate("abc", rule).valid is False


def test_update_blank_strings_become_none() -> None:
    update = FieldMappingUpdate(validation_regex="  ", validation_message="")

    assert update.validation_regex is None
    assert update.validation_message is None
    assert update.model_fields_set == {"validation_regex", "validation_message"}
