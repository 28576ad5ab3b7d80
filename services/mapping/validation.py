"""Validation rule evaluation for mapped invoice fields.

A rule is a kind (none, regex or one of the typed kinds) plus an optional
custom pattern and message. Typed kinds use a fixed default pattern; a regex
rule uses the user's pattern verbatim. Patterns must match the whole value.

An empty or uncompilable custom pattern makes the rule inert: the value is
reported valid and a warning is logged.
"""

import logging
import re
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Invalid value for field"


class ValidationType(str, Enum):
    NONE = "none"
    PATTERN = "regex"
    EMAIL = "email"
    PHONE = "phone"
    DATE = "date"
    NUMBER = "number"
    CURRENCY = "currency"

    @classmethod
    def _missing_(cls, value: object) -> "ValidationType | None":
        if isinstance(value, str):
            lowered = value.lower()
            if lowered == "pattern":
                return cls.PATTERN
            for member in cls:
                if member.value == lowered:
                    return member
        return None


DEFAULT_PATTERNS: dict[ValidationType, str] = {
    ValidationType.EMAIL: r"^[\w.-]+@([\w-]+\.)+[\w-]{2,4}$",
    ValidationType.PHONE: r"^\+?[1-9]\d{1,14}$",
    ValidationType.DATE: r"^\d{4}-(0[1-9]|1[0-2])-(0[1-9]|[12]\d|3[01])$",
    ValidationType.NUMBER: r"^-?\d*\.?\d+$",
    ValidationType.CURRENCY: r"^[$€£¥]?\d+(\.\d{2})?$",
}


class ValidationRule(BaseModel):
    """Rule attached to a canonical field.

    Attributes:
        kind: Validation kind
        pattern: Custom regex (used by the regex kind, overrides typed defaults)
        message: Custom failure message
        required: Whether the field must be present
    """

    kind: ValidationType = ValidationType.NONE
    pattern: str | None = None
    message: str | None = None
    required: bool = False


class ValidationOutcome(BaseModel):
    valid: bool
    message: str | None = None


class FieldIssue(BaseModel):
    """Validation problem found on one mapped field."""

    field_name: str
    message: str


def _resolve_pattern(rule: ValidationRule) -> str | None:
    if rule.kind is ValidationType.NONE:
        return None
    if rule.kind is ValidationType.PATTERN:
        return rule.pattern or None
    return rule.pattern or DEFAULT_PATTERNS[rule.kind]


def validate(value: Any, rule: ValidationRule, field_name: str | None = None) -> ValidationOutcome:
    """Evaluate a value against a rule.

    Args:
        value: Field value (stringified before matching)
        rule: Rule to apply
        field_name: Field name used in the default failure message

    Returns:
        ValidationOutcome with valid flag and message on failure
    """
    pattern = _resolve_pattern(rule)
    if pattern is None:
        if rule.kind is ValidationType.PATTERN:
            logger.warning(f"Regex rule on '{field_name or 'field'}' has no pattern; skipping")
        return ValidationOutcome(valid=True)

    try:
        compiled = re.compile(pattern)
    except re.error as e:
        logger.warning(f"Invalid pattern {pattern!r} on '{field_name or 'field'}': {e}; skipping")
        return ValidationOutcome(valid=True)

    if compiled.fullmatch("" if value is None else str(value)):
        return ValidationOutcome(valid=True)

    if rule.message:
        message = rule.message
    elif field_name:
        message = f"{DEFAULT_MESSAGE} {field_name}"
    else:
        message = DEFAULT_MESSAGE
    return ValidationOutcome(valid=False, message=message)


def validate_fields(
    fields: Mapping[str, Any], rules: Mapping[str, ValidationRule]
) -> list[FieldIssue]:
    """Validate a mapped field set against per-field rules.

    Missing or empty required fields are reported; present values are
    checked against their rule. Fields without a rule are not checked.

    Args:
        fields: Final field set keyed by canonical name
        rules: Rule per canonical name

    Returns:
        Issues in rule order (empty when everything passes)
    """
    issues: list[FieldIssue] = []
    for name, rule in rules.items():
        value = fields.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            if rule.required:
                issues.append(FieldIssue(field_name=name, message=f"{name} is required"))
            continue

        outcome = validate(value, rule, field_name=name)
        if not outcome.valid:
            issues.append(FieldIssue(field_name=name, message=outcome.message or DEFAULT_MESSAGE))
    return issues


def negative_amount_issues(fields: Mapping[str, Any], names: Iterable[str]) -> list[FieldIssue]:
    """Soft check: report amounts that are negative."""
    issues: list[FieldIssue] = []
    for name in names:
        value = fields.get(name)
        if isinstance(value, int | float) and value < 0:
            issues.append(FieldIssue(field_name=name, message=f"{name} is negative"))
    return issues
