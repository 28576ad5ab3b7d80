"""Field mapping data models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from services.mapping.validation import ValidationRule, ValidationType


class FieldMapping(BaseModel):
    """User-owned canonical field definition."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    field_name: str
    validation_type: ValidationType | None = None
    validation_regex: str | None = None
    validation_message: str | None = None
    is_required: bool = False
    custom_rules: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_rule(self) -> ValidationRule:
        kind = self.validation_type
        if kind is None:
            # A bare regex without an explicit kind is still a regex rule
            kind = ValidationType.PATTERN if self.validation_regex else ValidationType.NONE
        return ValidationRule(
            kind=kind,
            pattern=self.validation_regex,
            message=self.validation_message,
            required=self.is_required,
        )


class FieldMappingCreate(BaseModel):
    field_name: str


class FieldMappingUpdate(BaseModel):
    """Partial update; only fields explicitly set are written."""

    validation_type: ValidationType | None = None
    validation_regex: str | None = None
    validation_message: str | None = None
    is_required: bool | None = None
    custom_rules: dict[str, Any] | None = None

    @field_validator("validation_regex", "validation_message", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value
