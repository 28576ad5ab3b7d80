"""Invoice data models for structured extraction.

``ExtractedInvoice`` is the exact shape the extraction oracle is instructed to
return; a response that does not validate against it fails the extraction.
``ExtractedFieldSet`` is the flattened raw-key view handed to the mapping
engine.
"""

from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

FieldValue = str | int | float | None


class ExtractedLineItem(BaseModel):
    """Single line item as returned by the oracle."""

    model_config = ConfigDict(extra="ignore")

    description: str | None = Field(None, description="Line item description")
    quantity: Decimal | None = Field(None, description="Quantity")
    unit_price: Decimal | None = Field(None, description="Price per unit")
    total: Decimal | None = Field(None, description="Line total")


class ExtractedInvoice(BaseModel):
    """Structured invoice data extracted from a document.

    Field set matches the fixed system instruction sent to the oracle.
    """

    model_config = ConfigDict(extra="ignore")

    vendor_name: str | None = Field(None, description="Supplier/vendor company name")
    invoice_number: str | None = Field(None, description="Unique invoice identifier")
    invoice_date: date | None = Field(None, description="Date invoice was issued (ISO)")
    due_date: date | None = Field(None, description="Payment due date (ISO)")
    total_amount: Decimal | None = Field(None, description="Total amount including tax")
    currency: str | None = Field(None, description="Currency symbol or ISO 4217 code")
    payment_terms: str | None = Field(None, description="Payment terms")
    purchase_order_number: str | None = Field(None, description="Purchase order reference")
    billing_address: str | None = Field(None, description="Billing address")
    shipping_address: str | None = Field(None, description="Shipping address")
    notes: str | None = Field(None, description="Free-text notes")
    tax_amount: Decimal | None = Field(None, description="Tax amount")
    subtotal: Decimal | None = Field(None, description="Subtotal before tax")
    line_items: list[ExtractedLineItem] = Field(default_factory=list)

    @field_validator("invoice_date", "due_date", mode="before")
    @classmethod
    def _blank_date_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator(
        "vendor_name",
        "invoice_number",
        "currency",
        "payment_terms",
        "purchase_order_number",
        "billing_address",
        "shipping_address",
        "notes",
        mode="before",
    )
    @classmethod
    def _blank_text_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        if isinstance(value, int | float):
            return str(value)
        return value

    @field_validator("line_items", mode="before")
    @classmethod
    def _null_items_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class ExtractedFieldSet(BaseModel):
    """Raw output of the extraction oracle for one document.

    Attributes:
        fields: Raw field key to scalar value (dates as ISO strings, amounts as numbers)
        line_items: Extracted line items, in document order
    """

    fields: dict[str, FieldValue] = Field(default_factory=dict)
    line_items: list[ExtractedLineItem] = Field(default_factory=list)

    @classmethod
    def from_invoice(cls, invoice: ExtractedInvoice) -> "ExtractedFieldSet":
        """Flatten a validated oracle response into raw key/value pairs."""
        fields: dict[str, FieldValue] = {}
        for name, value in invoice.model_dump(exclude={"line_items"}).items():
            if isinstance(value, date):
                fields[name] = value.isoformat()
            elif isinstance(value, Decimal):
                fields[name] = float(value)
            else:
                fields[name] = value
        return cls(fields=fields, line_items=invoice.line_items)

    def keys(self) -> list[str]:
        return list(self.fields)

    @property
    def currency(self) -> str | None:
        value = self.fields.get("currency")
        return str(value) if value is not None else None
