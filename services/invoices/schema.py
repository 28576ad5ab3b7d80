"""Invoice and export history data models.

``InvoiceCreate`` accepts the loosely typed values that come out of field
mapping (strings like "$1,234.50" or "2024-01-15") and coerces them into
column types. Values that cannot be read are left empty and reported.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from services.extraction.schema import ExtractedLineItem
from services.mapping.suggestions import INVOICE_FIELDS

AMOUNT_FIELDS = (
    "total_amount",
    "tax_amount",
    "subtotal",
    "discount_amount",
    "additional_fees",
)
DATE_FIELDS = ("invoice_date", "due_date")

_AMOUNT_NOISE = re.compile(r"[\s,$€£¥]|[A-Z]{3}")


def coerce_amount(value: Any) -> Decimal | None:
    """Read an amount from a number or a formatted string.

    Returns:
        Decimal value, or None when the input is empty or unreadable
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int | float):
        return Decimal(str(value))

    text = _AMOUNT_NOISE.sub("", str(value))
    if not text:
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def coerce_date(value: Any) -> date | None:
    """Read a date from a date object or an ISO (YYYY-MM-DD) string."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


class LineItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    description: str | None = None
    quantity: Decimal | None = None
    unit_price: Decimal | None = None
    total_price: Decimal | None = None

    @classmethod
    def from_extracted(cls, item: ExtractedLineItem) -> "LineItem":
        return cls(
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_price=item.total,
        )


class InvoiceCreate(BaseModel):
    """Column values for a new invoice built from a mapped field set."""

    vendor_name: str | None = None
    invoice_number: str | None = None
    invoice_date: date | None = None
    due_date: date | None = None
    total_amount: Decimal | None = None
    currency: str | None = None
    tax_amount: Decimal | None = None
    subtotal: Decimal | None = None
    discount_amount: Decimal | None = None
    additional_fees: Decimal | None = None
    payment_terms: str | None = None
    purchase_order_number: str | None = None
    billing_address: str | None = None
    shipping_address: str | None = None
    payment_method: str | None = None
    notes: str | None = None
    original_file_url: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    items: list[LineItem] = Field(default_factory=list)

    @classmethod
    def from_fields(
        cls,
        fields: dict[str, Any],
        line_items: list[ExtractedLineItem] | None = None,
        original_file_url: str | None = None,
    ) -> tuple["InvoiceCreate", list[str]]:
        """Split a mapped field set into invoice columns and custom fields.

        Args:
            fields: Final field set keyed by canonical name
            line_items: Extracted line items
            original_file_url: Public URL of the stored upload

        Returns:
            Tuple of (invoice values, names of fields that could not be read)
        """
        columns: dict[str, Any] = {}
        custom: dict[str, Any] = {}
        unreadable: list[str] = []

        for name, value in fields.items():
            if name not in INVOICE_FIELDS:
                custom[name] = value
                continue
            if name in AMOUNT_FIELDS:
                coerced: Any = coerce_amount(value)
            elif name in DATE_FIELDS:
                coerced = coerce_date(value)
            else:
                coerced = None if value is None else str(value).strip() or None
            if value not in (None, "") and coerced is None:
                unreadable.append(name)
            columns[name] = coerced

        invoice = cls(
            **columns,
            original_file_url=original_file_url,
            custom_fields=custom,
            items=[LineItem.from_extracted(item) for item in line_items or []],
        )
        return invoice, unreadable


class Invoice(BaseModel):
    """Persisted invoice."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    vendor_name: str | None = None
    invoice_number: str | None = None
    invoice_date: date | None = None
    due_date: date | None = None
    total_amount: Decimal | None = None
    currency: str | None = None
    tax_amount: Decimal | None = None
    subtotal: Decimal | None = None
    discount_amount: Decimal | None = None
    additional_fees: Decimal | None = None
    payment_terms: str | None = None
    purchase_order_number: str | None = None
    billing_address: str | None = None
    shipping_address: str | None = None
    payment_method: str | None = None
    notes: str | None = None
    original_file_url: str | None = None
    status: str = "pending"
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    items: list[LineItem] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


ExportStatus = Literal["pending", "completed", "failed"]


class ExportHistoryRecord(BaseModel):
    """Audit entry of one merge or export run."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    invoice_ids: list[str] = Field(default_factory=list)
    export_type: str
    export_format: str | None = None
    file_name: str | None = None
    file_size: int | None = None
    file_url: str | None = None
    version: int = 1
    status: ExportStatus = "pending"
    error: str | None = None
    created_at: datetime | None = None
