"""Rendering invoice sets into flat export formats.

Text is always available; CSV, JSON and Excel are plan-gated by the caller.
Invoices are written in the order given. Missing values render as "N/A" in
text output and as empty cells elsewhere.
"""

import csv
import io
import json
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from pydantic import BaseModel

from services.invoices.schema import Invoice
from services.shared.errors import ValidationInputError

logger = logging.getLogger(__name__)

PLACEHOLDER = "N/A"
DEFAULT_CURRENCY = "$"
DIVIDER = "-" * 40


class ExportFormat(str, Enum):
    TEXT = "text"
    CSV = "csv"
    JSON = "json"
    EXCEL = "excel"


EXTENSIONS = {
    ExportFormat.TEXT: ("txt", "text/plain"),
    ExportFormat.CSV: ("csv", "text/csv"),
    ExportFormat.JSON: ("json", "application/json"),
    ExportFormat.EXCEL: (
        "xlsx",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ),
}

COLUMNS = (
    "invoice_number",
    "vendor_name",
    "invoice_date",
    "due_date",
    "total_amount",
    "currency",
    "tax_amount",
    "subtotal",
    "discount_amount",
    "additional_fees",
    "payment_terms",
    "purchase_order_number",
    "billing_address",
    "shipping_address",
    "payment_method",
    "notes",
    "status",
)


class ExportArtifact(BaseModel):
    content: bytes
    file_name: str
    content_type: str

    @property
    def size(self) -> int:
        return len(self.content)


def export_file_name(export_format: ExportFormat, now: datetime | None = None) -> str:
    stamp = (now or datetime.now(UTC)).strftime("%Y%m%dT%H%M%S%fZ")
    return f"invoices-export-{stamp}.{EXTENSIONS[export_format][0]}"


def _money(amount: Decimal | None, currency: str) -> str:
    if amount is None:
        return PLACEHOLDER
    return f"{currency}{amount:.2f}"


def _text(value: Any) -> str:
    if value is None or value == "":
        return PLACEHOLDER
    return str(value)


def render_text_block(invoice: Invoice) -> str:
    """Plain-text block for one invoice."""
    currency = invoice.currency or DEFAULT_CURRENCY
    lines = [
        f"Invoice #{_text(invoice.invoice_number)}",
        f"Vendor: {_text(invoice.vendor_name)}",
        f"Date: {_text(invoice.invoice_date)}",
        f"Due Date: {_text(invoice.due_date)}",
        f"Total Amount: {_money(invoice.total_amount, currency)}",
    ]
    if invoice.items:
        lines.append("Line Items:")
        lines.extend(
            f"- {_text(item.description)}: {_money(item.total_price, currency)}"
            for item in invoice.items
        )
    return "\n".join(lines)


def _render_text(invoices: Sequence[Invoice]) -> bytes:
    blocks = [render_text_block(inv) for inv in invoices]
    return (f"\n{DIVIDER}\n".join(blocks) + "\n").encode("utf-8")


def _cell(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


def _render_csv(invoices: Sequence[Invoice]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(("id", *COLUMNS))
    for invoice in invoices:
        values = (getattr(invoice, c) for c in COLUMNS)
        writer.writerow((invoice.id, *("" if v is None else v for v in values)))
    return buffer.getvalue().encode("utf-8")


def _render_json(invoices: Sequence[Invoice]) -> bytes:
    payload = [inv.model_dump(mode="json", exclude={"user_id"}) for inv in invoices]
    return json.dumps(payload, indent=2).encode("utf-8")


def _render_excel(invoices: Sequence[Invoice]) -> bytes:
    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
    header_alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)

    wb = Workbook()
    ws = wb.active
    ws.title = "Invoices"
    items_ws = wb.create_sheet("Line Items")

    item_headers = (
        "invoice_id",
        "invoice_number",
        "description",
        "quantity",
        "unit_price",
        "total_price",
    )
    sheets = ((ws, ("id", *COLUMNS)), (items_ws, item_headers))
    for sheet, headers in sheets:
        for col, header in enumerate(headers, start=1):
            cell = sheet.cell(row=1, column=col, value=header)
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = header_alignment
        sheet.freeze_panes = "A2"

    for invoice in invoices:
        ws.append([invoice.id, *(_cell(getattr(invoice, c)) for c in COLUMNS)])
        for item in invoice.items:
            items_ws.append(
                [
                    invoice.id,
                    invoice.invoice_number,
                    item.description,
                    _cell(item.quantity),
                    _cell(item.unit_price),
                    _cell(item.total_price),
                ]
            )

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


RENDERERS = {
    ExportFormat.TEXT: _render_text,
    ExportFormat.CSV: _render_csv,
    ExportFormat.JSON: _render_json,
    ExportFormat.EXCEL: _render_excel,
}


def parse_format(value: str) -> ExportFormat:
    try:
        return ExportFormat(value.lower())
    except ValueError as e:
        supported = ", ".join(f.value for f in ExportFormat)
        raise ValidationInputError(
            f"Unsupported export format '{value}'. Supported formats: {supported}"
        ) from e


def format_invoices(
    invoices: Sequence[Invoice], target_format: ExportFormat | str
) -> ExportArtifact:
    """Render invoices into an export artifact.

    Args:
        invoices: Invoices in output order
        target_format: Export format (enum or its name)

    Returns:
        ExportArtifact with bytes, suggested file name and content type

    Raises:
        ValidationInputError: Unknown format
    """
    export_format = (
        target_format if isinstance(target_format, ExportFormat) else parse_format(target_format)
    )
    content = RENDERERS[export_format](invoices)
    logger.info(
        f"Rendered {len(invoices)} invoices as {export_format.value} ({len(content)} bytes)"
    )
    return ExportArtifact(
        content=content,
        file_name=export_file_name(export_format),
        content_type=EXTENSIONS[export_format][1],
    )
