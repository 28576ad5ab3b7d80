"""Numeric aggregation of invoices selected for a merge."""

import logging
from collections.abc import Sequence
from datetime import date
from decimal import Decimal

from pydantic import BaseModel

from services.invoices.schema import Invoice

logger = logging.getLogger(__name__)


class DateRange(BaseModel):
    earliest: date
    latest: date


class MergedInvoiceSummary(BaseModel):
    """Aggregate of a merged invoice set.

    currency is the first non-null currency in input order; no conversion is
    done, and mixed_currency is set when the constituents disagree.
    """

    total_invoices: int
    total_amount: Decimal
    total_tax: Decimal
    total_subtotal: Decimal
    total_discount: Decimal
    total_additional_fees: Decimal
    currency: str | None = None
    mixed_currency: bool = False
    date_range: DateRange | None = None


def _sum(values: Sequence[Decimal | None]) -> Decimal:
    return sum((v for v in values if v is not None), Decimal("0"))


def summarize(invoices: Sequence[Invoice]) -> MergedInvoiceSummary:
    """Aggregate amounts, dates and currency across invoices.

    Null amounts count as zero; null dates are ignored.

    Args:
        invoices: Invoices in merge order

    Returns:
        MergedInvoiceSummary over all given invoices
    """
    dates = [inv.invoice_date for inv in invoices if inv.invoice_date is not None]
    currencies = [inv.currency for inv in invoices if inv.currency]
    distinct = list(dict.fromkeys(currencies))

    if len(distinct) > 1:
        logger.warning(f"Merging invoices in mixed currencies {distinct}; reporting {distinct[0]}")

    return MergedInvoiceSummary(
        total_invoices=len(invoices),
        total_amount=_sum([inv.total_amount for inv in invoices]),
        total_tax=_sum([inv.tax_amount for inv in invoices]),
        total_subtotal=_sum([inv.subtotal for inv in invoices]),
        total_discount=_sum([inv.discount_amount for inv in invoices]),
        total_additional_fees=_sum([inv.additional_fees for inv in invoices]),
        currency=distinct[0] if distinct else None,
        mixed_currency=len(distinct) > 1,
        date_range=DateRange(earliest=min(dates), latest=max(dates)) if dates else None,
    )
