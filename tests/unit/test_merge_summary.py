"""Unit tests for merge aggregation."""

from datetime import date
from decimal import Decimal

from services.invoices.schema import Invoice
from services.merge.summary import summarize


def make_invoice(invoice_id: str, **values) -> Invoice:  # type: ignore[no-untyped-def]
    return Invoice(id=invoice_id, user_id="user-1", **values)


def test_null_amounts_count_as_zero() -> None:
    invoices = [
        make_invoice("a", total_amount=Decimal("10.00"), tax_amount=Decimal("1.50")),
        make_invoice("b", total_amount=Decimal("20.00"), tax_amount=Decimal("2.00")),
        make_invoice("c"),
    ]

    summary = summarize(invoices)

    assert summary.total_invoices == 3
    assert summary.total_amount == Decimal("30.00")
    assert summary.total_tax == Decimal("3.50")
    assert summary.total_subtotal == Decimal("0")
    assert summary.total_discount == Decimal("0")
    assert summary.total_additional_fees == Decimal("0")


def test_date_range_ignores_missing_dates() -> None:
    invoices = [
        make_invoice("a", invoice_date=date(2024, 3, 1)),
        make_invoice("b"),
        make_invoice("c", invoice_date=date(2024, 1, 15)),
    ]

    summary = summarize(invoices)

    assert summary.date_range is not None
    assert summary.date_range.earliest == date(2024, 1, 15)
    assert summary.date_range.latest == date(2024, 3, 1)


def test_no_dates_means_no_range() -> None:
    assert summarize([make_invoice("a"), make_invoice("b")]).date_range is None


def test_currency_is_first_non_null() -> None:
    summary = summarize(
        [make_invoice("a"), make_invoice("b", currency="$"), make_invoice("c", currency="$")]
    )

    assert summary.currency == "$"
    assert summary.mixed_currency is False


def test_mixed_currency_is_flagged_without_conversion() -> None:
    summary = summarize(
        [
            make_invoice("a", currency="EUR", total_amount=Decimal("10")),
            make_invoice("b", currency="$", total_amount=Decimal("5")),
        ]
    )

    assert summary.currency == "EUR"
    assert summary.mixed_currency is True
    assert summary.total_amount == Decimal("15")
