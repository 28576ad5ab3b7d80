"""Fetching and combining the original documents of merged invoices.

Documents are downloaded concurrently with a bounded wait, then their pages
are appended in the order the invoices were given. A document that cannot
be fetched or parsed is skipped and reported; it never aborts the merge.
"""

import asyncio
import io
import logging
from collections.abc import Sequence

import httpx
from pydantic import BaseModel
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError

from services.invoices.schema import Invoice

logger = logging.getLogger(__name__)


class FetchedDocument(BaseModel):
    invoice_id: str
    content: bytes | None = None
    error: str | None = None


class CombinedDocument(BaseModel):
    """Merged PDF plus what went into it.

    Attributes:
        content: PDF bytes (a zero-page PDF when nothing could be included)
        page_count: Pages in the merged PDF
        included: Invoice ids whose pages were appended, in order
        skipped: Invoice id to reason for every document left out
    """

    content: bytes
    page_count: int
    included: list[str]
    skipped: dict[str, str]


async def fetch_documents(
    invoices: Sequence[Invoice],
    timeout_seconds: float,
    client: httpx.AsyncClient | None = None,
) -> list[FetchedDocument]:
    """Download every invoice's original document concurrently.

    Args:
        invoices: Invoices in merge order
        timeout_seconds: Bounded wait per download
        client: Optional shared client (one is created otherwise)

    Returns:
        One FetchedDocument per invoice, in the same order
    """

    async def fetch_one(http: httpx.AsyncClient, invoice: Invoice) -> FetchedDocument:
        if not invoice.original_file_url:
            return FetchedDocument(invoice_id=invoice.id, error="No original document")
        try:
            response = await http.get(invoice.original_file_url)
            response.raise_for_status()
            return FetchedDocument(invoice_id=invoice.id, content=response.content)
        except httpx.TimeoutException:
            logger.warning(f"Timed out fetching document for invoice {invoice.id}")
            return FetchedDocument(invoice_id=invoice.id, error="Timed out fetching document")
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch document for invoice {invoice.id}: {e}")
            return FetchedDocument(invoice_id=invoice.id, error=f"Fetch failed: {e}")

    if client is not None:
        return list(await asyncio.gather(*(fetch_one(client, inv) for inv in invoices)))

    async with httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True) as http:
        return list(await asyncio.gather(*(fetch_one(http, inv) for inv in invoices)))


def combine_pdfs(documents: Sequence[FetchedDocument]) -> CombinedDocument:
    """Append all pages of each readable document into one PDF.

    Args:
        documents: Fetched documents in merge order

    Returns:
        CombinedDocument with the merged bytes and per-invoice accounting
    """
    writer = PdfWriter()
    included: list[str] = []
    skipped: dict[str, str] = {}

    for document in documents:
        if document.content is None:
            skipped[document.invoice_id] = document.error or "No original document"
            continue
        try:
            reader = PdfReader(io.BytesIO(document.content))
            if reader.is_encrypted:
                raise PyPdfError("document is encrypted")
            pages = list(reader.pages)
        except (PyPdfError, ValueError) as e:
            logger.warning(f"Skipping unreadable document for invoice {document.invoice_id}: {e}")
            skipped[document.invoice_id] = f"Unreadable PDF: {e}"
            continue

        for page in pages:
            writer.add_page(page)
        included.append(document.invoice_id)

    buffer = io.BytesIO()
    writer.write(buffer)
    return CombinedDocument(
        content=buffer.getvalue(),
        page_count=len(writer.pages),
        included=included,
        skipped=skipped,
    )
