"""Invoice merge: one aggregate summary plus one combined PDF.

Preconditions (merge capability, at least two distinct ids) are checked
before anything external is touched. The run is recorded outbox-style: a
pending export_history row is written first, then the PDF is assembled and
uploaded, then the row is marked completed. Any failure after the pending
row marks it failed. Running a merge twice yields two artifacts and two
history rows.
"""

import asyncio
import logging
import secrets
from collections.abc import Sequence
from datetime import UTC, datetime

import httpx
from pydantic import BaseModel, Field

from services.invoices.repository import ExportHistoryRepository, InvoiceRepository
from services.invoices.schema import ExportHistoryRecord
from services.merge.documents import combine_pdfs, fetch_documents
from services.merge.summary import MergedInvoiceSummary, summarize
from services.shared.config import Settings
from services.shared.errors import (
    InvoiceServiceError,
    MergeError,
    PartialMergeError,
    PlanRestrictedError,
    StorageError,
    ValidationInputError,
)
from services.storage.service import StorageService

logger = logging.getLogger(__name__)

MIN_MERGE_INVOICES = 2


class MergeResult(BaseModel):
    """Outcome of a completed merge.

    Attributes:
        summary: Aggregate over every invoice found
        history: Completed export_history record
        requested_ids: Distinct ids asked for, in order
        missing_ids: Requested ids not found for the owner
        page_count: Pages in the merged PDF
        skipped_documents: Invoice id to reason for documents left out
        partial: Partial-merge notice when any document was left out
    """

    summary: MergedInvoiceSummary
    history: ExportHistoryRecord
    requested_ids: list[str]
    missing_ids: list[str] = Field(default_factory=list)
    page_count: int = 0
    skipped_documents: dict[str, str] = Field(default_factory=dict)
    partial: dict[str, str | None] | None = None


def merged_file_name(now: datetime | None = None) -> str:
    stamp = (now or datetime.now(UTC)).strftime("%Y%m%dT%H%M%S%fZ")
    return f"merged-invoices-{stamp}-{secrets.token_hex(4)}.pdf"


class MergeEngine:
    """Combines a user's invoices into one summary and one PDF."""

    def __init__(
        self,
        invoices: InvoiceRepository,
        history: ExportHistoryRepository,
        storage: StorageService,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.invoices = invoices
        self.history = history
        self.storage = storage
        self.settings = settings
        self._http_client = http_client

    async def merge(
        self, invoice_ids: Sequence[str], owner_id: str, can_merge: bool
    ) -> MergeResult:
        """Merge the owner's invoices.

        Args:
            invoice_ids: Invoices to merge, in the desired page order
            owner_id: Owning user id
            can_merge: Whether the caller's current plan grants merging

        Returns:
            MergeResult with summary, stored artifact record and skip report

        Raises:
            PlanRestrictedError: Plan does not include merging
            ValidationInputError: Fewer than two distinct ids
            MergeError: Fewer than two of the ids exist for the owner, or the run failed
            StorageError: The merged PDF could not be stored
        """
        if not can_merge:
            raise PlanRestrictedError("Merging invoices is available on Pro and Enterprise plans.")

        requested = list(dict.fromkeys(invoice_ids))
        if len(requested) < MIN_MERGE_INVOICES:
            raise ValidationInputError("Select at least two different invoices to merge.")

        invoices = await self.invoices.get_many(owner_id, requested)
        found = {inv.id for inv in invoices}
        missing = [i for i in requested if i not in found]
        if missing:
            logger.warning(f"Merge for {owner_id}: {len(missing)} invoice(s) not found")
        if len(invoices) < MIN_MERGE_INVOICES:
            raise MergeError(
                f"Only {len(invoices)} of the selected invoices could be found; "
                f"at least {MIN_MERGE_INVOICES} are needed to merge."
            )

        summary = summarize(invoices)
        pending = await self.history.create_pending(
            owner_id, [inv.id for inv in invoices], "merge", "pdf"
        )

        try:
            documents = await fetch_documents(
                invoices, self.settings.document_fetch_timeout_seconds, self._http_client
            )
            combined = await asyncio.to_thread(combine_pdfs, documents)

            file_name = merged_file_name()
            stored = await asyncio.to_thread(
                self.storage.upload_bytes, combined.content, file_name, "application/pdf"
            )
            if not stored.success or stored.url is None:
                raise StorageError("Could not store the merged PDF.")

            record = await self.history.mark_completed(
                pending.id, file_name, len(combined.content), stored.url
            )
        except InvoiceServiceError as e:
            await self.history.mark_failed(pending.id, e.message)
            raise
        except Exception as e:
            logger.exception(f"Merge {pending.id} failed")
            await self.history.mark_failed(pending.id, str(e))
            raise MergeError("The merge could not be completed.") from e

        partial = None
        if combined.skipped:
            notice = PartialMergeError(len(requested), len(combined.included), combined.skipped)
            partial = notice.to_dict()

        logger.info(
            f"Merged {len(invoices)} invoices for {owner_id} into {file_name} "
            f"({combined.page_count} pages, {len(combined.skipped)} documents skipped)"
        )
        return MergeResult(
            summary=summary,
            history=record,
            requested_ids=requested,
            missing_ids=missing,
            page_count=combined.page_count,
            skipped_documents=combined.skipped,
            partial=partial,
        )
