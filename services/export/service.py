"""Export runs: plan check, rendering, storage and history.

Mirrors the merge flow: a pending export_history row is written before the
artifact is stored and is marked completed (with file size) or failed.
"""

import asyncio
import logging
from collections.abc import Sequence
from datetime import UTC, datetime

from pydantic import BaseModel

from services.billing.plans import PlanService
from services.export.formatter import ExportArtifact, format_invoices, parse_format
from services.invoices.repository import ExportHistoryRepository, InvoiceRepository
from services.invoices.schema import ExportHistoryRecord
from services.shared.errors import (
    InvoiceServiceError,
    NotFoundError,
    PlanRestrictedError,
    StorageError,
    ValidationInputError,
)
from services.storage.service import StorageService

logger = logging.getLogger(__name__)


def month_start() -> datetime:
    """Start of the current calendar month in UTC."""
    return datetime.now(UTC).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class ExportResult(BaseModel):
    history: ExportHistoryRecord
    missing_ids: list[str]


class HistoryDeletion(BaseModel):
    deleted: list[str]
    missing: list[str]


class ExportService:
    """Exports invoice sets and manages the export history."""

    def __init__(
        self,
        invoices: InvoiceRepository,
        history: ExportHistoryRepository,
        storage: StorageService,
        plans: PlanService,
    ) -> None:
        self.invoices = invoices
        self.history = history
        self.storage = storage
        self.plans = plans

    async def export(
        self, owner_id: str, invoice_ids: Sequence[str], export_format: str
    ) -> ExportResult:
        """Export invoices in the requested format.

        Args:
            owner_id: Owning user id
            invoice_ids: Invoices to export, in output order
            export_format: text, csv, json or excel

        Returns:
            ExportResult with the completed history record

        Raises:
            ValidationInputError: No ids or unknown format
            PlanRestrictedError: Format not included in the caller's plan, or the
                monthly export allowance is used up
            NotFoundError: None of the ids exist for the owner
            StorageError: Artifact could not be stored or the run failed
        """
        target = parse_format(export_format)
        requested = list(dict.fromkeys(invoice_ids))
        if not requested:
            raise ValidationInputError("Select at least one invoice to export.")

        limits = await self.plans.require_format(owner_id, target.value)
        if limits.monthly_export_limit is not None:
            used = await self.history.count_completed_exports(owner_id, month_start())
            if used >= limits.monthly_export_limit:
                raise PlanRestrictedError(
                    f"The {limits.tier.value} plan includes {limits.monthly_export_limit} "
                    f"exports per month and this month's allowance is used up."
                )

        invoices = await self.invoices.get_many(owner_id, requested)
        if not invoices:
            raise NotFoundError("None of the selected invoices were found.")
        found = {inv.id for inv in invoices}

        pending = await self.history.create_pending(
            owner_id, [inv.id for inv in invoices], target.value, target.value
        )
        try:
            artifact: ExportArtifact = await asyncio.to_thread(format_invoices, invoices, target)
            stored = await asyncio.to_thread(
                self.storage.upload_bytes,
                artifact.content,
                artifact.file_name,
                artifact.content_type,
            )
            if not stored.success or stored.url is None:
                raise StorageError("Could not store the export file.")
            record = await self.history.mark_completed(
                pending.id, artifact.file_name, artifact.size, stored.url
            )
        except InvoiceServiceError as e:
            await self.history.mark_failed(pending.id, e.message)
            raise
        except Exception as e:
            logger.exception(f"Export {pending.id} failed")
            await self.history.mark_failed(pending.id, str(e))
            raise StorageError("The export could not be completed.") from e

        logger.info(f"Exported {len(invoices)} invoices for {owner_id} as {target.value}")
        return ExportResult(
            history=record, missing_ids=[i for i in requested if i not in found]
        )

    async def list_history(self, owner_id: str) -> list[ExportHistoryRecord]:
        return await self.history.list_records(owner_id)

    async def delete_history(self, owner_id: str, record_ids: Sequence[str]) -> HistoryDeletion:
        """Bulk-delete history entries; ids not owned by the caller are reported."""
        if not record_ids:
            raise ValidationInputError("Select at least one export to delete.")
        deleted, missing = await self.history.delete_many(owner_id, record_ids)
        return HistoryDeletion(deleted=deleted, missing=missing)
