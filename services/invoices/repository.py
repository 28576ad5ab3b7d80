"""Persistence for invoices, export history and plan profiles.

Listings go through the shared QueryCache; writes invalidate the owner's
entries. Profiles are never cached: the billing webhook rewrites the tier
out of band.
"""

import logging
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.db.models import (
    ExportHistoryRow,
    InvoiceContactRow,
    InvoiceItemRow,
    InvoiceRow,
    ProfileRow,
    SubscriptionTierRow,
)
from services.invoices.schema import ExportHistoryRecord, Invoice, InvoiceCreate
from services.shared.cache import QueryCache

logger = logging.getLogger(__name__)


class InvoiceRepository:
    """Invoice rows with their line items and contacts."""

    LIST_OPERATION = "invoices.list"

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], cache: QueryCache
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache

    async def create(self, owner_id: str, data: InvoiceCreate) -> Invoice:
        """Persist one invoice in its own transaction.

        Args:
            owner_id: Owning user id
            data: Column values, custom fields and line items

        Returns:
            Stored invoice with status 'pending'
        """
        values = data.model_dump(exclude={"items"})
        row = InvoiceRow(user_id=owner_id, status="pending", **values)
        row.items = [
            InvoiceItemRow(
                position=position,
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
            )
            for position, item in enumerate(data.items)
        ]
        row.contacts = [
            InvoiceContactRow(contact_type=kind, address=address)
            for kind, address in (
                ("billing", data.billing_address),
                ("shipping", data.shipping_address),
            )
            if address
        ]

        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            invoice = Invoice.model_validate(row)

        self._cache.invalidate(owner_id)
        logger.info(f"Stored invoice {invoice.id} for {owner_id}")
        return invoice

    async def list_invoices(self, owner_id: str) -> list[Invoice]:
        """Owner's invoices, newest first (cached)."""

        async def load() -> list[Invoice]:
            async with self._session_factory() as session:
                rows = await session.scalars(
                    select(InvoiceRow)
                    .where(InvoiceRow.user_id == owner_id)
                    .order_by(InvoiceRow.created_at.desc())
                )
                return [Invoice.model_validate(row) for row in rows]

        return await self._cache.get_or_load(self.LIST_OPERATION, owner_id, load)

    async def get_many(self, owner_id: str, invoice_ids: Sequence[str]) -> list[Invoice]:
        """Fetch invoices by id, in the order the ids were given.

        Ids that do not exist or belong to another user are simply absent.
        """
        if not invoice_ids:
            return []

        async with self._session_factory() as session:
            rows = await session.scalars(
                select(InvoiceRow).where(
                    InvoiceRow.user_id == owner_id, InvoiceRow.id.in_(list(invoice_ids))
                )
            )
            by_id = {row.id: Invoice.model_validate(row) for row in rows}

        return [by_id[i] for i in dict.fromkeys(invoice_ids) if i in by_id]


class ExportHistoryRepository:
    """Append-only log of merge and export runs."""

    LIST_OPERATION = "export_history.list"

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], cache: QueryCache
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache

    async def create_pending(
        self,
        owner_id: str,
        invoice_ids: Sequence[str],
        export_type: str,
        export_format: str | None = None,
    ) -> ExportHistoryRecord:
        """Write the pending record that precedes artifact assembly."""
        row = ExportHistoryRow(
            user_id=owner_id,
            invoice_ids=list(invoice_ids),
            export_type=export_type,
            export_format=export_format,
            version=1,
            status="pending",
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()

        self._cache.invalidate(owner_id, self.LIST_OPERATION)
        return ExportHistoryRecord.model_validate(row)

    async def mark_completed(
        self, record_id: str, file_name: str, file_size: int, file_url: str
    ) -> ExportHistoryRecord:
        return await self._finish(
            record_id,
            status="completed",
            file_name=file_name,
            file_size=file_size,
            file_url=file_url,
        )

    async def mark_failed(self, record_id: str, error: str) -> ExportHistoryRecord:
        return await self._finish(record_id, status="failed", error=error)

    async def _finish(self, record_id: str, **values: object) -> ExportHistoryRecord:
        async with self._session_factory() as session:
            row = await session.get(ExportHistoryRow, record_id)
            if row is None:
                raise LookupError(f"Export history record {record_id} vanished")
            for key, value in values.items():
                setattr(row, key, value)
            await session.commit()

        self._cache.invalidate(row.user_id, self.LIST_OPERATION)
        logger.info(f"Export history {record_id} marked {values['status']}")
        return ExportHistoryRecord.model_validate(row)

    async def list_records(self, owner_id: str) -> list[ExportHistoryRecord]:
        """Owner's history, newest first (cached)."""

        async def load() -> list[ExportHistoryRecord]:
            async with self._session_factory() as session:
                rows = await session.scalars(
                    select(ExportHistoryRow)
                    .where(ExportHistoryRow.user_id == owner_id)
                    .order_by(ExportHistoryRow.created_at.desc())
                )
                return [ExportHistoryRecord.model_validate(row) for row in rows]

        return await self._cache.get_or_load(self.LIST_OPERATION, owner_id, load)

    async def count_completed_exports(self, owner_id: str, since: datetime) -> int:
        """Completed file exports (merges excluded) created at or after ``since``."""
        async with self._session_factory() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(ExportHistoryRow)
                .where(
                    ExportHistoryRow.user_id == owner_id,
                    ExportHistoryRow.status == "completed",
                    ExportHistoryRow.export_type != "merge",
                    ExportHistoryRow.created_at >= since,
                )
            )
        return count or 0

    async def delete_many(
        self, owner_id: str, record_ids: Sequence[str]
    ) -> tuple[list[str], list[str]]:
        """Delete the owner's records among the given ids.

        Returns:
            Tuple of (deleted ids, ids not found for this owner)
        """
        wanted = list(dict.fromkeys(record_ids))
        if not wanted:
            return [], []

        async with self._session_factory() as session:
            owned = set(
                await session.scalars(
                    select(ExportHistoryRow.id).where(
                        ExportHistoryRow.user_id == owner_id, ExportHistoryRow.id.in_(wanted)
                    )
                )
            )
            if owned:
                await session.execute(
                    delete(ExportHistoryRow).where(ExportHistoryRow.id.in_(owned))
                )
                await session.commit()

        self._cache.invalidate(owner_id, self.LIST_OPERATION)
        deleted = [i for i in wanted if i in owned]
        missing = [i for i in wanted if i not in owned]
        logger.info(f"Deleted {len(deleted)} export history records for {owner_id}")
        return deleted, missing


class ProfileRepository:
    """Plan tier lookups. Always read fresh."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_tier_name(self, owner_id: str) -> str | None:
        async with self._session_factory() as session:
            return await session.scalar(
                select(ProfileRow.subscription_tier).where(ProfileRow.id == owner_id)
            )

    async def get_tier(self, name: str) -> SubscriptionTierRow | None:
        async with self._session_factory() as session:
            return await session.scalar(
                select(SubscriptionTierRow).where(SubscriptionTierRow.name == name)
            )
