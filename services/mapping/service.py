"""Field mapping CRUD scoped to the owning user.

Every mutation invalidates the owner's cached listings so the next read
sees the write. Concurrent edits follow last-write-wins.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.db.models import FieldMappingRow
from services.mapping.schema import FieldMapping, FieldMappingUpdate
from services.mapping.validation import ValidationRule
from services.shared.cache import QueryCache
from services.shared.errors import DuplicateFieldError, NotFoundError, ValidationInputError

logger = logging.getLogger(__name__)

LIST_OPERATION = "field_mappings.list"


class FieldMappingService:
    """Create, update, delete and list a user's canonical fields."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], cache: QueryCache
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache

    async def list_mappings(self, owner_id: str) -> list[FieldMapping]:
        """List the owner's field mappings ordered by name (cached)."""

        async def load() -> list[FieldMapping]:
            async with self._session_factory() as session:
                rows = await session.scalars(
                    select(FieldMappingRow)
                    .where(FieldMappingRow.user_id == owner_id)
                    .order_by(FieldMappingRow.field_name)
                )
                return [FieldMapping.model_validate(row) for row in rows]

        return await self._cache.get_or_load(LIST_OPERATION, owner_id, load)

    async def validation_rules(self, owner_id: str) -> dict[str, ValidationRule]:
        """Rules keyed by field name, read fresh from the cached listing."""
        return {m.field_name: m.to_rule() for m in await self.list_mappings(owner_id)}

    async def create(self, owner_id: str, field_name: str) -> FieldMapping:
        """Create a field mapping.

        Args:
            owner_id: Owning user id
            field_name: Canonical field name (trimmed)

        Returns:
            Created mapping (not required, no custom rules)

        Raises:
            ValidationInputError: Name is empty
            DuplicateFieldError: Owner already has a field with this name
        """
        name = field_name.strip()
        if not name:
            raise ValidationInputError("Field name cannot be empty.")

        async with self._session_factory() as session:
            existing = await session.scalar(
                select(FieldMappingRow.id).where(
                    FieldMappingRow.user_id == owner_id,
                    FieldMappingRow.field_name == name,
                )
            )
            if existing is not None:
                raise DuplicateFieldError(f"A field named '{name}' already exists.")

            row = FieldMappingRow(
                user_id=owner_id, field_name=name, is_required=False, custom_rules={}
            )
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateFieldError(f"A field named '{name}' already exists.") from e

        self._cache.invalidate(owner_id)
        logger.info(f"Created field mapping '{name}' for {owner_id}")
        return FieldMapping.model_validate(row)

    async def update(
        self, owner_id: str, mapping_id: str, changes: FieldMappingUpdate
    ) -> FieldMapping:
        """Apply a partial update.

        Raises:
            NotFoundError: Mapping does not exist or belongs to another user
        """
        values = changes.model_dump(exclude_unset=True)

        async with self._session_factory() as session:
            row = await self._get_owned(session, owner_id, mapping_id)
            for key, value in values.items():
                if key == "is_required" and value is None:
                    continue
                if key == "custom_rules" and value is None:
                    value = {}
                if key == "validation_type" and value is not None:
                    value = value.value
                setattr(row, key, value)
            await session.commit()
            await session.refresh(row)

        self._cache.invalidate(owner_id)
        logger.info(f"Updated field mapping {mapping_id} ({', '.join(values) or 'no changes'})")
        return FieldMapping.model_validate(row)

    async def delete(self, owner_id: str, mapping_id: str) -> None:
        """Delete a field mapping; stored invoices are not touched.

        Raises:
            NotFoundError: Mapping does not exist or belongs to another user
        """
        async with self._session_factory() as session:
            row = await self._get_owned(session, owner_id, mapping_id)
            await session.delete(row)
            await session.commit()

        self._cache.invalidate(owner_id)
        logger.info(f"Deleted field mapping {mapping_id} for {owner_id}")

    @staticmethod
    async def _get_owned(session: AsyncSession, owner_id: str, mapping_id: str) -> FieldMappingRow:
        row = await session.get(FieldMappingRow, mapping_id)
        if row is None or row.user_id != owner_id:
            raise NotFoundError("Field mapping not found.")
        return row
