"""Per-owner query cache with explicit invalidation.

Listings (field mappings, invoices, export history) are cached under a
(operation, owner_id, params) key. Every mutating operation calls
``invalidate(owner_id)`` so the next read goes back to the database.
Only read-your-writes within one process is guaranteed.
"""

import logging
import time
from collections.abc import Awaitable, Callable, Hashable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

CacheKey = tuple[str, str, Hashable]


class QueryCache:
    """In-process cache of query results keyed by owner."""

    def __init__(self, ttl_seconds: float = 0) -> None:
        """Initialize cache.

        Args:
            ttl_seconds: Entry lifetime; 0 keeps entries until invalidated
        """
        self.ttl_seconds = ttl_seconds
        self._entries: dict[CacheKey, tuple[float, Any]] = {}

    @staticmethod
    def make_key(operation: str, owner_id: str, params: Hashable = None) -> CacheKey:
        return (operation, owner_id, params)

    def get(self, operation: str, owner_id: str, params: Hashable = None) -> Any | None:
        key = self.make_key(operation, owner_id, params)
        entry = self._entries.get(key)
        if entry is None:
            return None

        stored_at, value = entry
        if self.ttl_seconds and time.monotonic() - stored_at > self.ttl_seconds:
            del self._entries[key]
            return None
        return value

    def set(self, operation: str, owner_id: str, value: Any, params: Hashable = None) -> None:
        self._entries[self.make_key(operation, owner_id, params)] = (time.monotonic(), value)

    async def get_or_load(
        self,
        operation: str,
        owner_id: str,
        loader: Callable[[], Awaitable[T]],
        params: Hashable = None,
    ) -> T:
        """Return cached value or await loader and cache its result.

        Args:
            operation: Query name (e.g., 'field_mappings.list')
            owner_id: Owning user id
            loader: Coroutine factory producing the fresh value
            params: Extra hashable query parameters

        Returns:
            Cached or freshly loaded value
        """
        cached = self.get(operation, owner_id, params)
        if cached is not None:
            return cached  # type: ignore[no-any-return]

        value = await loader()
        self.set(operation, owner_id, value, params)
        return value

    def invalidate(self, owner_id: str, operation: str | None = None) -> int:
        """Drop cached entries for an owner.

        Args:
            owner_id: Owner whose entries are dropped
            operation: Restrict to one operation (all operations if None)

        Returns:
            Number of entries removed
        """
        stale = [
            key
            for key in self._entries
            if key[1] == owner_id and (operation is None or key[0] == operation)
        ]
        for key in stale:
            del self._entries[key]

        if stale:
            logger.debug(f"Invalidated {len(stale)} cached entries for owner {owner_id}")
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
