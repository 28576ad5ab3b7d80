"""Unit tests for QueryCache."""

from unittest.mock import AsyncMock, patch

import pytest

from services.shared.cache import QueryCache


@pytest.mark.asyncio
async def test_get_or_load_caches_result() -> None:
    cache = QueryCache()
    loader = AsyncMock(return_value=["a"])

    assert await cache.get_or_load("invoices.list", "user-1", loader) == ["a"]
    assert await cache.get_or_load("invoices.list", "user-1", loader) == ["a"]

    loader.assert_awaited_once()


@pytest.mark.asyncio
async def test_entries_are_keyed_by_owner_and_params() -> None:
    cache = QueryCache()

    await cache.get_or_load("invoices.list", "user-1", AsyncMock(return_value=[1]))
    await cache.get_or_load("invoices.list", "user-2", AsyncMock(return_value=[2]))
    await cache.get_or_load("invoices.list", "user-1", AsyncMock(return_value=[3]), params=("x",))

    assert cache.get("invoices.list", "user-1") == [1]
    assert cache.get("invoices.list", "user-2") == [2]
    assert cache.get("invoices.list", "user-1", ("x",)) == [3]


def test_invalidate_only_touches_owner() -> None:
    cache = QueryCache()
    cache.set("invoices.list", "user-1", [1])
    cache.set("field_mappings.list", "user-1", [2])
    cache.set("invoices.list", "user-2", [3])

    assert cache.invalidate("user-1") == 2
    assert cache.get("invoices.list", "user-1") is None
    assert cache.get("invoices.list", "user-2") == [3]


def test_invalidate_single_operation() -> None:
    cache = QueryCache()
    cache.set("invoices.list", "user-1", [1])
    cache.set("export_history.list", "user-1", [2])

    cache.invalidate("user-1", "export_history.list")

    assert cache.get("invoices.list", "user-1") == [1]
    assert cache.get("export_history.list", "user-1") is None


def test_entries_expire_after_ttl() -> None:
    cache = QueryCache(ttl_seconds=10)

    with patch("services.shared.cache.time.monotonic", return_value=100.0):
        cache.set("invoices.list", "user-1", [1])
    with patch("services.shared.cache.time.monotonic", return_value=105.0):
        assert cache.get("invoices.list", "user-1") == [1]
    with patch("services.shared.cache.time.monotonic", return_value=111.0):
        assert cache.get("invoices.list", "user-1") is None
