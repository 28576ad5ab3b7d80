"""Shared test fixtures."""

import io
import os
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from pypdf import PdfWriter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Module-level app singletons read settings at import time
os.environ.setdefault("APP_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from services.db.database import create_engine, create_session_factory, init_models  # noqa: E402
from services.shared.cache import QueryCache  # noqa: E402
from services.shared.config import Settings  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None, database_url="sqlite+aiosqlite:///:memory:")


@pytest_asyncio.fixture
async def session_factory(settings: Settings) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Fresh in-memory database per test."""
    engine = create_engine(settings)
    await init_models(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def cache() -> QueryCache:
    return QueryCache()


def make_pdf(page_widths: list[int]) -> bytes:
    """Build a PDF with one blank page per width (widths identify pages)."""
    writer = PdfWriter()
    for width in page_widths:
        writer.add_blank_page(width=width, height=792)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


@pytest.fixture
def pdf_factory():  # type: ignore[no-untyped-def]
    return make_pdf
