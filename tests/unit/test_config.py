"""Unit tests for configuration management."""

import os
from collections.abc import Generator

import pytest
from pydantic import ValidationError

from services.shared.config import Settings, get_settings


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Clean environment variables before and after test."""
    original_env = dict(os.environ)
    env_vars = [k for k in os.environ if k.startswith("APP_")]
    for var in env_vars:
        del os.environ[var]
    yield
    os.environ.clear()
    os.environ.update(original_env)


def test_settings_defaults(clean_env: None) -> None:
    """Test that settings have correct default values."""
    settings = Settings(_env_file=None)

    assert settings.environment == "development"
    assert settings.log_level == "INFO"
    assert settings.service_name == "invoice-workbench"
    assert settings.extraction_provider == "openai"
    assert settings.extraction_max_attempts == 3
    assert settings.max_files_free == 1
    assert settings.max_files_paid == 10
    assert settings.storage_bucket == "invoice-files"


def test_settings_from_env_vars(clean_env: None) -> None:
    """Test that settings can be overridden via environment variables."""
    os.environ["APP_ENVIRONMENT"] = "production"
    os.environ["APP_EXTRACTION_TIMEOUT_SECONDS"] = "15"
    os.environ["APP_DATABASE_URL"] = "postgresql+asyncpg://u:p@db/invoices"

    settings = Settings(_env_file=None)

    assert settings.environment == "production"
    assert settings.extraction_timeout_seconds == 15.0
    assert settings.database_url == "postgresql+asyncpg://u:p@db/invoices"


def test_settings_case_insensitive(clean_env: None) -> None:
    """Test that environment variables are case insensitive."""
    os.environ["app_log_level"] = "DEBUG"

    settings = Settings(_env_file=None)

    assert settings.log_level == "DEBUG"


def test_settings_reject_unknown_provider(clean_env: None) -> None:
    """Provider must be one of the registered oracles."""
    with pytest.raises(ValidationError):
        Settings(_env_file=None, extraction_provider="tesseract")


def test_settings_reject_non_positive_timeout(clean_env: None) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, document_fetch_timeout_seconds=0)


def test_get_settings_factory() -> None:
    """Test that factory function returns Settings instance."""
    settings = get_settings()

    assert isinstance(settings, Settings)
    assert settings.service_name == "invoice-workbench"
