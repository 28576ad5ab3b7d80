"""Unit tests for OpenAIExtractionProvider.

Tests cover:
- API key handling
- Document parts sent to the model (PDF file part, image part)
- Response parsing and schema failures
- Retry on transient errors, no retry on timeouts
"""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest
from openai import APITimeoutError, InternalServerError, RateLimitError
from tenacity import wait_none

from services.extraction.base import DocumentReference
from services.extraction.openai_provider import OpenAIExtractionProvider
from services.shared.config import Settings

PDF_BYTES = b"%PDF-1.7\n% fake invoice"
REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


@pytest.fixture
def provider() -> OpenAIExtractionProvider:
    return OpenAIExtractionProvider(Settings(_env_file=None))


@pytest.fixture
def pdf_document() -> DocumentReference:
    return DocumentReference(
        url="https://storage/invoice-files/abc.pdf",
        content=PDF_BYTES,
        content_type="application/pdf",
    )


@pytest.fixture
def no_backoff():  # type: ignore[no-untyped-def]
    with patch(
        "services.extraction.openai_provider.wait_exponential_jitter", return_value=wait_none()
    ):
        yield


def make_response(content: str | None) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


def rate_limit_error() -> RateLimitError:
    return RateLimitError(
        "Rate limited", response=httpx.Response(429, request=REQUEST), body=None
    )


def server_error() -> InternalServerError:
    return InternalServerError(
        "Upstream failure", response=httpx.Response(500, request=REQUEST), body=None
    )


@patch.dict("os.environ", {}, clear=True)
def test_extract_without_api_key(
    provider: OpenAIExtractionProvider, pdf_document: DocumentReference
) -> None:
    """Test extraction fails gracefully without API key."""
    result = provider.extract_invoice_fields(pdf_document)

    assert result.success is False
    assert result.field_set is None
    assert "OPENAI_API_KEY" in (result.error or "")


@patch("services.extraction.openai_provider.OpenAI")
@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_extract_pdf_success(
    mock_openai_class: MagicMock,
    provider: OpenAIExtractionProvider,
    pdf_document: DocumentReference,
) -> None:
    """PDF is sent inline as a file part and the JSON answer is parsed."""
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.return_value = make_response(
        json.dumps({"invoice_number": "INV-12345", "total_amount": 1100.0, "currency": "$"})
    )

    result = provider.extract_invoice_fields(pdf_document)

    assert result.success is True
    assert result.provider == "openai"
    assert result.field_set is not None
    assert result.field_set.fields["invoice_number"] == "INV-12345"
    assert result.field_set.currency == "$"

    kwargs = mock_client.chat.completions.create.call_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["temperature"] == 0
    user_parts = kwargs["messages"][1]["content"]
    assert user_parts[1]["type"] == "file"
    assert user_parts[1]["file"]["file_data"].startswith("data:application/pdf;base64,")
    assert user_parts[1]["file"]["filename"] == "abc.pdf"


@patch("services.extraction.openai_provider.OpenAI")
@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_extract_image_uses_image_part(
    mock_openai_class: MagicMock, provider: OpenAIExtractionProvider
) -> None:
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.return_value = make_response('{"invoice_number": "I-1"}')
    document = DocumentReference(
        url="https://storage/invoice-files/scan.png",
        content=b"\x89PNG...",
        content_type="image/png",
    )

    result = provider.extract_invoice_fields(document)

    assert result.success is True
    part = mock_client.chat.completions.create.call_args.kwargs["messages"][1]["content"][1]
    assert part["type"] == "image_url"
    assert part["image_url"]["url"].startswith("data:image/png;base64,")


@patch("services.extraction.openai_provider.OpenAI")
@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_extract_malformed_response_fails(
    mock_openai_class: MagicMock,
    provider: OpenAIExtractionProvider,
    pdf_document: DocumentReference,
) -> None:
    """Non-JSON output fails the whole extraction."""
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.return_value = make_response("I could not read it")

    result = provider.extract_invoice_fields(pdf_document)

    assert result.success is False
    assert result.error_kind == "extraction"
    assert "Invalid response" in (result.error or "")


@patch("services.extraction.openai_provider.OpenAI")
@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_extract_retries_transient_error(
    mock_openai_class: MagicMock,
    provider: OpenAIExtractionProvider,
    pdf_document: DocumentReference,
    no_backoff: None,
) -> None:
    """Rate limit on the first call, success on the second."""
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.side_effect = [
        rate_limit_error(),
        make_response('{"invoice_number": "INV-RETRY"}'),
    ]

    result = provider.extract_invoice_fields(pdf_document)

    assert result.success is True
    assert result.field_set is not None
    assert result.field_set.fields["invoice_number"] == "INV-RETRY"
    assert mock_client.chat.completions.create.call_count == 2


@patch("services.extraction.openai_provider.OpenAI")
@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_extract_fails_after_max_attempts(
    mock_openai_class: MagicMock,
    provider: OpenAIExtractionProvider,
    pdf_document: DocumentReference,
    no_backoff: None,
) -> None:
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.side_effect = server_error()

    result = provider.extract_invoice_fields(pdf_document)

    assert result.success is False
    assert result.error_kind == "extraction"
    assert "Extraction failed" in (result.error or "")
    assert mock_client.chat.completions.create.call_count == 3


@patch("services.extraction.openai_provider.OpenAI")
@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_extract_timeout_is_not_retried(
    mock_openai_class: MagicMock,
    provider: OpenAIExtractionProvider,
    pdf_document: DocumentReference,
    no_backoff: None,
) -> None:
    mock_client = MagicMock()
    mock_openai_class.return_value = mock_client
    mock_client.chat.completions.create.side_effect = APITimeoutError(request=REQUEST)

    result = provider.extract_invoice_fields(pdf_document)

    assert result.success is False
    assert result.error_kind == "timeout"
    assert mock_client.chat.completions.create.call_count == 1


@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_document_download_timeout(provider: OpenAIExtractionProvider) -> None:
    """A document that cannot be downloaded in time is a timeout failure."""
    document = DocumentReference(url="https://storage/invoice-files/slow.pdf")

    with patch(
        "services.extraction.base.httpx.get", side_effect=httpx.ReadTimeout("timed out")
    ):
        result = provider.extract_invoice_fields(document)

    assert result.success is False
    assert result.error_kind == "timeout"
