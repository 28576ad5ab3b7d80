"""Unit tests for OllamaExtractionProvider.

Tests the Ollama-based extraction provider with mocked HTTP calls.
"""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from services.extraction.base import DocumentReference
from services.extraction.ollama_provider import OllamaExtractionProvider
from services.shared.config import Settings

INVOICE_TEXT = "ACME CORP\nInvoice INV-2024-001\nDate: 2024-01-15\nTotal: $1,100.00"


@pytest.fixture
def settings() -> Settings:
    """Create test settings with Ollama provider."""
    return Settings(
        _env_file=None,
        extraction_provider="ollama",
        ollama_base_url="http://localhost:11434",
        ollama_model="qwen2.5:7b",
    )


@pytest.fixture
def provider(settings: Settings) -> OllamaExtractionProvider:
    """Create Ollama provider instance."""
    return OllamaExtractionProvider(settings)


@pytest.fixture
def pdf_document(pdf_factory) -> DocumentReference:  # type: ignore[no-untyped-def]
    return DocumentReference(
        url="http://storage/invoice-files/a.pdf",
        content=pdf_factory([612]),
        content_type="application/pdf",
    )


def ollama_response(payload: dict, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = {"response": json.dumps(payload)}
    return response


class TestOllamaExtractionProviderProperties:
    """Test provider properties and availability."""

    def test_provider_name(self, provider: OllamaExtractionProvider) -> None:
        """Provider name should be 'ollama'."""
        assert provider.provider_name == "ollama"

    def test_is_available_when_server_running(self, provider: OllamaExtractionProvider) -> None:
        """Should return True when Ollama server responds with model."""
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"models": [{"name": "qwen2.5:7b"}]}

        with patch.object(provider._client, "get", return_value=mock_response):
            assert provider.is_available() is True

    def test_is_available_when_server_down(self, provider: OllamaExtractionProvider) -> None:
        """Should return False when Ollama server is unreachable."""
        with patch.object(
            provider._client, "get", side_effect=httpx.ConnectError("Connection refused")
        ):
            assert provider.is_available() is False

    def test_is_available_when_model_not_found(self, provider: OllamaExtractionProvider) -> None:
        """Should return False when configured model is not available."""
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"models": [{"name": "llama3.1:8b"}]}

        with patch.object(provider._client, "get", return_value=mock_response):
            assert provider.is_available() is False


class TestOllamaExtraction:
    """Test invoice extraction functionality."""

    def test_image_documents_are_rejected(self, provider: OllamaExtractionProvider) -> None:
        document = DocumentReference(
            url="http://storage/invoice-files/a.png",
            content=b"\x89PNG...",
            content_type="image/png",
        )

        result = provider.extract_invoice_fields(document)

        assert result.success is False
        assert result.error == "Ollama provider only supports PDF documents"
        assert result.provider == "ollama"

    def test_pdf_without_text_layer_returns_error(
        self, provider: OllamaExtractionProvider, pdf_document: DocumentReference
    ) -> None:
        """Blank pages carry no text to extract from."""
        result = provider.extract_invoice_fields(pdf_document)

        assert result.success is False
        assert "no text layer" in (result.error or "")

    def test_corrupt_pdf_returns_error(self, provider: OllamaExtractionProvider) -> None:
        document = DocumentReference(
            url="http://storage/invoice-files/a.pdf",
            content=b"%PDF-1.7 truncated",
            content_type="application/pdf",
        )

        result = provider.extract_invoice_fields(document)

        assert result.success is False
        assert result.error_kind == "extraction"

    def test_extract_success(
        self, provider: OllamaExtractionProvider, pdf_document: DocumentReference
    ) -> None:
        """Should parse the model's JSON answer into a field set."""
        payload = {
            "vendor_name": "ACME CORP",
            "invoice_number": "INV-2024-001",
            "invoice_date": "2024-01-15",
            "total_amount": 1100.0,
            "currency": "$",
        }

        with (
            patch.object(provider, "_extract_text", return_value=INVOICE_TEXT),
            patch.object(provider._client, "post", return_value=ollama_response(payload)) as post,
        ):
            result = provider.extract_invoice_fields(pdf_document)

        assert result.success is True
        assert result.field_set is not None
        assert result.field_set.fields["invoice_number"] == "INV-2024-001"
        assert result.field_set.fields["invoice_date"] == "2024-01-15"

        body = post.call_args.kwargs["json"]
        assert body["format"] == "json"
        assert body["model"] == "qwen2.5:7b"
        assert INVOICE_TEXT in body["prompt"]

    def test_extract_invalid_json(
        self, provider: OllamaExtractionProvider, pdf_document: DocumentReference
    ) -> None:
        response = MagicMock()
        response.status_code = 200
        response.json.return_value = {"response": "not json at all"}

        with (
            patch.object(provider, "_extract_text", return_value=INVOICE_TEXT),
            patch.object(provider._client, "post", return_value=response),
        ):
            result = provider.extract_invoice_fields(pdf_document)

        assert result.success is False
        assert "Invalid response" in (result.error or "")

    def test_extract_timeout(
        self, provider: OllamaExtractionProvider, pdf_document: DocumentReference
    ) -> None:
        """Timeouts are reported as such and not retried."""
        with (
            patch.object(provider, "_extract_text", return_value=INVOICE_TEXT),
            patch.object(
                provider._client, "post", side_effect=httpx.ReadTimeout("timed out")
            ) as post,
        ):
            result = provider.extract_invoice_fields(pdf_document)

        assert result.success is False
        assert result.error_kind == "timeout"
        assert post.call_count == 1

    def test_server_error_is_retried(
        self, provider: OllamaExtractionProvider, pdf_document: DocumentReference
    ) -> None:
        payload = {"invoice_number": "INV-RETRY"}

        with (
            patch("tenacity.nap.time.sleep"),
            patch.object(provider, "_extract_text", return_value=INVOICE_TEXT),
            patch.object(
                provider._client,
                "post",
                side_effect=[ollama_response({}, status_code=503), ollama_response(payload)],
            ) as post,
        ):
            result = provider.extract_invoice_fields(pdf_document)

        assert result.success is True
        assert post.call_count == 2

    def test_retries_follow_configured_attempts(
        self, settings: Settings, pdf_document: DocumentReference
    ) -> None:
        settings.extraction_max_attempts = 2
        provider = OllamaExtractionProvider(settings)

        with (
            patch("tenacity.nap.time.sleep"),
            patch.object(provider, "_extract_text", return_value=INVOICE_TEXT),
            patch.object(
                provider._client, "post", return_value=ollama_response({}, status_code=503)
            ) as post,
        ):
            result = provider.extract_invoice_fields(pdf_document)

        assert result.success is False
        assert result.error_kind == "extraction"
        assert post.call_count == 2

    @pytest.mark.parametrize("body", [["response"], "plain text", {"response": 42}])
    def test_non_object_body_is_an_invalid_response(
        self, provider: OllamaExtractionProvider, pdf_document: DocumentReference, body: object
    ) -> None:
        response = MagicMock()
        response.status_code = 200
        response.json.return_value = body

        with (
            patch.object(provider, "_extract_text", return_value=INVOICE_TEXT),
            patch.object(provider._client, "post", return_value=response),
        ):
            result = provider.extract_invoice_fields(pdf_document)

        assert result.success is False
        assert result.error_kind == "extraction"
        assert "Invalid response" in (result.error or "")
