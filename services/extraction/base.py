"""Abstract base class for extraction providers.

Enables switching between different extraction oracles (OpenAI, Ollama)
while maintaining consistent interface and type safety.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python

Design follows existing patterns:
- Pydantic BaseModel for type-safe results (consistent with schema.py)
- ABC for interface enforcement (Python standard library)
- Settings injection (consistent with existing service initialization)
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Any, Literal

import httpx
from pydantic import BaseModel, ValidationError

from services.extraction.schema import ExtractedFieldSet, ExtractedInvoice
from services.shared.config import Settings

SYSTEM_PROMPT = """You are an expert invoice parser. Extract and return invoice details \
in this exact JSON format:
{
  "vendor_name": "string",
  "invoice_number": "string",
  "invoice_date": "YYYY-MM-DD",
  "due_date": "YYYY-MM-DD",
  "total_amount": number,
  "currency": "string",
  "payment_terms": "string",
  "purchase_order_number": "string",
  "billing_address": "string",
  "shipping_address": "string",
  "notes": "string",
  "tax_amount": number,
  "subtotal": number,
  "line_items": [
    {
      "description": "string",
      "quantity": number,
      "unit_price": number,
      "total": number
    }
  ]
}
Use null for any field that is not clearly present. For currency, return the symbol \
printed on the invoice when there is one (e.g. "$"), otherwise the ISO code."""

USER_INSTRUCTION = (
    "Extract the invoice information from this document and return it in the specified "
    "JSON format. Ensure all dates are in YYYY-MM-DD format and all numeric values are "
    "numbers, not strings."
)


class DocumentReference(BaseModel):
    """Reference to an uploaded document.

    Attributes:
        url: Public URL of the stored document
        content: Document bytes when already in memory (skips the download)
        content_type: MIME type if known
    """

    url: str
    content: bytes | None = None
    content_type: str | None = None

    @property
    def is_pdf(self) -> bool:
        if self.content is not None and self.content[:5] == b"%PDF-":
            return True
        if self.content_type:
            return self.content_type == "application/pdf"
        return self.url.lower().split("?")[0].endswith(".pdf")


class ExtractionResult(BaseModel):
    """Result of extraction operation.

    Attributes:
        field_set: Extracted field set or None if extraction failed
        success: Whether operation succeeded
        error: Error message if operation failed
        error_kind: 'timeout' when the bounded wait was exceeded, else 'extraction'
        provider: Name of provider that performed extraction (e.g., 'openai', 'ollama')
    """

    field_set: ExtractedFieldSet | None
    success: bool
    error: str | None = None
    error_kind: Literal["extraction", "timeout"] | None = None
    provider: str  # Track which provider was used


class ExtractionProvider(ABC):
    """Abstract base class for invoice extraction providers.

    All extraction services must implement this interface to ensure
    consistent behavior and type safety.

    Example implementations:
    - OpenAIExtractionProvider: Uses OpenAI API (cloud-based)
    - OllamaExtractionProvider: Uses a self-hosted Ollama server
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @abstractmethod
    def extract_invoice_fields(self, document: DocumentReference) -> ExtractionResult:
        """Extract structured invoice data from a document.

        Args:
            document: Reference to the uploaded document

        Returns:
            ExtractionResult with the extracted field set or error
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is available/configured.

        Returns:
            True if provider can be used, False otherwise
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier (e.g., 'openai', 'ollama')
        """
        pass

    def _failure(
        self, error: str, kind: Literal["extraction", "timeout"] = "extraction"
    ) -> ExtractionResult:
        return ExtractionResult(
            field_set=None,
            success=False,
            error=error,
            error_kind=kind,
            provider=self.provider_name,
        )

    def _load_document(self, document: DocumentReference) -> bytes:
        """Return document bytes, downloading them with a bounded wait if needed.

        Raises:
            httpx.HTTPError: If the download fails or times out
        """
        if document.content is not None:
            return document.content

        response = httpx.get(
            document.url,
            timeout=self.settings.extraction_timeout_seconds,
            follow_redirects=True,
        )
        response.raise_for_status()
        return response.content


def parse_oracle_payload(response_text: str) -> ExtractedFieldSet:
    """Parse and validate a raw oracle response.

    Handles common LLM quirks like markdown code blocks. The payload must be
    a JSON object matching ExtractedInvoice; anything else raises.

    Args:
        response_text: Raw model output

    Returns:
        Flattened field set

    Raises:
        json.JSONDecodeError: If no JSON object can be parsed
        ValueError: If the JSON is not an object or fails schema validation
    """
    text = response_text.strip()
    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)```", text)
    if fenced:
        text = fenced.group(1).strip()

    payload: Any = json.loads(text)
    if not isinstance(payload, dict):
        raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")
    if "error" in payload and len(payload) == 1:
        raise ValueError(f"Oracle reported an error: {payload['error']}")

    try:
        invoice = ExtractedInvoice.model_validate(payload)
    except ValidationError as e:
        raise ValueError(f"Response does not match invoice schema: {e.error_count()} errors") from e

    return ExtractedFieldSet.from_invoice(invoice)
