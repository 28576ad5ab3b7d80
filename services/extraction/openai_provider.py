"""OpenAI-based extraction provider for invoice field extraction.

Sends the invoice document itself (PDF as a file part, images as an image
part) to a multimodal chat-completions model with a fixed system instruction
and JSON response format.

Includes retry logic with exponential backoff for transient API errors.
Timeouts are never retried: a call that exceeds the bounded wait is reported
with error_kind='timeout'.
"""

import base64
import logging
import os
from typing import Any

import httpx
from openai import (
    APIConnectionError,
    APIError,
    APITimeoutError,
    InternalServerError,
    OpenAI,
    RateLimitError,
)
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.extraction.base import (
    SYSTEM_PROMPT,
    USER_INSTRUCTION,
    DocumentReference,
    ExtractionProvider,
    ExtractionResult,
    parse_oracle_payload,
)
from services.shared.config import Settings

logger = logging.getLogger(__name__)


def _is_transient(error: BaseException) -> bool:
    """Rate limits, 5xx and dropped connections are retried; timeouts are not."""
    if isinstance(error, APITimeoutError):
        return False
    return isinstance(error, RateLimitError | InternalServerError | APIConnectionError)


class OpenAIExtractionProvider(ExtractionProvider):
    """OpenAI-based extraction provider.

    Uses a multimodal model (gpt-4o-mini by default) with JSON output.
    Requires OPENAI_API_KEY environment variable.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize OpenAI extraction provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._client: OpenAI | None = None

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier 'openai'
        """
        return "openai"

    def is_available(self) -> bool:
        """Check if OpenAI API key is configured.

        Returns:
            True if OPENAI_API_KEY environment variable is set
        """
        return os.getenv("OPENAI_API_KEY") is not None

    def extract_invoice_fields(self, document: DocumentReference) -> ExtractionResult:
        """Extract structured invoice data from a document using OpenAI.

        Args:
            document: Reference to the uploaded invoice

        Returns:
            ExtractionResult with the field set or error, provider='openai'
        """
        # Check for API key at runtime
        if not self.is_available():
            return self._failure("OPENAI_API_KEY environment variable not set")

        try:
            content = self._load_document(document)
        except httpx.TimeoutException:
            logger.warning(f"Timed out fetching document {document.url}")
            return self._failure("Timed out fetching document", kind="timeout")
        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch document {document.url}: {e}")
            return self._failure(f"Failed to fetch document: {e}")

        if not content:
            return self._failure("Empty document provided")

        try:
            api_key = os.getenv("OPENAI_API_KEY")
            if self._client is None or self._client.api_key != api_key:
                self._client = OpenAI(
                    api_key=api_key,
                    timeout=self.settings.extraction_timeout_seconds,
                    max_retries=0,  # Retries handled below, timeouts excluded
                )

            messages = self._build_messages(document, content)
            response = self._call_openai_with_retry(messages)

            message_content = response.choices[0].message.content
            if not message_content:
                return self._failure("Invalid response from model: no content returned")

            field_set = parse_oracle_payload(message_content)

            return ExtractionResult(
                field_set=field_set,
                success=True,
                provider=self.provider_name,
            )

        except APITimeoutError:
            logger.warning(f"OpenAI extraction timed out for {document.url}")
            return self._failure("Extraction timed out", kind="timeout")
        except APIError as e:
            logger.error(f"OpenAI API error for {document.url}: {e}")
            return self._failure(f"Extraction failed: {str(e)}")
        except ValueError as e:
            logger.warning(f"Unparseable extraction response for {document.url}: {e}")
            return self._failure(f"Invalid response from model: {str(e)}")
        except Exception as e:
            logger.exception(f"Unexpected extraction failure for {document.url}")
            return self._failure(f"Extraction failed: {str(e)}")

    def _call_openai_with_retry(self, messages: list[dict[str, Any]]) -> Any:
        """Call OpenAI API with retry logic for transient errors.

        Uses exponential backoff with jitter to handle rate limits and temporary
        failures, up to settings.extraction_max_attempts attempts.

        Args:
            messages: Chat messages including the document part

        Returns:
            OpenAI API response

        Raises:
            openai.APIError: After all retry attempts are exhausted, or at once on timeout
        """
        if self._client is None:
            raise RuntimeError("OpenAI client not initialized")

        for attempt in Retrying(
            retry=retry_if_exception(_is_transient),
            wait=wait_exponential_jitter(initial=1, max=30),
            stop=stop_after_attempt(self.settings.extraction_max_attempts),
            reraise=True,
        ):
            with attempt:
                return self._client.chat.completions.create(
                    model=self.settings.openai_model,
                    messages=messages,
                    response_format={"type": "json_object"},
                    temperature=0,  # Deterministic output
                    max_tokens=2000,
                )
        raise RuntimeError("unreachable")  # pragma: no cover

    def _build_messages(self, document: DocumentReference, content: bytes) -> list[dict[str, Any]]:
        """Build chat messages carrying the document inline.

        Args:
            document: Document reference (used for type detection and file name)
            content: Document bytes

        Returns:
            Messages list for chat.completions.create
        """
        encoded = base64.b64encode(content).decode("ascii")

        if document.is_pdf:
            document_part: dict[str, Any] = {
                "type": "file",
                "file": {
                    "filename": document.url.rsplit("/", 1)[-1] or "invoice.pdf",
                    "file_data": f"data:application/pdf;base64,{encoded}",
                },
            }
        else:
            mime = document.content_type or "image/png"
            document_part = {
                "type": "image_url",
                "image_url": {"url": f"data:{mime};base64,{encoded}"},
            }

        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [{"type": "text", "text": USER_INSTRUCTION}, document_part],
            },
        ]
