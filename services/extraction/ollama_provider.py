"""Ollama-based extraction provider for self-hosted LLM inference.

Feeds the text layer of a PDF invoice to a local Ollama server and asks for
the same JSON shape as the cloud provider. Supports data sovereignty
requirements by running entirely on-premises.

Image uploads are not supported (text-only models have nothing to read).

Requires Ollama server running on localhost:11434.
See: https://ollama.ai/
"""

import io
import logging

import httpx
from pypdf import PdfReader
from pypdf.errors import PyPdfError
from tenacity import (
    Retrying,
    retry_if_exception_type,
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


class _TransientOllamaError(Exception):
    """5xx or dropped connection from the Ollama server."""


class OllamaExtractionProvider(ExtractionProvider):
    """Ollama-based extraction provider for self-hosted LLM inference.

    Uses local Ollama server running on localhost:11434.
    Supports models like Qwen2.5, Llama3, Mistral.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize Ollama extraction provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._base_url = settings.ollama_base_url
        self._model = settings.ollama_model
        self._client = httpx.Client(timeout=settings.extraction_timeout_seconds)

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier 'ollama'
        """
        return "ollama"

    def is_available(self) -> bool:
        """Check if Ollama server is running and model is available.

        Returns:
            True if Ollama server responds and model is loaded
        """
        try:
            response = self._client.get(f"{self._base_url}/api/tags")
            if response.status_code != 200:
                return False
            # Check if configured model is available
            models = response.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            return self._model.split(":")[0] in model_names
        except (httpx.HTTPError, ValueError):
            return False

    def extract_invoice_fields(self, document: DocumentReference) -> ExtractionResult:
        """Extract structured invoice data from a PDF's text layer using Ollama.

        Args:
            document: Reference to the uploaded invoice

        Returns:
            ExtractionResult with the field set or error, provider='ollama'
        """
        try:
            content = self._load_document(document)
        except httpx.TimeoutException:
            logger.warning(f"Timed out fetching document {document.url}")
            return self._failure("Timed out fetching document", kind="timeout")
        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch document {document.url}: {e}")
            return self._failure(f"Failed to fetch document: {e}")

        if not document.is_pdf and content[:5] != b"%PDF-":
            return self._failure("Ollama provider only supports PDF documents")

        try:
            text = self._extract_text(content)
        except (PyPdfError, ValueError) as e:
            return self._failure(f"Unreadable PDF: {e}")

        if not text.strip():
            return self._failure("Document has no text layer to extract from")

        try:
            response_text = self._call_ollama_with_retry(self._build_extraction_prompt(text))
            field_set = parse_oracle_payload(response_text)

            return ExtractionResult(
                field_set=field_set,
                success=True,
                provider=self.provider_name,
            )

        except httpx.TimeoutException:
            logger.warning(f"Ollama extraction timed out for {document.url}")
            return self._failure("Extraction timed out", kind="timeout")
        except (httpx.HTTPError, _TransientOllamaError) as e:
            logger.error(f"Ollama extraction failed: {e}")
            return self._failure(f"Extraction failed: {str(e)}")
        except ValueError as e:
            logger.warning(f"Failed to parse JSON from Ollama response: {e}")
            return self._failure(f"Invalid response from model: {str(e)}")

    @staticmethod
    def _extract_text(content: bytes) -> str:
        reader = PdfReader(io.BytesIO(content))
        return "\n".join(page.extract_text() or "" for page in reader.pages)

    def _call_ollama_with_retry(self, prompt: str) -> str:
        """Call Ollama API with retry logic for transient errors.

        Retries 5xx answers and refused connections, up to
        settings.extraction_max_attempts attempts.

        Args:
            prompt: Extraction prompt for the LLM

        Returns:
            Raw response text from Ollama

        Raises:
            httpx.HTTPError: After all retry attempts exhausted, or at once on timeout
            ValueError: The server answered with something other than a JSON object
        """
        for attempt in Retrying(
            retry=retry_if_exception_type((_TransientOllamaError, httpx.ConnectError)),
            wait=wait_exponential_jitter(initial=1, max=30),
            stop=stop_after_attempt(self.settings.extraction_max_attempts),
            reraise=True,
        ):
            with attempt:
                return self._generate(prompt)
        raise RuntimeError("unreachable")  # pragma: no cover

    def _generate(self, prompt: str) -> str:
        response = self._client.post(
            f"{self._base_url}/api/generate",
            json={
                "model": self._model,
                "system": SYSTEM_PROMPT,
                "prompt": prompt,
                "format": "json",
                "stream": False,
                "options": {
                    "temperature": 0,  # Deterministic output
                    "num_predict": 2000,
                },
            },
        )
        if response.status_code >= 500:
            raise _TransientOllamaError(f"Ollama returned {response.status_code}")
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict) or not isinstance(body.get("response", ""), str):
            raise ValueError(f"unexpected Ollama response body: {str(body)[:200]}")
        result: str = body.get("response", "")
        return result

    def _build_extraction_prompt(self, document_text: str) -> str:
        return f"""{USER_INSTRUCTION}

- Convert dates like MM/DD/YYYY to YYYY-MM-DD
- Convert European decimals: 211,77 -> 211.77
- Return ONLY JSON, no explanation

DOCUMENT TEXT:
{document_text}

OUTPUT:"""
