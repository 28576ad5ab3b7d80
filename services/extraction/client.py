"""Async facade over an extraction provider.

Runs the blocking provider call off the event loop and turns a failed
ExtractionResult into the matching operation error.
"""

import asyncio
import logging
import time

from services.extraction.base import DocumentReference, ExtractionProvider
from services.extraction.schema import ExtractedFieldSet
from services.shared.errors import ExtractionError, OperationTimeoutError

logger = logging.getLogger(__name__)


class ExtractionClient:
    """Extraction oracle client used by the upload pipeline."""

    def __init__(self, provider: ExtractionProvider) -> None:
        self.provider = provider

    async def extract(self, document: DocumentReference) -> ExtractedFieldSet:
        """Extract a raw field set from one document.

        Args:
            document: Stored document reference

        Returns:
            Field set returned by the oracle

        Raises:
            OperationTimeoutError: The bounded wait was exceeded
            ExtractionError: The oracle failed or returned unusable content
        """
        start = time.perf_counter()
        result = await asyncio.to_thread(self.provider.extract_invoice_fields, document)
        elapsed = time.perf_counter() - start

        if result.success and result.field_set is not None:
            logger.info(
                f"Extracted {len(result.field_set.fields)} fields from {document.url} "
                f"via {result.provider} in {elapsed:.2f}s"
            )
            return result.field_set

        logger.warning(
            f"Extraction failed for {document.url} via {result.provider}: {result.error}"
        )
        if result.error_kind == "timeout":
            raise OperationTimeoutError("Invoice extraction timed out.")
        raise ExtractionError(f"Could not extract invoice data: {result.error}")
