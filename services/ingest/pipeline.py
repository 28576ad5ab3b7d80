"""Multi-file invoice upload pipeline.

Files are processed strictly one at a time, in input order. Each file runs
store -> extract -> map -> validate -> persist, and a failure in any step is
recorded on that file's outcome without stopping the rest of the batch.

Plan limits (files per batch, file size) are checked for the whole batch
before any file is touched.
"""

import asyncio
import logging
import time
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Literal

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from services.billing.plans import PlanService
from services.extraction.base import DocumentReference
from services.extraction.client import ExtractionClient
from services.invoices.repository import InvoiceRepository
from services.invoices.schema import AMOUNT_FIELDS, Invoice, InvoiceCreate
from services.mapping.service import FieldMappingService
from services.mapping.suggestions import (
    UNMAPPED,
    apply_mappings,
    resolve_mapping,
    suggest_mappings,
)
from services.mapping.validation import FieldIssue, negative_amount_issues, validate_fields
from services.shared.errors import (
    InvoiceServiceError,
    PlanRestrictedError,
    StorageError,
    ValidationInputError,
)
from services.storage.service import StorageService

logger = logging.getLogger(__name__)


class UploadedFile(BaseModel):
    filename: str
    content: bytes
    content_type: str | None = None


class FileOutcome(BaseModel):
    """Result of processing one file.

    Attributes:
        filename: Original file name
        status: 'success' when an invoice was stored
        invoice: Stored invoice (success only)
        error: Error payload (kind, message, action) on failure
        issues: Soft validation issues on the stored invoice
        suggestions: Suggested targets for raw keys that were not mapped
        extraction_seconds: Time spent in the extraction call, if reached
    """

    filename: str
    status: Literal["success", "failed"]
    invoice: Invoice | None = None
    error: dict[str, str | None] | None = None
    issues: list[FieldIssue] = Field(default_factory=list)
    suggestions: dict[str, str] = Field(default_factory=dict)
    extraction_seconds: float | None = None


class BatchReport(BaseModel):
    outcomes: list[FileOutcome] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "success")

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "failed")


class IngestPipeline:
    """Upload, extract, map, validate and persist invoices."""

    def __init__(
        self,
        storage: StorageService,
        extraction: ExtractionClient,
        field_mappings: FieldMappingService,
        invoices: InvoiceRepository,
        plans: PlanService,
    ) -> None:
        self.storage = storage
        self.extraction = extraction
        self.field_mappings = field_mappings
        self.invoices = invoices
        self.plans = plans

    async def process_batch(
        self,
        owner_id: str,
        files: Sequence[UploadedFile],
        mapping_overrides: Mapping[str, str] | None = None,
        exclusions: Iterable[str] = (),
    ) -> BatchReport:
        """Process an upload batch sequentially.

        Args:
            owner_id: Owning user id
            files: Files in upload order
            mapping_overrides: Confirmed raw key to target assignments
            exclusions: Raw keys to drop from every file

        Returns:
            BatchReport with one outcome per file, in input order

        Raises:
            ValidationInputError: No files given
            PlanRestrictedError: Batch exceeds the caller's plan limits
        """
        if not files:
            raise ValidationInputError("No files to upload.")

        limits = await self.plans.limits_for(owner_id)
        if len(files) > limits.max_files_per_batch:
            raise PlanRestrictedError(
                f"The {limits.tier.value} plan accepts up to "
                f"{limits.max_files_per_batch} file(s) per upload."
            )
        oversized = [f.filename for f in files if len(f.content) > limits.file_size_limit_bytes]
        if oversized:
            raise PlanRestrictedError(
                f"{', '.join(oversized)} exceed the {limits.file_size_limit_mb} MB "
                f"file size limit of the {limits.tier.value} plan."
            )

        rules = await self.field_mappings.validation_rules(owner_id)
        excluded = set(exclusions)

        report = BatchReport()
        for position, upload in enumerate(files, start=1):
            logger.info(f"Processing file {position}/{len(files)}: {upload.filename}")
            outcome = await self._process_file(
                owner_id, upload, rules, mapping_overrides or {}, excluded
            )
            report.outcomes.append(outcome)

        logger.info(
            f"Upload batch for {owner_id} finished: "
            f"{report.succeeded} stored, {report.failed} failed"
        )
        return report

    async def _process_file(
        self,
        owner_id: str,
        upload: UploadedFile,
        rules: Mapping[str, Any],
        overrides: Mapping[str, str],
        exclusions: set[str],
    ) -> FileOutcome:
        outcome = FileOutcome(filename=upload.filename, status="failed")
        object_name: str | None = None
        try:
            object_name, url = await self._store(upload)

            start = time.perf_counter()
            try:
                field_set = await self.extraction.extract(
                    DocumentReference(
                        url=url, content=upload.content, content_type=upload.content_type
                    )
                )
            finally:
                outcome.extraction_seconds = time.perf_counter() - start

            raw = field_set.fields
            mapping = resolve_mapping(raw.keys(), rules.keys(), overrides)
            unresolved = [k for k, target in mapping.items() if target == UNMAPPED]
            outcome.suggestions = suggest_mappings(unresolved)

            final = apply_mappings(raw, mapping, exclusions)
            issues = validate_fields(final, rules)
            issues.extend(negative_amount_issues(final, AMOUNT_FIELDS))

            data, unreadable = InvoiceCreate.from_fields(final, field_set.line_items, url)
            issues.extend(
                FieldIssue(field_name=name, message=f"Could not read {name} from '{final[name]}'")
                for name in unreadable
            )

            try:
                invoice = await self.invoices.create(owner_id, data)
            except SQLAlchemyError as e:
                logger.error(f"Failed to persist invoice from {upload.filename}: {e}")
                raise StorageError("Could not save the extracted invoice.") from e

        except InvoiceServiceError as e:
            logger.warning(f"{upload.filename} failed ({e.kind}): {e.message}")
            outcome.error = e.to_dict()
            if object_name is not None:
                await self._discard(object_name)
            return outcome

        if issues:
            logger.info(f"{upload.filename} stored with {len(issues)} validation issue(s)")
        outcome.status = "success"
        outcome.invoice = invoice
        outcome.issues = issues
        return outcome

    async def _store(self, upload: UploadedFile) -> tuple[str, str]:
        object_name = self.storage.generate_object_name(upload.filename)
        result = await asyncio.to_thread(
            self.storage.upload_bytes, upload.content, object_name, upload.content_type
        )
        if not result.success or result.url is None:
            raise StorageError(f"Could not store {upload.filename}.")
        return object_name, result.url

    async def _discard(self, object_name: str) -> None:
        """Remove a stored document whose invoice was not saved."""
        result = await asyncio.to_thread(self.storage.delete_object, object_name)
        if not result.success:
            logger.warning(f"Could not remove orphaned document {object_name}: {result.error}")
