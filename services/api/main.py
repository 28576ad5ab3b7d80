"""FastAPI application for the invoice workbench.

Production-ready API with:
- Health and readiness checks for Kubernetes
- Sequential multi-file invoice upload with per-file outcomes
- Field mapping management, suggestions and application
- Invoice merge and plan-gated exports
- Structured error responses ({error, message, action})
- Prometheus metrics for monitoring

The caller is authenticated upstream; the owner id arrives in the
X-User-Id header.

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import json
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import (
    Depends,
    FastAPI,
    File,
    Form,
    Header,
    HTTPException,
    Request,
    Response,
    UploadFile,
    status,
)
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from services.api import metrics
from services.billing.plans import PlanService
from services.db.database import create_engine, create_session_factory, init_models
from services.export.service import ExportResult, ExportService, HistoryDeletion
from services.extraction.client import ExtractionClient
from services.extraction.factory import create_extraction_provider
from services.ingest.pipeline import FileOutcome, IngestPipeline, UploadedFile
from services.invoices.repository import (
    ExportHistoryRepository,
    InvoiceRepository,
    ProfileRepository,
)
from services.invoices.schema import ExportHistoryRecord, Invoice
from services.mapping.schema import FieldMapping, FieldMappingCreate, FieldMappingUpdate
from services.mapping.service import FieldMappingService
from services.mapping.suggestions import FIELD_TYPES, apply_mappings, suggest_mappings
from services.merge.engine import MergeEngine, MergeResult
from services.shared.cache import QueryCache
from services.shared.config import get_settings
from services.shared.errors import InvoiceServiceError, StorageError, ValidationInputError
from services.storage.service import StorageService

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

engine = create_engine(settings)
session_factory = create_session_factory(engine)
query_cache = QueryCache(ttl_seconds=settings.cache_ttl_seconds)

storage_service = StorageService(settings)
extraction_client = ExtractionClient(create_extraction_provider(settings))
field_mapping_service = FieldMappingService(session_factory, query_cache)
invoice_repository = InvoiceRepository(session_factory, query_cache)
history_repository = ExportHistoryRepository(session_factory, query_cache)
plan_service = PlanService(ProfileRepository(session_factory), settings)
ingest_pipeline = IngestPipeline(
    storage_service, extraction_client, field_mapping_service, invoice_repository, plan_service
)
merge_engine = MergeEngine(invoice_repository, history_repository, storage_service, settings)
export_service = ExportService(
    invoice_repository, history_repository, storage_service, plan_service
)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    await init_models(engine)
    logger.info(f"{settings.service_name} {settings.service_version} started")
    yield
    await engine.dispose()


app = FastAPI(
    title="Invoice Workbench",
    description="Invoice extraction, field mapping, merge and export API",
    version=settings.service_version,
    lifespan=lifespan,
)

ERROR_STATUS = {
    "validation_input": status.HTTP_400_BAD_REQUEST,
    "extraction": status.HTTP_502_BAD_GATEWAY,
    "duplicate_field": status.HTTP_409_CONFLICT,
    "not_found": status.HTTP_404_NOT_FOUND,
    "plan_restricted": status.HTTP_402_PAYMENT_REQUIRED,
    "merge": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "storage": status.HTTP_502_BAD_GATEWAY,
    "timeout": status.HTTP_504_GATEWAY_TIMEOUT,
}


@app.exception_handler(InvoiceServiceError)
async def invoice_error_handler(_: Request, exc: InvoiceServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content=exc.to_dict(),
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(_: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(f"Database error: {exc}")
    error = StorageError("The database is unavailable.")
    return JSONResponse(status_code=ERROR_STATUS[error.kind], content=error.to_dict())


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Record metrics
    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path,
    ).observe(duration)

    return response


def get_owner_id(x_user_id: str | None = Header(None)) -> str:  # noqa: B008
    """Owner id forwarded by the identity gateway."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header"
        )
    return x_user_id.strip()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    database: bool
    storage: bool


class UploadResponse(BaseModel):
    """Per-file outcomes of an upload batch, in upload order."""

    succeeded: int
    failed: int
    results: list[FileOutcome]


class MergeRequest(BaseModel):
    invoice_ids: list[str]


class ExportRequest(BaseModel):
    invoice_ids: list[str]
    format: str = "text"


class DeleteExportsRequest(BaseModel):
    ids: list[str]


class SuggestRequest(BaseModel):
    keys: list[str]


class SuggestResponse(BaseModel):
    suggestions: dict[str, str]
    field_types: list[dict[str, str]]


class ApplyRequest(BaseModel):
    fields: dict[str, str | int | float | None]
    mapping: dict[str, str]
    exclusions: list[str] = Field(default_factory=list)


class ApplyResponse(BaseModel):
    fields: dict[str, str | int | float | None]


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe.

    Returns:
        Health status information
    """
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
async def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    The service is ready when the database answers; storage is reported
    but only required when enabled.
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        database_ok = True
    except SQLAlchemyError as e:
        logger.warning(f"Readiness: database check failed: {e}")
        database_ok = False

    storage_ok = storage_service.health_check() if settings.storage_enabled else True
    return ReadinessResponse(
        ready=database_ok and storage_ok, database=database_ok, storage=storage_ok
    )


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint.

    Returns:
        Prometheus metrics in text format
    """
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


# ────────────────────────────────────────────────────────────
# Invoices
# ────────────────────────────────────────────────────────────
@app.post("/api/v1/invoices/upload", response_model=UploadResponse, tags=["Invoices"])
async def upload_invoices(
    files: list[UploadFile] = File(..., description="PDF or image invoices"),  # noqa: B008
    mapping: str | None = Form(None, description="JSON object: raw key -> canonical field"),
    exclude: list[str] | None = Form(None, description="Raw keys to drop"),
    owner_id: str = Depends(get_owner_id),
) -> UploadResponse:
    """Upload invoices and extract them one at a time.

    Each file is stored, sent to the extraction oracle, mapped onto the
    owner's canonical fields, validated and persisted. A failing file is
    reported in its own result and the remaining files still run.

    ## Usage Example

    ```bash
    curl -X POST "http://localhost:8000/api/v1/invoices/upload" \\
      -H "X-User-Id: user-123" \\
      -F "files=@march.pdf" -F "files=@april.pdf" \\
      -F 'mapping={"supplier": "vendor_name"}'
    ```

    ## Error Handling

    - Returns 400 if no file is given or `mapping` is not a JSON object
    - Returns 402 if the batch exceeds the plan's file count or size limit
    - Returns 200 with per-file `status`/`error` otherwise
    """
    overrides: dict[str, str] = {}
    if mapping:
        try:
            parsed = json.loads(mapping)
        except json.JSONDecodeError as e:
            raise ValidationInputError("mapping must be a JSON object.") from e
        if not isinstance(parsed, dict):
            raise ValidationInputError("mapping must be a JSON object.")
        overrides = {str(k): str(v) for k, v in parsed.items()}

    uploads: list[UploadedFile] = []
    for upload in files:
        if not upload.filename:
            raise ValidationInputError("Every uploaded file needs a file name.")
        content = await upload.read()
        if not content:
            raise ValidationInputError(f"{upload.filename} is empty.")
        metrics.invoice_upload_size_bytes.observe(len(content))
        uploads.append(
            UploadedFile(
                filename=upload.filename, content=content, content_type=upload.content_type
            )
        )

    report = await ingest_pipeline.process_batch(owner_id, uploads, overrides, exclude or [])

    for outcome in report.outcomes:
        metrics.invoices_uploaded_total.labels(status=outcome.status).inc()
        if outcome.extraction_seconds is None:
            continue
        metrics.extraction_duration_seconds.observe(outcome.extraction_seconds)
        kind = outcome.error["error"] if outcome.error else None
        extraction_status = {"timeout": "timeout", "extraction": "failed"}.get(kind, "success")
        metrics.extraction_requests_total.labels(status=extraction_status).inc()

    return UploadResponse(
        succeeded=report.succeeded, failed=report.failed, results=report.outcomes
    )


@app.get("/api/v1/invoices", response_model=list[Invoice], tags=["Invoices"])
async def list_invoices(owner_id: str = Depends(get_owner_id)) -> list[Invoice]:
    return await invoice_repository.list_invoices(owner_id)


@app.post("/api/v1/invoices/merge", response_model=MergeResult, tags=["Invoices"])
async def merge_invoices(
    request: MergeRequest, owner_id: str = Depends(get_owner_id)
) -> MergeResult:
    """Merge invoices into one summary and one combined PDF (Pro and Enterprise)."""
    limits = await plan_service.limits_for(owner_id)
    try:
        result = await merge_engine.merge(request.invoice_ids, owner_id, limits.can_merge)
    except InvoiceServiceError:
        metrics.merges_total.labels(status="failed").inc()
        raise
    metrics.merges_total.labels(status="partial" if result.partial else "completed").inc()
    return result


@app.post("/api/v1/invoices/export", response_model=ExportResult, tags=["Invoices"])
async def export_invoices(
    request: ExportRequest, owner_id: str = Depends(get_owner_id)
) -> ExportResult:
    """Export invoices as text (all plans) or CSV/JSON/Excel (Pro and Enterprise)."""
    try:
        result = await export_service.export(owner_id, request.invoice_ids, request.format)
    except InvoiceServiceError:
        metrics.exports_total.labels(format=request.format, status="failed").inc()
        raise
    metrics.exports_total.labels(format=request.format, status="completed").inc()
    return result


# ────────────────────────────────────────────────────────────
# Export history
# ────────────────────────────────────────────────────────────
@app.get("/api/v1/exports", response_model=list[ExportHistoryRecord], tags=["Exports"])
async def list_exports(owner_id: str = Depends(get_owner_id)) -> list[ExportHistoryRecord]:
    return await export_service.list_history(owner_id)


@app.delete("/api/v1/exports", response_model=HistoryDeletion, tags=["Exports"])
async def delete_exports(
    request: DeleteExportsRequest, owner_id: str = Depends(get_owner_id)
) -> HistoryDeletion:
    return await export_service.delete_history(owner_id, request.ids)


# ────────────────────────────────────────────────────────────
# Field mappings
# ────────────────────────────────────────────────────────────
@app.get("/api/v1/field-mappings", response_model=list[FieldMapping], tags=["Field Mappings"])
async def list_field_mappings(owner_id: str = Depends(get_owner_id)) -> list[FieldMapping]:
    return await field_mapping_service.list_mappings(owner_id)


@app.post(
    "/api/v1/field-mappings",
    response_model=FieldMapping,
    status_code=status.HTTP_201_CREATED,
    tags=["Field Mappings"],
)
async def create_field_mapping(
    request: FieldMappingCreate, owner_id: str = Depends(get_owner_id)
) -> FieldMapping:
    return await field_mapping_service.create(owner_id, request.field_name)


@app.patch(
    "/api/v1/field-mappings/{mapping_id}", response_model=FieldMapping, tags=["Field Mappings"]
)
async def update_field_mapping(
    mapping_id: str, request: FieldMappingUpdate, owner_id: str = Depends(get_owner_id)
) -> FieldMapping:
    return await field_mapping_service.update(owner_id, mapping_id, request)


@app.delete(
    "/api/v1/field-mappings/{mapping_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Field Mappings"],
)
async def delete_field_mapping(
    mapping_id: str, owner_id: str = Depends(get_owner_id)
) -> Response:
    await field_mapping_service.delete(owner_id, mapping_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post(
    "/api/v1/field-mappings/suggest", response_model=SuggestResponse, tags=["Field Mappings"]
)
def suggest_field_mappings(
    request: SuggestRequest, owner_id: str = Depends(get_owner_id)
) -> SuggestResponse:
    """Suggest canonical targets for raw extracted keys."""
    return SuggestResponse(
        suggestions=suggest_mappings(request.keys),
        field_types=[{"value": value, "label": label} for value, label in FIELD_TYPES],
    )


@app.post(
    "/api/v1/field-mappings/apply", response_model=ApplyResponse, tags=["Field Mappings"]
)
def apply_field_mappings(
    request: ApplyRequest, owner_id: str = Depends(get_owner_id)
) -> ApplyResponse:
    """Apply a confirmed mapping to a raw field set."""
    final = apply_mappings(request.fields, request.mapping, request.exclusions)
    return ApplyResponse(fields=final)
