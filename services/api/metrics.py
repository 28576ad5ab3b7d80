"""Prometheus metrics for API service.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- Request duration histograms
- Invoice upload and extraction outcomes
- Merge and export outcomes

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Upload metrics
invoices_uploaded_total = Counter(
    "invoices_uploaded_total",
    "Total invoice files processed by the upload pipeline",
    ["status"],  # success, failed
)

invoice_upload_size_bytes = Histogram(
    "invoice_upload_size_bytes",
    "Invoice upload size in bytes",
    buckets=(10240, 102400, 1048576, 10485760, 104857600),  # 10KB to 100MB
)

# Extraction metrics
extraction_requests_total = Counter(
    "extraction_requests_total",
    "Total extraction oracle calls",
    ["status"],  # success, failed, timeout
)

extraction_duration_seconds = Histogram(
    "extraction_duration_seconds",
    "Extraction oracle call duration in seconds",
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

# Merge / export metrics
merges_total = Counter(
    "invoice_merges_total",
    "Total merge operations",
    ["status"],  # completed, partial, failed
)

exports_total = Counter(
    "invoice_exports_total",
    "Total export operations",
    ["format", "status"],
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
