"""Prometheus metrics for the invoicing API.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- Request duration histograms
- Document saves by kind and action
- PDF rendering counts and durations
- Email sends by outcome

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

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

# Persistence metrics
documents_saved_total = Counter(
    "documents_saved_total",
    "Total document saves",
    ["kind", "action"],  # action: inserted, updated, failed
)

# PDF rendering metrics
pdf_renders_total = Counter(
    "pdf_renders_total",
    "Total PDF conversions",
    ["engine", "status"],  # success, failed
)

pdf_render_duration_seconds = Histogram(
    "pdf_render_duration_seconds",
    "PDF conversion duration in seconds",
    ["engine"],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

# Mail metrics
emails_sent_total = Counter(
    "emails_sent_total",
    "Total email send attempts",
    ["status"],  # success, failed
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
