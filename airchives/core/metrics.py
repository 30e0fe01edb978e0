"""
Prometheus Metrics for Observability

Tracks pipeline stage latency, provider calls, generation outcomes and
garment intake. Exposes /api/v1/metrics for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Pipeline Latency - Per Stage
pipeline_latency_seconds = Histogram(
    "pipeline_latency_seconds",
    "Time spent in each pipeline stage",
    labelnames=["stage", "status"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0]
)

# Total Generation Duration
generation_total_duration = Histogram(
    "generation_total_duration_seconds",
    "Total time from processing to a terminal generation status",
    labelnames=["status"],
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0]
)

# Inference Provider Calls
provider_calls_total = Counter(
    "provider_calls_total",
    "Total number of inference provider calls",
    labelnames=["provider", "outcome"]
)

# Generations Counter
generations_total = Counter(
    "airchives_generations_total",
    "Total number of generations reaching a terminal status",
    labelnames=["status"]
)

# Active Generations
active_generations_gauge = Gauge(
    "airchives_active_generations",
    "Number of generations currently processing"
)

# Garment Intake
garment_intake_total = Counter(
    "garment_intake_total",
    "Garment intake outcomes",
    labelnames=["status", "category"]
)

detection_fallbacks_total = Counter(
    "detection_fallbacks_total",
    "Detections replaced by the default result",
    labelnames=["reason"]
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Application Info
app_info = Info(
    "airchives_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str, provider: str = "none"):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment,
        "provider": provider
    })


@contextmanager
def track_stage_latency(stage: str):
    """
    Context manager to track stage latency.

    Usage:
        with track_stage_latency("synthesis"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        pipeline_latency_seconds.labels(stage=stage, status=status).observe(time.time() - start)


def record_provider_call(provider: str, outcome: str):
    """Record an inference provider call (success, error, timeout, rejected)."""
    provider_calls_total.labels(provider=provider, outcome=outcome).inc()


def record_generation_started():
    active_generations_gauge.inc()


def record_generation_finished(status: str, duration_seconds: float):
    """Record a generation reaching COMPLETED or FAILED."""
    generations_total.labels(status=status.lower()).inc()
    generation_total_duration.labels(status=status.lower()).observe(duration_seconds)
    active_generations_gauge.dec()


def record_garment_intake(status: str, category: str):
    garment_intake_total.labels(status=status.lower(), category=category.lower()).inc()


def record_detection_fallback(reason: str):
    detection_fallbacks_total.labels(reason=reason).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
