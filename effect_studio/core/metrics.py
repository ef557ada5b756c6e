"""
Prometheus Metrics for Observability

Tracks job outcomes, generative-service calls, fallback usage and HTTP traffic.
Exposes /api/v1/metrics for Prometheus scraping.
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
    "effect_pipeline_latency_seconds",
    "Time spent in each transform stage",
    labelnames=["stage", "status"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)

# Total Job Duration
job_duration_seconds = Histogram(
    "effect_job_duration_seconds",
    "Time from job start to terminal state",
    labelnames=["status"],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 45.0, 60.0, 120.0]
)

# Jobs Counter
jobs_total = Counter(
    "effect_jobs_total",
    "Total number of effect jobs reaching a terminal state",
    labelnames=["status", "error_code"]
)

# Active Jobs
active_jobs_gauge = Gauge(
    "effect_active_jobs",
    "Number of jobs currently pending or processing"
)

# Generative Service Calls
generation_calls_total = Counter(
    "effect_generation_calls_total",
    "Generative transformer calls by outcome",
    labelnames=["outcome"]  # image, text_only, timeout, error, skipped
)

# How results were produced
results_total = Counter(
    "effect_results_total",
    "Completed results by production method",
    labelnames=["method", "effect_id"]  # generated, fallback
)

# Uploads
uploads_total = Counter(
    "effect_uploads_total",
    "Image uploads by outcome",
    labelnames=["outcome"]
)

# Swept blobs and evicted jobs
sweep_removed_total = Counter(
    "effect_sweep_removed_total",
    "Expired entries removed by the background sweep",
    labelnames=["kind"]  # image, job
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
    "effect_studio",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_stage_latency(stage: str):
    """
    Context manager to track stage latency.

    Usage:
        with track_stage_latency("fallback"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except BaseException:
        status = "error"
        raise
    finally:
        pipeline_latency_seconds.labels(stage=stage, status=status).observe(time.time() - start)


def record_generation_call(outcome: str):
    """Record a generative transformer call outcome."""
    generation_calls_total.labels(outcome=outcome).inc()


def record_job_started():
    active_jobs_gauge.inc()


def record_job_finished(status: str, duration_seconds: float, error_code: str = "none"):
    """Record a job reaching a terminal state."""
    jobs_total.labels(status=status, error_code=error_code).inc()
    job_duration_seconds.labels(status=status).observe(duration_seconds)
    active_jobs_gauge.dec()


def record_result(method: str, effect_id: str):
    results_total.labels(method=method, effect_id=effect_id).inc()


def record_upload(outcome: str):
    uploads_total.labels(outcome=outcome).inc()


def record_sweep(kind: str, count: int):
    if count:
        sweep_removed_total.labels(kind=kind).inc(count)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
