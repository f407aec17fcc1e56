"""
Prometheus metrics for monitoring and observability.

Provides counters, histograms, and gauges for tracking:
- Job submission and completion
- Dispatcher saturation
- Pipeline stage latency
- Classification and clustering outcomes
"""

import time
from functools import wraps
from typing import Callable

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
)

REGISTRY = CollectorRegistry()

# ========== Counters ==========

jobs_submitted_total = Counter(
    "jobs_submitted_total",
    "Total number of jobs submitted to the queue",
    registry=REGISTRY,
)

jobs_processed_total = Counter(
    "jobs_processed_total",
    "Total number of jobs that reached a terminal state",
    ["status"],  # completed/failed
    registry=REGISTRY,
)

classifications_total = Counter(
    "classifications_total",
    "Images classified, by resulting category",
    ["category", "fallback"],  # fallback: true/false
    registry=REGISTRY,
)

outlier_dates_reassigned_total = Counter(
    "outlier_dates_reassigned_total",
    "Image capture dates rewritten by memory date clustering",
    registry=REGISTRY,
)

jobs_swept_total = Counter(
    "jobs_swept_total",
    "Terminal job records removed by the retention sweep",
    ["bucket"],  # completed/failed
    registry=REGISTRY,
)

# ========== Histograms ==========

job_processing_duration_seconds = Histogram(
    "job_processing_duration_seconds",
    "Time to process a job end to end",
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
    registry=REGISTRY,
)

stage_duration_seconds = Histogram(
    "stage_duration_seconds",
    "Time spent in a single pipeline stage",
    ["stage"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    registry=REGISTRY,
)

# ========== Gauges ==========

jobs_in_flight = Gauge(
    "jobs_in_flight",
    "Jobs currently claimed and running in this process",
    registry=REGISTRY,
)

queue_depth = Gauge(
    "queue_depth",
    "Records waiting in the processing bucket (claimed or not)",
    registry=REGISTRY,
)


# ========== Metric Decorators ==========

def track_job_processing(func: Callable):
    """Decorator to track job processing duration and outcome."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        status = "completed"
        try:
            return func(*args, **kwargs)
        except Exception:
            status = "failed"
            raise
        finally:
            job_processing_duration_seconds.observe(time.time() - start_time)
            jobs_processed_total.labels(status=status).inc()

    return wrapper


def get_metrics() -> bytes:
    """
    Get current metrics in Prometheus format.

    Returns:
        Metrics as bytes
    """
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get content type for metrics response."""
    return CONTENT_TYPE_LATEST
