"""
Prometheus instruments for forcam-ingest

Files by terminal state, batches and rows by outcome, API pages, moves
that gave up, and retry attempts. Everything registers on REGISTRY so
tests and the optional HTTP endpoint read the same counters.
"""
import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

REGISTRY = CollectorRegistry()


# =======================
# FILE METRICS
# =======================

files_processed_total = Counter(
    name="forcam_files_processed_total",
    documentation="Drop files that reached a terminal state",
    labelnames=["machine", "outcome"],  # outcome: archived, quarantined, cancelled
    registry=REGISTRY,
)

file_moves_failed_total = Counter(
    name="forcam_file_moves_failed_total",
    documentation="Archive/quarantine moves that failed after all retries",
    labelnames=["machine"],
    registry=REGISTRY,
)

workers_in_flight = Gauge(
    name="forcam_workers_in_flight",
    documentation="File lifecycle instances currently running",
    registry=REGISTRY,
)

# =======================
# BATCH METRICS
# =======================

batches_total = Counter(
    name="forcam_batches_total",
    documentation="Batches run against the store",
    labelnames=["import_type", "status"],  # status: success, partial, failed
    registry=REGISTRY,
)

records_total = Counter(
    name="forcam_records_total",
    documentation="Rows handled by the batch loader",
    labelnames=["import_type", "outcome"],  # outcome: inserted, updated, skipped, failed
    registry=REGISTRY,
)

batch_duration_seconds = Histogram(
    name="forcam_batch_duration_seconds",
    documentation="Wall time of one batch in seconds",
    labelnames=["import_type"],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
    registry=REGISTRY,
)

# =======================
# API METRICS
# =======================

api_pages_total = Counter(
    name="forcam_api_pages_total",
    documentation="API pages fetched",
    labelnames=["endpoint", "status"],  # status: ok, failed
    registry=REGISTRY,
)

# =======================
# ERROR METRICS
# =======================

errors_total = Counter(
    name="forcam_errors_total",
    documentation="Total number of errors",
    labelnames=["error_type", "component"],
    registry=REGISTRY,
)

retries_total = Counter(
    name="forcam_retries_total",
    documentation="Retry attempts made by the retry executor",
    labelnames=["operation"],
    registry=REGISTRY,
)


# =======================
# HELPERS
# =======================

def generate_metrics() -> bytes:
    """Render the registry in the Prometheus text exposition format."""
    return generate_latest(REGISTRY)


def start_metrics_server(port: Optional[int] = None) -> None:
    """
    Expose the registry over HTTP for scraping

    Args:
        port: Listen port; METRICS_PORT or 8000 when omitted
    """
    # only needed when the endpoint is enabled
    from prometheus_client import start_http_server

    start_http_server(port or int(os.getenv("METRICS_PORT", "8000")), registry=REGISTRY)


@contextmanager
def track_duration(histogram: Histogram, **labels) -> Iterator[None]:
    """Observe the wall time of the with block into a labelled histogram."""
    with histogram.labels(**labels).time():
        yield


def record_batch(import_type: str, status: str, inserted: int, updated: int, skipped: int, failed: int) -> None:
    """
    Count a finished batch and its per-row outcomes

    skipped are rows the normalizer refused; failed are rows the store refused.
    """
    batches_total.labels(import_type=import_type, status=status).inc()
    outcomes = {"inserted": inserted, "updated": updated, "skipped": skipped, "failed": failed}
    for outcome, value in outcomes.items():
        if value:
            records_total.labels(import_type=import_type, outcome=outcome).inc(value)


def record_error(error_type: str, component: str) -> None:
    errors_total.labels(error_type=error_type, component=component).inc()
