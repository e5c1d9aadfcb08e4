"""
Metrics for the reconciliation engine.
Wraps prometheus_client; every counter is labelled so dashboards can split by provider or layer.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
RECORDS_NORMALIZED = Counter(
    "mr_records_normalized_total",
    "Provider records normalized into the common shape",
    ["provider"],
)
RECORDS_SKIPPED = Counter(
    "mr_records_skipped_total",
    "Provider records skipped as malformed",
    ["provider", "kind"],
)
PROVIDER_FETCH_ERRORS = Counter(
    "mr_provider_fetch_errors_total",
    "Provider fetches that degraded to empty data",
    ["provider"],
)
CANONICAL_UPSERTS = Counter(
    "mr_canonical_upserts_total",
    "Canonical match upserts by outcome",
    ["outcome"],
)
TEAM_RESOLUTIONS = Counter(
    "mr_team_resolutions_total",
    "Team resolutions by resolution path",
    ["provider", "path"],
)
MATCHES_RETIRED = Counter(
    "mr_matches_retired_total",
    "Matches retired by the finished-match detection layers",
    ["layer", "status"],
)
TRANSITIONS_REJECTED = Counter(
    "mr_transitions_rejected_total",
    "Status transitions vetoed by the lifecycle state machine",
    ["from_status", "to_status"],
)
LIFECYCLE_OVERRIDES = Counter(
    "mr_lifecycle_overrides_total",
    "Terminal matches returned to live through the aggregation override",
)
CIRCUIT_OPENED = Counter(
    "mr_circuit_opened_total",
    "Times a circuit breaker opened",
    ["name"],
)
STALE_CACHE_READS = Counter(
    "mr_stale_cache_reads_total",
    "Reads served from the stale shadow key",
    ["kind"],
)

# ── Histograms ──────────────────────────────────────────────────────────
RECONCILE_DURATION = Histogram(
    "mr_reconcile_duration_seconds",
    "Duration of one reconciliation pass",
    ["task"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)
DETECTION_DURATION = Histogram(
    "mr_detection_duration_seconds",
    "Duration of one finished-match detection run",
    ["operation"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
LIVE_MATCHES = Gauge(
    "mr_live_matches",
    "Canonical matches written to the live cache in the last pass",
    ["sport"],
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
