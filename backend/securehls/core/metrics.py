"""Prometheus metrics for the API and the video worker.

All series live in one registry exposed at ``GET /metrics``. Under a
multi-process server set ``PROMETHEUS_MULTIPROC_DIR`` and the registry
collects from every worker process.
"""

import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

REGISTRY = CollectorRegistry()

if os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
    multiprocess.MultiProcessCollector(REGISTRY)

APP_INFO = Info("securehls_app", "Application information", registry=REGISTRY)


# ============================================
# HTTP
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "HTTP requests by route and status",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

# Segment fetches dominate traffic and are small; keep resolution at the low end.
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0, 30.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "HTTP requests being served",
    ["method", "endpoint"],
    registry=REGISTRY,
)


# ============================================
# Video processing
# ============================================
VIDEO_JOBS_TOTAL = Counter(
    "video_jobs_total",
    "Video processing job attempts by outcome",
    ["outcome"],
    registry=REGISTRY,
)

RENDITION_ENCODES_TOTAL = Counter(
    "rendition_encodes_total",
    "Rendition encodes by rendition and outcome",
    ["rendition", "outcome"],
    registry=REGISTRY,
)

ENCODE_DURATION_SECONDS = Histogram(
    "encode_duration_seconds",
    "Wall-clock duration of a single ffmpeg encode",
    ["rendition"],
    buckets=[10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1200.0, 1800.0, 3600.0],
    registry=REGISTRY,
)


# ============================================
# Delivery
# ============================================
KEY_DELIVERIES_TOTAL = Counter(
    "key_deliveries_total",
    "Encryption key fetches by outcome",
    ["outcome"],
    registry=REGISTRY,
)

SEGMENT_TOKEN_REJECTIONS_TOTAL = Counter(
    "segment_token_rejections_total",
    "Segment requests rejected because of an invalid token",
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    APP_INFO.info({"version": version, "environment": environment})
