"""Prometheus metrics helpers."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

CHUNK_COUNTER = Counter(
    "hapticsync_chunks_total",
    "Chunks processed by the orchestrator",
    labelnames=("status",),
)

CHUNK_DURATION = Histogram(
    "hapticsync_chunk_processing_seconds",
    "Time spent downloading, extracting and analyzing one chunk",
    buckets=(0.5, 1, 2.5, 5, 10, 30, 60, 120, 300, 600),
)

DOWNLOAD_ATTEMPTS = Counter(
    "hapticsync_download_attempts_total",
    "Media download attempts",
    labelnames=("outcome",),
)

DOWNLOAD_BYTES = Counter(
    "hapticsync_download_bytes_total",
    "Bytes written to the media cache",
)
