"""Prometheus metrics registration for the feature management service.

All metric objects are defined at import time.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

feature_management_requests_total = Counter(
    "feature_management_requests_total",
    "Feature management API requests",
    ["operation", "status"],  # status: ok|rejected|error
)
feature_override_writes_total = Counter(
    "feature_override_writes_total",
    "Subject override upserts",
    ["subject_kind", "enabled"],
)
feature_opt_in_total = Counter(
    "feature_opt_in_total",
    "Opt-in attempts through the opt-in prompt",
    ["status"],  # ok|rejected
)
feature_store_latency_seconds = Histogram(
    "feature_store_latency_seconds",
    "Latency of engine operations including flag store I/O",
    ["operation"],
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.0],
)

__all__ = [
    "feature_management_requests_total",
    "feature_override_writes_total",
    "feature_opt_in_total",
    "feature_store_latency_seconds",
]
