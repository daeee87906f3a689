"""Prometheus metrics for userpods."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# Readiness signal metrics
signal_resolutions_total = Counter(
    "userpods_signal_resolutions_total",
    "Total readiness signal resolutions by outcome",
    ["outcome"],
)

# Watch session metrics
watch_sessions_total = Counter(
    "userpods_watch_sessions_total",
    "Total watch sessions by resource kind, condition and outcome",
    ["kind", "condition", "outcome"],
)

watch_events_total = Counter(
    "userpods_watch_events_total",
    "Total watch events received by type",
    ["kind", "event_type"],
)

watch_errors_total = Counter(
    "userpods_watch_errors_total",
    "Total watch stream errors",
    ["kind", "reason"],
)

watch_backoff_seconds = Histogram(
    "userpods_watch_backoff_seconds",
    "Watch reopen back-off duration in seconds",
    ["kind"],
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0),
)

# Pod metadata cache metrics
token_reads_total = Counter(
    "userpods_token_reads_total",
    "Total in-pod token read attempts by result",
    ["result"],
)

cache_writes_total = Counter(
    "userpods_cache_writes_total",
    "Total pod cache file writes by result",
    ["result"],
)

# Provisioning metrics
provisioning_duration_seconds = Histogram(
    "userpods_provisioning_duration_seconds",
    "Provisioning operation duration in seconds",
    ["operation", "outcome"],
    buckets=(1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 90.0, 120.0),
)

provisioning_total = Counter(
    "userpods_provisioning_total",
    "Total provisioning operations by outcome",
    ["operation", "outcome"],
)
