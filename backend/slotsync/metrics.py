"""Prometheus metrics shared across services (registered once per process)."""
from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "slotsync_requests_total", "Total HTTP requests", ["method", "path", "status"]
)
REQUEST_LATENCY = Histogram(
    "slotsync_request_latency_seconds", "Latency of HTTP requests", ["method", "path"]
)

SYNC_RUN_COUNT = Counter(
    "slotsync_sync_runs_total", "Sync engine runs by outcome", ["vendor", "outcome"]
)
SYNC_RUN_DURATION = Histogram(
    "slotsync_sync_run_duration_seconds", "Duration of a single connection sync run", ["vendor"]
)
SYNC_EVENTS_APPLIED = Counter(
    "slotsync_sync_events_applied_total", "Local event changes applied by sync", ["kind"]
)
SYNC_RECORDS_SKIPPED = Counter(
    "slotsync_sync_records_skipped_total", "Malformed remote records skipped", ["vendor"]
)

TOKEN_REFRESH_COUNT = Counter(
    "slotsync_token_refresh_total", "OAuth token refresh attempts", ["vendor", "outcome"]
)

SLOT_QUERY_COUNT = Counter(
    "slotsync_slot_queries_total", "Availability slot queries"
)
SLOT_QUERY_DURATION = Histogram(
    "slotsync_slot_query_duration_seconds", "Latency of availability slot computation"
)
