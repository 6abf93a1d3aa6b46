"""Prometheus metrics for fleetview."""

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("fleetview", "fleetview application info")
app_info.info({"version": "0.1.0", "name": "fleetview"})

# Refresh metrics
refreshes_total = Counter(
    "fleetview_refreshes_total",
    "Total number of full feed refresh attempts",
    ["status"],
)

refresh_duration_seconds = Histogram(
    "fleetview_refresh_duration_seconds",
    "Time spent fetching and committing both feeds",
    buckets=[0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

nodes_committed = Gauge(
    "fleetview_nodes_committed",
    "Number of nodes in the committed node table",
)

rows_skipped_total = Counter(
    "fleetview_rows_skipped_total",
    "Malformed feed rows dropped during normalization",
    ["feed"],
)

# Detail metrics
detail_fetches_total = Counter(
    "fleetview_detail_fetches_total",
    "Total number of detail page fetches issued to the source",
    ["status"],
)

detail_cache_hits_total = Counter(
    "fleetview_detail_cache_hits_total",
    "Detail requests served from cache or joined onto an in-flight fetch",
    ["kind"],
)

# View metrics
reconcile_ops_total = Counter(
    "fleetview_reconcile_ops_total",
    "Row operations issued by the reconciliation engine",
    ["op"],
)

# Storage metrics
storage_failures_total = Counter(
    "fleetview_storage_failures_total",
    "Storage reads or writes that failed and were degraded to no-cache",
    ["operation"],
)
