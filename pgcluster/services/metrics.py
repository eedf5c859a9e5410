"""
Prometheus metrics for the reconciliation worker and lifecycle controllers.
"""
from prometheus_client import Counter, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "pgcluster_reconcile_total",
    "Total number of cluster reconciliations",
    ["outcome"],
)

reconcile_duration_seconds = Histogram(
    "pgcluster_reconcile_duration_seconds",
    "Time spent reconciling one cluster",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30),
)

reconcile_errors_total = Counter(
    "pgcluster_reconcile_errors_total",
    "Total reconciliation errors by exception type",
    ["error"],
)

# Lifecycle metrics
member_deletions_total = Counter(
    "pgcluster_member_deletions_total",
    "Total member pods deleted",
    ["reason"],
)

switchovers_total = Counter(
    "pgcluster_switchovers_total",
    "Total switchovers initiated to complete a rolling update",
)

# Probe metrics
probe_failures_total = Counter(
    "pgcluster_probe_failures_total",
    "Total member probes that failed",
    ["stage"],
)
