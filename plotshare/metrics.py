"""Prometheus metrics for the dispute engine."""

from prometheus_client import Counter, Histogram

# Dispute lifecycle counters
DISPUTES_FILED = Counter(
    "plotshare_disputes_filed_total",
    "Total disputes filed",
    ["reason"],
)
DISPUTES_RESOLVED = Counter(
    "plotshare_disputes_resolved_total",
    "Total disputes resolved",
    ["resolution"],
)
DISPUTES_CLOSED = Counter(
    "plotshare_disputes_closed_total",
    "Total disputes closed without a financial resolution",
    ["closed_by"],
)
DISPUTE_MESSAGES_POSTED = Counter(
    "plotshare_dispute_messages_posted_total",
    "Total dispute messages appended",
    ["visibility"],
)

# Reconciliation
RECONCILIATION_DURATION = Histogram(
    "plotshare_reconciliation_duration_seconds",
    "Duration of financial reconciliation calls",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
)
RECONCILIATION_FAILURES = Counter(
    "plotshare_reconciliation_failures_total",
    "Reconciliation calls that failed or timed out",
    ["cause"],
)
STRIPE_CALL_DURATION = Histogram(
    "plotshare_stripe_call_duration_seconds",
    "Duration of Stripe API calls",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
)

CONCURRENCY_CONFLICTS = Counter(
    "plotshare_dispute_concurrency_conflicts_total",
    "Dispute writes rejected because another writer got there first",
    ["operation"],
)

# Scheduler job counters
SCHEDULER_JOB_RUNS = Counter(
    "plotshare_scheduler_job_runs_total",
    "Total scheduler job executions",
    ["job_name", "status"],
)
