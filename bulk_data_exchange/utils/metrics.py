"""
Prometheus metrics for the pipeline.

Metrics live in a dedicated registry so embedding applications can choose
whether to expose them.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge

REGISTRY = CollectorRegistry(auto_describe=True)

JOBS_CLAIMED = Counter(
    "bdx_jobs_claimed_total",
    "Jobs claimed by a poller",
    ["kind"],
    registry=REGISTRY,
)

JOBS_FINISHED = Counter(
    "bdx_jobs_finished_total",
    "Jobs that reached a terminal status",
    ["kind", "status"],
    registry=REGISTRY,
)

ROWS_PROCESSED = Counter(
    "bdx_import_rows_total",
    "Imported rows by outcome",
    ["module", "outcome"],
    registry=REGISTRY,
)

IN_FLIGHT = Gauge(
    "bdx_jobs_in_flight",
    "Processor invocations currently running",
    ["kind"],
    registry=REGISTRY,
)

JOBS_RECOVERED = Counter(
    "bdx_jobs_recovered_total",
    "Stuck jobs reverted to pending",
    ["kind"],
    registry=REGISTRY,
)

SCHEDULED_RUNS = Counter(
    "bdx_scheduled_runs_total",
    "Scheduled export runs by final status",
    ["status"],
    registry=REGISTRY,
)
