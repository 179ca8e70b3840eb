from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter

REGISTRY = CollectorRegistry()

# Producer side
tasks_enqueued = Counter("taskrelay_tasks_enqueued_total", "Tasks written to the store", registry=REGISTRY)
tasks_cancelled = Counter("taskrelay_tasks_cancelled_total", "Tasks deleted before completion", registry=REGISTRY)
results_stored = Counter("taskrelay_results_stored_total", "Result records written", registry=REGISTRY)

# Enumeration cost: every store list() call, by key namespace (task|lease)
store_list_calls = Counter(
    "taskrelay_store_list_calls_total",
    "Store list() calls",
    labelnames=("namespace",),
    registry=REGISTRY,
)

# Task index cache reads: hit|refresh|stale|fail_closed
task_index_reads = Counter(
    "taskrelay_task_index_reads_total",
    "Task index cache reads by outcome",
    labelnames=("outcome",),
    registry=REGISTRY,
)

lease_enumeration_failures = Counter(
    "taskrelay_lease_enumeration_failures_total",
    "Lease list() failures (claims refused)",
    registry=REGISTRY,
)

# Worker side: claimed|empty|conflict|vanished
claims = Counter(
    "taskrelay_claims_total",
    "Claim attempts by outcome",
    labelnames=("outcome",),
    registry=REGISTRY,
)

# Delivery strategies
delivery_outcomes = Counter(
    "taskrelay_delivery_total",
    "Delivery attempts by mode and outcome",
    labelnames=("mode", "outcome"),
    registry=REGISTRY,
)
delivery_degraded = Counter(
    "taskrelay_delivery_degraded_total",
    "Delivery attempts that degraded into a placeholder receipt",
    labelnames=("mode", "reason"),
    registry=REGISTRY,
)
