"""Prometheus metrics for sync jobs and mutations."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

JOB_RUNS = Counter(
    "sync_jobs_total",
    "Total sync jobs executed",
    ["job", "status"],  # status: success, partial, error, skipped
)

JOB_DURATION = Histogram(
    "sync_job_duration_seconds",
    "Sync job duration",
    ["job"],
)

MUTATIONS = Counter(
    "sync_mutations_total",
    "Shopify mutations attempted",
    ["entity", "operation", "status"],  # status: success, failed, queued
)


def observe_job(job: str, status: str, duration: float) -> None:
    JOB_RUNS.labels(job=job, status=status).inc()
    JOB_DURATION.labels(job=job).observe(duration)


def record_mutation(entity: str, operation: str, status: str, count: int = 1) -> None:
    if count:
        MUTATIONS.labels(entity=entity, operation=operation, status=status).inc(count)
