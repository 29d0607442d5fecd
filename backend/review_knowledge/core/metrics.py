"""Prometheus metrics instrumentation."""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

RETRIEVAL_REQUESTS = Counter(
    "rkn_retrieval_requests_total",
    "Cross-corpus retrieval requests",
    labelnames=("trigger", "outcome"),
    registry=REGISTRY,
)

RETRIEVAL_LATENCY = Histogram(
    "rkn_retrieval_latency_seconds",
    "Latency of cross-corpus retrieval",
    labelnames=("trigger",),
    registry=REGISTRY,
)

CORPUS_FAILURES = Counter(
    "rkn_corpus_failures_total",
    "Corpus search branches that degraded to an empty result",
    labelnames=("corpus", "branch"),
    registry=REGISTRY,
)

SNIPPET_DEDUP = Counter(
    "rkn_snippet_dedup_total",
    "Content-hash lookups made while ingesting diff hunks",
    labelnames=("outcome",),
    registry=REGISTRY,
)

TROUBLESHOOTING_OUTCOMES = Counter(
    "rkn_troubleshooting_outcomes_total",
    "Troubleshooting retrieval outcomes",
    labelnames=("source",),
    registry=REGISTRY,
)

SYNC_RUNS = Counter(
    "rkn_sync_runs_total",
    "Scheduled sync job executions",
    labelnames=("job", "status"),
    registry=REGISTRY,
)


def metrics_payload() -> tuple[bytes, str]:
    """Return the Prometheus exposition body and its content type."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST


__all__ = [
    "REGISTRY",
    "RETRIEVAL_REQUESTS",
    "RETRIEVAL_LATENCY",
    "CORPUS_FAILURES",
    "SNIPPET_DEDUP",
    "TROUBLESHOOTING_OUTCOMES",
    "SYNC_RUNS",
    "metrics_payload",
]
