"""Tests for JSON logging and the metrics exposition."""

import logging

import orjson

from review_knowledge.core.logging import JsonFormatter, log_context
from review_knowledge.core.metrics import SNIPPET_DEDUP, metrics_payload


def test_json_formatter_lifts_context_fields() -> None:
    record = logging.LogRecord("review_knowledge.test", logging.WARNING, __file__, 1, "search %s failed", ("wiki",), None)
    for key, value in log_context(corpus="wiki", branch="vector").items():
        setattr(record, key, value)

    payload = orjson.loads(JsonFormatter().format(record))

    assert payload["level"] == "WARNING"
    assert payload["message"] == "search wiki failed"
    assert payload["corpus"] == "wiki"
    assert payload["branch"] == "vector"


def test_metrics_payload_lists_counters() -> None:
    SNIPPET_DEDUP.labels(outcome="hit").inc()
    body, content_type = metrics_payload()
    assert b"rkn_snippet_dedup_total" in body
    assert content_type.startswith("text/plain")
