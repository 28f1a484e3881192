from __future__ import annotations

import logging

import pytest

from billing_sync.observability.metrics import MetricsReporter


def _payloads(caplog, event: str) -> list[dict]:
    return [record.metrics for record in caplog.records if record.getMessage() == event]


def test_metric_names_are_namespaced(caplog):
    reporter = MetricsReporter()

    with caplog.at_level(logging.INFO, logger="billing_sync.metrics"):
        reporter.increment("webhook.applied", tags={"type": "checkout.session.completed"})
        reporter.increment("billing.webhook.ignored")

    names = [payload["metric"] for payload in _payloads(caplog, "billing.metric")]
    assert names == ["billing.webhook.applied", "billing.webhook.ignored"]


def test_timed_tags_outcome(caplog):
    reporter = MetricsReporter()

    with caplog.at_level(logging.INFO, logger="billing_sync.metrics"):
        with reporter.timed("billing.processor.latency", tags={"operation": "checkout"}):
            pass
        with pytest.raises(RuntimeError):
            with reporter.timed("billing.processor.latency", tags={"operation": "portal"}):
                raise RuntimeError("stripe down")

    outcomes = [
        (payload["tags"]["operation"], payload["tags"]["outcome"], payload["type"])
        for payload in _payloads(caplog, "billing.metric")
    ]
    assert outcomes == [("checkout", "ok", "timing"), ("portal", "error", "timing")]


def test_alert_carries_severity_and_schema(caplog):
    reporter = MetricsReporter()

    with caplog.at_level(logging.INFO, logger="billing_sync.metrics"):
        reporter.alert(
            "billing.checkout.linkage_missing", value=1.0, threshold=0.0, severity="critical"
        )

    (payload,) = _payloads(caplog, "billing.alert")
    assert payload["severity"] == "critical"
    assert payload["schema_version"] == "billing.v1"
