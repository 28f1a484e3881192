from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any


class StubMetrics:
    """Stands in for ``MetricsReporter`` and keeps every emitted call for assertions."""

    def __init__(self) -> None:
        self.increment_calls: list[dict[str, Any]] = []
        self.timing_calls: list[dict[str, Any]] = []
        self.alert_calls: list[dict[str, Any]] = []

    def increment(
        self, metric: str, value: float = 1.0, *, tags: dict[str, Any] | None = None
    ) -> None:
        self.increment_calls.append({"metric": metric, "value": value, "tags": tags or {}})

    def timing(self, metric: str, value_ms: float, *, tags: dict[str, Any] | None = None) -> None:
        self.timing_calls.append({"metric": metric, "value": value_ms, "tags": tags or {}})

    @contextmanager
    def timed(self, metric: str, *, tags: dict[str, Any] | None = None) -> Iterator[None]:
        outcome = "ok"
        try:
            yield
        except Exception:
            outcome = "error"
            raise
        finally:
            self.timing(metric, 0.0, tags={**(tags or {}), "outcome": outcome})

    def alert(self, metric: str, *, severity: str, tags: dict[str, Any] | None = None, **_: Any) -> None:
        self.alert_calls.append({"metric": metric, "severity": severity, "tags": tags or {}})
