"""
Metrics sinks for the decision pipeline.

The pipeline reports to a ``MetricsSink`` and never depends on the report
succeeding. ``PrometheusMetrics`` keeps its collectors in a private registry
so several instances can coexist in one process.
"""

from __future__ import annotations

from typing import Protocol

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)


class MetricsSink(Protocol):
    """Fire-and-forget receiver for decision pipeline metrics."""

    def request_started(self) -> None: ...

    def request_finished(self) -> None: ...

    def record_decision(
        self,
        final: str,
        source: str,
        version: str,
        arbiter_used: bool,
        duration_s: float,
        matched_rule_id: str | None,
    ) -> None: ...

    def record_error(self, kind: str, endpoint: str) -> None: ...

    def record_arbitration(self, provider: str, success: bool, duration_s: float) -> None: ...

    def update_engine_info(self, version: str, rules_count: int, arbiter_enabled: bool) -> None: ...


class NullMetrics:
    """Discards everything."""

    def request_started(self) -> None:
        pass

    def request_finished(self) -> None:
        pass

    def record_decision(self, final, source, version, arbiter_used, duration_s, matched_rule_id) -> None:
        pass

    def record_error(self, kind, endpoint) -> None:
        pass

    def record_arbitration(self, provider, success, duration_s) -> None:
        pass

    def update_engine_info(self, version, rules_count, arbiter_enabled) -> None:
        pass


class PrometheusMetrics:
    """Prometheus collectors for decisions, errors and arbitration."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()

        self.engine_info = Info(
            "decision_engine",
            "Decision engine configuration",
            registry=self.registry,
        )
        self.active_rules = Gauge(
            "decision_active_rules",
            "Number of active rules in the current rule set",
            registry=self.registry,
        )
        self.active_requests = Gauge(
            "decision_active_requests",
            "Decision requests currently in flight",
            registry=self.registry,
        )
        self.decisions_total = Counter(
            "decision_decisions_total",
            "Total decisions by final verdict and source",
            ["final", "source", "version"],
            registry=self.registry,
        )
        self.decision_duration_seconds = Histogram(
            "decision_duration_seconds",
            "End-to-end decision latency in seconds",
            ["version", "arbiter_used"],
            registry=self.registry,
        )
        self.rule_matches_total = Counter(
            "decision_rule_matches_total",
            "Decisions settled by each rule",
            ["rule_id"],
            registry=self.registry,
        )
        self.errors_total = Counter(
            "decision_errors_total",
            "Total errors",
            ["kind", "endpoint"],
            registry=self.registry,
        )
        self.arbitrations_total = Counter(
            "decision_arbitrations_total",
            "Total arbiter invocations",
            ["provider", "success"],
            registry=self.registry,
        )
        self.arbitration_duration_seconds = Histogram(
            "decision_arbitration_duration_seconds",
            "Arbiter latency in seconds",
            ["provider"],
            registry=self.registry,
        )

    def request_started(self) -> None:
        self.active_requests.inc()

    def request_finished(self) -> None:
        self.active_requests.dec()

    def record_decision(
        self,
        final: str,
        source: str,
        version: str,
        arbiter_used: bool,
        duration_s: float,
        matched_rule_id: str | None,
    ) -> None:
        self.decisions_total.labels(final=final, source=source, version=version).inc()
        self.decision_duration_seconds.labels(
            version=version, arbiter_used=str(arbiter_used).lower()
        ).observe(duration_s)
        self.rule_matches_total.labels(rule_id=matched_rule_id or "none").inc()

    def record_error(self, kind: str, endpoint: str) -> None:
        self.errors_total.labels(kind=kind, endpoint=endpoint).inc()

    def record_arbitration(self, provider: str, success: bool, duration_s: float) -> None:
        self.arbitrations_total.labels(provider=provider, success=str(success).lower()).inc()
        self.arbitration_duration_seconds.labels(provider=provider).observe(duration_s)

    def update_engine_info(self, version: str, rules_count: int, arbiter_enabled: bool) -> None:
        self.engine_info.info({"version": version, "arbiter_enabled": str(arbiter_enabled).lower()})
        self.active_rules.set(rules_count)

    def render(self) -> tuple[bytes, str]:
        """Exposition payload and its content type."""
        return generate_latest(self.registry), CONTENT_TYPE_LATEST
