"""
Prometheus Metrics

Defines and exports metrics for the directory API and the notification
pipeline.
"""

from __future__ import annotations

import structlog
from prometheus_client import Counter, Gauge, Histogram, Info

logger = structlog.get_logger()

# Singleton metrics instance
_metrics: "Metrics | None" = None


class Metrics:
    """
    Prometheus metrics for geodir.

    Tracks:
    - HTTP request latency and counts
    - Entry mutations and rating writes
    - Subscription index size and match fan-out
    - Change-event bus throughput and lag
    - Notification dispatch outcomes and failures
    """

    def __init__(self, *, enabled: bool = True):
        self._enabled = enabled
        if not enabled:
            return

        # HTTP request metrics
        self.http_requests_total = Counter(
            "geodir_http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
        )
        self.http_request_duration_seconds = Histogram(
            "geodir_http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
        )

        # Directory writes
        self.entry_mutations_total = Counter(
            "geodir_entry_mutations_total",
            "Entry mutations",
            ["kind"],
        )
        self.ratings_total = Counter(
            "geodir_ratings_total",
            "Rating writes",
            ["operation"],
        )

        # Subscriptions and matching
        self.subscriptions_indexed = Gauge(
            "geodir_subscriptions_indexed",
            "Confirmed subscriptions present in the spatial index",
        )
        self.subscription_changes_total = Counter(
            "geodir_subscription_changes_total",
            "Subscription state transitions",
            ["state"],
        )
        self.confirmations_total = Counter(
            "geodir_confirmations_total",
            "Confirmation token redemptions",
            ["subject", "outcome"],
        )
        self.match_targets = Histogram(
            "geodir_match_targets",
            "Distinct users matched per change event",
            buckets=[0, 1, 2, 5, 10, 25, 50, 100, 250, 1000],
        )

        # Change-event bus
        self.bus_events_total = Counter(
            "geodir_bus_events_total",
            "Change events handled by the bus consumer",
            ["status"],
        )
        self.bus_lag_seconds = Histogram(
            "geodir_bus_lag_seconds",
            "Delay between an entry write and its change event being handled",
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0],
        )

        # Notification dispatch
        self.dispatch_enqueued_total = Counter(
            "geodir_dispatch_enqueued_total",
            "Dispatch items written to the queue (duplicates excluded)",
        )
        self.dispatch_attempts_total = Counter(
            "geodir_dispatch_attempts_total",
            "Notifier calls by outcome",
            ["outcome"],
        )
        self.dispatch_failures_total = Counter(
            "geodir_dispatch_failures_total",
            "Dispatch attempts that failed",
            ["kind"],
        )
        self.dispatch_duration_seconds = Histogram(
            "geodir_dispatch_duration_seconds",
            "Notifier call duration in seconds",
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
        )
        self.dispatch_requeued_total = Counter(
            "geodir_dispatch_requeued_total",
            "Dispatch items recovered after their lease expired",
        )

        # System info
        self.build_info = Info(
            "geodir_build_info",
            "Build information",
        )

        logger.info("Prometheus metrics initialized")

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_build_info(self, version: str, commit: str | None = None) -> None:
        if self._enabled:
            self.build_info.info({"version": version, "commit": commit or "unknown"})

    def track_http_request(self, method: str, endpoint: str, status_code: int, duration: float) -> None:
        if not self._enabled:
            return
        self.http_requests_total.labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code),
        ).inc()
        self.http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)

    def track_entry_mutation(self, kind: str) -> None:
        if not self._enabled:
            return
        self.entry_mutations_total.labels(kind=kind).inc()

    def track_rating(self, operation: str, count: int = 1) -> None:
        if not self._enabled:
            return
        self.ratings_total.labels(operation=operation).inc(count)

    def set_subscriptions_indexed(self, size: int) -> None:
        if not self._enabled:
            return
        self.subscriptions_indexed.set(size)

    def track_subscription_change(self, state: str) -> None:
        if not self._enabled:
            return
        self.subscription_changes_total.labels(state=state).inc()

    def track_confirmation(self, *, subject: str, outcome: str) -> None:
        if not self._enabled:
            return
        self.confirmations_total.labels(subject=subject, outcome=outcome).inc()

    def observe_match(self, target_count: int) -> None:
        if not self._enabled:
            return
        self.match_targets.observe(target_count)

    def track_bus_event(self, *, status: str, lag_seconds: float | None = None) -> None:
        if not self._enabled:
            return
        self.bus_events_total.labels(status=status).inc()
        if lag_seconds is not None:
            self.bus_lag_seconds.observe(max(0.0, lag_seconds))

    def track_dispatch_enqueued(self, count: int) -> None:
        if not self._enabled or count <= 0:
            return
        self.dispatch_enqueued_total.inc(count)

    def track_dispatch_attempt(self, *, outcome: str, duration: float | None = None) -> None:
        """Record one delivery attempt.

        outcome: sent | duplicate | retry | failed
        """
        if not self._enabled:
            return
        self.dispatch_attempts_total.labels(outcome=outcome).inc()
        if duration is not None:
            self.dispatch_duration_seconds.observe(duration)

    def track_dispatch_failure(self, *, kind: str) -> None:
        """kind: retryable | permanent | exhausted"""
        if not self._enabled:
            return
        self.dispatch_failures_total.labels(kind=kind).inc()

    def track_dispatch_requeued(self, count: int) -> None:
        if not self._enabled or count <= 0:
            return
        self.dispatch_requeued_total.inc(count)


def get_metrics() -> Metrics:
    """Get or create the singleton metrics instance."""
    global _metrics
    if _metrics is None:
        _metrics = Metrics()
    return _metrics
