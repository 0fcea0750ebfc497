"""Prometheus metrics for guarded dependencies, matching and claims."""

from prometheus_client import Counter, Gauge, Histogram

from backend.app.resilience.breaker import BreakerState
from backend.app.resilience.guard import DependencyMetrics

# Guarded dependency metrics
dependency_latency_ms = Histogram(
    "dependency_latency_ms",
    "Guarded dependency call latency in milliseconds",
    ["dependency", "outcome"],
    buckets=[5, 10, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
)

dependency_errors_total = Counter(
    "dependency_errors_total",
    "Total guarded dependency errors",
    ["dependency", "reason"],
)

breaker_state = Gauge(
    "breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["dependency"],
)

breaker_rejections_total = Counter(
    "breaker_rejections_total",
    "Calls rejected by an open circuit",
    ["dependency"],
)

# Engine metrics
matches_upserted_total = Counter(
    "matches_upserted_total",
    "Match rows inserted or refreshed",
)

match_notifications_total = Counter(
    "match_notifications_total",
    "Match notification attempts",
    ["outcome"],
)

claims_total = Counter(
    "claims_total",
    "Claim submissions and resolutions",
    ["mode", "outcome"],
)

claim_migration_failures_total = Counter(
    "claim_migration_failures_total",
    "Approved claims whose item migration could not be completed",
)

_STATE_VALUES = {
    BreakerState.CLOSED: 0,
    BreakerState.HALF_OPEN: 1,
    BreakerState.OPEN: 2,
}


class PrometheusDependencyMetrics(DependencyMetrics):
    """Prometheus-based guarded dependency metrics implementation."""

    def record_latency(self, dependency: str, outcome: str, latency_ms: float) -> None:
        """Record guarded call latency."""
        dependency_latency_ms.labels(dependency=dependency, outcome=outcome).observe(latency_ms)

    def inc_error(self, dependency: str, reason: str) -> None:
        """Increment error counter."""
        dependency_errors_total.labels(dependency=dependency, reason=reason).inc()

    def on_transition(self, name: str, old: BreakerState, new: BreakerState) -> None:
        """Track breaker state as a gauge."""
        breaker_state.labels(dependency=name).set(_STATE_VALUES[new])

    def on_rejected(self, name: str) -> None:
        """Count fast-failed calls."""
        breaker_rejections_total.labels(dependency=name).inc()
