"""
Shared metrics configuration for the clinic permissions engine.
"""

from typing import Dict, Any, Optional

from prometheus_client import Counter, Gauge, Info, CollectorRegistry


class MetricsCollector:
    """Centralized metrics collector for a service.

    Every collector owns its registry unless one is passed in.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._metrics["permission_decisions_total"] = Counter(
            "permission_decisions_total",
            "Total resolved permission decisions",
            ["decision", "source"],
            registry=self.registry
        )

        self._metrics["permission_cache_events_total"] = Counter(
            "permission_cache_events_total",
            "Effective-set cache events",
            ["event"],
            registry=self.registry
        )

        self._metrics["permission_cache_entries"] = Gauge(
            "permission_cache_entries",
            "Principals with a cached effective set",
            registry=self.registry
        )

        self._metrics["permission_mutations_total"] = Counter(
            "permission_mutations_total",
            "Administrative mutations",
            ["operation", "status"],
            registry=self.registry
        )

        self._metrics["permission_snapshot_loads_total"] = Counter(
            "permission_snapshot_loads_total",
            "Snapshot fetches from the permission store",
            ["status"],
            registry=self.registry
        )

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_decision(self, decision: str, source: str):
        """Record a resolved decision."""
        self._metrics["permission_decisions_total"].labels(decision=decision, source=source).inc()

    def record_cache_event(self, event: str, count: int = 1):
        """Record a cache hit, miss, invalidation or refresh."""
        if count > 0:
            self._metrics["permission_cache_events_total"].labels(event=event).inc(count)

    def set_cache_entries(self, value: int):
        """Set the number of cached principals."""
        self._metrics["permission_cache_entries"].set(value)

    def record_mutation(self, operation: str, status: str):
        """Record an administrative mutation outcome."""
        self._metrics["permission_mutations_total"].labels(operation=operation, status=status).inc()

    def record_snapshot_load(self, status: str):
        """Record a snapshot fetch outcome."""
        self._metrics["permission_snapshot_loads_total"].labels(status=status).inc()

    def sample(self, name: str, **labels) -> float:
        """Read the current value of a sample from the registry."""
        value = self.registry.get_sample_value(name, labels or None)
        return value if value is not None else 0.0


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
