"""
Shared metrics configuration for the rule enforcement engine.
"""

from typing import Dict, Any, Optional
import time
import threading
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, CollectorRegistry


class MetricsCollector:
    """Prometheus metrics for enforcement decisions and usage tracking."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        # Private registry by default so several engines can coexist in one process
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up enforcement metrics."""
        self._metrics["rule_decisions_total"] = Counter(
            "rule_decisions_total",
            "Total enforcement decisions",
            ["rule_type", "decision"],
            registry=self.registry
        )

        self._metrics["rule_check_duration_seconds"] = Histogram(
            "rule_check_duration_seconds",
            "Enforcement check duration in seconds",
            ["rule_type"],
            registry=self.registry
        )

        self._metrics["usage_increments_total"] = Counter(
            "usage_increments_total",
            "Total usage counter increments",
            ["rule_type"],
            registry=self.registry
        )

        self._metrics["usage_store_errors_total"] = Counter(
            "usage_store_errors_total",
            "Total usage store failures",
            ["operation"],
            registry=self.registry
        )

        self._metrics["unmapped_actions_total"] = Counter(
            "unmapped_actions_total",
            "Total checks for actions without a rule mapping",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_decision(self, rule_type: str, allowed: bool):
        """Record an enforcement decision."""
        decision = "allow" if allowed else "deny"
        self._metrics["rule_decisions_total"].labels(rule_type=rule_type, decision=decision).inc()

    def record_increment(self, rule_type: str):
        """Record a usage increment."""
        self._metrics["usage_increments_total"].labels(rule_type=rule_type).inc()

    def record_store_error(self, operation: str):
        """Record a usage store failure."""
        self._metrics["usage_store_errors_total"].labels(operation=operation).inc()

    def record_unmapped_action(self):
        """Record a check for an unmapped action."""
        self._metrics["unmapped_actions_total"].inc()

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.time()
        try:
            yield
        finally:
            duration = time.time() - start_time
            if operation_name in self._metrics:
                self._metrics[operation_name].labels(**labels).observe(duration)

    def sample(self, metric_name: str, **labels) -> float:
        """Read the current value of a counter sample."""
        value = self.registry.get_sample_value(metric_name, labels or None)
        return value or 0.0


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
