"""
Shared metrics configuration for the workspace sync client.
"""

import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram


class MetricsCollector:
    """Centralized metrics collector for the sync core.

    Each collector owns its registry so several stores (one per test, one per
    signed-in user) never collide on metric names.
    """

    def __init__(self, client_name: str = "workspace-sync", registry: Optional[CollectorRegistry] = None):
        self.client_name = client_name
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up the sync core metrics."""

        self._metrics["cache_lookups_total"] = Counter(
            "sync_cache_lookups_total",
            "Cache lookups by resource type and result",
            ["resource_type", "result"],
            registry=self.registry
        )

        self._metrics["cache_load_failures_total"] = Counter(
            "sync_cache_load_failures_total",
            "Loader invocations that raised",
            ["resource_type"],
            registry=self.registry
        )

        self._metrics["persister_writes_total"] = Counter(
            "sync_persister_writes_total",
            "Debounced remote writes by result",
            ["result"],
            registry=self.registry
        )

        self._metrics["stale_generation_discards_total"] = Counter(
            "sync_stale_generation_discards_total",
            "Results discarded because a newer generation started",
            ["step"],
            registry=self.registry
        )

        self._metrics["gateway_request_duration_seconds"] = Histogram(
            "sync_gateway_request_duration_seconds",
            "Gateway request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def get_sample_value(self, name: str, **labels) -> float:
        """Read back a sample value; 0.0 if it was never observed."""
        value = self.registry.get_sample_value(name, labels)
        return value or 0.0

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start_time
            if operation_name in self._metrics:
                self._metrics[operation_name].labels(**labels).observe(duration)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()
