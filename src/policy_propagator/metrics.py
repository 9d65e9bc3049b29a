"""Duration metrics for the reconciler, exported with prometheus_client."""

from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

from prometheus_client import REGISTRY, CollectorRegistry, Histogram

ROOT_HANDLER_DURATION = "policy_propagator_root_handler_duration_seconds"


@runtime_checkable
class MetricsSink(Protocol):
    def observe_duration(self, metric_name: str, seconds: float) -> None:
        ...


class PrometheusMetrics:
    """One histogram per metric name, created on first observation."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry if registry is not None else REGISTRY
        self._histograms: dict[str, Histogram] = {}
        self._lock = threading.Lock()

    def observe_duration(self, metric_name: str, seconds: float) -> None:
        with self._lock:
            histogram = self._histograms.get(metric_name)
            if histogram is None:
                histogram = Histogram(
                    metric_name,
                    f"Seconds spent in {metric_name.removesuffix('_duration_seconds')}",
                    registry=self._registry,
                )
                self._histograms[metric_name] = histogram
        histogram.observe(seconds)
