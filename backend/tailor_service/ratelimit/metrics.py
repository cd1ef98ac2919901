"""
Metrics Collection for Admission Control and Tailoring Runs

Counters, gauges and latency histograms kept in process memory and exposed
through the rate limit status router.
"""

import logging
import threading
from typing import Dict, Any, Optional, List
from collections import defaultdict
from datetime import datetime

logger = logging.getLogger(__name__)

_HISTOGRAM_CAP = 1000


class MetricsCollector:
    """
    Thread-safe metrics collector.

    Tracks:
    - Admission decisions by endpoint, limit type and window
    - Upstream quota warnings
    - Pipeline phase fallbacks and outcomes
    - Pipeline latency
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = {}
        self.histograms: Dict[str, List[float]] = defaultdict(list)
        self.start_time = datetime.utcnow()

    def increment_counter(self, name: str, labels: Optional[Dict[str, str]] = None, value: int = 1):
        key = self._make_key(name, labels)
        with self.lock:
            self.counters[key] += value

    def set_gauge(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 0):
        key = self._make_key(name, labels)
        with self.lock:
            self.gauges[key] = value

    def observe_histogram(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 0):
        key = self._make_key(name, labels)
        with self.lock:
            values = self.histograms[key]
            values.append(value)
            if len(values) > _HISTOGRAM_CAP:
                del values[:-_HISTOGRAM_CAP]

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> int:
        key = self._make_key(name, labels)
        with self.lock:
            return self.counters.get(key, 0)

    def get_gauge(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        key = self._make_key(name, labels)
        with self.lock:
            return self.gauges.get(key)

    def get_histogram_stats(self, name: str, labels: Optional[Dict[str, str]] = None) -> Dict[str, float]:
        """Get histogram statistics (min, max, avg, p50, p95, p99)."""
        key = self._make_key(name, labels)
        with self.lock:
            values = list(self.histograms.get(key, []))
        return self._summarise(values)

    def get_all_metrics(self) -> Dict[str, Any]:
        with self.lock:
            counters = dict(self.counters)
            gauges = dict(self.gauges)
            histograms = {key: list(values) for key, values in self.histograms.items()}

        return {
            "counters": counters,
            "gauges": gauges,
            "histograms": {key: self._summarise(values) for key, values in histograms.items()},
            "metadata": {
                "start_time": self.start_time.isoformat(),
                "uptime_seconds": (datetime.utcnow() - self.start_time).total_seconds(),
            },
        }

    def reset_metrics(self):
        """Reset all metrics (useful for testing)."""
        with self.lock:
            self.counters.clear()
            self.gauges.clear()
            self.histograms.clear()
            self.start_time = datetime.utcnow()

    @staticmethod
    def _summarise(values: List[float]) -> Dict[str, float]:
        if not values:
            return {}

        ordered = sorted(values)
        count = len(ordered)
        return {
            "count": count,
            "min": ordered[0],
            "max": ordered[-1],
            "avg": sum(ordered) / count,
            "p50": ordered[int(count * 0.5)],
            "p95": ordered[min(count - 1, int(count * 0.95))],
            "p99": ordered[min(count - 1, int(count * 0.99))],
        }

    @staticmethod
    def _make_key(name: str, labels: Optional[Dict[str, str]] = None) -> str:
        """Create a unique key from metric name and labels."""
        if not labels:
            return name

        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}:{label_str}"


# Global metrics collector
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    global _metrics_collector

    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()

    return _metrics_collector


# Convenience functions for common metrics

def record_admission(endpoint: str, allowed: bool, limit_type: str, window: str):
    """Record an admission decision."""
    collector = get_metrics_collector()
    if allowed:
        collector.increment_counter("admission_allowed_total", {"endpoint": endpoint})
    else:
        collector.increment_counter("admission_denied_total", {
            "endpoint": endpoint,
            "limit_type": limit_type,
            "window": window,
        })


def record_upstream_warning(model_key: str, window: str, usage_percent: float):
    """Record that the shared upstream quota is close to exhaustion."""
    collector = get_metrics_collector()
    collector.increment_counter("upstream_quota_warnings_total", {"model": model_key, "window": window})
    collector.set_gauge("upstream_quota_usage_percent", {"model": model_key}, usage_percent)


def record_pipeline_fallback(phase: str, tool: str):
    """Record that a pipeline step fell back to its default value."""
    collector = get_metrics_collector()
    collector.increment_counter("pipeline_fallbacks_total", {"phase": phase, "tool": tool})


def record_pipeline_outcome(outcome: str, latency_ms: float):
    """Record how a pipeline run ended and how long it took."""
    collector = get_metrics_collector()
    collector.increment_counter("pipeline_runs_total", {"outcome": outcome})
    collector.observe_histogram("pipeline_latency_ms", {"outcome": outcome}, latency_ms)


def get_metrics_summary() -> Dict[str, Any]:
    return get_metrics_collector().get_all_metrics()
