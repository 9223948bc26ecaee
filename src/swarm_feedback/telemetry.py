"""
Engine telemetry.

Collects counters, gauges and bounded histograms about loop execution and
renders them as a summary dict or Prometheus text.
"""

import logging
import time
from collections import defaultdict, deque
from threading import Lock
from typing import Any, Optional

logger = logging.getLogger(__name__)

HISTOGRAM_BUCKETS = [0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0]
MAX_HISTOGRAM_SAMPLES = 1000


class MetricsCollector:
    """Thread-safe in-process metric store."""

    def __init__(self, namespace: str = "swarm_feedback"):
        self.namespace = namespace
        self._lock = Lock()

        self._counters: dict[str, float] = defaultdict(float)
        self._gauges: dict[str, float] = {}
        self._histograms: dict[str, deque] = defaultdict(
            lambda: deque(maxlen=MAX_HISTOGRAM_SAMPLES)
        )

    def inc_counter(
        self, name: str, value: float = 1.0, labels: Optional[dict[str, str]] = None
    ) -> None:
        with self._lock:
            self._counters[self._make_metric_key(name, labels)] += value

    def counter_value(self, name: str, labels: Optional[dict[str, str]] = None) -> float:
        return self._counters.get(self._make_metric_key(name, labels), 0.0)

    def gauge(
        self,
        name: str,
        value: Optional[float] = None,
        labels: Optional[dict[str, str]] = None,
    ) -> float:
        """Set a gauge when value is given, otherwise read it (0.0 if unset)."""
        metric_key = self._make_metric_key(name, labels)

        if value is not None:
            with self._lock:
                self._gauges[metric_key] = value
            return value
        return self._gauges.get(metric_key, 0.0)

    def has_gauge(self, name: str, labels: Optional[dict[str, str]] = None) -> bool:
        return self._make_metric_key(name, labels) in self._gauges

    def histogram(
        self, name: str, value: float, labels: Optional[dict[str, str]] = None
    ) -> None:
        with self._lock:
            self._histograms[self._make_metric_key(name, labels)].append(value)

    def cycle_metrics(
        self, loop_name: str, success: bool, duration: float, score: Optional[float]
    ) -> None:
        """Record one finished cycle."""
        labels = {"loop": loop_name}

        self.inc_counter("cycles_total", 1, labels)
        if not success:
            self.inc_counter("cycles_failed", 1, labels)
        self.histogram("cycle_duration_seconds", duration, labels)
        if score is not None:
            self.gauge("loop_score", score, labels)

    def action_metrics(self, loop_name: str, action: str, success: bool) -> None:
        labels = {"loop": loop_name, "action": action}
        if success:
            self.inc_counter("actions_applied_total", 1, labels)
        else:
            self.inc_counter("actions_failed_total", 1, labels)

    def get_metrics_summary(self) -> dict[str, Any]:
        with self._lock:
            summary = {
                "namespace": self.namespace,
                "timestamp": time.time(),
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": {},
            }

            for name, values in self._histograms.items():
                if not values:
                    continue
                sorted_values = sorted(values)
                summary["histograms"][name] = {
                    "count": len(values),
                    "sum": sum(values),
                    "min": sorted_values[0],
                    "max": sorted_values[-1],
                    "mean": sum(values) / len(values),
                    "p50": self._percentile(sorted_values, 0.5),
                    "p95": self._percentile(sorted_values, 0.95),
                }

        return summary

    def get_prometheus_metrics(self) -> str:
        lines = [f"# Feedback loop engine metrics - {self.namespace}", ""]

        with self._lock:
            for metric_key, value in sorted(self._counters.items()):
                name, labels_str = self._parse_metric_key(metric_key)
                lines.append(f"# TYPE {name} counter")
                lines.append(f"{name}{labels_str} {value}")

            for metric_key, value in sorted(self._gauges.items()):
                name, labels_str = self._parse_metric_key(metric_key)
                lines.append(f"# TYPE {name} gauge")
                lines.append(f"{name}{labels_str} {value}")

            for metric_key, values in sorted(self._histograms.items()):
                if not values:
                    continue
                name, labels_str = self._parse_metric_key(metric_key)
                lines.append(f"# TYPE {name} histogram")
                for bucket in HISTOGRAM_BUCKETS:
                    count = len([v for v in values if v <= bucket])
                    lines.append(
                        f"{name}_bucket{self._with_label(labels_str, 'le', str(bucket))} {count}"
                    )
                lines.append(
                    f"{name}_bucket{self._with_label(labels_str, 'le', '+Inf')} {len(values)}"
                )
                lines.append(f"{name}_count{labels_str} {len(values)}")
                lines.append(f"{name}_sum{labels_str} {sum(values)}")

        return "\n".join(lines)

    def reset_metrics(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()

    def _make_metric_key(
        self, name: str, labels: Optional[dict[str, str]] = None
    ) -> str:
        full_name = f"{self.namespace}_{name}" if self.namespace else name
        if not labels:
            return full_name

        label_str = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
        return f"{full_name}{{{label_str}}}"

    @staticmethod
    def _parse_metric_key(metric_key: str) -> tuple[str, str]:
        if "{" not in metric_key:
            return metric_key, ""
        name, labels_part = metric_key.split("{", 1)
        return name, "{" + labels_part

    @staticmethod
    def _with_label(labels_str: str, key: str, value: str) -> str:
        if not labels_str:
            return f'{{{key}="{value}"}}'
        return labels_str[:-1] + f',{key}="{value}"}}'

    @staticmethod
    def _percentile(sorted_values: list[float], percentile: float) -> float:
        if not sorted_values:
            return 0.0
        return sorted_values[int(percentile * (len(sorted_values) - 1))]
