"""
Metric sources.

A source produces the current value of a named metric on demand. The engine
never decides how a value is produced; loops are handed a source when they
are registered.
"""

import asyncio
import inspect
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

import yaml

from .errors import UnknownMetricError
from .telemetry import MetricsCollector

logger = logging.getLogger(__name__)

MetricCallable = Callable[[], Union[float, Awaitable[float]]]


class MetricSource(ABC):
    """Produces named numeric values. Must not mutate loop state."""

    name: str = "source"

    @abstractmethod
    async def sample(self, metric: str) -> float:
        """Return the current value of ``metric`` or raise UnknownMetricError."""

    def provides(self, metric: str) -> bool:
        """Whether this source knows ``metric``. Sources that cannot tell return True."""
        return True


class StaticMetricSource(MetricSource):
    """Values held in memory; callers update them with ``set``."""

    def __init__(self, values: Optional[Mapping[str, float]] = None, name: str = "static"):
        self.name = name
        self._values: dict[str, float] = dict(values or {})

    def set(self, metric: str, value: float) -> None:
        self._values[metric] = value

    def update(self, values: Mapping[str, float]) -> None:
        self._values.update(values)

    def remove(self, metric: str) -> None:
        self._values.pop(metric, None)

    def provides(self, metric: str) -> bool:
        return metric in self._values

    async def sample(self, metric: str) -> float:
        try:
            return float(self._values[metric])
        except KeyError:
            raise UnknownMetricError(metric, self.name) from None


class CallableMetricSource(MetricSource):
    """Maps each metric to a zero-argument probe, sync or async."""

    def __init__(self, probes: Mapping[str, MetricCallable], name: str = "callable"):
        self.name = name
        self._probes: dict[str, MetricCallable] = dict(probes)

    def register(self, metric: str, probe: MetricCallable) -> None:
        self._probes[metric] = probe

    def provides(self, metric: str) -> bool:
        return metric in self._probes

    async def sample(self, metric: str) -> float:
        probe = self._probes.get(metric)
        if probe is None:
            raise UnknownMetricError(metric, self.name)

        value = probe()
        if inspect.isawaitable(value):
            value = await value
        return float(value)


class FileMetricSource(MetricSource):
    """
    Reads a JSON or YAML mapping of metric values from disk on every sample.

    Lets an external probe publish values by rewriting a file. Files ending in
    ``.yaml`` or ``.yml`` are parsed as YAML, anything else as JSON.
    """

    def __init__(self, path: Union[str, Path], name: Optional[str] = None):
        self.path = Path(path)
        self.name = name or f"file:{self.path.name}"

    def _read(self) -> dict[str, Any]:
        text = self.path.read_text(encoding="utf-8")
        if self.path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text) if text.strip() else {}
        if not isinstance(data, dict):
            raise ValueError(f"Metric file {self.path} must contain a mapping")
        return data

    async def sample(self, metric: str) -> float:
        data = await asyncio.to_thread(self._read)
        if metric not in data or data[metric] is None:
            raise UnknownMetricError(metric, self.name)
        return float(data[metric])


class CollectorMetricSource(MetricSource):
    """Reads gauges from a MetricsCollector."""

    def __init__(
        self,
        collector: MetricsCollector,
        labels: Optional[dict[str, str]] = None,
        name: str = "collector",
    ):
        self.collector = collector
        self.labels = labels
        self.name = name

    def provides(self, metric: str) -> bool:
        return self.collector.has_gauge(metric, self.labels)

    async def sample(self, metric: str) -> float:
        if not self.collector.has_gauge(metric, self.labels):
            raise UnknownMetricError(metric, self.name)
        return self.collector.gauge(metric, labels=self.labels)
