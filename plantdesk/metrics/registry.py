from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from threading import Lock
from time import perf_counter
from typing import Iterable, Mapping, TypeVar

from .base import Counter, Distribution, Metric

MetricT = TypeVar("MetricT", bound=Metric)


class MetricsRegistry:
    """Name-indexed collection of metrics."""

    def __init__(self) -> None:
        self._metrics: dict[str, Metric] = {}
        self._lock = Lock()

    def _register(self, cls: type[MetricT], name: str, description: str, label_names: Iterable[str]) -> MetricT:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = cls(name, description=description, label_names=label_names)
                self._metrics[name] = metric
        if not isinstance(metric, cls):
            raise TypeError(f"Metric '{name}' is already registered as a {metric.kind}")
        return metric

    def counter(self, name: str, *, description: str = "", label_names: Iterable[str] = ()) -> Counter:
        return self._register(Counter, name, description, label_names)

    def distribution(self, name: str, *, description: str = "", label_names: Iterable[str] = ()) -> Distribution:
        return self._register(Distribution, name, description, label_names)

    @contextmanager
    def timed(self, name: str, *, labels: Mapping[str, str] | None = None) -> Iterator[None]:
        """Observe the wall-clock seconds spent in the block into distribution ``name``."""

        metric = self.distribution(name, label_names=tuple(labels or ()))
        started = perf_counter()
        try:
            yield
        finally:
            metric.observe(perf_counter() - started, labels=labels)

    def snapshot(self) -> dict[str, dict[str, object]]:
        with self._lock:
            metrics = list(self._metrics.values())
        return {
            metric.name: {"type": metric.kind, "description": metric.description, "samples": metric.samples()}
            for metric in metrics
        }
