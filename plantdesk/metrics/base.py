"""Counter and distribution primitives kept in process memory."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Iterable, Mapping

LabelKey = tuple[str, ...]


class Metric:
    kind = "metric"

    def __init__(self, name: str, *, description: str = "", label_names: Iterable[str] = ()) -> None:
        self.name = name
        self.description = description
        self.label_names: tuple[str, ...] = tuple(label_names)
        self._lock = Lock()

    def _key(self, labels: Mapping[str, str] | None) -> LabelKey:
        labels = labels or {}
        unknown = set(labels) - set(self.label_names)
        if unknown:
            raise ValueError(f"Metric '{self.name}' got unexpected labels {sorted(unknown)}")
        try:
            return tuple(str(labels[name]) for name in self.label_names)
        except KeyError as exc:
            raise ValueError(f"Metric '{self.name}' is missing label {exc.args[0]!r}") from exc

    def samples(self) -> list[dict[str, object]]:
        raise NotImplementedError


class Counter(Metric):
    kind = "counter"

    def __init__(self, name: str, *, description: str = "", label_names: Iterable[str] = ()) -> None:
        super().__init__(name, description=description, label_names=label_names)
        self._values: dict[LabelKey, float] = defaultdict(float)

    def inc(self, amount: float = 1.0, *, labels: Mapping[str, str] | None = None) -> None:
        if amount < 0:
            raise ValueError("Counters only go up")
        key = self._key(labels)
        with self._lock:
            self._values[key] += amount

    def value(self, labels: Mapping[str, str] | None = None) -> float:
        with self._lock:
            return self._values.get(self._key(labels), 0.0)

    def samples(self) -> list[dict[str, object]]:
        with self._lock:
            return [
                {"labels": dict(zip(self.label_names, key)), "value": value}
                for key, value in self._values.items()
            ]


@dataclass
class _Summary:
    count: int = 0
    total: float = 0.0
    minimum: float | None = None
    maximum: float | None = None

    def add(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.minimum = value if self.minimum is None else min(self.minimum, value)
        self.maximum = value if self.maximum is None else max(self.maximum, value)


class Distribution(Metric):
    kind = "distribution"

    def __init__(self, name: str, *, description: str = "", label_names: Iterable[str] = ()) -> None:
        super().__init__(name, description=description, label_names=label_names)
        self._summaries: dict[LabelKey, _Summary] = defaultdict(_Summary)

    def observe(self, value: float, *, labels: Mapping[str, str] | None = None) -> None:
        key = self._key(labels)
        with self._lock:
            self._summaries[key].add(value)

    def samples(self) -> list[dict[str, object]]:
        with self._lock:
            return [
                {
                    "labels": dict(zip(self.label_names, key)),
                    "count": summary.count,
                    "sum": summary.total,
                    "min": summary.minimum or 0.0,
                    "max": summary.maximum or 0.0,
                    "avg": summary.total / summary.count if summary.count else 0.0,
                }
                for key, summary in self._summaries.items()
            ]
