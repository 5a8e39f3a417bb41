"""Thread-safe metrics registry for pool and router counters."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Mapping

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_MetricLabels = tuple[tuple[str, str], ...]

_METRIC_NAME_MAX_LEN: Final[int] = 128


@dataclass(frozen=True, order=True, slots=True)
class _MetricKey:
    name: str
    labels: _MetricLabels


@dataclass(slots=True)
class _DistributionState:
    count: int = 0
    total: float = 0.0
    minimum: float | None = None
    maximum: float | None = None
    last: float | None = None

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.last = value
        if self.minimum is None or value < self.minimum:
            self.minimum = value
        if self.maximum is None or value > self.maximum:
            self.maximum = value

    def as_dict(self) -> dict[str, JSONValue]:
        avg = self.total / self.count if self.count else 0.0
        return {
            "count": self.count,
            "sum": self.total,
            "min": self.minimum,
            "max": self.maximum,
            "avg": avg,
            "last": self.last,
        }


class MetricsRegistry:
    """In-memory metrics store.

    Counters are monotonic integers (run and request tallies), gauges hold the
    latest value (queue depth, running runs), distributions keep rolling
    count/sum/min/max/avg/last statistics (run runtimes).
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._counters: dict[_MetricKey, int] = {}
        self._gauges: dict[_MetricKey, float] = {}
        self._distributions: dict[_MetricKey, _DistributionState] = {}

    def inc(
        self,
        name: str,
        amount: int = 1,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> None:
        """Increment a counter by ``amount`` (>= 0)."""
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValueError(f"amount must be an integer, got {type(amount).__name__}")
        if amount < 0:
            raise ValueError("counter increment amount must be >= 0")

        key = _metric_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def set_gauge(
        self,
        name: str,
        value: float,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> None:
        key = _metric_key(name, labels)
        gauge_value = _as_finite_float(value, path="value")
        with self._lock:
            self._gauges[key] = gauge_value

    def observe(
        self,
        name: str,
        value: float,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> None:
        """Record a sample for rolling distribution statistics."""
        key = _metric_key(name, labels)
        sample = _as_finite_float(value, path="value")
        with self._lock:
            state = self._distributions.get(key)
            if state is None:
                state = _DistributionState()
                self._distributions[key] = state
            state.observe(sample)

    def get_counter(self, name: str, *, labels: Mapping[str, str] | None = None) -> int:
        key = _metric_key(name, labels)
        with self._lock:
            return self._counters.get(key, 0)

    def get_gauge(self, name: str, *, labels: Mapping[str, str] | None = None) -> float | None:
        key = _metric_key(name, labels)
        with self._lock:
            return self._gauges.get(key)

    def get_distribution(
        self,
        name: str,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> dict[str, JSONValue] | None:
        key = _metric_key(name, labels)
        with self._lock:
            state = self._distributions.get(key)
            if state is None:
                return None
            return state.as_dict()

    def snapshot(self) -> dict[str, JSONValue]:
        """Return a deterministic snapshot with stable key ordering."""
        with self._lock:
            counters = tuple(sorted(self._counters.items()))
            gauges = tuple(sorted(self._gauges.items()))
            distributions = tuple(
                (key, state.as_dict()) for key, state in sorted(self._distributions.items())
            )

        return {
            "counters": {_metric_identifier(key): value for key, value in counters},
            "gauges": {_metric_identifier(key): value for key, value in gauges},
            "distributions": {_metric_identifier(key): value for key, value in distributions},
        }


def _metric_key(name: str, labels: Mapping[str, str] | None) -> _MetricKey:
    return _MetricKey(name=_validate_metric_name(name), labels=_normalize_labels(labels))


def _metric_identifier(key: _MetricKey) -> str:
    if not key.labels:
        return key.name
    labels = ",".join(f"{k}={v}" for k, v in key.labels)
    return f"{key.name}{{{labels}}}"


def _validate_metric_name(name: str) -> str:
    if not isinstance(name, str):
        raise ValueError(f"metric name must be a string, got {type(name).__name__}")
    normalized = name.strip()
    if not normalized:
        raise ValueError("metric name must not be empty")
    if len(normalized) > _METRIC_NAME_MAX_LEN:
        raise ValueError(f"metric name must be <= {_METRIC_NAME_MAX_LEN} characters")
    return normalized


def _normalize_labels(labels: Mapping[str, str] | None) -> _MetricLabels:
    if not labels:
        return ()

    out: list[tuple[str, str]] = []
    for key, value in labels.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise ValueError("metric labels must map strings to strings")
        key_name = key.strip()
        val_name = value.strip()
        if not key_name or not val_name:
            raise ValueError("metric label keys and values must not be empty")
        out.append((key_name, val_name))

    out.sort(key=lambda item: item[0])
    return tuple(out)


def _as_finite_float(value: float, *, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{path} must be numeric, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        raise ValueError(f"{path} must be finite")
    return parsed


__all__ = ["MetricsRegistry"]
