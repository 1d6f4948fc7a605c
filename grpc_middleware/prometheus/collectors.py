"""Labelled counter and histogram collectors in the Prometheus data model."""

from __future__ import annotations

import bisect
import math
import re
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, Generic, List, Mapping, Optional, Sequence, Tuple, TypeVar

Labels = Dict[str, str]

DEF_BUCKETS: Tuple[float, ...] = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

_METRIC_NAME = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
_LABEL_NAME = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def _build_fq_name(namespace: str, subsystem: str, name: str) -> str:
    if not name:
        return ""
    return "_".join(part for part in (namespace, subsystem, name) if part)


@dataclass
class CounterOpts:
    """Options describing a counter metric."""

    name: str = ""
    help: str = ""
    namespace: str = ""
    subsystem: str = ""
    const_labels: Optional[Labels] = None

    def fq_name(self) -> str:
        """The fully qualified name: namespace, subsystem and name joined by ``_``."""
        return _build_fq_name(self.namespace, self.subsystem, self.name)


@dataclass
class HistogramOpts:
    """Options describing a histogram metric."""

    name: str = ""
    help: str = ""
    namespace: str = ""
    subsystem: str = ""
    const_labels: Optional[Labels] = None
    buckets: Optional[Sequence[float]] = None
    native_histogram_bucket_factor: float = 0.0
    native_histogram_zero_threshold: float = 0.0
    native_histogram_max_bucket_number: int = 0
    native_histogram_min_reset_duration: timedelta = timedelta(0)
    native_histogram_max_zero_threshold: float = 0.0

    def fq_name(self) -> str:
        """The fully qualified name: namespace, subsystem and name joined by ``_``."""
        return _build_fq_name(self.namespace, self.subsystem, self.name)


@dataclass
class Desc:
    """Descriptor of a metric family."""

    fq_name: str
    help: str
    const_labels: Labels
    variable_labels: Tuple[str, ...]


@dataclass
class Exemplar:
    """An exemplar attached to a recorded value."""

    labels: Labels
    value: float
    timestamp: float


def _make_desc(
    fq_name: str,
    help_text: str,
    const_labels: Optional[Mapping[str, str]],
    label_names: Sequence[str],
) -> Desc:
    if not _METRIC_NAME.match(fq_name):
        raise ValueError(f"{fq_name!r} is not a valid metric name")
    const = dict(const_labels or {})
    seen = set()
    for label in [*const, *label_names]:
        if not _LABEL_NAME.match(label) or label.startswith("__"):
            raise ValueError(f"{label!r} is not a valid label name for metric {fq_name!r}")
        if label in seen:
            raise ValueError(f"duplicate label name {label!r} for metric {fq_name!r}")
        seen.add(label)
    return Desc(fq_name, help_text, const, tuple(label_names))


def _make_exemplar(labels: Optional[Mapping[str, str]], value: float) -> Optional[Exemplar]:
    if labels is None:
        return None
    for name in labels:
        if not _LABEL_NAME.match(name):
            raise ValueError(f"{name!r} is not a valid exemplar label name")
    return Exemplar(dict(labels), value, time.time())


class Counter:
    """A monotonically increasing value for one combination of label values."""

    def __init__(self, desc: Desc, label_values: Tuple[str, ...]) -> None:
        self.desc = desc
        self.label_values = label_values
        self.value = 0.0
        self.exemplar: Optional[Exemplar] = None
        self._lock = threading.Lock()

    def add_with_exemplar(self, value: float, exemplar: Optional[Mapping[str, str]]) -> None:
        """Add ``value`` and remember ``exemplar`` unless it is ``None``."""
        if value < 0:
            raise ValueError("counter cannot decrease in value")
        recorded = _make_exemplar(exemplar, value)
        with self._lock:
            self.value += value
            if recorded is not None:
                self.exemplar = recorded

    def __repr__(self) -> str:
        return f"Counter({self.desc.fq_name!r}, {self.label_values!r}, value={self.value})"


class Histogram:
    """Observations counted in buckets for one combination of label values."""

    def __init__(self, desc: Desc, label_values: Tuple[str, ...], upper_bounds: Tuple[float, ...]) -> None:
        self.desc = desc
        self.label_values = label_values
        self.upper_bounds = upper_bounds
        self.count = 0
        self.sum = 0.0
        self.exemplars: Dict[int, Exemplar] = {}
        self._counts = [0] * (len(upper_bounds) + 1)
        self._lock = threading.Lock()

    def observe_with_exemplar(self, value: float, exemplar: Optional[Mapping[str, str]]) -> None:
        """Record ``value`` and remember ``exemplar`` for its bucket unless it is ``None``."""
        index = bisect.bisect_left(self.upper_bounds, value)
        recorded = _make_exemplar(exemplar, value)
        with self._lock:
            self._counts[index] += 1
            self.count += 1
            self.sum += value
            if recorded is not None:
                self.exemplars[index] = recorded

    @property
    def cumulative_buckets(self) -> List[Tuple[float, int]]:
        """Pairs of upper bound and cumulative count, ending with ``+Inf``."""
        with self._lock:
            counts = list(self._counts)
        result = []
        running = 0
        for bound, count in zip((*self.upper_bounds, math.inf), counts):
            running += count
            result.append((bound, running))
        return result

    def __repr__(self) -> str:
        return f"Histogram({self.desc.fq_name!r}, {self.label_values!r}, count={self.count})"


_M = TypeVar("_M", Counter, Histogram)


class _Family(Generic[_M]):
    """Children of one metric family keyed by label values."""

    def __init__(self, desc: Desc, factory: Callable[[Tuple[str, ...]], _M]) -> None:
        self.desc = desc
        self._factory = factory
        self._children: Dict[Tuple[str, ...], _M] = {}
        self._lock = threading.Lock()

    def child(self, values: Tuple[str, ...]) -> _M:
        expected = len(self.desc.variable_labels)
        if len(values) != expected:
            raise ValueError(
                f"inconsistent label cardinality for {self.desc.fq_name!r}: "
                f"expected {expected} label values but got {len(values)}"
            )
        with self._lock:
            existing = self._children.get(values)
            if existing is None:
                existing = self._factory(values)
                self._children[values] = existing
            return existing

    def clear(self) -> None:
        with self._lock:
            self._children.clear()

    def children(self) -> List[_M]:
        with self._lock:
            return list(self._children.values())


class CounterVec:
    """A family of counters partitioned by label values."""

    def __init__(self, opts: CounterOpts, label_names: Sequence[str]) -> None:
        desc = _make_desc(opts.fq_name(), opts.help, opts.const_labels, label_names)
        self.opts = opts
        self._family: _Family[Counter] = _Family(desc, lambda values: Counter(desc, values))

    def with_label_values(self, *values: str) -> Counter:
        """Return the counter for ``values``, creating it on first use."""
        return self._family.child(tuple(values))

    def reset(self) -> None:
        """Drop every counter of this family."""
        self._family.clear()

    def describe(self) -> List[Desc]:
        """The descriptors of all metrics this collector can produce."""
        return [self._family.desc]

    def collect(self) -> List[Counter]:
        """The counters currently held, in creation order."""
        return self._family.children()


def _validated_buckets(buckets: Optional[Sequence[float]]) -> Tuple[float, ...]:
    bounds = [float(b) for b in buckets] if buckets else list(DEF_BUCKETS)
    if bounds and math.isinf(bounds[-1]) and bounds[-1] > 0:
        bounds.pop()
    for lower, upper in zip(bounds, bounds[1:]):
        if not lower < upper:
            raise ValueError("histogram buckets must be in increasing order")
    return tuple(bounds)


class HistogramVec:
    """A family of histograms partitioned by label values."""

    def __init__(self, opts: HistogramOpts, label_names: Sequence[str]) -> None:
        if "le" in label_names or "le" in (opts.const_labels or {}):
            raise ValueError('"le" is not allowed as a label name in histograms')
        desc = _make_desc(opts.fq_name(), opts.help, opts.const_labels, label_names)
        bounds = _validated_buckets(opts.buckets)
        self.opts = opts
        self._family: _Family[Histogram] = _Family(
            desc, lambda values: Histogram(desc, values, bounds)
        )

    def with_label_values(self, *values: str) -> Histogram:
        """Return the histogram for ``values``, creating it on first use."""
        return self._family.child(tuple(values))

    def reset(self) -> None:
        """Drop every histogram of this family."""
        self._family.clear()

    def describe(self) -> List[Desc]:
        """The descriptors of all metrics this collector can produce."""
        return [self._family.desc]

    def collect(self) -> List[Histogram]:
        """The histograms currently held, in creation order."""
        return self._family.children()