from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Optional

from metric_ledger import COUNTER, GAUGE
from metric_ledger.models import INT64_MAX, INT64_MIN, Metric

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for rejected store writes."""
    pass


class MetricKindConflictError(StoreError):
    """Raised when a write targets a name already held by the other kind."""

    def __init__(self, name: str, existing: str, attempted: str):
        super().__init__(
            f"metric '{name}' is a {existing}, cannot write it as a {attempted}"
        )
        self.name = name
        self.existing = existing
        self.attempted = attempted


class CounterOverflowError(StoreError):
    """Raised when a counter total would leave the signed 64-bit range."""

    def __init__(self, name: str, total: int):
        super().__init__(f"counter '{name}' would overflow: {total}")
        self.name = name
        self.total = total


class MemoryStore:
    """
    Concurrency-safe name -> Metric map.

    Keys on name alone: the first write for a name fixes its kind.
    Every operation holds a single lock, and callers only ever see copies,
    so no reader can observe a half-applied upsert.
    """

    def __init__(self, log: Optional[logging.Logger] = None):
        self._metrics: Dict[str, Metric] = {}
        self._lock = threading.Lock()
        self.log = log or logger

    def __len__(self) -> int:
        with self._lock:
            return len(self._metrics)

    def _check_kind(self, name: str, kind: str) -> None:
        current = self._metrics.get(name)
        if current is not None and current.mtype != kind:
            raise MetricKindConflictError(name, current.mtype, kind)

    def _upsert_gauge(self, name: str, value: float) -> Metric:
        self._check_kind(name, GAUGE)
        metric = Metric.gauge(name, value)
        self._metrics[name] = metric
        return metric.model_copy()

    def _upsert_counter(self, name: str, delta: int, accumulate: bool) -> Metric:
        self._check_kind(name, COUNTER)
        current = self._metrics.get(name)
        if accumulate and current is not None:
            delta = current.delta + delta
        if not INT64_MIN <= delta <= INT64_MAX:
            raise CounterOverflowError(name, delta)
        metric = Metric.counter(name, delta)
        self._metrics[name] = metric
        return metric.model_copy()

    def upsert_gauge(self, name: str, value: float) -> Metric:
        """Replace the gauge value for `name`."""
        with self._lock:
            return self._upsert_gauge(name, value)

    def upsert_counter(self, name: str, delta: int, accumulate: bool = True) -> Metric:
        """
        Write a counter.

        accumulate=True adds `delta` to the stored total (0 if absent);
        accumulate=False stores `delta` verbatim, which is what snapshot
        replay needs since the persisted value is already a total.
        """
        with self._lock:
            return self._upsert_counter(name, delta, accumulate)

    def upsert(self, metric: Metric, accumulate: bool = True) -> Metric:
        if metric.is_gauge:
            return self.upsert_gauge(metric.id, metric.value)
        return self.upsert_counter(metric.id, metric.delta, accumulate)

    def restore(self, metrics: Iterable[Metric]) -> int:
        """
        Replace the store content with persisted totals.

        Counters are taken verbatim, not accumulated. The swap happens only
        after every metric was applied, so a conflict leaves the store as it was.
        Subclasses do not persist during restore.
        """
        staging = MemoryStore(log=self.log)
        for metric in metrics:
            if metric.is_gauge:
                staging._upsert_gauge(metric.id, metric.value)
            else:
                staging._upsert_counter(metric.id, metric.delta, accumulate=False)
        with self._lock:
            self._metrics = staging._metrics
        return len(staging._metrics)

    def get(self, name: str) -> Optional[Metric]:
        with self._lock:
            metric = self._metrics.get(name)
            return metric.model_copy() if metric is not None else None

    def get_all(self) -> List[Metric]:
        """Copy of every stored metric, sorted by name."""
        with self._lock:
            return [self._metrics[k].model_copy() for k in sorted(self._metrics)]

    def close(self) -> None:
        pass
