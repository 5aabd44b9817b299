from __future__ import annotations

import logging
from typing import List, Optional

from metric_ledger import COUNTER, GAUGE, METRIC_KINDS
from metric_ledger.models import Metric, parse_counter_delta, parse_gauge_value
from metric_ledger.store import MemoryStore, StoreError

logger = logging.getLogger(__name__)


class MetricError(Exception):
    """Base class for errors surfaced to collector clients."""
    pass


class InvalidMetricError(MetricError):
    """Bad kind, unparseable value or kind conflict (HTTP 400)."""
    pass


class MetricNotFoundError(MetricError):
    """No metric of the requested kind under that name (HTTP 404)."""

    def __init__(self, name: str):
        super().__init__(f"metric not found: {name}")
        self.name = name


class CollectorService:
    """
    Single entry point between the HTTP layer and the store.

    Turns (kind, name, value) triples into store mutations and
    (kind, name) queries into metrics, translating store errors into
    MetricError subclasses.
    """

    def __init__(self, store: MemoryStore, log: Optional[logging.Logger] = None):
        self.store = store
        self.log = log or logger

    def add_gauge(self, name: str, value: float) -> Metric:
        try:
            gauge = self.store.upsert_gauge(name, value)
        except StoreError as e:
            raise InvalidMetricError(str(e)) from e
        self.log.debug(f"gauge added: name={gauge.id} value={gauge.value}")
        return gauge

    def add_counter(self, name: str, delta: int) -> Metric:
        try:
            counter = self.store.upsert_counter(name, delta, accumulate=True)
        except StoreError as e:
            raise InvalidMetricError(str(e)) from e
        self.log.debug(f"counter added: name={counter.id} delta={delta} total={counter.delta}")
        return counter

    def get_metric(self, name: str) -> Metric:
        metric = self.store.get(name)
        if metric is None:
            raise MetricNotFoundError(name)
        self.log.debug(f"{metric.mtype} returned: name={metric.id} value={metric.current}")
        return metric

    def get_all_metrics(self) -> List[Metric]:
        metrics = self.store.get_all()
        self.log.debug(f"all metrics returned: {len(metrics)}")
        return metrics

    def update(self, kind: str, name: str, raw_value: str) -> Metric:
        """
        Apply a path-form write (/update/<kind>/<name>/<value>).

        Raises:
            InvalidMetricError: Unknown kind or unparseable value
            MetricNotFoundError: Empty name segment
        """
        if not name:
            raise MetricNotFoundError(name)
        try:
            if kind == GAUGE:
                return self.add_gauge(name, parse_gauge_value(raw_value))
            if kind == COUNTER:
                return self.add_counter(name, parse_counter_delta(raw_value))
        except ValueError as e:
            raise InvalidMetricError(str(e)) from e
        raise InvalidMetricError(f"unknown metric type: {kind}")

    def update_metric(self, metric: Metric) -> Metric:
        """Apply a validated structured message; returns the stored metric."""
        if metric.is_gauge:
            return self.add_gauge(metric.id, metric.value)
        return self.add_counter(metric.id, metric.delta)

    def lookup(self, kind: str, name: str) -> Metric:
        """
        Read a metric by kind and name.

        A name stored under the other kind is reported as not found.
        """
        if kind not in METRIC_KINDS:
            raise InvalidMetricError(f"unknown metric type: {kind}")
        metric = self.get_metric(name)
        if metric.mtype != kind:
            raise MetricNotFoundError(name)
        return metric
