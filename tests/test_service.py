"""
Tests for CollectorService.

Coverage:
- Typed add/get operations
- Path-form triple validation
- Kind-aware lookup
- Store error translation
"""

import pytest

from metric_ledger.models import Metric
from metric_ledger.persistence import FileStore
from metric_ledger.service import (
    CollectorService,
    InvalidMetricError,
    MetricNotFoundError,
)
from metric_ledger.store import MemoryStore


@pytest.fixture
def service():
    return CollectorService(MemoryStore())


class TestAddAndGet:

    def test_add_gauge_returns_metric(self, service):
        assert service.add_gauge("Alloc", 120.5) == Metric.gauge("Alloc", 120.5)

    def test_add_counter_returns_total(self, service):
        service.add_counter("PollCount", 2)
        assert service.add_counter("PollCount", 3).delta == 5

    def test_get_missing_raises(self, service):
        with pytest.raises(MetricNotFoundError):
            service.get_metric("missing")

    def test_get_all(self, service):
        service.add_gauge("b", 1.0)
        service.add_counter("a", 1)
        assert [m.id for m in service.get_all_metrics()] == ["a", "b"]

    def test_restored_counter_scenario(self, tmp_path):
        path = tmp_path / "db.json"
        path.write_text('{"id":"PollCount","type":"counter","delta":7}\n')
        service = CollectorService(FileStore(str(path), restore=True))

        service.add_counter("PollCount", 3)

        assert service.get_metric("PollCount").delta == 10
        service.store.close()


class TestUpdateTriple:
    """update(kind, name, raw_value) validation."""

    def test_gauge_value_parsed(self, service):
        assert service.update("gauge", "Alloc", "120.5").value == 120.5

    def test_counter_value_parsed(self, service):
        assert service.update("counter", "c", "-4").delta == -4

    @pytest.mark.parametrize("kind,raw", [
        ("gauge", "abc"),
        ("gauge", "nan"),
        ("gauge", "1_0"),
        ("counter", "1.5"),
        ("counter", str(2 ** 63)),
        ("histogram", "1"),
    ])
    def test_invalid_rejected(self, service, kind, raw):
        with pytest.raises(InvalidMetricError):
            service.update(kind, "m", raw)
        assert service.get_all_metrics() == []

    def test_empty_name_not_found(self, service):
        with pytest.raises(MetricNotFoundError):
            service.update("gauge", "", "1")

    def test_kind_conflict_is_invalid(self, service):
        service.update("gauge", "dual", "1")
        with pytest.raises(InvalidMetricError):
            service.update("counter", "dual", "1")


class TestLookup:

    def test_lookup_by_kind(self, service):
        service.add_gauge("Alloc", 1.0)
        assert service.lookup("gauge", "Alloc").value == 1.0

    def test_lookup_other_kind_not_found(self, service):
        service.add_gauge("Alloc", 1.0)
        with pytest.raises(MetricNotFoundError):
            service.lookup("counter", "Alloc")

    def test_lookup_unknown_kind_invalid(self, service):
        with pytest.raises(InvalidMetricError):
            service.lookup("summary", "Alloc")

    def test_update_metric_dispatch(self, service):
        service.update_metric(Metric.counter("c", 2))
        stored = service.update_metric(Metric.counter("c", 2))
        assert stored.delta == 4

    def test_counter_overflow_is_invalid(self, service):
        service.update("counter", "big", str(2 ** 63 - 1))
        with pytest.raises(InvalidMetricError, match="overflow"):
            service.update("counter", "big", "1")
