"""
Tests for the agent: sampler, reporter and runner.

Coverage:
- Poll ticks overwrite gauges and bump PollCount
- Drain resets the counter atomically
- Both wire forms
- Fire-and-forget delivery with partial failures
- Runner start/stop with a final report
"""

import gzip
import json
import threading
import time

import httpx
import pytest

from metric_agent.reporter import Reporter, build_metrics, encode, update_path
from metric_agent.runner import AgentRunner
from metric_agent.sampler import (
    DEFAULT_SOURCES,
    POLL_COUNT,
    AgentSnapshot,
    GaugeSource,
    Sampler,
)
from metric_ledger.models import Metric


def _constant(value):
    return lambda: value


FIVE_GAUGES = [GaugeSource(f"G{i}", _constant(float(i))) for i in range(5)]


class RecordingTransport:
    """httpx handler that records requests and fails selected metric ids."""

    def __init__(self, fail_ids=(), status=200):
        self.fail_ids = set(fail_ids)
        self.status = status
        self.requests = []
        self.bodies = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = request.content
        if request.headers.get("Content-Encoding") == "gzip":
            body = gzip.decompress(body)
        metric_id = json.loads(body)["id"] if body else request.url.path.split("/")[3]
        self.bodies.append(body)
        if metric_id in self.fail_ids:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(self.status)


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler), base_url="http://collector")


class TestSampler:

    def test_poll_overwrites_gauges_and_counts(self):
        snapshot = AgentSnapshot()
        values = iter([1.0, 2.0])
        sampler = Sampler(snapshot, [GaugeSource("Alloc", lambda: next(values))])

        sampler.poll()
        sampler.poll()

        gauges, polls = snapshot.view()
        assert gauges == {"Alloc": 2.0}
        assert polls == 2

    def test_failing_source_keeps_previous_value(self):
        snapshot = AgentSnapshot()
        calls = {"n": 0}

        def flaky():
            calls["n"] += 1
            if calls["n"] > 1:
                raise RuntimeError("stat unavailable")
            return 5.0

        sampler = Sampler(snapshot, [GaugeSource("Flaky", flaky)])
        sampler.poll()
        sampler.poll()
        assert snapshot.view() == ({"Flaky": 5.0}, 2)

    def test_default_sources_produce_floats(self):
        snapshot = AgentSnapshot()
        values = Sampler(snapshot).poll()
        assert set(values) == {s.name for s in DEFAULT_SOURCES}
        assert all(isinstance(v, float) for v in values.values())

    def test_drain_resets_counter_keeps_gauges(self):
        snapshot = AgentSnapshot()
        snapshot.record({"Alloc": 1.0}, polls=3)

        assert snapshot.drain() == ({"Alloc": 1.0}, 3)
        assert snapshot.view() == ({"Alloc": 1.0}, 0)

    def test_concurrent_polls_and_drains_lose_nothing(self):
        snapshot = AgentSnapshot()
        drained = []

        def poller():
            for _ in range(1000):
                snapshot.record({}, polls=1)

        def drainer():
            for _ in range(200):
                drained.append(snapshot.drain()[1])

        threads = [threading.Thread(target=poller) for _ in range(4)] + [threading.Thread(target=drainer)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(drained) + snapshot.drain()[1] == 4000


class TestWireForms:

    def test_path_form(self):
        assert update_path(Metric.gauge("Alloc", 120.5)) == "/update/gauge/Alloc/120.5"
        assert update_path(Metric.counter(POLL_COUNT, 3)) == "/update/counter/PollCount/3"

    def test_path_form_quotes_name(self):
        assert update_path(Metric.gauge("a/b", 1.0)) == "/update/gauge/a%2Fb/1"

    def test_messages_carry_both_forms(self):
        messages = encode(build_metrics({"Alloc": 2.0}, 4))
        assert [m.path for m in messages] == [
            "/update/gauge/Alloc/2",
            "/update/counter/PollCount/4",
        ]
        assert json.loads(gzip.decompress(messages[1].compressed)) == {
            "id": "PollCount", "type": "counter", "delta": 4,
        }


class TestReporter:

    def _reporter(self, handler, mode="json"):
        snapshot = AgentSnapshot()
        Sampler(snapshot, FIVE_GAUGES).poll()
        return Reporter(snapshot, _client(handler), mode=mode), snapshot

    def test_one_gzip_request_per_metric(self):
        transport = RecordingTransport()
        reporter, _ = self._reporter(transport)

        result = reporter.report()

        assert result.sent == 6
        assert all(r.url.path == "/update/" for r in transport.requests)
        assert all(r.headers["Content-Encoding"] == "gzip" for r in transport.requests)

    def test_partial_failure_still_delivers_rest(self):
        """5 gauges + 1 counter, 2 transport failures: 4 delivered, counter reset."""
        transport = RecordingTransport(fail_ids={"G1", "PollCount"})
        reporter, snapshot = self._reporter(transport)

        result = reporter.report()

        assert len(transport.requests) == 6
        assert result.sent == 4
        assert result.failed == 2
        assert snapshot.view()[1] == 0

    def test_anomalous_status_does_not_stop_delivery(self):
        transport = RecordingTransport(status=503)
        reporter, snapshot = self._reporter(transport)

        result = reporter.report()

        assert result.rejected == 6
        assert len(transport.requests) == 6
        assert snapshot.view()[1] == 0

    def test_path_mode(self):
        transport = RecordingTransport()
        reporter, _ = self._reporter(transport, mode="path")

        reporter.report()

        paths = sorted(r.url.path for r in transport.requests)
        assert "/update/counter/PollCount/1" in paths
        assert "/update/gauge/G3/3" in paths
        assert all(r.content == b"" for r in transport.requests)

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            Reporter(AgentSnapshot(), _client(RecordingTransport()), mode="carrier-pigeon")


class TestRunner:

    def test_stop_sends_final_report(self):
        transport = RecordingTransport()
        snapshot = AgentSnapshot()
        runner = AgentRunner(
            Sampler(snapshot, FIVE_GAUGES[:1]),
            Reporter(snapshot, _client(transport)),
            poll_interval=0.01,
            report_interval=3600,
        )

        runner.start()
        assert runner.running
        time.sleep(0.1)
        runner.stop()

        assert not runner.running
        sent = [json.loads(b) for b in transport.bodies]
        counter = [m for m in sent if m["id"] == POLL_COUNT]
        assert len(counter) == 1
        assert counter[0]["delta"] >= 1
        assert snapshot.view()[1] == 0
