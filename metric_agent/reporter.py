"""
Report-tick handler: drain the agent snapshot and deliver it to the collector.

Delivery is fire-and-forget per metric: every metric goes out in its own
request, a failed request is logged and the rest of the batch continues.
There is no retry; the drained poll counter is gone either way.
"""

from __future__ import annotations

import gzip
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import quote

import httpx

from metric_agent.sampler import POLL_COUNT, AgentSnapshot
from metric_ledger.models import Metric, format_value

logger = logging.getLogger(__name__)

ANOMALOUS_STATUSES = (httpx.codes.NOT_FOUND, httpx.codes.SERVICE_UNAVAILABLE)


@dataclass(frozen=True)
class WireMessage:
    """Both wire forms of one metric."""

    metric: Metric
    path: str
    body: bytes

    @property
    def compressed(self) -> bytes:
        return gzip.compress(self.body)


@dataclass
class ReportResult:
    """Outcome counts for one report tick."""

    sent: int = 0
    rejected: int = 0
    failed: int = 0

    @property
    def attempted(self) -> int:
        return self.sent + self.rejected + self.failed


def update_path(metric: Metric) -> str:
    """Path form: /update/<kind>/<name>/<value>."""
    name = quote(metric.id, safe="")
    return f"/update/{metric.mtype}/{name}/{format_value(metric)}"


def build_metrics(gauges: Dict[str, float], poll_count: int) -> List[Metric]:
    metrics = [Metric.gauge(name, value) for name, value in sorted(gauges.items())]
    metrics.append(Metric.counter(POLL_COUNT, poll_count))
    return metrics


def encode(metrics: List[Metric]) -> List[WireMessage]:
    return [
        WireMessage(metric=m, path=update_path(m), body=m.to_json().encode("utf-8"))
        for m in metrics
    ]


class Reporter:
    """
    Sends the agent snapshot to the collector.

    mode="json": gzip-compressed message POSTed to /update/
    mode="path": bodiless POST to /update/<kind>/<name>/<value>

    Usage:
        client = httpx.Client(base_url="http://localhost:8080", timeout=10)
        reporter = Reporter(snapshot, client)
        result = reporter.report()
    """

    def __init__(
        self,
        snapshot: AgentSnapshot,
        client: httpx.Client,
        mode: str = "json",
        log: Optional[logging.Logger] = None,
    ):
        if mode not in ("json", "path"):
            raise ValueError(f"unknown report mode: {mode}")
        self.snapshot = snapshot
        self.client = client
        self.mode = mode
        self.log = log or logger

    def _post(self, message: WireMessage) -> httpx.Response:
        if self.mode == "json":
            return self.client.post(
                "/update/",
                content=message.compressed,
                headers={
                    "Content-Type": "application/json",
                    "Content-Encoding": "gzip",
                },
            )
        return self.client.post(message.path, headers={"Content-Type": "text/plain"})

    def deliver(self, messages: List[WireMessage]) -> ReportResult:
        result = ReportResult()
        for message in messages:
            try:
                response = self._post(message)
            except httpx.HTTPError as e:
                self.log.error(f"Failed to send {message.metric.id}: {e}")
                result.failed += 1
                continue

            if response.status_code in ANOMALOUS_STATUSES:
                self.log.error(
                    f"Collector returned {response.status_code} for {message.metric.id}"
                )
            if response.is_success:
                result.sent += 1
            else:
                result.rejected += 1
        return result

    def report(self) -> ReportResult:
        """Drain the snapshot and attempt delivery of every metric once."""
        gauges, polls = self.snapshot.drain()
        messages = encode(build_metrics(gauges, polls))
        result = self.deliver(messages)
        self.log.debug(
            f"Reported {result.attempted} metrics: sent={result.sent} "
            f"rejected={result.rejected} failed={result.failed}"
        )
        return result
