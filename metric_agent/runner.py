from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from metric_agent.reporter import Reporter
from metric_agent.sampler import Sampler

logger = logging.getLogger(__name__)


class AgentRunner:
    """
    Drives the sampler and reporter on independent periodic threads.

    poll runs every `poll_interval`, report every `report_interval`.
    stop() lets in-flight ticks finish, then sends one final report
    unless `final_report` is False.
    """

    def __init__(
        self,
        sampler: Sampler,
        reporter: Reporter,
        poll_interval: float,
        report_interval: float,
        final_report: bool = True,
        log: Optional[logging.Logger] = None,
    ):
        self.sampler = sampler
        self.reporter = reporter
        self.poll_interval = poll_interval
        self.report_interval = report_interval
        self.final_report = final_report
        self.log = log or logger
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    def _loop(self, name: str, interval: float, tick: Callable[[], object]) -> None:
        while not self._stop.wait(interval):
            try:
                tick()
            except Exception as e:
                self.log.error(f"{name} tick failed: {e}")

    def _poll(self) -> None:
        self.sampler.poll()
        self.log.debug(f"Updated metrics, PollCount={self.sampler.snapshot.view()[1]}")

    def start(self) -> None:
        if self._threads:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(
                target=self._loop, args=("poll", self.poll_interval, self._poll),
                name="agent-poll", daemon=True,
            ),
            threading.Thread(
                target=self._loop, args=("report", self.report_interval, self.reporter.report),
                name="agent-report", daemon=True,
            ),
        ]
        for t in self._threads:
            t.start()
        self.log.info(
            f"Agent started: poll every {self.poll_interval}s, "
            f"report every {self.report_interval}s"
        )

    def stop(self) -> None:
        self._stop.set()
        for t in self._threads:
            t.join()
        self._threads = []
        if self.final_report:
            self.reporter.report()
        self.log.info("Agent stopped")

    @property
    def running(self) -> bool:
        return bool(self._threads)
