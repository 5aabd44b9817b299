"""
Runtime gauge sampling for the agent.

The sampler holds no hardcoded list of statistics: it is driven by a list
of GaugeSource(name, read) pairs, DEFAULT_SOURCES being the stock set.
"""

from __future__ import annotations

import gc
import logging
import random
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import psutil

logger = logging.getLogger(__name__)

POLL_COUNT = "PollCount"


@dataclass(frozen=True)
class GaugeSource:
    """A named gauge and the callable that reads its current value."""

    name: str
    read: Callable[[], float]


@dataclass
class AgentSnapshot:
    """
    Last sampled gauges plus the poll counter since the last report.

    Shared by the poll and report tasks; all access goes through the lock.
    """

    gauges: Dict[str, float] = field(default_factory=dict)
    poll_count: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, values: Dict[str, float], polls: int = 1) -> None:
        """Overwrite sampled gauges and bump the poll counter in one step."""
        with self._lock:
            self.gauges.update(values)
            self.poll_count += polls

    def drain(self) -> Tuple[Dict[str, float], int]:
        """
        Copy gauges and take the poll counter, resetting it to 0.

        Gauges are kept as last-known values; the counter means
        "polls since last report", the running total lives on the collector.
        """
        with self._lock:
            polls = self.poll_count
            self.poll_count = 0
            return dict(self.gauges), polls

    def view(self) -> Tuple[Dict[str, float], int]:
        with self._lock:
            return dict(self.gauges), self.poll_count


_process = psutil.Process()


def _gc_stat(key: str) -> Callable[[], float]:
    return lambda: float(sum(gen[key] for gen in gc.get_stats()))


def _gc_count(generation: int) -> Callable[[], float]:
    return lambda: float(gc.get_count()[generation])


DEFAULT_SOURCES: List[GaugeSource] = [
    GaugeSource("Alloc", lambda: float(_process.memory_info().rss)),
    GaugeSource("Sys", lambda: float(_process.memory_info().vms)),
    GaugeSource("NumThreads", lambda: float(_process.num_threads())),
    GaugeSource("NumGC", _gc_stat("collections")),
    GaugeSource("GCCollected", _gc_stat("collected")),
    GaugeSource("GCUncollectable", _gc_stat("uncollectable")),
    GaugeSource("GCGen0Count", _gc_count(0)),
    GaugeSource("GCGen1Count", _gc_count(1)),
    GaugeSource("GCGen2Count", _gc_count(2)),
    GaugeSource("TotalMemory", lambda: float(psutil.virtual_memory().total)),
    GaugeSource("FreeMemory", lambda: float(psutil.virtual_memory().available)),
    GaugeSource("CPUutilization1", lambda: float(psutil.cpu_percent(interval=None))),
    GaugeSource("RandomValue", random.random),
]


class Sampler:
    """Poll-tick handler: read every gauge source into the snapshot."""

    def __init__(
        self,
        snapshot: AgentSnapshot,
        sources: Optional[Sequence[GaugeSource]] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.snapshot = snapshot
        self.sources = list(DEFAULT_SOURCES if sources is None else sources)
        self.log = log or logger

    def poll(self) -> Dict[str, float]:
        values = {}
        for source in self.sources:
            try:
                values[source.name] = float(source.read())
            except Exception as e:
                # keep the previous sample for this name
                self.log.warning(f"Gauge source {source.name} failed: {e}")
        self.snapshot.record(values)
        return values
