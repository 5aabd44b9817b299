"""
Metric Agent - samples runtime gauges and reports them to the collector.
"""

from metric_agent.reporter import Reporter, ReportResult
from metric_agent.runner import AgentRunner
from metric_agent.sampler import DEFAULT_SOURCES, AgentSnapshot, GaugeSource, Sampler

__all__ = [
    "AgentRunner",
    "AgentSnapshot",
    "DEFAULT_SOURCES",
    "GaugeSource",
    "Reporter",
    "ReportResult",
    "Sampler",
]
