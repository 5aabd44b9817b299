"""
Metric Ledger - collector-side metric storage and persistence.

Snapshot format: newline-delimited JSON, one metric per line.
"""

__version__ = "0.3.0"

# Metric kinds accepted on the wire and in snapshot files
GAUGE = "gauge"
COUNTER = "counter"
METRIC_KINDS = (GAUGE, COUNTER)
