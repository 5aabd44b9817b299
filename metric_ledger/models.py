from __future__ import annotations

import re
from decimal import Decimal
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator

from metric_ledger import COUNTER, GAUGE

MetricType = Literal["gauge", "counter"]

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

_INT_RE = re.compile(r"[+-]?\d+")
_FLOAT_RE = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


class Metric(BaseModel):
    """
    Structured message form of a metric: {id, type, delta|value}.

    A gauge carries `value` (last write wins), a counter carries `delta`
    (the accumulated total once stored).
    """
    id: str = Field(min_length=1)
    mtype: MetricType = Field(alias="type")
    delta: Optional[int] = Field(default=None, strict=True, ge=INT64_MIN, le=INT64_MAX)
    # strict: JSON booleans are not numbers
    value: Optional[float] = Field(default=None, strict=True, allow_inf_nan=False)

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _check_payload(self) -> "Metric":
        if self.mtype == GAUGE and self.value is None:
            raise ValueError("gauge requires 'value'")
        if self.mtype == COUNTER and self.delta is None:
            raise ValueError("counter requires 'delta'")
        return self

    @classmethod
    def gauge(cls, name: str, value: float) -> "Metric":
        return cls(id=name, mtype=GAUGE, value=float(value))

    @classmethod
    def counter(cls, name: str, delta: int) -> "Metric":
        return cls(id=name, mtype=COUNTER, delta=int(delta))

    @property
    def is_gauge(self) -> bool:
        return self.mtype == GAUGE

    @property
    def current(self) -> Union[int, float]:
        """Current value regardless of kind."""
        return self.value if self.is_gauge else self.delta

    def to_wire(self) -> dict:
        """Dict in wire/snapshot form (gauges drop delta, counters drop value)."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class MetricQuery(BaseModel):
    """Lookup body for POST /value/."""
    id: str = Field(min_length=1)
    mtype: MetricType = Field(alias="type")

    model_config = {"populate_by_name": True}


def parse_gauge_value(raw: str) -> float:
    """
    Parse a path-form gauge value.

    Only plain decimal notation is accepted; nan/inf and underscores
    are rejected so every stored gauge survives a JSON round trip.
    """
    if not _FLOAT_RE.fullmatch(raw):
        raise ValueError(f"invalid gauge value: {raw!r}")
    value = float(raw)
    if value in (float("inf"), float("-inf")):
        raise ValueError(f"gauge value out of range: {raw!r}")
    return value


def parse_counter_delta(raw: str) -> int:
    """Parse a path-form counter delta as a signed 64-bit integer."""
    if not _INT_RE.fullmatch(raw):
        raise ValueError(f"invalid counter delta: {raw!r}")
    delta = int(raw)
    if not INT64_MIN <= delta <= INT64_MAX:
        raise ValueError(f"counter delta out of int64 range: {raw!r}")
    return delta


def format_value(metric: Metric) -> str:
    """
    Plain-text rendering used by GET /value and the index page.

    Gauges use the shortest decimal form without exponent (120.5, 3, 0.001).
    """
    if not metric.is_gauge:
        return str(metric.delta)
    return format(Decimal(repr(metric.value)).normalize(), "f")
