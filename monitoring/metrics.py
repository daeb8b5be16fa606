"""Point-in-time views of registry metrics.

The instrumentation registry owns the live metric objects. Before each scrape
it hands the exporter one of the immutable models below per metric, so the
exporter only ever sees a consistent snapshot of counts, digests and rates.
"""

import math
from collections.abc import Iterable
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MetricType(StrEnum):
    GAUGE = "gauge"
    COUNTER = "counter"
    SUMMARY = "summary"


class Snapshot(BaseModel):
    """Statistical digest of sampled values."""

    model_config = ConfigDict(frozen=True)

    median: float = 0.0
    p75: float = 0.0
    p95: float = 0.0
    p98: float = 0.0
    p99: float = 0.0
    p999: float = 0.0
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    stddev: float = 0.0

    @classmethod
    def from_values(cls, values: Iterable[float | int | Decimal]) -> "Snapshot":
        ordered = sorted(float(v) for v in values)
        if not ordered:
            return cls()

        mean = math.fsum(ordered) / len(ordered)
        if len(ordered) > 1:
            variance = math.fsum((v - mean) ** 2 for v in ordered) / (len(ordered) - 1)
        else:
            variance = 0.0

        return cls(
            median=_quantile(ordered, 0.5),
            p75=_quantile(ordered, 0.75),
            p95=_quantile(ordered, 0.95),
            p98=_quantile(ordered, 0.98),
            p99=_quantile(ordered, 0.99),
            p999=_quantile(ordered, 0.999),
            min=ordered[0],
            max=ordered[-1],
            mean=mean,
            stddev=math.sqrt(variance),
        )


def _quantile(ordered: list[float], quantile: float) -> float:
    pos = quantile * (len(ordered) + 1)
    index = int(pos)
    if index < 1:
        return ordered[0]
    if index >= len(ordered):
        return ordered[-1]
    lower = ordered[index - 1]
    upper = ordered[index]
    return lower + (pos - math.floor(pos)) * (upper - lower)


class Gauge(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Whatever the registry's gauge reported; only numbers and booleans export.
    value: Any = None


class Counter(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int = Field(default=0, ge=0)


class Histogram(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int = Field(default=0, ge=0)
    snapshot: Snapshot = Field(default_factory=Snapshot)


class Meter(BaseModel):
    """Event count plus moving-average rates in events per second."""

    model_config = ConfigDict(frozen=True)

    count: int = Field(default=0, ge=0)
    m1_rate: float = Field(default=0.0, ge=0)
    m5_rate: float = Field(default=0.0, ge=0)
    m15_rate: float = Field(default=0.0, ge=0)
    mean_rate: float = Field(default=0.0, ge=0)


class Timer(BaseModel):
    """Call rates plus a digest of call durations in nanoseconds."""

    model_config = ConfigDict(frozen=True)

    count: int = Field(default=0, ge=0)
    snapshot: Snapshot = Field(default_factory=Snapshot)
    m1_rate: float = Field(default=0.0, ge=0)
    m5_rate: float = Field(default=0.0, ge=0)
    m15_rate: float = Field(default=0.0, ge=0)
    mean_rate: float = Field(default=0.0, ge=0)


MetricSource = Gauge | Counter | Histogram | Meter | Timer
