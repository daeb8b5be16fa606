import math
import re
from collections.abc import Mapping
from decimal import Decimal
from enum import StrEnum
from io import StringIO
from numbers import Real
from typing import Any

from pydantic import BaseModel

from config.settings import ExportSettings
from monitoring.logger import get_logger
from monitoring.metrics import (
    Counter,
    Gauge,
    Histogram,
    Meter,
    MetricSource,
    MetricType,
    Snapshot,
    Timer,
)
from monitoring.text_writer import MetricTextSink, PrometheusTextWriter

_logger = get_logger("metrics_export")

NANOSECONDS_TO_SECONDS = 1.0 / 1e9

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9:_]")
_NO_LABELS: dict[str, str] = {}

# Rendering order for a whole registry.
_KIND_ORDER: tuple[type, ...] = (Gauge, Counter, Histogram, Meter, Timer)


class SkipReason(StrEnum):
    UNSUPPORTED_GAUGE_VALUE = "unsupported_gauge_value"


class Emitted(BaseModel):
    name: str
    samples: int


class Skipped(BaseModel):
    name: str
    reason: SkipReason
    detail: str = ""


WriteResult = Emitted | Skipped


def sanitize_metric_name(name: str) -> str:
    return _INVALID_NAME_CHARS.sub("_", name)


def build_help(metric_name: str, kind: str) -> str:
    return f"Generated from metrics registry import (metric={metric_name}, type={kind})"


def _type_name(obj: Any) -> str:
    cls = type(obj)
    return f"{cls.__module__}.{cls.__qualname__}"


def _gauge_value(value: Any) -> float | None:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, Decimal) and value.is_snan():
        return math.nan
    if isinstance(value, (Real, Decimal)):
        try:
            return float(value)
        except OverflowError:
            # Beyond double range; saturate the way a double conversion would.
            return math.inf if value > 0 else -math.inf
    return None


class MetricsExporter:
    """Translates registry metrics into HELP, TYPE and sample calls on a sink.

    Sink errors are not caught: an ``OSError`` raised halfway through a
    summary leaves the lines already written in place and reaches the caller.
    The exporter holds no locks; concurrent callers sharing one sink must
    serialize on the sink themselves.
    """

    def __init__(
        self,
        writer: MetricTextSink,
        logger: Any = None,
        duration_factor: float = NANOSECONDS_TO_SECONDS,
    ) -> None:
        self._writer = writer
        self._logger = logger if logger is not None else _logger
        self._duration_factor = duration_factor

    @classmethod
    def from_settings(
        cls,
        writer: MetricTextSink,
        settings: ExportSettings,
        logger: Any = None,
    ) -> "MetricsExporter":
        return cls(writer, logger=logger, duration_factor=settings.duration_factor)

    @property
    def duration_factor(self) -> float:
        return self._duration_factor

    def write(self, name: str, metric: MetricSource) -> WriteResult:
        if isinstance(metric, Gauge):
            return self.write_gauge(name, metric)
        if isinstance(metric, Counter):
            return self.write_counter(name, metric)
        if isinstance(metric, Histogram):
            return self.write_histogram(name, metric)
        if isinstance(metric, Meter):
            return self.write_meter(name, metric)
        if isinstance(metric, Timer):
            return self.write_timer(name, metric)
        raise TypeError(f"Unsupported metric source for {name!r}: {_type_name(metric)}")

    def write_gauge(self, name: str, gauge: Gauge) -> WriteResult:
        sanitized = sanitize_metric_name(name)
        value = _gauge_value(gauge.value)
        if value is None:
            value_type = _type_name(gauge.value)
            self._logger.warning("invalid_gauge_type", metric=name, value_type=value_type)
            return Skipped(
                name=sanitized,
                reason=SkipReason.UNSUPPORTED_GAUGE_VALUE,
                detail=value_type,
            )

        self._writer.write_help(sanitized, build_help(name, _type_name(gauge)))
        self._writer.write_type(sanitized, MetricType.GAUGE)
        self._writer.write_sample(sanitized, _NO_LABELS, value)
        return Emitted(name=sanitized, samples=1)

    def write_counter(self, name: str, counter: Counter) -> WriteResult:
        # The running total is exposed as an instantaneous gauge reading.
        sanitized = sanitize_metric_name(name)
        self._writer.write_help(sanitized, build_help(name, _type_name(counter)))
        self._writer.write_type(sanitized, MetricType.GAUGE)
        self._writer.write_sample(sanitized, _NO_LABELS, counter.count)
        return Emitted(name=sanitized, samples=1)

    def write_meter(self, name: str, meter: Meter) -> WriteResult:
        sanitized = sanitize_metric_name(name) + "_total"
        self._writer.write_help(sanitized, build_help(name, _type_name(meter)))
        self._writer.write_type(sanitized, MetricType.COUNTER)
        self._writer.write_sample(sanitized, _NO_LABELS, meter.count)
        return Emitted(name=sanitized, samples=1)

    def write_histogram(self, name: str, histogram: Histogram) -> WriteResult:
        samples = self._write_snapshot_and_count(
            name,
            histogram.snapshot,
            histogram.count,
            1.0,
            MetricType.SUMMARY,
            build_help(name, _type_name(histogram)),
        )
        return Emitted(name=sanitize_metric_name(name), samples=samples)

    def write_timer(self, name: str, timer: Timer) -> WriteResult:
        samples = self._write_snapshot_and_count(
            name,
            timer.snapshot,
            timer.count,
            self._duration_factor,
            MetricType.SUMMARY,
            build_help(name, _type_name(timer)),
        )
        samples += self._write_rates(name, timer)
        return Emitted(name=sanitize_metric_name(name), samples=samples)

    def _write_snapshot_and_count(
        self,
        name: str,
        snapshot: Snapshot,
        count: int,
        factor: float,
        metric_type: MetricType,
        help_text: str,
    ) -> int:
        sanitized = sanitize_metric_name(name)
        self._writer.write_help(sanitized, help_text)
        self._writer.write_type(sanitized, metric_type)

        quantiles = (
            ("0.5", snapshot.median),
            ("0.75", snapshot.p75),
            ("0.95", snapshot.p95),
            ("0.98", snapshot.p98),
            ("0.99", snapshot.p99),
            ("0.999", snapshot.p999),
        )
        for quantile, value in quantiles:
            self._writer.write_sample(sanitized, {"quantile": quantile}, value * factor)

        # Attributes are written as recorded; only the quantiles are scaled.
        attrs = (
            ("min", snapshot.min),
            ("max", snapshot.max),
            ("median", snapshot.median),
            ("mean", snapshot.mean),
            ("stddev", snapshot.stddev),
        )
        for attr, value in attrs:
            self._writer.write_sample(sanitized, {"attr": attr}, value)

        self._writer.write_sample(sanitized + "_count", _NO_LABELS, count)
        return len(quantiles) + len(attrs) + 1

    def _write_rates(self, name: str, timer: Timer) -> int:
        sanitized = sanitize_metric_name(name)
        rates = (
            ("m1", timer.m1_rate),
            ("m5", timer.m5_rate),
            ("m15", timer.m15_rate),
            ("mean", timer.mean_rate),
        )
        for rate, value in rates:
            self._writer.write_sample(sanitized, {"rate": rate}, value)
        return len(rates)


def _kind_rank(metric: Any) -> int:
    for rank, kind in enumerate(_KIND_ORDER):
        if isinstance(metric, kind):
            return rank
    return len(_KIND_ORDER)


def exported_names(name: str, metric: MetricSource) -> tuple[str, ...]:
    """Sample names a metric occupies once written."""

    sanitized = sanitize_metric_name(name)
    if isinstance(metric, Meter):
        return (sanitized + "_total",)
    if isinstance(metric, (Histogram, Timer)):
        return (sanitized, sanitized + "_count")
    return (sanitized,)


def to_prometheus_text(
    metrics: Mapping[str, MetricSource],
    settings: ExportSettings | None = None,
    logger: Any = None,
) -> str:
    """Render a whole registry, gauges first, then counters, histograms, meters, timers.

    A metric whose exported names clash with one already written is left out
    and logged, so every name carries a single HELP/TYPE block.
    """
    log = logger if logger is not None else _logger
    buffer = StringIO()
    exporter = MetricsExporter.from_settings(
        PrometheusTextWriter(buffer),
        settings or ExportSettings(),
        logger=log,
    )

    taken: dict[str, str] = {}
    emitted = 0
    skipped = 0
    for name, metric in sorted(metrics.items(), key=lambda item: (_kind_rank(item[1]), item[0])):
        names = exported_names(name, metric)
        clash = next((n for n in names if n in taken), None)
        if clash is not None:
            log.warning("metric_name_collision", metric=name, exported=clash, first=taken[clash])
            skipped += 1
            continue

        result = exporter.write(name, metric)
        if isinstance(result, Skipped):
            skipped += 1
        else:
            emitted += 1
            for exported in names:
                taken[exported] = name

    log.debug("metrics_rendered", emitted=emitted, skipped=skipped)
    return buffer.getvalue()
