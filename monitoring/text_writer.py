import math
from abc import ABC, abstractmethod
from collections.abc import Mapping
from decimal import Decimal
from typing import TextIO

from monitoring.metrics import MetricType


class MetricTextSink(ABC):
    """Receives HELP, TYPE and sample lines from the exporter."""

    @abstractmethod
    def write_help(self, name: str, text: str) -> None: ...

    @abstractmethod
    def write_type(self, name: str, metric_type: MetricType) -> None: ...

    @abstractmethod
    def write_sample(self, name: str, labels: Mapping[str, str], value: float | int | Decimal) -> None: ...


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def format_value(value: float | int | Decimal) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    number = float(value)
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "+Inf" if number > 0 else "-Inf"
    return repr(number)


class PrometheusTextWriter(MetricTextSink):
    """Writes the Prometheus text exposition format to a text stream."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    def write_help(self, name: str, text: str) -> None:
        self._stream.write(f"# HELP {name} {_escape_help(text)}\n")

    def write_type(self, name: str, metric_type: MetricType) -> None:
        self._stream.write(f"# TYPE {name} {metric_type.value}\n")

    def write_sample(self, name: str, labels: Mapping[str, str], value: float | int | Decimal) -> None:
        if labels:
            rendered = ",".join(f'{key}="{_escape_label(val)}"' for key, val in labels.items())
            self._stream.write(f"{name}{{{rendered}}} {format_value(value)}\n")
        else:
            self._stream.write(f"{name} {format_value(value)}\n")
