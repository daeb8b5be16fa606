import sys
from pathlib import Path

from pydantic import BaseModel, Field

from config.settings import get_settings
from monitoring.logger import get_logger, setup_logging
from monitoring.metrics import Counter, Gauge, Histogram, Meter, MetricSource, Timer
from monitoring.metrics_export import to_prometheus_text


class RegistryDump(BaseModel):
    """A registry's metrics grouped by kind, as dumped to JSON."""

    gauges: dict[str, Gauge] = Field(default_factory=dict)
    counters: dict[str, Counter] = Field(default_factory=dict)
    histograms: dict[str, Histogram] = Field(default_factory=dict)
    meters: dict[str, Meter] = Field(default_factory=dict)
    timers: dict[str, Timer] = Field(default_factory=dict)

    def sources(self) -> dict[str, MetricSource]:
        merged: dict[str, MetricSource] = {}
        for group in (self.gauges, self.counters, self.histograms, self.meters, self.timers):
            for name, metric in group.items():
                if name in merged:
                    raise ValueError(f"Metric {name!r} appears under more than one kind")
                merged[name] = metric
        return merged


def run(dump_file: Path) -> str:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format, stream=sys.stderr)

    dump = RegistryDump.model_validate_json(dump_file.read_text(encoding="utf-8"))
    metrics = dump.sources()
    log = get_logger("main")
    log.info("registry_dump_loaded", path=str(dump_file), metrics=len(metrics))
    return to_prometheus_text(metrics, settings.export, logger=log)


def main() -> None:
    if len(sys.argv) != 2:
        print("Usage: main.py <registry-dump.json>", file=sys.stderr)
        sys.exit(2)
    sys.stdout.write(run(Path(sys.argv[1])))


if __name__ == "__main__":
    main()
