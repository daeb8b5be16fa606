from unittest.mock import MagicMock

import pytest

from config.settings import ExportSettings
from monitoring.metrics import Counter, Gauge, Histogram, Meter, Snapshot, Timer
from monitoring.metrics_export import to_prometheus_text


def _sample_value(text: str, prefix: str) -> float:
    line = next(line for line in text.splitlines() if line.startswith(prefix))
    return float(line.rsplit(" ", 1)[1])


def test_empty_registry_renders_nothing() -> None:
    assert to_prometheus_text({}) == ""


def test_gauge_block() -> None:
    text = to_prometheus_text({"my.gauge!": Gauge(value=42)})
    assert text == (
        "# HELP my_gauge_ Generated from metrics registry import "
        "(metric=my.gauge!, type=monitoring.metrics.Gauge)\n"
        "# TYPE my_gauge_ gauge\n"
        "my_gauge_ 42.0\n"
    )


def test_meter_block() -> None:
    text = to_prometheus_text({"requests": Meter(count=10, m1_rate=2.0)})
    lines = text.splitlines()
    assert lines[1] == "# TYPE requests_total counter"
    assert lines[2] == "requests_total 10"
    assert len(lines) == 3


def test_counter_block() -> None:
    text = to_prometheus_text({"jobs.done": Counter(count=7)})
    assert "# TYPE jobs_done gauge\n" in text
    assert text.endswith("jobs_done 7\n")


def test_histogram_block() -> None:
    snapshot = Snapshot(median=2, p75=3, p95=4, p98=5, p99=6, p999=7, min=1, max=8, mean=2.5, stddev=0.5)
    text = to_prometheus_text({"payload.size": Histogram(count=20, snapshot=snapshot)})
    assert text.splitlines()[1:] == [
        "# TYPE payload_size summary",
        'payload_size{quantile="0.5"} 2.0',
        'payload_size{quantile="0.75"} 3.0',
        'payload_size{quantile="0.95"} 4.0',
        'payload_size{quantile="0.98"} 5.0',
        'payload_size{quantile="0.99"} 6.0',
        'payload_size{quantile="0.999"} 7.0',
        'payload_size{attr="min"} 1.0',
        'payload_size{attr="max"} 8.0',
        'payload_size{attr="median"} 2.0',
        'payload_size{attr="mean"} 2.5',
        'payload_size{attr="stddev"} 0.5',
        "payload_size_count 20",
    ]


def test_timer_converts_quantiles_only() -> None:
    timer = Timer(
        count=1,
        snapshot=Snapshot.from_values([1_000_000_000]),
        m1_rate=0.5,
        m5_rate=0.25,
        m15_rate=0.125,
        mean_rate=1.0,
    )
    text = to_prometheus_text({"db.query": timer})
    assert _sample_value(text, 'db_query{quantile="0.5"}') == pytest.approx(1.0)
    assert _sample_value(text, 'db_query{attr="median"}') == 1_000_000_000
    assert 'db_query{attr="median"} 1000000000.0' in text
    assert text.count("# HELP") == 1
    assert text.count("# TYPE") == 1
    assert text.splitlines()[-4:] == [
        'db_query{rate="m1"} 0.5',
        'db_query{rate="m5"} 0.25',
        'db_query{rate="m15"} 0.125',
        'db_query{rate="mean"} 1.0',
    ]


def test_timer_uses_configured_factor() -> None:
    timer = Timer(count=1, snapshot=Snapshot(median=1500.0))
    text = to_prometheus_text({"t": timer}, settings=ExportSettings(duration_factor=1e-3))
    assert _sample_value(text, 't{quantile="0.5"}') == pytest.approx(1.5)


def test_kind_and_name_ordering() -> None:
    metrics = {
        "z.timer": Timer(count=1),
        "b.meter": Meter(count=1),
        "a.hist": Histogram(count=1),
        "y.counter": Counter(count=1),
        "x.counter": Counter(count=2),
        "w.gauge": Gauge(value=1),
    }
    text = to_prometheus_text(metrics)
    types = [line.split()[2] for line in text.splitlines() if line.startswith("# TYPE")]
    assert types == ["w_gauge", "x_counter", "y_counter", "a_hist", "b_meter_total", "z_timer"]


def test_bad_gauge_skipped_and_rendering_continues() -> None:
    log = MagicMock()
    metrics = {"bad": Gauge(value="x"), "good": Gauge(value=False), "hits": Counter(count=1)}
    text = to_prometheus_text(metrics, logger=log)
    assert "bad" not in text
    assert "good 0.0\n" in text
    assert "hits 1\n" in text
    log.warning.assert_called_once_with("invalid_gauge_type", metric="bad", value_type="builtins.str")
    log.debug.assert_called_once_with("metrics_rendered", emitted=2, skipped=1)


def test_unknown_source_raises() -> None:
    with pytest.raises(TypeError):
        to_prometheus_text({"odd": object()})


def test_every_line_is_newline_terminated() -> None:
    text = to_prometheus_text({"a": Gauge(value=1), "b": Timer(count=3)})
    assert text.endswith("\n")
    assert all(line for line in text.split("\n")[:-1])


def test_colliding_names_keep_first_and_warn() -> None:
    log = MagicMock()
    text = to_prometheus_text({"a.b": Gauge(value=1), "a_b": Gauge(value=2)}, logger=log)
    assert text.count("# TYPE a_b ") == 1
    assert "a_b 1.0\n" in text
    assert "a_b 2.0\n" not in text
    log.warning.assert_called_once_with("metric_name_collision", metric="a_b", exported="a_b", first="a.b")
    log.debug.assert_called_once_with("metrics_rendered", emitted=1, skipped=1)


def test_meter_total_collides_with_counter() -> None:
    log = MagicMock()
    text = to_prometheus_text({"x": Meter(count=5), "x_total": Counter(count=9)}, logger=log)
    assert text.count("# TYPE x_total ") == 1
    assert "# TYPE x_total gauge\n" in text
    assert "x_total 9\n" in text
    assert "x_total 5\n" not in text
    log.warning.assert_called_once_with("metric_name_collision", metric="x", exported="x_total", first="x_total")


def test_summary_count_collides_with_gauge() -> None:
    log = MagicMock()
    text = to_prometheus_text({"h_count": Gauge(value=3), "h": Histogram(count=1)}, logger=log)
    assert "# TYPE h summary" not in text
    assert text.count("h_count") >= 1
    assert log.warning.call_args.kwargs["exported"] == "h_count"


def test_skipped_gauge_does_not_reserve_name() -> None:
    log = MagicMock()
    text = to_prometheus_text({"a.b": Gauge(value="x"), "a_b": Counter(count=4)}, logger=log)
    assert "a_b 4\n" in text
    log.warning.assert_called_once_with("invalid_gauge_type", metric="a.b", value_type="builtins.str")


def test_oversized_gauge_does_not_abort_render() -> None:
    text = to_prometheus_text({"big": Gauge(value=10**400), "ok": Gauge(value=1)})
    assert "big +Inf\n" in text
    assert "ok 1.0\n" in text
