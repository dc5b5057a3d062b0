"""
Tests for Prometheus metrics collection.
"""
import pytest
from jobqueue.utils.metrics import (
    MetricsRegistry,
    Counter,
    Gauge,
    Histogram,
    Timer,
    metrics,
)


class TestCounter:
    """Tests for Counter metric type."""

    def test_counter_increment(self):
        counter = Counter("test_counter", "Test counter")
        counter.inc()
        counter.inc(5)

        values = counter.collect()
        assert len(values) == 1
        assert values[0].value == 6

    def test_counter_with_labels(self):
        """Counter tracks separate values per queue."""
        counter = Counter("test_counter", "Test counter", ["queue"])
        counter.inc(queue="generate")
        counter.inc(2, queue="transcription")
        counter.inc(queue="generate")

        assert counter.get(queue="generate") == 2
        assert counter.get(queue="transcription") == 2
        assert counter.get(queue="analysis") == 0

    def test_counter_cannot_decrease(self):
        counter = Counter("test_counter", "Test counter")
        with pytest.raises(ValueError):
            counter.inc(-1)


class TestGauge:
    """Tests for Gauge metric type."""

    def test_gauge_set_inc_dec(self):
        gauge = Gauge("test_gauge", "Test gauge", ["queue"])
        gauge.set(10, queue="t")
        gauge.inc(5, queue="t")
        gauge.dec(3, queue="t")

        assert gauge.get(queue="t") == 12


class TestHistogram:
    """Tests for Histogram metric type."""

    def test_histogram_observe(self):
        histogram = Histogram("test_histogram", "Test histogram", buckets=(1.0, 0.1, 0.5))
        for value in (0.05, 0.3, 0.8, 2.0):
            histogram.observe(value)

        values = histogram.collect()

        def bucket(le):
            return next(v for v in values if v.labels.get("le") == le).value

        assert bucket("0.1") == 1
        assert bucket("0.5") == 2
        assert bucket("1.0") == 3
        assert bucket("+Inf") == 4

        sum_value = next(v for v in values if v.labels.get("_metric") == "sum")
        count_value = next(v for v in values if v.labels.get("_metric") == "count")
        assert sum_value.value == pytest.approx(3.15)
        assert count_value.value == 4


class TestTimer:

    def test_timer_records_duration(self):
        histogram = Histogram("test_duration", "Test duration")

        with Timer(histogram, queue="t") as timer:
            pass

        values = histogram.collect()
        count_value = next(v for v in values if v.labels.get("_metric") == "count")
        assert count_value.value == 1
        assert count_value.labels["queue"] == "t"
        assert timer.elapsed >= 0

    def test_timer_records_on_exception(self):
        histogram = Histogram("test_duration", "Test duration")

        with pytest.raises(RuntimeError):
            with Timer(histogram):
                raise RuntimeError("job failed")

        assert any(v.labels.get("_metric") == "count" and v.value == 1 for v in histogram.collect())


class TestMetricsRegistry:

    def test_registry_is_singleton(self):
        assert MetricsRegistry() is MetricsRegistry()
        assert metrics is MetricsRegistry()

    def test_registry_has_queue_metrics(self):
        for name in (
            "jobs_enqueued",
            "jobs_completed",
            "jobs_failed",
            "jobs_dead_lettered",
            "poll_errors",
            "jobs_in_flight",
            "job_duration",
        ):
            assert hasattr(metrics, name), f"Missing metric: {name}"

    def test_export_prometheus_format(self):
        metrics.jobs_enqueued.inc(queue="generate")
        metrics.jobs_in_flight.set(2, queue="generate")
        metrics.job_duration.observe(0.2, queue="generate")

        output = metrics.export()

        assert "# HELP jobqueue_jobs_enqueued_total" in output
        assert "# TYPE jobqueue_jobs_enqueued_total counter" in output
        assert 'jobqueue_jobs_enqueued_total{queue="generate"} 1.0' in output
        assert "# TYPE jobqueue_jobs_in_flight gauge" in output
        assert 'jobqueue_jobs_in_flight{queue="generate"} 2' in output
        assert "# TYPE jobqueue_job_duration_seconds histogram" in output
        assert 'jobqueue_job_duration_seconds_bucket{le="0.5",queue="generate"} 1' in output
        assert 'jobqueue_job_duration_seconds_count{queue="generate"} 1' in output

    def test_reset_clears_metrics(self):
        metrics.jobs_completed.inc(queue="t")

        metrics.reset()

        assert metrics.jobs_completed.collect() == []
