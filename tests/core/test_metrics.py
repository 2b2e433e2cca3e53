"""
Tests for the in-process metrics collector.
"""

import pytest

from feedengine.core.monitoring.metrics import MetricsCollector, MetricType


class TestMetricsCollector:
    """Test MetricsCollector functionality."""

    def test_counter_total(self):
        collector = MetricsCollector()
        collector.increment("hits")
        collector.increment("hits", 2)
        assert collector.get_metric("hits").total == 3
        assert collector.get_metric("hits").type is MetricType.COUNTER

    def test_counter_only_increments(self):
        collector = MetricsCollector()
        with pytest.raises(ValueError):
            collector.timer("latency").increment()

    def test_gauge_reports_latest(self):
        collector = MetricsCollector()
        collector.set_gauge("entries", 4)
        collector.set_gauge("entries", 9)
        assert collector.get_metric("entries").total == 9

    def test_timer_summary(self):
        collector = MetricsCollector()
        for value in (1.0, 2.0, 3.0, 4.0, 5.0):
            collector.timer("latency").record(value)

        summary = collector.summaries()["latency"]
        assert summary.count == 5
        assert summary.low == 1.0
        assert summary.high == 5.0
        assert summary.mean == 3.0
        assert summary.p50 == 3.0
        assert summary.p95 == pytest.approx(4.8)

    def test_time_operation_records_sample(self):
        collector = MetricsCollector()
        with collector.time_operation("work"):
            pass
        assert collector.summaries()["work"].count == 1

    def test_clear_keeps_registrations(self):
        collector = MetricsCollector()
        collector.increment("hits")
        collector.clear_all()
        assert collector.get_metric("hits").total == 0
        assert collector.summaries()["hits"].count == 0
