"""Tests for metrics module."""

import logging
import threading

from log_store_extension.metrics import (
    LATENCY_WINDOW,
    Metrics,
    MetricsReporter,
    format_summary,
)


class TestMetrics:
    def test_initial_snapshot(self):
        snapshot = Metrics().snapshot()
        assert snapshot["batches_received"] == 0
        assert snapshot["delivery_failures"] == 0
        assert snapshot["avg_send_latency_ms"] == 0.0
        assert snapshot["max_send_latency_ms"] == 0.0

    def test_counters(self):
        metrics = Metrics()
        metrics.record_received(3)
        metrics.record_received(2)
        metrics.record_delivered(3, 120, 4.0)
        metrics.record_discarded(2)
        metrics.record_enqueue_drop(7)
        metrics.record_receive_error()
        metrics.record_reconnect()
        snapshot = metrics.snapshot()
        assert snapshot["batches_received"] == 2
        assert snapshot["events_received"] == 5
        assert snapshot["batches_delivered"] == 1
        assert snapshot["events_delivered"] == 3
        assert snapshot["bytes_sent"] == 120
        assert snapshot["delivery_failures"] == 1
        assert snapshot["events_discarded"] == 2
        assert snapshot["enqueue_drops"] == 1
        assert snapshot["events_dropped"] == 7
        assert snapshot["receive_errors"] == 1
        assert snapshot["reconnects"] == 1

    def test_latency_stats(self):
        metrics = Metrics()
        metrics.record_delivered(1, 10, 2.0)
        metrics.record_delivered(1, 10, 6.0)
        snapshot = metrics.snapshot()
        assert snapshot["avg_send_latency_ms"] == 4.0
        assert snapshot["max_send_latency_ms"] == 6.0

    def test_latency_history_is_bounded(self):
        metrics = Metrics()
        metrics.record_delivered(1, 10, 500.0)
        for _ in range(LATENCY_WINDOW + 250):
            metrics.record_delivered(1, 10, 1.0)
        snapshot = metrics.snapshot()
        assert snapshot["latency_samples"] == LATENCY_WINDOW
        assert snapshot["max_send_latency_ms"] == 1.0
        assert snapshot["batches_delivered"] == LATENCY_WINDOW + 251

    def test_thread_safety(self):
        metrics = Metrics()

        def bump():
            for _ in range(1000):
                metrics.record_received(1)

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert metrics.get("batches_received") == 4000

    def test_format_summary(self):
        metrics = Metrics()
        metrics.record_received(2)
        text = format_summary(metrics.snapshot())
        assert "received=1/2" in text
        assert "discarded=0/0" in text


class TestMetricsReporter:
    def test_disabled_with_zero_interval(self):
        reporter = MetricsReporter(Metrics(), interval=0)
        reporter.start()
        assert reporter._thread is None
        reporter.stop()

    def test_logs_periodically(self, caplog):
        caplog.set_level(logging.INFO, logger="log_store_extension.metrics")
        reporter = MetricsReporter(Metrics(), interval=0.05)
        reporter.start()
        threading.Event().wait(0.2)
        reporter.stop()
        assert any("[metrics]" in r.getMessage() for r in caplog.records)
