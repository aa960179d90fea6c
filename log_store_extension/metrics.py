"""Thread-safe metrics collection and periodic reporting."""

import logging
import threading
import time
from collections import deque

logger = logging.getLogger(__name__)

LATENCY_WINDOW = 1000


class Metrics:
    """Thread-safe counters for received, delivered, and lost log data.

    Every batch acknowledged to the platform ends up either in
    ``batches_delivered`` or in ``delivery_failures``; every push that was
    not acknowledged ends up in ``enqueue_drops`` or ``receive_errors``.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: dict[str, int] = {
            "batches_received": 0,
            "events_received": 0,
            "batches_delivered": 0,
            "events_delivered": 0,
            "bytes_sent": 0,
            "delivery_failures": 0,
            "events_discarded": 0,
            "enqueue_drops": 0,
            "events_dropped": 0,
            "receive_errors": 0,
            "reconnects": 0,
            "invokes": 0,
        }
        self._latencies: deque[float] = deque(maxlen=LATENCY_WINDOW)
        self._start_time = time.monotonic()

    def record_received(self, events: int):
        with self._lock:
            self._counters["batches_received"] += 1
            self._counters["events_received"] += events

    def record_delivered(self, events: int, bytes_sent: int, latency_ms: float):
        """Record a batch that reached the log-store."""
        with self._lock:
            self._counters["batches_delivered"] += 1
            self._counters["events_delivered"] += events
            self._counters["bytes_sent"] += bytes_sent
            self._latencies.append(latency_ms)

    def record_discarded(self, events: int):
        """Record an acknowledged batch that was given up on."""
        with self._lock:
            self._counters["delivery_failures"] += 1
            self._counters["events_discarded"] += events

    def record_enqueue_drop(self, events: int):
        """Record a push refused because the queue stayed full."""
        with self._lock:
            self._counters["enqueue_drops"] += 1
            self._counters["events_dropped"] += events

    def record_receive_error(self):
        with self._lock:
            self._counters["receive_errors"] += 1

    def record_reconnect(self):
        with self._lock:
            self._counters["reconnects"] += 1

    def record_invoke(self):
        with self._lock:
            self._counters["invokes"] += 1

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters[name]

    def snapshot(self) -> dict:
        """Return a point-in-time copy of all counters plus latency stats.

        Latency stats cover the last ``LATENCY_WINDOW`` deliveries.
        """
        with self._lock:
            latencies = list(self._latencies)
            snapshot = dict(self._counters)

        snapshot["avg_send_latency_ms"] = (
            sum(latencies) / len(latencies) if latencies else 0.0
        )
        snapshot["max_send_latency_ms"] = max(latencies) if latencies else 0.0
        snapshot["latency_samples"] = len(latencies)
        snapshot["uptime_seconds"] = time.monotonic() - self._start_time
        return snapshot


def format_summary(snapshot: dict) -> str:
    return (
        f"received={snapshot['batches_received']}/{snapshot['events_received']} "
        f"delivered={snapshot['batches_delivered']}/{snapshot['events_delivered']} "
        f"discarded={snapshot['delivery_failures']}/{snapshot['events_discarded']} "
        f"dropped={snapshot['enqueue_drops']}/{snapshot['events_dropped']} "
        f"receive_errors={snapshot['receive_errors']} "
        f"reconnects={snapshot['reconnects']} "
        f"avg_latency={snapshot['avg_send_latency_ms']:.1f}ms"
    )


class MetricsReporter:
    """Background thread that periodically logs metrics summaries."""

    def __init__(self, metrics: Metrics, interval: float):
        self._metrics = metrics
        self._interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self):
        """Start the reporter thread. A non-positive interval disables it."""
        if self._interval <= 0:
            return
        self._thread = threading.Thread(
            target=self._report_loop, name="metrics-reporter", daemon=True
        )
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)

    def _report_loop(self):
        while not self._stop.wait(self._interval):
            logger.info("[metrics] %s", format_summary(self._metrics.snapshot()))
