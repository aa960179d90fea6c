"""Delivery client: forwards queued batches to the log-store over TCP."""

import logging
import random
import select
import socket
import threading
import time
from enum import Enum

from log_store_extension.config import Config
from log_store_extension.delivery_queue import DeliveryQueue
from log_store_extension.errors import DeliveryError, DrainTimeoutError
from log_store_extension.metrics import Metrics
from log_store_extension.models import LogBatch
from log_store_extension.wire import encode_batch

logger = logging.getLogger(__name__)


class DeliveryOutcome(Enum):
    DELIVERED = "delivered"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


class LogStoreConnection:
    """Persistent TCP connection to the log-store, reopened on demand."""

    def __init__(self, host: str, port: int, connect_timeout: float = 5.0):
        self._host = host
        self._port = port
        self._connect_timeout = connect_timeout
        self._sock: socket.socket | None = None

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self, timeout: float | None = None):
        """Open the connection.

        Raises:
            DeliveryError: If the log-store refuses or does not answer.
        """
        self.close()
        timeout = self._connect_timeout if timeout is None else timeout
        try:
            self._sock = socket.create_connection((self._host, self._port), timeout=timeout)
        except OSError as e:
            raise DeliveryError(f"connect to {self._host}:{self._port} failed: {e}") from e
        logger.info("Connected to log-store %s:%d", self._host, self._port)

    def send(self, data: bytes, timeout: float | None = None):
        """Write all of ``data``; closes the connection on failure.

        Raises:
            DeliveryError: If the write fails or the peer has gone away.
        """
        if self._sock is None:
            raise DeliveryError("not connected")
        if self._peer_closed():
            self.close()
            raise DeliveryError("log-store closed the connection")
        try:
            self._sock.settimeout(self._connect_timeout if timeout is None else timeout)
            self._sock.sendall(data)
        except OSError as e:
            self.close()
            raise DeliveryError(f"send failed: {e}") from e

    def close(self):
        if self._sock:
            try:
                self._sock.close()
            except OSError:
                pass
            self._sock = None

    def _peer_closed(self) -> bool:
        """True if the peer has closed its end (EOF or reset pending)."""
        try:
            readable, _, _ = select.select([self._sock], [], [], 0)
            if not readable:
                return False
            return self._sock.recv(1, socket.MSG_PEEK) == b""
        except (OSError, ValueError):
            return True


class DeliveryClient:
    """Single consumer of the DeliveryQueue.

    The background loop peeks at the oldest batch, sends it with retry, and
    pops it once it was delivered or its attempts are exhausted. ``deliver``
    is the send path shared with the shutdown drainer.
    """

    def __init__(
        self,
        queue: DeliveryQueue,
        config: Config,
        metrics: Metrics,
        connection: LogStoreConnection | None = None,
    ):
        self._queue = queue
        self._config = config
        self._metrics = metrics
        self._connection = connection or LogStoreConnection(
            config.log_store_host, config.log_store_port, config.connect_timeout,
        )
        self._halt = threading.Event()
        self._thread: threading.Thread | None = None
        self._ever_connected = False

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        self._halt.clear()
        self._thread = threading.Thread(target=self._run, name="delivery", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> bool:
        """Halt the background loop. Returns True if the thread has exited.

        A batch being retried when the halt arrives stays at the head of the
        queue.
        """
        self._halt.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        return not self.running

    def close(self):
        self._connection.close()

    def deliver(
        self,
        batch: LogBatch,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> DeliveryOutcome:
        """Send one batch, retrying with exponential backoff.

        Args:
            batch: The batch to send. The caller pops it from the queue
                unless the outcome is INTERRUPTED.
            deadline: Monotonic time after which no attempt may start.
            cancel: Event that aborts the backoff wait between attempts.

        Raises:
            DrainTimeoutError: If the deadline passes before the batch is sent.
        """
        payload = encode_batch(batch)
        max_attempts = self._config.max_delivery_attempts

        for attempt in range(1, max_attempts + 1):
            self._check_deadline(batch, deadline)
            t0 = time.monotonic()
            try:
                self._send(payload, deadline)
            except DeliveryError as exc:
                logger.warning(
                    "Delivery of batch #%d failed (attempt %d/%d): %s",
                    batch.sequence, attempt, max_attempts, exc,
                )
            else:
                latency_ms = (time.monotonic() - t0) * 1000
                self._metrics.record_delivered(len(batch), len(payload), latency_ms)
                logger.debug("Delivered batch #%d (%d events, %d bytes)",
                             batch.sequence, len(batch), len(payload))
                return DeliveryOutcome.DELIVERED

            if attempt == max_attempts:
                break

            delay = self.backoff_delay(attempt, self._config.backoff_base, self._config.backoff_max)
            if deadline is not None and time.monotonic() + delay >= deadline:
                raise DrainTimeoutError(
                    f"deadline reached while retrying batch #{batch.sequence}"
                )
            if cancel is not None:
                if cancel.wait(delay):
                    return DeliveryOutcome.INTERRUPTED
            else:
                time.sleep(delay)

        self._metrics.record_discarded(len(batch))
        logger.error(
            "Discarding batch #%d (%d events) after %d attempts",
            batch.sequence, len(batch), max_attempts,
        )
        return DeliveryOutcome.FAILED

    @staticmethod
    def backoff_delay(attempt: int, base: float, cap: float) -> float:
        """Exponential backoff with jitter.

        The delay doubles each attempt (base, 2*base, 4*base, ...), is capped
        at ``cap``, then multiplied by a random factor between 0.8 and 1.2.
        """
        delay = min(base * (2 ** (attempt - 1)), cap)
        return delay * random.uniform(0.8, 1.2)

    def _run(self):
        while not self._halt.is_set():
            batch = self._queue.peek(timeout=0.5)
            if batch is None:
                continue
            try:
                outcome = self.deliver(batch, cancel=self._halt)
            except Exception:
                logger.exception("Unexpected error delivering batch #%d", batch.sequence)
                self._metrics.record_discarded(len(batch))
                outcome = DeliveryOutcome.FAILED
            if outcome is DeliveryOutcome.INTERRUPTED:
                break
            self._queue.remove_head(batch)
        logger.debug("Delivery loop stopped")

    def _send(self, payload: bytes, deadline: float | None):
        timeout = self._config.connect_timeout
        if deadline is not None:
            timeout = max(min(timeout, deadline - time.monotonic()), 0.01)

        if not self._connection.connected:
            self._connection.connect(timeout=timeout)
            if self._ever_connected:
                self._metrics.record_reconnect()
            self._ever_connected = True
        self._connection.send(payload, timeout=timeout)

    @staticmethod
    def _check_deadline(batch: LogBatch, deadline: float | None):
        if deadline is not None and time.monotonic() >= deadline:
            raise DrainTimeoutError(f"deadline reached before sending batch #{batch.sequence}")
