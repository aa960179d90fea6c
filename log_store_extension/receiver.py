"""Batch receiver: HTTP listener for log batches pushed by the platform."""

import logging
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from log_store_extension.delivery_queue import DeliveryQueue
from log_store_extension.errors import ReceiveError
from log_store_extension.metrics import Metrics
from log_store_extension.models import LogBatch, events_from_body
from log_store_extension.state import StateView

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 8 * 1024 * 1024


class PushHandler(BaseHTTPRequestHandler):
    """Handles one push request. ``self.server.receiver`` does the work."""

    protocol_version = "HTTP/1.1"

    def do_POST(self):
        try:
            length = int(self.headers.get("Content-Length", "0"))
        except ValueError:
            length = -1
        if length < 0 or length > MAX_BODY_BYTES:
            self.server.receiver.record_rejected("bad Content-Length")
            # the body stays unread, so the connection cannot be reused
            self.close_connection = True
            self._respond(400, b"bad content length")
            return

        body = self.rfile.read(length)
        status, message = self.server.receiver.handle_push(body)
        self._respond(status, message.encode("utf-8"))

    def do_PUT(self):
        self.do_POST()

    def _respond(self, status: int, body: bytes):
        self.send_response(status)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        if self.close_connection:
            self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


class BatchReceiver:
    """Accepts pushed batches, numbers them, and enqueues them for delivery.

    A push is acknowledged (200) only after its batch is in the queue. When
    the queue stays full past ``enqueue_timeout`` the batch is dropped,
    counted, and the push is answered with 503 instead.
    """

    def __init__(
        self,
        queue: DeliveryQueue,
        metrics: Metrics,
        state: StateView,
        host: str = "0.0.0.0",
        port: int = 0,
        enqueue_timeout: float = 1.0,
    ):
        self._queue = queue
        self._metrics = metrics
        self._state = state
        self._host = host
        self._port = port
        self._enqueue_timeout = enqueue_timeout
        self._httpd: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._enqueue_lock = threading.Lock()
        self._sequence = 0
        self._accepting = threading.Event()

    @property
    def server_address(self) -> tuple | None:
        return self._httpd.server_address if self._httpd else None

    @property
    def last_sequence(self) -> int:
        with self._enqueue_lock:
            return self._sequence

    def destination(self, advertised_host: str) -> str:
        """URI the platform should push to, using the actually bound port."""
        return f"http://{advertised_host}:{self.server_address[1]}"

    def start(self):
        """Bind the listener and serve on a daemon thread.

        Raises:
            OSError: If the address cannot be bound.
        """
        self._httpd = ThreadingHTTPServer((self._host, self._port), PushHandler)
        self._httpd.daemon_threads = True
        self._httpd.receiver = self
        self._accepting.set()
        self._thread = threading.Thread(
            target=self._httpd.serve_forever, name="receiver", daemon=True
        )
        self._thread.start()
        logger.info("Receiver listening on %s:%d", *self.server_address[:2])

    def stop_accepting(self):
        """Refuse further pushes; requests in flight finish normally."""
        self._accepting.clear()

    def stop(self):
        self.stop_accepting()
        if self._httpd:
            self._httpd.shutdown()
            self._httpd.server_close()
            self._httpd = None
        if self._thread:
            self._thread.join(timeout=5)

    def record_rejected(self, reason: str):
        self._metrics.record_receive_error()
        logger.warning("Rejected push: %s", reason)

    def handle_push(self, body: bytes) -> tuple[int, str]:
        """Parse, enqueue, and return the (status, message) to answer with."""
        if not self._accepting.is_set() or not self._state.accepting:
            logger.warning("Push received while shutting down, refusing")
            return 503, "shutting down"

        try:
            events = events_from_body(body)
        except ReceiveError as exc:
            self.record_rejected(str(exc))
            return 400, str(exc)

        if not events:
            return 200, "ok"

        batch = self._enqueue(events)
        if batch is None:
            self._metrics.record_enqueue_drop(len(events))
            if self._queue.closed:
                logger.warning("Queue closed for shutdown, dropped push (%d events)", len(events))
                return 503, "shutting down"
            logger.error(
                "Queue full for %.1fs, dropped push (%d events)",
                self._enqueue_timeout, len(events),
            )
            return 503, "queue full"

        self._metrics.record_received(len(events))
        logger.debug("Enqueued batch #%d (%d events)", batch.sequence, len(events))
        return 200, "ok"

    def _enqueue(self, events: list) -> LogBatch | None:
        """Number the batch and queue it, all within one ``enqueue_timeout``.

        Waiting for the lock counts against the same deadline as waiting for
        queue space. Returns None if the batch did not get in.
        """
        deadline = time.monotonic() + self._enqueue_timeout
        if not self._enqueue_lock.acquire(timeout=self._enqueue_timeout):
            return None
        try:
            self._sequence += 1
            batch = LogBatch(
                sequence=self._sequence,
                events=tuple(events),
                received_at=time.monotonic(),
            )
            remaining = max(deadline - time.monotonic(), 0.0)
            if not self._queue.put(batch, timeout=remaining):
                return None
            return batch
        finally:
            self._enqueue_lock.release()
