"""Shared fixtures: a fake TCP log-store and config helpers."""

import json
import socket
import threading
import time

import pytest

from log_store_extension.config import Config
from log_store_extension.models import LogBatch, LogEvent


class FakeLogStore:
    """TCP server that collects NDJSON lines for test assertions."""

    def __init__(self, host: str = "127.0.0.1", port: int = 0):
        self._host = host
        self._port = port
        self._shutdown = threading.Event()
        self._sock: socket.socket | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self.lines: list[dict] = []
        self.connections = 0

    @property
    def port(self) -> int:
        return self._sock.getsockname()[1]

    def start(self):
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.settimeout(0.2)
        self._sock.bind((self._host, self._port))
        self._sock.listen(5)
        self._thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._thread.start()
        return self

    def stop(self):
        self._shutdown.set()
        if self._thread:
            self._thread.join(timeout=5)
        if self._sock:
            self._sock.close()

    def wait_for(self, count: int, timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            with self._lock:
                if len(self.lines) >= count:
                    return True
            time.sleep(0.02)
        return False

    def _accept_loop(self):
        while not self._shutdown.is_set():
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            with self._lock:
                self.connections += 1
            threading.Thread(target=self._handle, args=(conn,), daemon=True).start()

    def _handle(self, conn: socket.socket):
        buf = b""
        conn.settimeout(0.2)
        try:
            while not self._shutdown.is_set():
                try:
                    data = conn.recv(4096)
                except socket.timeout:
                    continue
                except OSError:
                    break
                if not data:
                    break
                buf += data
                while b"\n" in buf:
                    line, buf = buf.split(b"\n", 1)
                    with self._lock:
                        self.lines.append(json.loads(line))
        finally:
            conn.close()


def unused_port() -> int:
    """Port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


def make_config(**overrides) -> Config:
    defaults = {
        "log_store_host": "127.0.0.1",
        "log_store_port": 9999,
        "runtime_api": "127.0.0.1:9001",
        "extension_name": "test-extension",
        "listener_host": "127.0.0.1",
        "listener_port": 0,
        "advertised_host": "127.0.0.1",
        "queue_capacity": 16,
        "enqueue_timeout": 0.2,
        "max_delivery_attempts": 3,
        "backoff_base": 0.01,
        "backoff_max": 0.05,
        "connect_timeout": 1.0,
    }
    defaults.update(overrides)
    return Config(**defaults)


def make_batch(sequence: int, count: int, log_type: str = "function") -> LogBatch:
    events = tuple(
        LogEvent(
            timestamp_ms=1_700_000_000_000 + i,
            log_type=log_type,
            payload=json.dumps(f"batch {sequence} line {i}").encode(),
        )
        for i in range(count)
    )
    return LogBatch(sequence=sequence, events=events, received_at=time.monotonic())


@pytest.fixture
def log_store():
    """A running FakeLogStore on an ephemeral port."""
    store = FakeLogStore().start()
    yield store
    store.stop()
