"""Bounded FIFO of log batches shared by the receiver and the delivery client."""

import logging
import threading
import time
from collections import deque

from log_store_extension.models import LogBatch

logger = logging.getLogger(__name__)


class DeliveryQueue:
    """Thread-safe bounded queue: many producers, one consumer.

    The consumer peeks at the head, sends it, and only then pops it, so a
    batch stays queued for as long as delivery is in progress. Once closed,
    the queue refuses new batches; producers blocked in ``put`` wake up and
    get False.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._items: deque[LogBatch] = deque()
        self._cond = threading.Condition()
        self._closed = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def put(self, batch: LogBatch, timeout: float = 0.0) -> bool:
        """Append a batch, waiting up to ``timeout`` seconds for space.

        Returns False if the queue stayed full for the whole wait or was
        closed before the batch got in.
        """
        deadline = time.monotonic() + timeout
        with self._cond:
            while not self._closed and len(self._items) >= self._capacity:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)
            if self._closed:
                return False
            self._items.append(batch)
            self._cond.notify_all()
            return True

    def peek(self, timeout: float | None = None) -> LogBatch | None:
        """Return the oldest batch without removing it, or None on timeout."""
        with self._cond:
            if not self._items:
                self._cond.wait_for(lambda: bool(self._items), timeout=timeout)
            return self._items[0] if self._items else None

    def pop(self) -> LogBatch:
        """Remove and return the oldest batch.

        Raises:
            IndexError: If the queue is empty.
        """
        with self._cond:
            batch = self._items.popleft()
            self._cond.notify_all()
            return batch

    def remove_head(self, batch: LogBatch) -> bool:
        """Pop the oldest batch only if it is ``batch``.

        Returns False if the queue was cleared or moved on meanwhile.
        """
        with self._cond:
            if not self._items or self._items[0] is not batch:
                return False
            self._items.popleft()
            self._cond.notify_all()
            return True

    def close(self):
        """Refuse every later ``put`` and wake producers waiting for space."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def clear(self) -> list[LogBatch]:
        """Remove every queued batch and return them oldest first."""
        with self._cond:
            batches = list(self._items)
            self._items.clear()
            self._cond.notify_all()
            return batches
