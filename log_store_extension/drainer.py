"""Shutdown drainer: flushes the delivery queue before the platform deadline."""

import logging
import time

from log_store_extension.delivery import DeliveryClient, DeliveryOutcome
from log_store_extension.delivery_queue import DeliveryQueue
from log_store_extension.errors import DrainTimeoutError
from log_store_extension.metrics import Metrics
from log_store_extension.models import DrainResult

logger = logging.getLogger(__name__)


class ShutdownDrainer:
    """Sends whatever is still queued once the platform announces shutdown.

    The queue is closed first, so a push still waiting for space is refused
    instead of slipping in behind the drain. The background delivery loop is
    then halted so the queue keeps a single consumer, and the drainer drives
    the client's send path itself. Batches still queued at the deadline are
    discarded and counted.
    """

    def __init__(self, queue: DeliveryQueue, delivery: DeliveryClient, metrics: Metrics):
        self._queue = queue
        self._delivery = delivery
        self._metrics = metrics

    def drain(self, deadline: float) -> DrainResult:
        """Flush until the queue is empty or ``deadline`` (monotonic) passes."""
        self._queue.close()
        delivered_before = self._metrics.get("batches_delivered")
        failed_before = self._metrics.get("delivery_failures")
        timed_out = False

        logger.info(
            "Draining %d queued batch(es), %.0fms left",
            len(self._queue), max(deadline - time.monotonic(), 0) * 1000,
        )

        if not self._delivery.stop(timeout=max(deadline - time.monotonic(), 0)):
            logger.warning("Delivery loop still busy at the deadline")
            timed_out = True
        else:
            try:
                self._flush(deadline)
            except DrainTimeoutError as exc:
                logger.warning("Drain stopped: %s", exc)
                timed_out = True

        self.discard_remaining()

        result = DrainResult(
            flushed=self._metrics.get("batches_delivered") - delivered_before,
            discarded=self._metrics.get("delivery_failures") - failed_before,
            timed_out=timed_out,
        )
        logger.info("Drain finished: flushed=%d discarded=%d", result.flushed, result.discarded)
        return result

    def discard_remaining(self) -> int:
        """Close the queue, then drop and count every batch still in it."""
        self._queue.close()
        batches = self._queue.clear()
        for batch in batches:
            self._metrics.record_discarded(len(batch))
            logger.warning("Discarding batch #%d (%d events) at shutdown",
                           batch.sequence, len(batch))
        return len(batches)

    def _flush(self, deadline: float):
        while True:
            batch = self._queue.peek(timeout=0)
            if batch is None:
                return
            outcome = self._delivery.deliver(batch, deadline=deadline)
            if outcome is not DeliveryOutcome.INTERRUPTED:
                self._queue.remove_head(batch)
