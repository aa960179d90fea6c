"""Lifecycle driver: registers, subscribes, polls for events, and drains."""

import logging
import time

import httpx

from log_store_extension.config import Config
from log_store_extension.delivery import DeliveryClient, LogStoreConnection
from log_store_extension.delivery_queue import DeliveryQueue
from log_store_extension.drainer import ShutdownDrainer
from log_store_extension.errors import (
    LifecycleError,
    RegistrationError,
    SubscriptionError,
)
from log_store_extension.extensions_api import ExtensionsAPIClient
from log_store_extension.logs_api import LogsAPIClient
from log_store_extension.metrics import Metrics, MetricsReporter, format_summary
from log_store_extension.models import EVENT_INVOKE, DrainResult, ExtensionEvent
from log_store_extension.receiver import BatchReceiver
from log_store_extension.state import ExtensionState, ExtensionStateCell

logger = logging.getLogger(__name__)

POLLING_STATES = (ExtensionState.SUBSCRIBED, ExtensionState.POLLING)

# 128 + SIGINT, the shell's status for an interrupted process
INTERRUPTED_EXIT_CODE = 130


class LifecycleDriver:
    """Owns the ExtensionState and wires every other component together.

    ``run`` is meant for the main thread: the blocking "next" call happens
    here while the receiver and the delivery client run on their own threads.
    """

    def __init__(
        self,
        config: Config,
        http_client: httpx.Client | None = None,
        connection: LogStoreConnection | None = None,
        metrics: Metrics | None = None,
    ):
        self._config = config
        self._state = ExtensionStateCell()
        self._metrics = metrics or Metrics()
        self._queue = DeliveryQueue(config.queue_capacity)
        self._extensions_api = ExtensionsAPIClient(
            config.runtime_api, config.extension_name, http_client,
        )
        self._logs_api = LogsAPIClient(config.runtime_api, http_client)
        self._receiver = BatchReceiver(
            self._queue,
            self._metrics,
            self._state.view(),
            host=config.listener_host,
            port=config.listener_port,
            enqueue_timeout=config.enqueue_timeout,
        )
        self._delivery = DeliveryClient(self._queue, config, self._metrics, connection)
        self._drainer = ShutdownDrainer(self._queue, self._delivery, self._metrics)
        self._reporter = MetricsReporter(self._metrics, config.metrics_interval)
        self.last_drain: DrainResult | None = None

    @property
    def state(self) -> ExtensionState:
        return self._state.current

    @property
    def metrics(self) -> Metrics:
        return self._metrics

    @property
    def queue(self) -> DeliveryQueue:
        return self._queue

    @property
    def receiver(self) -> BatchReceiver:
        return self._receiver

    def run(self) -> int:
        """Run until shutdown. Returns the process exit status."""
        try:
            self._start()
            return self._poll_loop()
        except RegistrationError as exc:
            logger.error("Registration failed: %s", exc)
            return self._fail(exc)
        except SubscriptionError as exc:
            logger.error("Subscription failed: %s", exc)
            self._extensions_api.report_init_error("Extension.SubscriptionFailed", str(exc))
            return self._fail(exc)
        except LifecycleError as exc:
            logger.error("Lost contact with the platform: %s", exc)
            self._extensions_api.report_exit_error("Extension.NextEventFailed", str(exc))
            return self._fail(exc)
        except KeyboardInterrupt:
            return self._abort()
        finally:
            self._stop_components()
            logger.info("[metrics] final %s", format_summary(self._metrics.snapshot()))

    def _start(self):
        extension_id = self._extensions_api.register()
        self._state.advance(ExtensionState.REGISTERED)

        try:
            self._receiver.start()
        except OSError as exc:
            raise SubscriptionError(
                f"cannot bind listener on {self._config.listener_host}:"
                f"{self._config.listener_port}: {exc}"
            ) from exc

        destination = self._receiver.destination(self._config.advertised_host)
        self._logs_api.subscribe(
            extension_id, destination, self._config.buffering, self._config.log_types,
        )
        self._state.advance(ExtensionState.SUBSCRIBED)

        self._delivery.start()
        self._reporter.start()

    def _poll_loop(self) -> int:
        while self._state.current in POLLING_STATES:
            try:
                event = self._extensions_api.next_event()
            except KeyboardInterrupt:
                logger.warning("Interrupted while waiting for the next event")
                return self._shutdown(time.monotonic() + self._config.signal_drain_seconds)

            if event.event_type == EVENT_INVOKE:
                self._state.advance(ExtensionState.POLLING)
                self._metrics.record_invoke()
                logger.debug("Invoke %s", event.request_id)
            elif event.is_shutdown:
                logger.info("Shutdown event received (reason=%s)", event.shutdown_reason)
                return self._shutdown(self._drain_deadline(event))
            else:
                logger.warning("Ignoring unknown event type %r", event.event_type)
        return 0

    def _shutdown(self, deadline: float) -> int:
        self._state.advance(ExtensionState.DRAINING)
        self._receiver.stop_accepting()
        self.last_drain = self._drainer.drain(deadline)
        self._state.advance(ExtensionState.TERMINATED)
        return 0

    def _drain_deadline(self, event: ExtensionEvent) -> float:
        """Convert the event's wall-clock deadline into a monotonic one."""
        now = time.monotonic()
        if event.deadline_ms <= 0:
            return now + self._config.signal_drain_seconds
        remaining = event.deadline_ms / 1000 - time.time() - self._config.drain_margin_ms / 1000
        return now + max(remaining, 0.0)

    def _abort(self) -> int:
        """Signal outside the polling loop: drop what is queued, count it, exit."""
        logger.warning("Interrupted while %s, abandoning queued batches",
                       self._state.current.value)
        self._receiver.stop_accepting()
        discarded = self._drainer.discard_remaining()
        if discarded:
            logger.warning("Discarded %d batch(es) on interrupt", discarded)
        if self._state.current is not ExtensionState.TERMINATED:
            self._state.advance(ExtensionState.TERMINATED)
        return INTERRUPTED_EXIT_CODE

    def _fail(self, exc) -> int:
        if self._state.current is not ExtensionState.TERMINATED:
            self._state.advance(ExtensionState.TERMINATED)
        return exc.exit_code

    def _stop_components(self):
        self._reporter.stop()
        self._receiver.stop()
        self._delivery.stop(timeout=1.0)
        self._delivery.close()
        self._extensions_api.close()
        self._logs_api.close()
