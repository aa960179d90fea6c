"""Client for the platform's log-delivery (Logs) API."""

import logging

import httpx

from log_store_extension.errors import SubscriptionError
from log_store_extension.extensions_api import IDENTIFIER_HEADER
from log_store_extension.models import BufferingConfig

logger = logging.getLogger(__name__)

API_VERSION = "2020-08-15"
SCHEMA_VERSION = "2021-03-18"


class LogsAPIClient:
    def __init__(self, runtime_api: str, http_client: httpx.Client | None = None):
        self._url = f"http://{runtime_api}/{API_VERSION}/logs"
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.Client(timeout=10.0)

    def subscribe(
        self,
        extension_id: str,
        destination: str,
        buffering: BufferingConfig,
        log_types=("platform", "function"),
    ):
        """Ask the platform to push ``log_types`` to ``destination``.

        Raises:
            SubscriptionError: On a transport error or a non-success status.
        """
        body = {
            "schemaVersion": SCHEMA_VERSION,
            "types": list(log_types),
            "buffering": buffering.to_dict(),
            "destination": {"protocol": "HTTP", "URI": destination},
        }
        try:
            resp = self._http.put(
                self._url,
                headers={IDENTIFIER_HEADER: extension_id},
                json=body,
            )
        except httpx.HTTPError as exc:
            raise SubscriptionError(f"subscribe request failed: {exc}") from exc

        if resp.status_code >= 300:
            raise SubscriptionError(
                f"subscribe returned HTTP {resp.status_code}: {resp.text[:200]}"
            )
        logger.info("Subscribed to %s logs, destination=%s", ",".join(log_types), destination)

    def close(self):
        if self._owns_http_client:
            self._http.close()
