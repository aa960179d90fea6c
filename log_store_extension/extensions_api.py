"""Client for the platform's extension-lifecycle API."""

import json
import logging

import httpx

from log_store_extension.errors import LifecycleError, RegistrationError
from log_store_extension.models import (
    EVENT_INVOKE,
    EVENT_SHUTDOWN,
    ExtensionEvent,
    extension_event_from_dict,
)

logger = logging.getLogger(__name__)

API_VERSION = "2020-01-01"
NAME_HEADER = "Lambda-Extension-Name"
IDENTIFIER_HEADER = "Lambda-Extension-Identifier"
ERROR_TYPE_HEADER = "Lambda-Extension-Function-Error-Type"


class ExtensionsAPIClient:
    """Registers the extension and polls for lifecycle events.

    The identifier returned by ``register`` is sent on every later call.
    """

    def __init__(
        self,
        runtime_api: str,
        extension_name: str,
        http_client: httpx.Client | None = None,
    ):
        self._base_url = f"http://{runtime_api}/{API_VERSION}/extension"
        self._extension_name = extension_name
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.Client(timeout=10.0)
        self._extension_id: str | None = None

    @property
    def extension_id(self) -> str | None:
        return self._extension_id

    def register(self, events=(EVENT_INVOKE, EVENT_SHUTDOWN)) -> str:
        """Declare the extension and the events it wants. Returns its identifier.

        Raises:
            RegistrationError: On a transport error, a non-success status,
                or a response without an identifier.
        """
        try:
            resp = self._http.post(
                f"{self._base_url}/register",
                headers={NAME_HEADER: self._extension_name},
                json={"events": list(events)},
            )
        except httpx.HTTPError as exc:
            raise RegistrationError(f"register request failed: {exc}") from exc

        if resp.status_code != 200:
            raise RegistrationError(
                f"register returned HTTP {resp.status_code}: {resp.text[:200]}"
            )

        extension_id = resp.headers.get(IDENTIFIER_HEADER)
        if not extension_id:
            raise RegistrationError(f"register response has no {IDENTIFIER_HEADER} header")

        self._extension_id = extension_id
        logger.info("Registered extension %r (id=%s)", self._extension_name, extension_id)
        return extension_id

    def next_event(self) -> ExtensionEvent:
        """Block until the platform hands out the next INVOKE or SHUTDOWN event.

        Raises:
            LifecycleError: If the call fails in any way.
        """
        if self._extension_id is None:
            raise LifecycleError("next_event called before register")
        try:
            resp = self._http.get(
                f"{self._base_url}/event/next",
                headers={IDENTIFIER_HEADER: self._extension_id},
                timeout=None,
            )
        except httpx.HTTPError as exc:
            raise LifecycleError(f"next event request failed: {exc}") from exc

        if resp.status_code != 200:
            raise LifecycleError(
                f"next event returned HTTP {resp.status_code}: {resp.text[:200]}"
            )
        try:
            return extension_event_from_dict(resp.json())
        except (json.JSONDecodeError, ValueError) as exc:
            raise LifecycleError(f"malformed next event response: {exc}") from exc

    def report_init_error(self, error_type: str, message: str) -> bool:
        """Tell the platform initialization failed. Best effort."""
        return self._report_error("init/error", error_type, message)

    def report_exit_error(self, error_type: str, message: str) -> bool:
        """Tell the platform the extension is exiting on an error. Best effort."""
        return self._report_error("exit/error", error_type, message)

    def close(self):
        if self._owns_http_client:
            self._http.close()

    def _report_error(self, path: str, error_type: str, message: str) -> bool:
        if self._extension_id is None:
            return False
        try:
            resp = self._http.post(
                f"{self._base_url}/{path}",
                headers={
                    IDENTIFIER_HEADER: self._extension_id,
                    ERROR_TYPE_HEADER: error_type,
                },
                json={"errorMessage": message, "errorType": error_type},
            )
        except httpx.HTTPError as exc:
            logger.warning("Could not report %s to platform: %s", path, exc)
            return False
        if resp.status_code >= 300:
            logger.warning("Platform rejected %s report: HTTP %d", path, resp.status_code)
            return False
        return True
