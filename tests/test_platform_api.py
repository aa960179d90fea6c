"""Tests for the extensions (lifecycle) and logs API clients."""

import json

import httpx
import pytest

from log_store_extension.errors import LifecycleError, RegistrationError, SubscriptionError
from log_store_extension.extensions_api import ExtensionsAPIClient
from log_store_extension.logs_api import LogsAPIClient
from log_store_extension.models import BufferingConfig

RUNTIME_API = "127.0.0.1:9001"


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def _registered(handler) -> ExtensionsAPIClient:
    """An ExtensionsAPIClient that has already registered as ``ext-1``."""

    def _handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/register"):
            return httpx.Response(200, headers={"Lambda-Extension-Identifier": "ext-1"}, json={})
        return handler(request)

    api = ExtensionsAPIClient(RUNTIME_API, "forwarder", _client(_handler))
    api.register()
    return api


class TestRegister:
    def test_register_returns_identifier(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["name"] = request.headers["Lambda-Extension-Name"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, headers={"Lambda-Extension-Identifier": "ext-42"}, json={})

        api = ExtensionsAPIClient(RUNTIME_API, "forwarder", _client(handler))
        assert api.register() == "ext-42"
        assert api.extension_id == "ext-42"
        assert seen["url"] == "http://127.0.0.1:9001/2020-01-01/extension/register"
        assert seen["name"] == "forwarder"
        assert seen["body"] == {"events": ["INVOKE", "SHUTDOWN"]}

    def test_non_success_status(self):
        api = ExtensionsAPIClient(
            RUNTIME_API, "forwarder", _client(lambda req: httpx.Response(403, text="denied")),
        )
        with pytest.raises(RegistrationError, match="403"):
            api.register()

    def test_missing_identifier(self):
        api = ExtensionsAPIClient(
            RUNTIME_API, "forwarder", _client(lambda req: httpx.Response(200, json={})),
        )
        with pytest.raises(RegistrationError):
            api.register()

    def test_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        api = ExtensionsAPIClient(RUNTIME_API, "forwarder", _client(handler))
        with pytest.raises(RegistrationError):
            api.register()


class TestNextEvent:
    def test_requires_registration(self):
        api = ExtensionsAPIClient(RUNTIME_API, "forwarder", _client(lambda r: httpx.Response(200)))
        with pytest.raises(LifecycleError):
            api.next_event()

    def test_invoke_event_with_identifier(self):
        seen = {}

        def handler(request):
            seen["id"] = request.headers["Lambda-Extension-Identifier"]
            seen["path"] = request.url.path
            return httpx.Response(200, json={"eventType": "INVOKE", "requestId": "r-1"})

        event = _registered(handler).next_event()
        assert event.event_type == "INVOKE"
        assert event.request_id == "r-1"
        assert seen == {"id": "ext-1", "path": "/2020-01-01/extension/event/next"}

    def test_shutdown_event(self):
        api = _registered(lambda r: httpx.Response(
            200, json={"eventType": "SHUTDOWN", "shutdownReason": "spindown", "deadlineMs": 5},
        ))
        event = api.next_event()
        assert event.is_shutdown
        assert event.deadline_ms == 5

    @pytest.mark.parametrize("response", [
        httpx.Response(500, text="boom"),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"no": "type"}),
    ])
    def test_failures_are_lifecycle_errors(self, response):
        api = _registered(lambda r: response)
        with pytest.raises(LifecycleError):
            api.next_event()

    def test_transport_error(self):
        def handler(request):
            raise httpx.ReadError("reset", request=request)

        with pytest.raises(LifecycleError):
            _registered(handler).next_event()


class TestErrorReports:
    def test_init_error_headers(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["type"] = request.headers["Lambda-Extension-Function-Error-Type"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(202, json={"status": "OK"})

        assert _registered(handler).report_init_error("Extension.Broken", "no luck") is True
        assert seen["path"] == "/2020-01-01/extension/init/error"
        assert seen["type"] == "Extension.Broken"
        assert seen["body"]["errorMessage"] == "no luck"

    def test_exit_error_failure_is_swallowed(self):
        def handler(request):
            raise httpx.ConnectError("gone", request=request)

        assert _registered(handler).report_exit_error("Extension.Broken", "x") is False

    def test_not_reported_before_registration(self):
        api = ExtensionsAPIClient(RUNTIME_API, "forwarder", _client(lambda r: httpx.Response(202)))
        assert api.report_init_error("Extension.Broken", "x") is False


class TestSubscribe:
    def test_subscribe_request(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["id"] = request.headers["Lambda-Extension-Identifier"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, text="OK")

        api = LogsAPIClient(RUNTIME_API, _client(handler))
        api.subscribe(
            "ext-1", "http://sandbox.localdomain:9002",
            BufferingConfig(max_bytes=262_144, max_items=1_000, timeout_ms=25),
            ("platform", "function"),
        )
        assert seen["method"] == "PUT"
        assert seen["url"] == "http://127.0.0.1:9001/2020-08-15/logs"
        assert seen["id"] == "ext-1"
        assert seen["body"] == {
            "schemaVersion": "2021-03-18",
            "types": ["platform", "function"],
            "buffering": {"maxBytes": 262_144, "maxItems": 1_000, "timeoutMs": 25},
            "destination": {"protocol": "HTTP", "URI": "http://sandbox.localdomain:9002"},
        }

    def test_subscribe_rejected(self):
        api = LogsAPIClient(RUNTIME_API, _client(lambda r: httpx.Response(400, text="bad")))
        with pytest.raises(SubscriptionError, match="400"):
            api.subscribe("ext-1", "http://x:1", BufferingConfig())

    def test_subscribe_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        api = LogsAPIClient(RUNTIME_API, _client(handler))
        with pytest.raises(SubscriptionError):
            api.subscribe("ext-1", "http://x:1", BufferingConfig())
