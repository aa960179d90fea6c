"""Data model: log events, batches, platform events, and drain results."""

import datetime
import json
from dataclasses import dataclass, field
from typing import Any, Optional

from log_store_extension.errors import ReceiveError

EVENT_INVOKE = "INVOKE"
EVENT_SHUTDOWN = "SHUTDOWN"

_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)


@dataclass(frozen=True)
class LogEvent:
    """One record from the platform log stream.

    ``payload`` is the compact JSON encoding of the record's ``record`` value
    and is written to the log-store verbatim.
    """

    timestamp_ms: int
    log_type: str
    payload: bytes


@dataclass(frozen=True)
class LogBatch:
    sequence: int
    events: tuple = ()
    received_at: float = 0.0

    def __len__(self) -> int:
        return len(self.events)


@dataclass(frozen=True)
class BufferingConfig:
    max_bytes: int = 262_144
    max_items: int = 1_000
    timeout_ms: int = 25

    def to_dict(self) -> dict:
        return {
            "maxBytes": self.max_bytes,
            "maxItems": self.max_items,
            "timeoutMs": self.timeout_ms,
        }


@dataclass(frozen=True)
class ExtensionEvent:
    """An event returned by the platform's "next" endpoint."""

    event_type: str
    deadline_ms: int = 0
    request_id: Optional[str] = None
    invoked_function_arn: Optional[str] = None
    shutdown_reason: Optional[str] = None
    raw: dict = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_shutdown(self) -> bool:
        return self.event_type == EVENT_SHUTDOWN


@dataclass(frozen=True)
class DrainResult:
    flushed: int = 0
    discarded: int = 0
    timed_out: bool = False


def parse_timestamp_ms(value: str) -> int:
    """Convert an ISO-8601 timestamp (``...Z`` allowed) to epoch milliseconds.

    Naive timestamps are taken as UTC.
    """
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return (parsed - _EPOCH) // datetime.timedelta(milliseconds=1)


def event_from_record(raw: Any) -> LogEvent:
    """Build a LogEvent from one element of a pushed batch.

    Raises:
        ReceiveError: If the element is not an object with ``time``,
            ``type`` and ``record`` fields, or the time is not ISO-8601.
    """
    if not isinstance(raw, dict):
        raise ReceiveError(f"log record must be an object, got {type(raw).__name__}")

    missing = [key for key in ("time", "type", "record") if key not in raw]
    if missing:
        raise ReceiveError(f"log record missing fields: {', '.join(missing)}")

    log_type = raw["type"]
    if not isinstance(log_type, str) or not log_type:
        raise ReceiveError("log record type must be a non-empty string")

    if not isinstance(raw["time"], str):
        raise ReceiveError("log record time must be a string")
    try:
        timestamp_ms = parse_timestamp_ms(raw["time"])
    except ValueError as exc:
        raise ReceiveError(f"invalid log record time {raw['time']!r}: {exc}") from exc

    payload = json.dumps(raw["record"], separators=(",", ":")).encode("utf-8")
    return LogEvent(timestamp_ms=timestamp_ms, log_type=log_type, payload=payload)


def events_from_body(body: bytes) -> list[LogEvent]:
    """Parse a pushed request body (a JSON array) into ordered LogEvents."""
    try:
        records = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ReceiveError(f"push body is not valid JSON: {exc}") from exc

    if not isinstance(records, list):
        raise ReceiveError(f"push body must be a JSON array, got {type(records).__name__}")

    return [event_from_record(raw) for raw in records]


def extension_event_from_dict(data: Any) -> ExtensionEvent:
    """Build an ExtensionEvent from the decoded "next" response.

    Raises:
        ValueError: If the response has no ``eventType``.
    """
    if not isinstance(data, dict) or not isinstance(data.get("eventType"), str):
        raise ValueError("next event response has no eventType")

    return ExtensionEvent(
        event_type=data["eventType"],
        deadline_ms=int(data.get("deadlineMs") or 0),
        request_id=data.get("requestId"),
        invoked_function_arn=data.get("invokedFunctionArn"),
        shutdown_reason=data.get("shutdownReason"),
        raw=data,
    )
