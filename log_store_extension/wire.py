"""Log-store wire format: newline-delimited JSON, one line per event.

Each line is ``{"t":<epoch ms>,"type":"<type>","record":<record>}`` followed
by ``\\n``. The record is embedded exactly as the platform sent it; JSON
encoding never produces a raw newline inside a value, so lines are
self-delimiting.
"""

import json

from log_store_extension.models import LogBatch, LogEvent


def wire_type(log_type: str) -> str:
    """Platform types use dots (``platform.start``); the log-store expects underscores."""
    return log_type.replace(".", "_")


def encode_event(event: LogEvent) -> bytes:
    return b"".join((
        b'{"t":',
        str(event.timestamp_ms).encode("ascii"),
        b',"type":',
        json.dumps(wire_type(event.log_type)).encode("utf-8"),
        b',"record":',
        event.payload,
        b"}\n",
    ))


def encode_batch(batch: LogBatch) -> bytes:
    """Serialize every event of a batch, in order, into one buffer."""
    return b"".join(encode_event(event) for event in batch.events)


def decode_lines(data: bytes) -> list[dict]:
    """Parse NDJSON bytes back into dicts. Blank lines are skipped."""
    return [json.loads(line) for line in data.split(b"\n") if line.strip()]
