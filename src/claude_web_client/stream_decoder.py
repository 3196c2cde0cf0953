from __future__ import annotations

import json
from typing import Any

from claude_web_client.errors import StreamFormatError

# Event-stream marker in front of every record of an append_message reply
STREAM_RECORD_PREFIX = "data: "


def last_record(text: str) -> str:
    """Return the last non-empty line of a streamed reply."""
    # split on "\n" only; U+2028 and friends may appear inside JSON strings
    for line in reversed(text.split("\n")):
        if line.strip():
            return line.strip()
    raise StreamFormatError("Streamed reply contains no records")


def decode_stream_reply(body: bytes, prefix: str = STREAM_RECORD_PREFIX) -> Any:
    """Collapse a streamed reply into its terminal record.

    The service streams incremental records, one per line; only the last one
    carries the complete answer. That line must start with ``prefix`` and the
    rest must be a complete JSON document, so a truncated stream is rejected
    rather than half-parsed.
    """
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as ex:
        raise StreamFormatError("Streamed reply is not valid UTF-8") from ex

    record = last_record(text)
    if not record.startswith(prefix):
        raise StreamFormatError(f"Terminal record does not start with {prefix!r}: {record[:80]!r}")

    payload = record[len(prefix):]
    try:
        return json.loads(payload)
    except json.JSONDecodeError as ex:
        raise StreamFormatError(f"Terminal record is not complete JSON: {ex}") from ex
