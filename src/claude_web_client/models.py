from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from claude_web_client.errors import DecodeError


def parse_timestamp(value: Any) -> datetime:
    """Parse an RFC 3339 timestamp (``2023-07-20T11:54:41.108217+00:00``) into local time."""
    if not isinstance(value, str):
        raise DecodeError(f"Expected timestamp string, got {type(value).__name__}")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as ex:
        raise DecodeError(f"Invalid timestamp: {value!r}") from ex
    if parsed.tzinfo is None:
        raise DecodeError(f"Timestamp has no UTC offset: {value!r}")
    return parsed.astimezone()


def _require(data: dict, key: str, kind: type | tuple[type, ...]) -> Any:
    if key not in data:
        raise DecodeError(f"Missing field: {key!r}")
    value = data[key]
    # bool is an int subclass; never accept it for numeric fields
    if isinstance(value, bool) and kind is int:
        raise DecodeError(f"Field {key!r} has type bool")
    if not isinstance(value, kind):
        raise DecodeError(f"Field {key!r} has type {type(value).__name__}")
    return value


def _optional(data: dict, key: str, kind: type, default: Any) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, kind):
        raise DecodeError(f"Field {key!r} has type {type(value).__name__}")
    return value


def _require_object(data: Any, what: str) -> dict:
    if not isinstance(data, dict):
        raise DecodeError(f"Expected {what} object, got {type(data).__name__}")
    return data


@dataclass(frozen=True)
class Conversation:
    uuid: str
    name: str
    summary: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_dict(cls, data: Any) -> Conversation:
        data = _require_object(data, "conversation")
        return cls(
            uuid=_require(data, "uuid", str),
            name=_require(data, "name", str),
            summary=_optional(data, "summary", str, ""),
            created_at=parse_timestamp(_require(data, "created_at", str)),
            updated_at=parse_timestamp(_require(data, "updated_at", str)),
        )


@dataclass(frozen=True)
class ChatMessage:
    uuid: str
    text: str
    sender: str
    index: int
    created_at: datetime
    updated_at: datetime
    edited_at: Any = None
    chat_feedback: Any = None
    attachments: list[Any] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> ChatMessage:
        data = _require_object(data, "chat message")
        return cls(
            uuid=_require(data, "uuid", str),
            text=_require(data, "text", str),
            sender=_require(data, "sender", str),
            index=_require(data, "index", int),
            created_at=parse_timestamp(_require(data, "created_at", str)),
            updated_at=parse_timestamp(_require(data, "updated_at", str)),
            edited_at=data.get("edited_at"),
            chat_feedback=data.get("chat_feedback"),
            attachments=list(_optional(data, "attachments", list, [])),
        )


@dataclass(frozen=True)
class History:
    uuid: str
    name: str
    summary: str
    created_at: datetime
    updated_at: datetime
    chat_messages: list[ChatMessage] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> History:
        data = _require_object(data, "conversation history")
        messages = _require(data, "chat_messages", list)
        return cls(
            uuid=_require(data, "uuid", str),
            name=_require(data, "name", str),
            summary=_optional(data, "summary", str, ""),
            created_at=parse_timestamp(_require(data, "created_at", str)),
            updated_at=parse_timestamp(_require(data, "updated_at", str)),
            chat_messages=[ChatMessage.from_dict(m) for m in messages],
        )

    def messages_from(self, sender: str) -> list[ChatMessage]:
        return [m for m in self.chat_messages if m.sender == sender]
