from __future__ import annotations


class ClaudeWebError(Exception):
    """Base class for every failure raised by the client."""


class TransportError(ClaudeWebError):
    """Network, proxy, TLS or timeout failure while talking to the service."""

    def __init__(self, method: str, url: str, reason: str):
        self.method = method
        self.url = url
        self.reason = reason
        super().__init__(f"{method} {url} failed: {reason}")


class ConstructError(ClaudeWebError):
    """The organization could not be resolved while connecting."""


class DecodeError(ClaudeWebError):
    """A response body did not match the shape the operation expects."""


class StreamFormatError(ClaudeWebError):
    """A streamed reply carried no parseable terminal record."""


class AttachmentError(ClaudeWebError, OSError):
    """A local attachment file could not be opened."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot open attachment {path!r}: {reason}")

    def __str__(self) -> str:
        return f"Cannot open attachment {self.path!r}: {self.reason}"


class OperationError(ClaudeWebError):
    """A conversation operation did not complete; the cause is chained."""


__all__ = [
    "AttachmentError",
    "ClaudeWebError",
    "ConstructError",
    "DecodeError",
    "OperationError",
    "StreamFormatError",
    "TransportError",
]
