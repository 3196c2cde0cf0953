from loguru import logger

from claude_web_client.errors import (
    AttachmentError,
    ClaudeWebError,
    ConstructError,
    DecodeError,
    OperationError,
    StreamFormatError,
    TransportError,
)
from claude_web_client.models import ChatMessage, Conversation, History
from claude_web_client.proxies import ProxyEndpoint, parse_proxies
from claude_web_client.session import DEFAULT_CONVERSATION_NAME, ChatSession
from claude_web_client.stream_decoder import decode_stream_reply

__all__ = [
    "AttachmentError",
    "ChatMessage",
    "ChatSession",
    "ClaudeWebError",
    "ConstructError",
    "Conversation",
    "DEFAULT_CONVERSATION_NAME",
    "DecodeError",
    "History",
    "OperationError",
    "ProxyEndpoint",
    "StreamFormatError",
    "TransportError",
    "decode_stream_reply",
    "parse_proxies",
]

logger.disable("claude_web_client")
