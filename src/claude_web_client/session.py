from __future__ import annotations

import asyncio
import json
import mimetypes
from collections.abc import Iterable, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import IO, Any
from uuid import uuid4

import httpx
from loguru import logger

from claude_web_client.errors import (
    AttachmentError,
    ConstructError,
    DecodeError,
    OperationError,
    TransportError,
)
from claude_web_client.models import Conversation, History
from claude_web_client.proxies import ProxyEndpoint, parse_proxies
from claude_web_client.retry_policy import call_with_retries
from claude_web_client.stream_decoder import decode_stream_reply
from claude_web_client.transport import DEFAULT_TIMEOUT_SECONDS, FilePart, build_transport, send

BASE_URL = "https://claude.ai"

DEFAULT_CONVERSATION_NAME = "test"
DEFAULT_MODEL = "claude-2"
DEFAULT_TIMEZONE = "Asia/Kolkata"

_FALLBACK_MIME_TYPE = "application/octet-stream"

_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/115.0.0.0 Safari/537.36 Edg/115.0.1901.183"
)


def base_headers(cookie: str) -> dict[str, str]:
    return {
        "Host": "claude.ai",
        "Cookie": cookie,
        "Referer": f"{BASE_URL}/chats",
        "Content-Type": "application/json",
        "Accept": "*/*",
        "User-Agent": _USER_AGENT,
        "Accept-Language": "en-US,en;q=0.9,zh-CN;q=0.8,zh;q=0.7,en-GB;q=0.6",
    }


def _load_json(content: bytes, what: str) -> Any:
    try:
        return json.loads(content)
    except (json.JSONDecodeError, UnicodeDecodeError) as ex:
        raise DecodeError(f"{what}: response is not valid JSON ({ex})") from ex


def extract_organization_id(content: bytes) -> str:
    """Take the ``uuid`` of the first organization in an organization listing."""
    try:
        organizations = json.loads(content)
    except (json.JSONDecodeError, UnicodeDecodeError) as ex:
        raise ConstructError(f"Organization listing is not valid JSON: {ex}") from ex

    if not isinstance(organizations, list) or not organizations:
        raise ConstructError("No organization info found")
    first = organizations[0]
    if not isinstance(first, dict):
        raise ConstructError("No organization info found")
    organization_id = first.get("uuid")
    if not isinstance(organization_id, str) or not organization_id:
        raise ConstructError("No organization id found")
    return organization_id


class ChatSession:
    """Authenticated claude.ai session bound to one organization.

    Build one with ``await ChatSession.connect(cookie, proxies)``. Nothing on
    the session changes after construction, so operations may run
    concurrently over the shared transport. Proxy changes produce a new
    session through ``with_proxies``/``without_proxies``.
    """

    def __init__(
        self,
        *,
        cookie: str,
        organization_id: str,
        proxies: tuple[ProxyEndpoint, ...],
        transport: httpx.AsyncClient,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        model: str = DEFAULT_MODEL,
        timezone: str = DEFAULT_TIMEZONE,
        retry_attempts: int = 1,
    ):
        if not organization_id:
            raise ConstructError("Organization id must not be empty")
        self._cookie = cookie
        self._organization_id = organization_id
        self._proxies = proxies
        self._headers = MappingProxyType(base_headers(cookie))
        self._transport = transport
        self._timeout = timeout
        self._model = model
        self._timezone = timezone
        self._retry_attempts = retry_attempts

    @classmethod
    async def connect(
        cls,
        cookie: str,
        proxies: Iterable[str] = (),
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        model: str = DEFAULT_MODEL,
        timezone: str = DEFAULT_TIMEZONE,
        retry_attempts: int = 1,
    ) -> ChatSession:
        """Validate proxies, resolve the organization and return a usable session."""
        endpoints = parse_proxies(proxies)
        headers = base_headers(cookie)
        transport = build_transport(endpoints, headers, timeout)
        try:
            content = await call_with_retries(
                lambda: send("GET", f"{BASE_URL}/api/organizations", transport, headers, timeout=timeout),
                retry_attempts,
            )
            organization_id = extract_organization_id(content)
        except BaseException:
            await transport.aclose()
            raise

        logger.info(
            f"Connected to organization {organization_id} "
            f"({len(endpoints)} prox{'y' if len(endpoints) == 1 else 'ies'})"
        )
        return cls(
            cookie=cookie,
            organization_id=organization_id,
            proxies=endpoints,
            transport=transport,
            timeout=timeout,
            model=model,
            timezone=timezone,
            retry_attempts=retry_attempts,
        )

    # -- configuration --

    @property
    def cookie(self) -> str:
        return self._cookie

    @property
    def organization_id(self) -> str:
        return self._organization_id

    @property
    def proxies(self) -> tuple[ProxyEndpoint, ...]:
        return self._proxies

    @property
    def headers(self) -> Mapping[str, str]:
        return self._headers

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def model(self) -> str:
        return self._model

    @property
    def timezone(self) -> str:
        return self._timezone

    def with_proxies(self, proxies: Iterable[str]) -> ChatSession:
        """Return a session routed through the current proxies plus ``proxies``."""
        return self._reconfigured(self._proxies + parse_proxies(proxies))

    def without_proxies(self) -> ChatSession:
        """Return a session that connects directly."""
        return self._reconfigured(())

    def _reconfigured(self, proxies: tuple[ProxyEndpoint, ...]) -> ChatSession:
        return ChatSession(
            cookie=self._cookie,
            organization_id=self._organization_id,
            proxies=proxies,
            transport=build_transport(proxies, self._headers, self._timeout),
            timeout=self._timeout,
            model=self._model,
            timezone=self._timezone,
            retry_attempts=self._retry_attempts,
        )

    async def aclose(self) -> None:
        await self._transport.aclose()

    async def __aenter__(self) -> ChatSession:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # -- requests --

    def _url(self, path: str) -> str:
        return f"{BASE_URL}{path}"

    def _conversations_path(self, conversation_id: str | None = None) -> str:
        path = f"/api/organizations/{self._organization_id}/chat_conversations"
        if conversation_id is not None:
            path = f"{path}/{conversation_id}"
        return path

    async def _request(
        self,
        method: str,
        path: str,
        payload: Any = None,
        *,
        files: Mapping[str, FilePart] | None = None,
        data: Mapping[str, str] | None = None,
    ) -> bytes:
        body = json.dumps(payload) if payload is not None else None

        async def attempt() -> bytes:
            if files:
                for _, fh, _ in files.values():
                    fh.seek(0)
            return await send(
                method,
                self._url(path),
                self._transport,
                self._headers,
                body=body,
                files=files,
                data=data,
                timeout=self._timeout,
            )

        return await call_with_retries(attempt, self._retry_attempts)

    # -- conversations --

    async def list_conversations(self) -> list[Conversation]:
        content = await self._request("GET", self._conversations_path())
        raw = _load_json(content, "list conversations")
        if not isinstance(raw, list):
            raise DecodeError(f"list conversations: expected an array, got {type(raw).__name__}")
        return [Conversation.from_dict(item) for item in raw]

    async def create_conversation(self, name: str = DEFAULT_CONVERSATION_NAME) -> str:
        """Create a conversation and return its id (a fresh 36-character UUID)."""
        conversation_id = str(uuid4())
        try:
            await self._request(
                "POST",
                self._conversations_path(),
                {"uuid": conversation_id, "name": name},
            )
        except TransportError as ex:
            logger.error(f"Create conversation failed: {ex}")
            raise OperationError("Create chat conversation failed") from ex
        return conversation_id

    async def delete_conversation(self, conversation_id: str) -> None:
        try:
            await self._request("DELETE", self._conversations_path(conversation_id))
        except TransportError as ex:
            logger.error(f"Delete conversation {conversation_id} failed: {ex}")
            raise OperationError("Delete chat conversation failed") from ex

    async def rename_conversation(self, conversation_id: str, title: str) -> None:
        try:
            await self._request(
                "POST",
                "/api/rename_chat",
                {
                    "organization_uuid": self._organization_id,
                    "conversation_uuid": conversation_id,
                    "title": title,
                },
            )
        except TransportError as ex:
            logger.error(f"Rename conversation {conversation_id} failed: {ex}")
            raise OperationError("Rename chat conversation failed") from ex

    async def fetch_history(self, conversation_id: str) -> History:
        content = await self._request("GET", self._conversations_path(conversation_id))
        return History.from_dict(_load_json(content, "conversation history"))

    # -- messages --

    async def upload_attachment(self, file_path: str | Path) -> Any:
        """Upload a document for a later message and return the service's descriptor.

        The file is opened (in a worker thread) before any request is made and
        streamed in chunks. httpx reads those chunks with blocking file calls on
        the event loop, which is fine for documents of a few megabytes.
        """
        path = Path(file_path)
        try:
            fh: IO[bytes] = await asyncio.to_thread(open, path, "rb")
        except OSError as ex:
            raise AttachmentError(str(path), ex.strerror or str(ex)) from ex

        mime_type = mimetypes.guess_type(path.name)[0] or _FALLBACK_MIME_TYPE
        with fh:
            content = await self._request(
                "POST",
                "/api/convert_document",
                files={"file": (path.name, fh, mime_type)},
                data={"orgUuid": self._organization_id},
            )
        return _load_json(content, f"upload {path.name}")

    async def send_message(
        self,
        conversation_id: str,
        prompt: str,
        attachment_path: str | Path | None = None,
    ) -> Any:
        """Send ``prompt`` and return the reply's terminal record."""
        attachments: list[str] = []
        if attachment_path is not None:
            descriptor = await self.upload_attachment(attachment_path)
            attachments.append(json.dumps(descriptor, separators=(",", ":")))

        content = await self._request(
            "POST",
            "/api/append_message",
            {
                "completion": {
                    "prompt": prompt,
                    "timezone": self._timezone,
                    "model": self._model,
                },
                "organization_uuid": self._organization_id,
                "conversation_uuid": conversation_id,
                "text": prompt,
                "attachments": attachments,
            },
        )
        return decode_stream_reply(content)
