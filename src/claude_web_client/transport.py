from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import IO, Any

import httpx
from loguru import logger

from claude_web_client.errors import TransportError
from claude_web_client.proxies import ProxyEndpoint

DEFAULT_TIMEOUT_SECONDS = 10.0

_MAX_LOGGED_BODY_CHARS = 2_000

# Multipart file part: (filename, file object, content type)
FilePart = tuple[str, IO[bytes], str]


def build_transport(
    proxies: Sequence[ProxyEndpoint],
    headers: Mapping[str, str],
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> httpx.AsyncClient:
    """Create the shared HTTP client for a session.

    The first proxy routes every request; with no proxies the client connects
    directly. Content-Type is left to each request so multipart uploads carry
    their own boundary.
    """
    default_headers = {k: v for k, v in headers.items() if k.lower() != "content-type"}
    proxy = proxies[0].url if proxies else None
    if len(proxies) > 1:
        logger.debug(
            f"{len(proxies)} proxies configured; routing through {proxies[0].masked}"
        )
    return httpx.AsyncClient(
        headers=default_headers,
        timeout=timeout,
        proxy=proxy,
    )


def _render_body(content: bytes) -> str:
    text = content.decode("utf-8", errors="replace")
    if len(text) > _MAX_LOGGED_BODY_CHARS:
        return text[:_MAX_LOGGED_BODY_CHARS] + f"... ({len(text):,} chars)"
    return text


async def send(
    method: str,
    url: str,
    transport: httpx.AsyncClient,
    headers: Mapping[str, str],
    body: str | None = None,
    files: Mapping[str, FilePart] | None = None,
    data: Mapping[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> bytes:
    """Send one request and return the raw response body, whatever the status.

    ``body`` is sent as-is; ``files`` (with optional text fields in ``data``)
    is sent as a multipart form. ``timeout`` bounds the whole call, body
    included; the client's own timeouts only bound each connect/read/write.
    Transport-level failures and the deadline raise TransportError.
    """
    if body is not None and (files is not None or data is not None):
        raise ValueError("A request carries either a body or a multipart form, not both")

    request_headers = dict(headers)
    kwargs: dict[str, Any] = {}
    if body is not None:
        kwargs["content"] = body.encode("utf-8")
    elif files is not None or data is not None:
        # httpx sets multipart/form-data with its boundary
        request_headers = {k: v for k, v in request_headers.items() if k.lower() != "content-type"}
        kwargs["files"] = files
        kwargs["data"] = data

    try:
        async with asyncio.timeout(timeout):
            response = await transport.request(method, url, headers=request_headers, **kwargs)
    except httpx.RequestError as ex:
        logger.debug(f"{method} {url} failed: {type(ex).__name__}: {ex}")
        raise TransportError(method, url, f"{type(ex).__name__}: {ex}") from ex
    except TimeoutError as ex:
        logger.debug(f"{method} {url} exceeded {timeout}s")
        raise TransportError(method, url, f"timed out after {timeout}s") from ex

    content = response.content
    logger.debug(
        f"url={url}, method={method}, status={response.status_code}, "
        f"response={_render_body(content)!r}"
    )
    return content
