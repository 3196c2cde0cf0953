import asyncio
import io
import json
import os
import time
import unittest
from unittest.mock import patch

import httpx

from claude_web_client.errors import TransportError
from claude_web_client.proxies import parse_proxies
from claude_web_client.session import ChatSession
from claude_web_client.transport import DEFAULT_TIMEOUT_SECONDS, build_transport, send

_HEADERS = {
    "Cookie": "sessionKey=sk-test",
    "Content-Type": "application/json",
    "Accept": "*/*",
}


class BuildTransportTests(unittest.TestCase):
    def test_direct_connection_with_fixed_timeout(self) -> None:
        client = build_transport((), _HEADERS)
        try:
            self.assertEqual(httpx.Timeout(DEFAULT_TIMEOUT_SECONDS), client.timeout)
            self.assertEqual("sessionKey=sk-test", client.headers["Cookie"])
            self.assertNotIn("Content-Type", client.headers)
        finally:
            asyncio.run(client.aclose())

    @patch("claude_web_client.transport.httpx.AsyncClient")
    def test_first_proxy_routes_traffic(self, mock_client) -> None:
        proxies = parse_proxies(["http://127.0.0.1:8088", "socks5://127.0.0.1:1080"])
        build_transport(proxies, _HEADERS, timeout=3.0)
        kwargs = mock_client.call_args.kwargs
        self.assertEqual("http://127.0.0.1:8088", kwargs["proxy"])
        self.assertEqual(3.0, kwargs["timeout"])

    @patch("claude_web_client.transport.httpx.AsyncClient")
    def test_no_proxy_when_list_empty(self, mock_client) -> None:
        build_transport((), _HEADERS)
        self.assertIsNone(mock_client.call_args.kwargs["proxy"])


class SendTests(unittest.TestCase):
    def _client(self, handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    def test_returns_body_regardless_of_status(self) -> None:
        client = self._client(lambda request: httpx.Response(403, json={"error": "denied"}))
        content = asyncio.run(send("GET", "https://claude.ai/api/organizations", client, _HEADERS))
        self.assertEqual({"error": "denied"}, json.loads(content))

    def test_sends_json_body_with_headers(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="ok")

        content = asyncio.run(
            send("POST", "https://claude.ai/api/rename_chat", self._client(handler), _HEADERS, body='{"title": "x"}')
        )

        self.assertEqual(b"ok", content)
        self.assertEqual("POST", seen[0].method)
        self.assertEqual(b'{"title": "x"}', seen[0].content)
        self.assertEqual("application/json", seen[0].headers["Content-Type"])
        self.assertEqual("sessionKey=sk-test", seen[0].headers["Cookie"])

    def test_no_body_for_get(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[])

        asyncio.run(send("GET", "https://claude.ai/api/organizations", self._client(handler), _HEADERS))
        self.assertEqual(b"", seen[0].content)

    def test_multipart_form_gets_its_own_content_type(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        asyncio.run(
            send(
                "POST",
                "https://claude.ai/api/convert_document",
                self._client(handler),
                _HEADERS,
                files={"file": ("notes.txt", io.BytesIO(b"file body"), "text/plain")},
                data={"orgUuid": "org-1"},
            )
        )

        request = seen[0]
        self.assertTrue(request.headers["Content-Type"].startswith("multipart/form-data; boundary="))
        self.assertIn(b'name="orgUuid"', request.content)
        self.assertIn(b'filename="notes.txt"', request.content)
        self.assertIn(b"file body", request.content)

    def test_body_and_form_together_rejected(self) -> None:
        client = self._client(lambda request: httpx.Response(200))
        with self.assertRaises(ValueError):
            asyncio.run(send("POST", "https://claude.ai/x", client, _HEADERS, body="{}", data={"a": "b"}))

    def test_transport_failure_raises_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with self.assertRaises(TransportError) as ctx:
            asyncio.run(send("GET", "https://claude.ai/api/organizations", self._client(handler), _HEADERS))

        self.assertIsInstance(ctx.exception.__cause__, httpx.ConnectError)
        self.assertEqual("GET", ctx.exception.method)
        self.assertIn("connection refused", str(ctx.exception))

    def test_timeout_raises_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with self.assertRaises(TransportError):
            asyncio.run(send("GET", "https://claude.ai/api/organizations", self._client(handler), _HEADERS))

    def test_non_utf8_body_is_returned_untouched(self) -> None:
        client = self._client(lambda request: httpx.Response(200, content=b"\xff\xfe\x00"))
        self.assertEqual(b"\xff\xfe\x00", asyncio.run(send("GET", "https://claude.ai/x", client, _HEADERS)))


# httpx would otherwise route 127.0.0.1 through any proxy set in the environment
_NO_PROXY_ENV = {k: v for k, v in os.environ.items() if "proxy" not in k.lower()}


class _TrickleServer:
    """Local HTTP server that sends its response body one byte at a time."""

    def __init__(self, body: bytes = b"abcdef", delay: float = 0.4):
        self._body = body
        self._delay = delay
        self._server: asyncio.Server | None = None
        self._handlers: set[asyncio.Task] = set()

    @property
    def url(self) -> str:
        host, port = self._server.sockets[0].getsockname()[:2]
        return f"http://{host}:{port}/api/organizations"

    async def __aenter__(self) -> "_TrickleServer":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        for task in self._handlers:
            task.cancel()
        self._server.close()
        await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._handlers.add(asyncio.current_task())
        try:
            await reader.readuntil(b"\r\n\r\n")
            writer.write(b"HTTP/1.1 200 OK\r\nContent-Length: %d\r\n\r\n" % len(self._body))
            await writer.drain()
            for i in range(len(self._body)):
                await asyncio.sleep(self._delay)
                writer.write(self._body[i:i + 1])
                await writer.drain()
        except (ConnectionError, asyncio.IncompleteReadError):
            pass
        finally:
            writer.close()


class WholeCallTimeoutTests(unittest.TestCase):
    @patch.dict(os.environ, _NO_PROXY_ENV, clear=True)
    def test_trickling_body_is_cut_off_at_the_deadline(self) -> None:
        async def scenario() -> float:
            async with _TrickleServer() as server:
                client = build_transport((), _HEADERS, timeout=1.0)
                started = time.monotonic()
                try:
                    with self.assertRaises(TransportError) as ctx:
                        await send("GET", server.url, client, _HEADERS, timeout=1.0)
                finally:
                    await client.aclose()
                self.assertIn("timed out", str(ctx.exception))
                self.assertIsInstance(ctx.exception.__cause__, TimeoutError)
                return time.monotonic() - started

        elapsed = asyncio.run(scenario())
        # each byte arrives well within the per-read timeout; only the total limit applies
        self.assertLess(elapsed, 2.0)

    @patch.dict(os.environ, _NO_PROXY_ENV, clear=True)
    def test_body_within_deadline_is_returned(self) -> None:
        async def scenario() -> bytes:
            async with _TrickleServer(body=b"ok", delay=0.05) as server:
                client = build_transport((), _HEADERS, timeout=1.0)
                try:
                    return await send("GET", server.url, client, _HEADERS, timeout=1.0)
                finally:
                    await client.aclose()

        self.assertEqual(b"ok", asyncio.run(scenario()))

    @patch.dict(os.environ, _NO_PROXY_ENV, clear=True)
    def test_session_operations_use_session_timeout(self) -> None:
        async def scenario() -> None:
            async with _TrickleServer() as server:
                session = ChatSession(
                    cookie="sessionKey=sk-test",
                    organization_id="org-1",
                    proxies=(),
                    transport=build_transport((), _HEADERS, timeout=1.0),
                    timeout=1.0,
                )
                try:
                    with patch("claude_web_client.session.BASE_URL", server.url.rsplit("/api/", 1)[0]):
                        with self.assertRaises(TransportError):
                            await session.fetch_history("c1")
                finally:
                    await session.aclose()

        asyncio.run(scenario())


if __name__ == "__main__":
    unittest.main()
