"""Tests for the message binding against a real aiohttp WebSocket server."""

import asyncio
import json

import pytest
from aiohttp import WSMsgType, web

from mcpcheck.config import MessageTarget
from mcpcheck.error import TransportConnectionError
from mcpcheck.messages import JsonRpcRequest
from mcpcheck.transport import ConnectionState, TransportEvent
from mcpcheck.ws_transport import WebSocketTransport
from tests.conftest import start_ws_server


async def echo_handler(request: web.Request) -> web.WebSocketResponse:
    ws = web.WebSocketResponse(protocols=("mcp",))
    await ws.prepare(request)
    await ws.send_str(
        json.dumps(
            {
                "jsonrpc": "2.0",
                "method": "hello",
                "params": {
                    "token": request.headers.get("X-Token"),
                    "protocol": ws.ws_protocol,
                },
            }
        )
    )
    async for msg in ws:
        if msg.type == WSMsgType.TEXT:
            await ws.send_str(msg.data)
    return ws


async def binary_handler(request: web.Request) -> web.WebSocketResponse:
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    await ws.send_bytes(b'{"jsonrpc": "2.0", "method": "binary"}')
    await ws.send_str("garbage")
    async for _ in ws:
        pass
    return ws


def closing_handler(code: int, reason: bytes):
    async def handler(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        await asyncio.sleep(0.05)
        await ws.close(code=code, message=reason)
        return ws

    return handler


async def collect_until_closed(transport: WebSocketTransport, url: str) -> list[Exception]:
    errors: list[Exception] = []
    closed = asyncio.Event()
    transport.on(TransportEvent.ERROR, errors.append)
    transport.on(TransportEvent.CLOSE, closed.set)
    await transport.connect(MessageTarget(url=url))
    await asyncio.wait_for(closed.wait(), timeout=5)
    return errors


@pytest.mark.asyncio
class TestWebSocketTransport:
    """Tests for WebSocketTransport."""

    async def test_round_trip_with_headers_and_subprotocol(self) -> None:
        """Headers and subprotocols reach the server; frames echo back."""
        runner, url = await start_ws_server(echo_handler)
        transport = WebSocketTransport()
        try:
            hello = asyncio.create_task(
                transport.wait_for_message(lambda m: m.get("method") == "hello")
            )
            await transport.connect(
                MessageTarget(url=url, headers={"X-Token": "secret"}, subprotocols=("mcp",))
            )
            greeting = await hello
            assert greeting["params"] == {"token": "secret", "protocol": "mcp"}

            reply = asyncio.create_task(transport.wait_for_message(lambda m: m.get("id") == 9))
            await asyncio.sleep(0)
            await transport.send(JsonRpcRequest(9, "ping"))
            assert await reply == {"jsonrpc": "2.0", "id": 9, "method": "ping"}
            assert transport.stats.sent == 1
            assert transport.stats.received == 2
        finally:
            await transport.close()
            await runner.cleanup()
        assert transport.state is ConnectionState.DISCONNECTED

    async def test_binary_frames_and_garbage(self) -> None:
        """Binary frames are decoded; unparseable text is counted and dropped."""
        runner, url = await start_ws_server(binary_handler)
        transport = WebSocketTransport()
        diagnostics: list[str] = []
        transport.on(TransportEvent.DIAGNOSTIC, diagnostics.append)
        try:
            waiter = asyncio.create_task(transport.wait_for_message(lambda m: True))
            await transport.connect(MessageTarget(url=url))
            assert await waiter == {"jsonrpc": "2.0", "method": "binary"}
            for _ in range(50):
                if transport.stats.parse_errors:
                    break
                await asyncio.sleep(0.01)
            assert transport.stats.parse_errors == 1
            assert len(diagnostics) == 1
            assert transport.state is ConnectionState.CONNECTED
        finally:
            await transport.close()
            await runner.cleanup()

    async def test_normal_close_is_not_an_error(self) -> None:
        """Code 1000 from the server closes without an error event."""
        runner, url = await start_ws_server(closing_handler(1000, b"bye"))
        transport = WebSocketTransport()
        try:
            errors = await collect_until_closed(transport, url)
            assert errors == []
            assert transport.state is ConnectionState.DISCONNECTED
        finally:
            await transport.close()
            await runner.cleanup()

    async def test_abnormal_close_code_is_an_error(self) -> None:
        """Any other code is reported as an error, then the transport closes."""
        runner, url = await start_ws_server(closing_handler(1011, b"server crashed"))
        transport = WebSocketTransport()
        try:
            errors = await collect_until_closed(transport, url)
            assert len(errors) == 1
            assert "1011" in str(errors[0])
            assert "server crashed" in str(errors[0])
            assert transport.state is ConnectionState.DISCONNECTED
        finally:
            await transport.close()
            await runner.cleanup()

    async def test_drop_without_close_frame(self) -> None:
        """A connection lost without a close frame is reported as 1006."""

        async def handler(request: web.Request) -> web.WebSocketResponse:
            ws = web.WebSocketResponse()
            await ws.prepare(request)
            await asyncio.sleep(0.05)
            request.transport.abort()
            return ws

        runner, url = await start_ws_server(handler)
        transport = WebSocketTransport()
        try:
            errors = await collect_until_closed(transport, url)
            assert len(errors) == 1
            assert "1006" in str(errors[0])
            assert errors[0].data["code"] == 1006
            assert transport.state is ConnectionState.DISCONNECTED
        finally:
            await transport.close()
            await runner.cleanup()

    async def test_server_ping_is_answered(self) -> None:
        """A ping from the server gets a pong carrying the same payload."""
        replies: list[tuple[WSMsgType, bytes]] = []

        async def handler(request: web.Request) -> web.WebSocketResponse:
            ws = web.WebSocketResponse(autoping=False)
            await ws.prepare(request)
            await ws.ping(b"are-you-there")
            msg = await ws.receive()
            replies.append((msg.type, msg.data))
            async for _ in ws:
                pass
            return ws

        runner, url = await start_ws_server(handler)
        transport = WebSocketTransport()
        try:
            await transport.connect(MessageTarget(url=url))
            for _ in range(100):
                if replies:
                    break
                await asyncio.sleep(0.01)
            assert replies == [(WSMsgType.PONG, b"are-you-there")]
            assert transport.state is ConnectionState.CONNECTED
        finally:
            await transport.close()
            await runner.cleanup()

    async def test_connection_refused(self) -> None:
        """A server that is gone fails the connect."""
        runner, url = await start_ws_server(echo_handler)
        await runner.cleanup()

        transport = WebSocketTransport()
        with pytest.raises(TransportConnectionError, match="WebSocket connection"):
            await transport.connect(MessageTarget(url=url))
        assert transport.state is ConnectionState.ERROR
        await transport.close()
        assert transport.state is ConnectionState.DISCONNECTED

    async def test_client_close_sends_normal_closure(self) -> None:
        """close() performs a 1000 close handshake with the server."""
        codes: list[int | None] = []

        async def handler(request: web.Request) -> web.WebSocketResponse:
            ws = web.WebSocketResponse()
            await ws.prepare(request)
            async for _ in ws:
                pass
            codes.append(ws.close_code)
            return ws

        runner, url = await start_ws_server(handler)
        transport = WebSocketTransport()
        closes: list[bool] = []
        transport.on(TransportEvent.CLOSE, lambda: closes.append(True))
        try:
            await transport.connect(MessageTarget(url=url))
            await transport.close()
            for _ in range(50):
                if codes:
                    break
                await asyncio.sleep(0.01)
            assert codes == [1000]
            assert closes == [True]
        finally:
            await runner.cleanup()
