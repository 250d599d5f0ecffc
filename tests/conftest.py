"""Shared helpers for the test suite.

Everything here is a real implementation: an in-memory transport built on
BaseTransport, recording sleeps, and small real servers on ephemeral ports.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web

from mcpcheck.chaos import ChaosContext
from mcpcheck.config import ChaosConfig, StreamTarget, TargetKind
from mcpcheck.error import TransportConnectionError
from mcpcheck.transport import BaseTransport

Responder = Callable[[Any], list[Any]]


class RecordingSleep:
    """Async sleep replacement that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


class LoopbackTransport(BaseTransport):
    """In-memory transport for testing.

    Every written message is decoded and passed to ``responder``; whatever
    it returns is delivered back as inbound frames on the next loop turn.
    """

    kind = TargetKind.STREAM

    def __init__(
        self,
        responder: Responder | None = None,
        *,
        fail_connects: int = 0,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.responder = responder
        self.fail_connects = fail_connects
        self.connect_calls = 0
        self.written: list[str] = []
        self.fail_writes = False

    async def _open(self, target: Any) -> None:
        self.connect_calls += 1
        if self.connect_calls <= self.fail_connects:
            raise TransportConnectionError(f"refused (attempt {self.connect_calls})")

    async def _write(self, text: str) -> None:
        if self.fail_writes:
            raise OSError("broken pipe")
        self.written.append(text)
        if self.responder is None:
            return
        for reply in self.responder(json.loads(text)):
            frame = reply if isinstance(reply, str) else json.dumps(reply)
            asyncio.get_running_loop().call_soon(self._deliver_frame, frame)

    async def _shutdown(self, grace: float) -> None:
        pass

    @property
    def sent_messages(self) -> list[Any]:
        return [json.loads(text) for text in self.written]

    def inject(self, message: Any) -> None:
        """Deliver an inbound frame as if the peer had sent it."""
        self._deliver_frame(message if isinstance(message, str) else json.dumps(message))

    def fail(self, error: Exception) -> None:
        self._handle_error(error)

    def hang_up(self) -> None:
        self._handle_close()


def loopback_target() -> StreamTarget:
    return StreamTarget(host="loopback", port=1)


def mcp_responder(message: Any) -> list[Any]:
    """Answers like a minimal MCP server with an ``echo`` tool."""
    if "id" not in message:
        return []
    method = message.get("method")
    params = message.get("params") or {}
    if method == "initialize":
        result: Any = {
            "protocolVersion": params.get("protocolVersion"),
            "capabilities": {"tools": {}},
            "serverInfo": {"name": "loopback-server", "version": "1.0.0"},
        }
    elif method == "tools/list":
        result = {"tools": [{"name": "echo", "inputSchema": {"type": "object"}}]}
    elif method == "tools/call":
        arguments = params.get("arguments", {})
        result = {"content": [{"type": "text", "text": arguments.get("message", "")}]}
    elif method == "resources/list":
        result = {"resources": [{"uri": "file:///readme", "name": "readme"}]}
    elif method == "resources/read":
        result = {"contents": [{"uri": params["uri"], "text": "hello"}]}
    elif method == "prompts/list":
        result = {"prompts": [{"name": "greet"}]}
    elif method == "prompts/get":
        result = {"messages": [{"role": "user", "content": {"type": "text", "text": "hi"}}]}
    elif method == "ping":
        result = {}
    else:
        return [
            {
                "jsonrpc": "2.0",
                "id": message["id"],
                "error": {"code": -32601, "message": f"Method not found: {method}"},
            }
        ]
    return [{"jsonrpc": "2.0", "id": message["id"], "result": result}]


def make_context(
    transport: Any = None,
    seed: int = 42,
    config: ChaosConfig | None = None,
) -> ChaosContext:
    config = config or ChaosConfig(enable=True, seed=seed)
    return ChaosContext(
        transport=transport,
        logger=logging.getLogger("mcpcheck.tests"),
        seed=seed,
        config=config,
    )


async def start_tcp_server(
    handler: Callable[[asyncio.StreamReader, asyncio.StreamWriter], Awaitable[None]],
) -> tuple[asyncio.AbstractServer, int]:
    """Start an asyncio TCP server on an ephemeral port."""
    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, port


async def start_ws_server(
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> tuple[web.AppRunner, str]:
    """Start an aiohttp WebSocket server on an ephemeral port."""
    app = web.Application()
    app.router.add_get("/ws", handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    host, port = runner.addresses[0][:2]
    return runner, f"ws://{host}:{port}/ws"
