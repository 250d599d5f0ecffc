"""Message binding: one JSON message per WebSocket frame (aiohttp client).

Text and binary frames are both accepted (binary is decoded as UTF-8).
Pings are answered by aiohttp. A close with code 1000 is a normal close;
any other code, or a connection that drops without a close frame, is
reported as an error before the close event.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import aiohttp

from mcpcheck.config import MessageTarget, TargetKind
from mcpcheck.error import (
    ConnectionTimeoutError,
    NotConnectedError,
    TransportConnectionError,
)
from mcpcheck.transport import BaseTransport

if TYPE_CHECKING:
    from aiohttp import ClientWebSocketResponse

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


class WebSocketTransport(BaseTransport):
    """Talks to a server over a WebSocket.

    Args:
        session: An aiohttp session to connect with. When omitted the
            transport owns a private session and closes it on close().
    """

    kind = TargetKind.MESSAGE

    def __init__(self, *, session: aiohttp.ClientSession | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._external_session = session
        self._session: aiohttp.ClientSession | None = None
        self._ws: ClientWebSocketResponse | None = None

    @property
    def close_code(self) -> int | None:
        return self._ws.close_code if self._ws else None

    async def _open(self, target: MessageTarget) -> None:
        self._session = self._external_session or aiohttp.ClientSession()
        try:
            self._ws = await asyncio.wait_for(
                self._session.ws_connect(
                    target.url,
                    headers=target.headers or None,
                    protocols=target.subprotocols,
                    autoping=True,
                ),
                timeout=target.timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            raise ConnectionTimeoutError(
                f"WebSocket connection timeout to {target.url}",
                data={"timeout_ms": target.timeout_ms},
            ) from e
        except (aiohttp.ClientError, OSError) as e:
            raise TransportConnectionError(f"WebSocket connection to {target.url} failed: {e}") from e

    def _on_connected(self) -> None:
        if self._ws is not None:
            self._spawn(self._read_frames(self._ws))

    async def _read_frames(self, ws: ClientWebSocketResponse) -> None:
        try:
            while True:
                msg = await ws.receive()
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._deliver_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._deliver_frame(msg.data.decode("utf-8", errors="replace"))
                elif msg.type == aiohttp.WSMsgType.CLOSE:
                    self._on_closed(msg.data, msg.extra or "")
                    return
                elif msg.type in (aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                    # No close frame was seen; aiohttp reports a bare EOF as 1000
                    self._on_closed(None)
                    return
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    if not self._closing:
                        self._handle_error(
                            TransportConnectionError(f"WebSocket error: {ws.exception()}")
                        )
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not self._closing:
                logger.debug("WebSocket read loop failed", exc_info=True)
                self._handle_error(TransportConnectionError(f"WebSocket read failed: {e}"))

    def _on_closed(self, code: int | None, reason: str = "") -> None:
        """React to the peer closing the socket."""
        if self._closing:
            return
        if code is None:
            code = ABNORMAL_CLOSURE
        if code == NORMAL_CLOSURE:
            self._handle_close()
            return
        self._handle_error(
            TransportConnectionError(
                f"WebSocket closed with code {code}: {reason}",
                data={"code": code, "reason": reason},
            )
        )
        self._handle_close()

    async def _write(self, text: str) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            raise NotConnectedError("WebSocket is closed")
        await ws.send_str(text)

    async def _shutdown(self, grace: float) -> None:
        ws, self._ws = self._ws, None
        try:
            if ws is not None and not ws.closed:
                try:
                    await asyncio.wait_for(
                        ws.close(code=NORMAL_CLOSURE, message=b"Normal closure"), timeout=grace
                    )
                except asyncio.TimeoutError:
                    logger.debug("WebSocket close handshake timed out after %.1fs", grace)
        finally:
            session, self._session = self._session, None
            if session is not None and session is not self._external_session:
                await session.close()
