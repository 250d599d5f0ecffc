"""Stream binding: newline-delimited JSON over TCP, optionally TLS."""

from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any

from mcpcheck.config import StreamTarget, TargetKind
from mcpcheck.error import (
    ConnectionTimeoutError,
    NotConnectedError,
    TransportConnectionError,
)
from mcpcheck.transport import LineFramedTransport

logger = logging.getLogger(__name__)


class TcpTransport(LineFramedTransport):
    """Talks to a server listening on a socket.

    Args:
        ssl_context: Context used for secure targets; defaults to
            ``ssl.create_default_context()``
    """

    kind = TargetKind.STREAM

    def __init__(self, *, ssl_context: ssl.SSLContext | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._ssl_context = ssl_context
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    async def _open(self, target: StreamTarget) -> None:
        address = f"{target.host}:{target.port}"
        context = None
        if target.secure:
            context = self._ssl_context or ssl.create_default_context()
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(target.host, target.port, ssl=context),
                timeout=target.timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            raise ConnectionTimeoutError(
                f"Connection timeout to {address}", data={"timeout_ms": target.timeout_ms}
            ) from e
        except OSError as e:
            raise TransportConnectionError(f"Connection to {address} failed: {e}") from e

    def _on_connected(self) -> None:
        if self._reader is not None:
            self._spawn(self._read_stream(self._reader))

    async def _write(self, text: str) -> None:
        writer = self._writer
        if writer is None or writer.is_closing():
            raise NotConnectedError("Socket is closed")
        writer.write(text.encode("utf-8"))
        await writer.drain()

    async def _shutdown(self, grace: float) -> None:
        writer, self._writer, self._reader = self._writer, None, None
        if writer is None:
            return
        writer.close()
        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=grace)
        except asyncio.TimeoutError:
            logger.debug("Socket did not close after %.1fs, aborting", grace)
            writer.transport.abort()
        except OSError as e:
            logger.debug("Error waiting for socket close: %s", e)
