"""Request/response correlation client for MCP servers under test.

The client sits on top of any transport (optionally chaos-wrapped). Each
request gets a fresh id and a pending entry that is settled exactly once:
by the matching response, by its timeout, or by a bulk rejection when the
transport errors or closes.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from mcpcheck.config import ClientConfig
from mcpcheck.error import (
    CheckError,
    InvalidStateError,
    ProtocolError,
    RequestTimeoutError,
    TransportConnectionError,
    WriteError,
)
from mcpcheck.messages import (
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    parse_message,
)
from mcpcheck.transport import Transport, TransportEvent

logger = logging.getLogger(__name__)

INITIALIZED_NOTIFICATION = "notifications/initialized"

DEFAULT_CAPABILITIES: dict[str, Any] = {
    "experimental": {},
    "sampling": {},
    "roots": {"listChanged": True},
}

NotificationHandler = Callable[[JsonRpcNotification], Any]


@dataclass(slots=True)
class PendingCall:
    method: str
    future: asyncio.Future[Any]
    started_at: float
    timeout_handle: asyncio.TimerHandle | None = None

    def cancel_timer(self) -> None:
        if self.timeout_handle is not None:
            self.timeout_handle.cancel()
            self.timeout_handle = None


def _list_member(result: Any, key: str) -> list[Any]:
    value = result.get(key) if isinstance(result, dict) else None
    return value if isinstance(value, list) else []


class McpTestClient:
    """Speaks MCP to one server over a transport.

    Example:
        ```python
        client = McpTestClient(create_transport(target))
        async with client:
            await client.connect(target)
            await client.initialize()
            tools = await client.list_tools()
        ```

    Args:
        transport: Transport to talk over; the client subscribes to its events
        config: Timeouts and the identity reported during initialize
        id_factory: Produces request ids; defaults to uuid4 strings
    """

    def __init__(
        self,
        transport: Transport,
        config: ClientConfig | None = None,
        *,
        id_factory: Callable[[], str | int] | None = None,
    ) -> None:
        self.transport = transport
        self.config = config or ClientConfig()
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._pending: dict[str | int, PendingCall] = {}
        self._notification_handlers: list[NotificationHandler] = []
        self._handler_tasks: set[asyncio.Task[Any]] = set()
        self._initialized = False
        self._server_info: dict[str, Any] | None = None
        self._server_capabilities: dict[str, Any] | None = None
        self._protocol_version: str | None = None

        transport.on(TransportEvent.MESSAGE, self._handle_message)
        transport.on(TransportEvent.ERROR, self._handle_transport_error)
        transport.on(TransportEvent.CLOSE, self._handle_transport_close)

    async def __aenter__(self) -> McpTestClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def server_info(self) -> dict[str, Any] | None:
        return self._server_info

    @property
    def server_capabilities(self) -> dict[str, Any] | None:
        return self._server_capabilities

    @property
    def protocol_version(self) -> str | None:
        return self._protocol_version

    # -------------------------------------------------------------------------
    # MCP operations
    # -------------------------------------------------------------------------

    async def connect(self, target: Any) -> None:
        await self.transport.connect(target)

    async def initialize(self, capabilities: dict[str, Any] | None = None) -> Any:
        """Run the initialize handshake and send the initialized notification.

        Raises:
            InvalidStateError: If the client is already initialized
        """
        if self._initialized:
            raise InvalidStateError("Client already initialized")

        result = await self.request(
            "initialize",
            {
                "protocolVersion": self.config.protocol_version,
                "capabilities": capabilities if capabilities is not None else DEFAULT_CAPABILITIES,
                "clientInfo": {
                    "name": self.config.client_name,
                    "version": self.config.client_version,
                },
            },
        )
        await self.notify(INITIALIZED_NOTIFICATION)

        if isinstance(result, dict):
            self._server_info = result.get("serverInfo")
            self._server_capabilities = result.get("capabilities")
            self._protocol_version = result.get("protocolVersion")
        self._initialized = True
        logger.info(
            "Initialized session with %s (protocol %s)",
            (self._server_info or {}).get("name", "unknown server"),
            self._protocol_version,
        )
        return result

    async def list_tools(self) -> list[Any]:
        self._ensure_initialized()
        return _list_member(await self.request("tools/list"), "tools")

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        self._ensure_initialized()
        return await self.request("tools/call", {"name": name, "arguments": arguments or {}})

    async def list_resources(self) -> list[Any]:
        self._ensure_initialized()
        return _list_member(await self.request("resources/list"), "resources")

    async def read_resource(self, uri: str) -> list[Any]:
        self._ensure_initialized()
        return _list_member(await self.request("resources/read", {"uri": uri}), "contents")

    async def list_prompts(self) -> list[Any]:
        self._ensure_initialized()
        return _list_member(await self.request("prompts/list"), "prompts")

    async def get_prompt(self, name: str, arguments: dict[str, Any] | None = None) -> list[Any]:
        self._ensure_initialized()
        result = await self.request("prompts/get", {"name": name, "arguments": arguments or {}})
        return _list_member(result, "messages")

    async def ping(self) -> None:
        self._ensure_initialized()
        await self.request("ping")

    def on_notification(self, handler: NotificationHandler) -> None:
        """Register a handler for server notifications.

        Handlers may be plain functions or coroutine functions.
        """
        self._notification_handlers.append(handler)

    def off_notification(self, handler: NotificationHandler) -> None:
        if handler in self._notification_handlers:
            self._notification_handlers.remove(handler)

    async def close(self) -> None:
        """Reject everything in flight, then close the transport."""
        self._reject_all(lambda: TransportConnectionError("Client closed"))
        self._initialized = False
        try:
            await self.transport.close()
        finally:
            for task in list(self._handler_tasks):
                task.cancel()
            logger.debug("Client closed")

    # -------------------------------------------------------------------------
    # Correlation
    # -------------------------------------------------------------------------

    async def request(self, method: str, params: Any | None = None, timeout: float | None = None) -> Any:
        """Send a request and wait for its result.

        Raises:
            RequestTimeoutError: If no response arrives within the timeout
            ProtocolError: If the server answers with an error object
            TransportConnectionError: If the transport fails or closes first
            WriteError: If the request could not be written
        """
        loop = asyncio.get_running_loop()
        request_id = self._id_factory()
        timeout = timeout if timeout is not None else self.config.timeout
        pending = PendingCall(method, loop.create_future(), loop.time())
        pending.timeout_handle = loop.call_later(timeout, self._expire, request_id)
        self._pending[request_id] = pending

        try:
            await self.transport.send(JsonRpcRequest(request_id, method, params))
        except CheckError:
            self._abandon(request_id, pending)
            raise
        except Exception as e:
            self._abandon(request_id, pending)
            raise WriteError(f"Failed to send {method} request: {e}") from e
        except BaseException:
            self._abandon(request_id, pending)
            raise

        logger.debug("Sent %s request %s", method, request_id)
        try:
            return await pending.future
        finally:
            self._evict(request_id)

    async def notify(self, method: str, params: Any | None = None) -> None:
        await self.transport.send(JsonRpcNotification(method, params))

    def _evict(self, request_id: str | int) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is not None:
            pending.cancel_timer()
            if not pending.future.done():
                pending.future.cancel()

    def _abandon(self, request_id: str | int, pending: PendingCall) -> None:
        self._evict(request_id)
        # A bulk rejection may have settled it while the write was in flight
        if pending.future.done() and not pending.future.cancelled():
            pending.future.exception()

    def _expire(self, request_id: str | int) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None or pending.future.done():
            return
        elapsed_ms = (asyncio.get_running_loop().time() - pending.started_at) * 1000
        pending.future.set_exception(
            RequestTimeoutError(
                f"Request timeout after {elapsed_ms:.0f}ms: {pending.method}",
                data={"id": request_id, "method": pending.method, "elapsed_ms": elapsed_ms},
            )
        )

    def _settle(self, response: JsonRpcResponse) -> None:
        pending = self._pending.pop(response.id, None)
        if pending is None:
            logger.debug("Ignoring response for unknown request %r", response.id)
            return
        pending.cancel_timer()
        if pending.future.done():
            return
        if response.error is not None:
            pending.future.set_exception(ProtocolError.from_wire(response.error.to_json()))
        else:
            pending.future.set_result(response.result)

    def _reject_all(self, make_error: Callable[[], Exception]) -> None:
        pending_calls = list(self._pending.values())
        self._pending.clear()
        for pending in pending_calls:
            pending.cancel_timer()
            if not pending.future.done():
                pending.future.set_exception(make_error())

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise InvalidStateError("Client not initialized. Call initialize() first.")

    # -------------------------------------------------------------------------
    # Transport events
    # -------------------------------------------------------------------------

    def _handle_message(self, message: Any) -> None:
        match parse_message(message):
            case JsonRpcResponse() as response:
                self._settle(response)
            case JsonRpcNotification() as notification:
                self._dispatch_notification(notification)
            case JsonRpcRequest(method=method):
                logger.warning("Ignoring request from server: %s", method)
            case _:
                logger.warning("Received unrecognized message: %r", message)

    def _dispatch_notification(self, notification: JsonRpcNotification) -> None:
        for handler in list(self._notification_handlers):
            try:
                result = handler(notification)
            except Exception:
                logger.exception("Error in notification handler for %s", notification.method)
                continue
            if asyncio.iscoroutine(result):
                task = asyncio.create_task(result)
                self._handler_tasks.add(task)
                task.add_done_callback(self._on_handler_done)

    def _on_handler_done(self, task: asyncio.Task[Any]) -> None:
        self._handler_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Error in notification handler", exc_info=task.exception())

    def _handle_transport_error(self, error: Exception) -> None:
        logger.error("Transport error: %s", error)

        def make_error() -> Exception:
            failure = TransportConnectionError(f"Transport error: {error}")
            failure.__cause__ = error
            return failure

        self._reject_all(make_error)

    def _handle_transport_close(self) -> None:
        logger.debug("Transport closed")
        self._initialized = False
        self._reject_all(lambda: TransportConnectionError("Transport closed"))
