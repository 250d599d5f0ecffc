"""Transport contract shared by the process, stream and message bindings.

A transport moves whole JSON messages between the harness and one server
under test. Concrete bindings only implement the wire mechanics
(``_open``, ``_write``, ``_shutdown`` and their read loops); the state
machine, statistics, retry policy and event fan-out live here so every
binding behaves identically:

    disconnected -> connecting -> connected -> disconnected
                         |            |
                         +--> error <-+--> disconnected

Transports are single-use: once a connection has been established and torn
down the instance refuses to connect again. A failed connect may be retried.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, ClassVar, Protocol

from mcpcheck.config import RetryConfig, TargetKind
from mcpcheck.error import (
    CheckError,
    InvalidStateError,
    MessageParseError,
    NotConnectedError,
    RequestTimeoutError,
    TargetTypeMismatchError,
    TransportConnectionError,
    WriteError,
)
from mcpcheck.messages import Message, decode_json, serialize_message

logger = logging.getLogger(__name__)

# Constants
CLOSE_GRACE_SECONDS = 3.0
READ_CHUNK_SIZE = 65536
DEFAULT_WAIT_SECONDS = 5.0

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


ALLOWED_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset(
        {ConnectionState.CONNECTED, ConnectionState.ERROR, ConnectionState.DISCONNECTED}
    ),
    ConnectionState.CONNECTED: frozenset({ConnectionState.DISCONNECTED, ConnectionState.ERROR}),
    ConnectionState.ERROR: frozenset({ConnectionState.DISCONNECTED}),
}


class TransportEvent(str, Enum):
    """Events a transport emits, with the handler arguments for each.

    STATE_CHANGE(state), MESSAGE(message), ERROR(error), CLOSE(),
    DIAGNOSTIC(text)
    """

    STATE_CHANGE = "state_change"
    MESSAGE = "message"
    ERROR = "error"
    CLOSE = "close"
    DIAGNOSTIC = "diagnostic"


@dataclass(slots=True)
class TransportStats:
    """Counters for one transport instance.

    Times are in milliseconds. ``connection_time_ms`` is how long the
    connect took; ``last_message_time_ms`` is a wall-clock timestamp.
    """

    sent: int = 0
    received: int = 0
    bytes_transferred: int = 0
    parse_errors: int = 0
    connection_time_ms: float | None = None
    last_message_time_ms: float | None = None


class Transport(Protocol):
    """What the client and the chaos decorator need from a transport."""

    @property
    def kind(self) -> TargetKind: ...

    @property
    def state(self) -> ConnectionState: ...

    @property
    def stats(self) -> TransportStats: ...

    async def connect(self, target: Any) -> None: ...

    async def send(self, message: Message) -> None: ...

    async def close(self) -> None: ...

    def on(self, event: TransportEvent, handler: Callable[..., Any]) -> None: ...

    def off(self, event: TransportEvent, handler: Callable[..., Any]) -> None: ...

    async def wait_for_message(
        self, predicate: Callable[[Any], bool], timeout: float = DEFAULT_WAIT_SECONDS
    ) -> Any: ...


class EventSource:
    """Typed event registration with isolated handler failures."""

    def __init__(self) -> None:
        self._handlers: dict[TransportEvent, list[Callable[..., Any]]] = {
            event: [] for event in TransportEvent
        }

    def on(self, event: TransportEvent, handler: Callable[..., Any]) -> None:
        self._handlers[TransportEvent(event)].append(handler)

    def off(self, event: TransportEvent, handler: Callable[..., Any]) -> None:
        handlers = self._handlers[TransportEvent(event)]
        if handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event: TransportEvent) -> int:
        return len(self._handlers[TransportEvent(event)])

    def _emit(self, event: TransportEvent, *args: Any) -> None:
        # Snapshot: handlers may unregister themselves while running
        for handler in list(self._handlers[event]):
            try:
                handler(*args)
            except Exception:
                logger.exception("Error in %s handler", event.value)

    async def wait_for_message(
        self, predicate: Callable[[Any], bool], timeout: float = DEFAULT_WAIT_SECONDS
    ) -> Any:
        """Wait for the next inbound message satisfying ``predicate``.

        Raises:
            RequestTimeoutError: If no matching message arrives in time
        """
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

        def on_message(message: Any) -> None:
            if future.done():
                return
            try:
                if predicate(message):
                    future.set_result(message)
            except Exception as e:
                future.set_exception(e)

        self.on(TransportEvent.MESSAGE, on_message)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(
                f"Timeout waiting for message after {timeout * 1000:.0f}ms"
            ) from None
        finally:
            self.off(TransportEvent.MESSAGE, on_message)


class BaseTransport(EventSource, ABC):
    """State machine, statistics and retry policy for all bindings.

    Subclasses set ``kind`` and implement:

    - ``_open(target)``: establish the connection or raise
    - ``_on_connected()``: start read loops with ``_spawn``
    - ``_write(text)``: put framed text on the wire
    - ``_shutdown(grace)``: release resources, forcibly after ``grace`` seconds

    Read loops hand complete frames to ``_deliver_frame`` and report loss of
    the connection through ``_handle_error`` / ``_handle_close``.
    """

    kind: ClassVar[TargetKind]

    def __init__(
        self,
        *,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.time,
        close_grace: float = CLOSE_GRACE_SECONDS,
    ) -> None:
        super().__init__()
        self._state = ConnectionState.DISCONNECTED
        self._stats = TransportStats()
        self._last_error: Exception | None = None
        self._connection_attempts = 0
        self._has_connected = False
        self._closing = False
        self._sleep = sleep
        self._clock = clock
        self._close_grace = close_grace
        self._tasks: set[asyncio.Task[Any]] = set()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(state={self._state.value})"

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> TransportStats:
        """Snapshot of the counters; mutating it does not affect the transport."""
        return replace(self._stats)

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    @property
    def connection_attempts(self) -> int:
        return self._connection_attempts

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def connect(self, target: Any) -> None:
        """Connect to ``target``.

        Raises:
            TargetTypeMismatchError: If the target is for another binding
            InvalidStateError: If connected, connecting, or already used
            ConnectionTimeoutError: If the binding's connect timeout elapses
            TransportConnectionError: For any other connect failure
        """
        target_kind = getattr(target, "kind", None)
        if target_kind is not self.kind:
            raise TargetTypeMismatchError(
                f"Invalid target type {getattr(target_kind, 'value', target_kind)!r} "
                f"for {self.kind.value} transport",
                data={"expected": self.kind.value},
            )
        if self._state is ConnectionState.CONNECTING:
            raise InvalidStateError("Connect already in progress")
        if self._state is ConnectionState.CONNECTED:
            raise InvalidStateError("Transport already connected")
        if self._has_connected:
            raise InvalidStateError(
                "Transport instances are single-use; create a new one to reconnect"
            )

        if self._state is ConnectionState.ERROR:
            self._set_state(ConnectionState.DISCONNECTED)
        self._closing = False
        self._set_state(ConnectionState.CONNECTING)
        started = self._clock()

        try:
            await self._open(target)
        except CheckError as e:
            await self._discard()
            self._handle_error(e)
            raise
        except asyncio.CancelledError:
            await self._discard()
            self._handle_error(TransportConnectionError("Connect cancelled"))
            raise
        except Exception as e:
            await self._discard()
            error = TransportConnectionError(f"Failed to connect: {e}")
            self._handle_error(error)
            raise error from e

        if self._closing or self._state is not ConnectionState.CONNECTING:
            # close() ran while _open was in flight
            await self._discard()
            error = TransportConnectionError("Connect aborted by close")
            self._last_error = error
            raise error

        self._has_connected = True
        self._stats.connection_time_ms = (self._clock() - started) * 1000
        self._set_state(ConnectionState.CONNECTED)
        logger.debug("%s connected in %.1fms", type(self).__name__, self._stats.connection_time_ms)
        self._on_connected()

    async def connect_with_retry(self, target: Any, retry: RetryConfig | None = None) -> None:
        """Connect, retrying with exponential backoff.

        A target for the wrong binding is never retried.

        Raises:
            TransportConnectionError: After all attempts failed, chained to
                the last underlying error
        """
        options = retry or RetryConfig()
        attempts = options.max_retries + 1
        delay_ms: float = options.initial_delay_ms
        last_error: CheckError | None = None

        for attempt in range(attempts):
            self._connection_attempts = attempt + 1
            try:
                await self.connect(target)
                return
            except (TargetTypeMismatchError, InvalidStateError):
                raise
            except CheckError as e:
                last_error = e
                self._last_error = e
                if attempt == options.max_retries:
                    break
                logger.debug(
                    "Connect attempt %d/%d failed (%s), retrying in %.0fms",
                    attempt + 1,
                    attempts,
                    e.message,
                    delay_ms,
                )
                await self._sleep(delay_ms / 1000)
                delay_ms = min(delay_ms * options.backoff_multiplier, options.max_delay_ms)

        raise TransportConnectionError(
            f"Failed to connect after {attempts} attempts: {last_error}",
            data={"attempts": attempts},
        ) from last_error

    async def send(self, message: Message) -> None:
        """Serialize and write one message.

        Raises:
            NotConnectedError: If the transport is not connected
            WriteError: If serialization or the underlying write fails
        """
        if self._state is not ConnectionState.CONNECTED:
            raise NotConnectedError("Transport not connected")
        try:
            text = self._frame(serialize_message(message))
        except (TypeError, ValueError) as e:
            raise WriteError(f"Failed to serialize message: {e}") from e
        try:
            await self._write(text)
        except CheckError:
            raise
        except Exception as e:
            raise WriteError(f"Failed to write message: {e}") from e
        self._stats.sent += 1
        self._stats.bytes_transferred += len(text.encode("utf-8"))
        self._stats.last_message_time_ms = self._clock() * 1000

    async def close(self) -> None:
        """Release the connection. Always ends in ``disconnected``."""
        if self._state is ConnectionState.DISCONNECTED and not self._has_connected:
            return
        self._closing = True
        try:
            await self._shutdown(self._close_grace)
        except Exception:
            logger.exception("Error while closing %s", type(self).__name__)
        finally:
            await self._cancel_tasks()
            self._handle_close()

    # -------------------------------------------------------------------------
    # Binding hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    async def _open(self, target: Any) -> None: ...

    @abstractmethod
    async def _write(self, text: str) -> None: ...

    @abstractmethod
    async def _shutdown(self, grace: float) -> None: ...

    def _on_connected(self) -> None:
        """Start read loops. Called once the state is ``connected``."""

    def _frame(self, text: str) -> str:
        return text

    # -------------------------------------------------------------------------
    # Helpers for bindings
    # -------------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _deliver_frame(self, text: str) -> None:
        """Decode one inbound frame and emit it.

        Unparseable frames are dropped and reported; the connection stays up.
        """
        try:
            message = decode_json(text)
        except MessageParseError as e:
            self._stats.parse_errors += 1
            logger.warning("Dropping unparseable frame: %s", e.message)
            self._emit(TransportEvent.DIAGNOSTIC, e.message)
            return
        self._stats.received += 1
        self._stats.bytes_transferred += len(text.encode("utf-8"))
        self._stats.last_message_time_ms = self._clock() * 1000
        self._emit(TransportEvent.MESSAGE, message)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        if state not in ALLOWED_TRANSITIONS[self._state]:
            raise InvalidStateError(
                f"Illegal state transition {self._state.value} -> {state.value}"
            )
        logger.debug("%s: %s -> %s", type(self).__name__, self._state.value, state.value)
        self._state = state
        self._emit(TransportEvent.STATE_CHANGE, state)

    def _handle_error(self, error: Exception) -> None:
        self._last_error = error
        if self._state is ConnectionState.DISCONNECTED:
            logger.debug("Ignoring error on disconnected transport: %s", error)
            return
        self._set_state(ConnectionState.ERROR)
        if not self.listener_count(TransportEvent.ERROR):
            logger.warning("Unhandled transport error: %s", error)
        self._emit(TransportEvent.ERROR, error)

    def _handle_close(self) -> None:
        if self._state is ConnectionState.DISCONNECTED:
            return
        self._set_state(ConnectionState.DISCONNECTED)
        self._emit(TransportEvent.CLOSE)

    async def _discard(self) -> None:
        """Release whatever a failed ``_open`` left behind."""
        try:
            await self._shutdown(0.0)
        except Exception:
            logger.debug("Error releasing partially opened connection", exc_info=True)

    async def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


class LineBuffer:
    """Splits a byte stream into newline-delimited frames.

    Decoding is incremental, so a multi-byte character split across two
    chunks is reassembled. Blank lines are skipped and surrounding
    whitespace is stripped.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    @property
    def pending(self) -> str:
        """Text received after the last complete frame."""
        return self._pending

    def feed(self, chunk: bytes) -> list[str]:
        return self.feed_text(self._decoder.decode(chunk))

    def feed_text(self, text: str) -> list[str]:
        *lines, self._pending = (self._pending + text).split("\n")
        return [line.strip() for line in lines if line.strip()]


class LineFramedTransport(BaseTransport):
    """Base for byte-stream bindings that frame messages one per line."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._buffer = LineBuffer()

    def _frame(self, text: str) -> str:
        return text + "\n"

    def _feed(self, chunk: bytes) -> None:
        for line in self._buffer.feed(chunk):
            self._deliver_frame(line)

    async def _read_stream(self, reader: asyncio.StreamReader) -> None:
        try:
            while True:
                chunk = await reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self._feed(chunk)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not self._closing:
                logger.debug("Read loop failed", exc_info=True)
                self._handle_error(TransportConnectionError(f"Read failed: {e}"))
            return
        await self._on_eof()

    async def _on_eof(self) -> None:
        if not self._closing:
            self._handle_close()
