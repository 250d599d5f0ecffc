"""Transport decorator that routes traffic through a ChaosController.

Outgoing messages pass through the send pipeline before reaching the wrapped
transport. Incoming messages are queued and pumped through the receive
pipeline one at a time, so they are re-emitted in arrival order even when
plugins delay them. Every other event is forwarded unchanged, but while
messages are still queued it waits its turn behind them so an error or close
never overtakes a response that arrived first.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any

from mcpcheck.chaos import ChaosContext, ChaosController, ScheduledDuplicate
from mcpcheck.config import RetryConfig, TargetKind
from mcpcheck.error import NotConnectedError
from mcpcheck.messages import Message, to_json_value
from mcpcheck.transport import (
    BaseTransport,
    ConnectionState,
    EventSource,
    Sleep,
    TransportEvent,
    TransportStats,
)

logger = logging.getLogger(__name__)

_FORWARDED_EVENTS = (
    TransportEvent.STATE_CHANGE,
    TransportEvent.ERROR,
    TransportEvent.CLOSE,
    TransportEvent.DIAGNOSTIC,
)


class ChaosTransport(EventSource):
    """Wraps a transport and applies chaos to everything crossing it.

    Args:
        transport: The transport to wrap
        controller: Controller holding the plugins to run
        log: Logger handed to plugins through the chaos context
        sleep: Awaitable used to delay scheduled duplicates
    """

    def __init__(
        self,
        transport: BaseTransport,
        controller: ChaosController,
        *,
        log: logging.Logger | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        super().__init__()
        self._transport = transport
        self._controller = controller
        self._logger = log or logger
        self._sleep = sleep
        self._inbox: asyncio.Queue[tuple[TransportEvent, tuple[Any, ...]]] | None = None
        self._backlog = 0
        self._pump_task: asyncio.Task[None] | None = None
        self._duplicate_tasks: set[asyncio.Task[None]] = set()

        transport.on(TransportEvent.MESSAGE, self._on_inner_message)
        for event in _FORWARDED_EVENTS:
            transport.on(event, functools.partial(self._forward, event))

    def __repr__(self) -> str:
        return f"ChaosTransport({self._transport!r})"

    @property
    def transport(self) -> BaseTransport:
        return self._transport

    @property
    def controller(self) -> ChaosController:
        return self._controller

    @property
    def kind(self) -> TargetKind:
        return self._transport.kind

    @property
    def state(self) -> ConnectionState:
        return self._transport.state

    @property
    def stats(self) -> TransportStats:
        return self._transport.stats

    @property
    def last_error(self) -> Exception | None:
        return self._transport.last_error

    async def connect(self, target: Any) -> None:
        await self._prepare_connection()
        await self._transport.connect(target)

    async def connect_with_retry(self, target: Any, retry: RetryConfig | None = None) -> None:
        await self._prepare_connection()
        await self._transport.connect_with_retry(target, retry)

    async def send(self, message: Message) -> None:
        if self.state is not ConnectionState.CONNECTED:
            raise NotConnectedError("Transport not connected")

        result = await self._controller.apply_send_chaos(to_json_value(message))
        if result.dropped:
            self._logger.debug("Chaos dropped outgoing message")
            return

        await self._transport.send(result.message)
        for duplicate in result.duplicates:
            self._schedule_duplicate(duplicate)

    async def close(self) -> None:
        for task in list(self._duplicate_tasks):
            task.cancel()
        try:
            await self._transport.close()
        finally:
            if self._pump_task is not None:
                self._pump_task.cancel()
                await asyncio.gather(self._pump_task, return_exceptions=True)
                self._pump_task = None
            self._flush_inbox()

    async def _prepare_connection(self) -> None:
        if self._controller.context is None:
            config = self._controller.config
            await self._controller.initialize(
                ChaosContext(transport=self, logger=self._logger, seed=config.seed, config=config)
            )
        await self._controller.apply_connection_chaos()

    def _on_inner_message(self, message: Any) -> None:
        self._enqueue(TransportEvent.MESSAGE, (message,))

    def _forward(self, event: TransportEvent, *args: Any) -> None:
        if self._backlog == 0:
            self._emit(event, *args)
        else:
            self._enqueue(event, args)

    def _enqueue(self, event: TransportEvent, args: tuple[Any, ...]) -> None:
        if self._inbox is None:
            self._inbox = asyncio.Queue()
        if self._pump_task is None:
            self._pump_task = asyncio.create_task(self._pump(self._inbox))
        self._backlog += 1
        self._inbox.put_nowait((event, args))

    async def _pump(self, inbox: asyncio.Queue[tuple[TransportEvent, tuple[Any, ...]]]) -> None:
        while True:
            event, args = await inbox.get()
            try:
                if event is TransportEvent.MESSAGE:
                    args = (await self._controller.apply_receive_chaos(args[0]),)
                self._emit(event, *args)
            finally:
                self._backlog -= 1

    def _flush_inbox(self) -> None:
        """Deliver lifecycle events still queued at close; pending messages are dropped."""
        inbox, self._inbox = self._inbox, None
        self._backlog = 0
        while inbox is not None and not inbox.empty():
            event, args = inbox.get_nowait()
            if event is not TransportEvent.MESSAGE:
                self._emit(event, *args)

    def _schedule_duplicate(self, duplicate: ScheduledDuplicate) -> None:
        async def resend() -> None:
            await self._sleep(duplicate.delay_ms / 1000)
            if self._transport.state is not ConnectionState.CONNECTED:
                return
            try:
                await self._transport.send(duplicate.message)
            except Exception as e:
                self._logger.debug("Failed to send duplicate message: %s", e)

        task = asyncio.create_task(resend())
        self._duplicate_tasks.add(task)
        task.add_done_callback(self._duplicate_tasks.discard)
