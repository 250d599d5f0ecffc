"""Stream chaos: jitter, chunk-split markers, duplicate signals and reordering.

Reordering holds messages back in a buffer. Once two or more are held, each
further send has an even chance to release a random one of them in place of
the current message.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

from mcpcheck.chaos import ChaosPlugin, PluginHook
from mcpcheck.config import StreamChaosConfig
from mcpcheck.transport import Clock


@dataclass(slots=True)
class BufferedMessage:
    message: Any
    buffered_at: float


class StreamChaosPlugin(ChaosPlugin):
    name = "stream-chaos"
    description = "Simulates stream fragmentation, reordering and jitter"
    hooks = frozenset({PluginHook.BEFORE_SEND, PluginHook.AFTER_RECEIVE})
    activation_rate = 0.05

    def __init__(
        self,
        config: StreamChaosConfig | None = None,
        *,
        clock: Clock = time.time,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.config = config or StreamChaosConfig()
        self._clock = clock
        self._buffer: list[BufferedMessage] = []
        self._signal_tasks: set[asyncio.Task[None]] = set()
        self.duplicate_chunk_signals = 0

    @property
    def buffer_size(self) -> int:
        return len(self._buffer)

    async def before_send(self, message: Any) -> Any:
        if self._context is None or not self._activated():
            return message

        await self._delay(self.config.chunk_jitter_ms, "chunk")

        if self._roll(self.config.split_chunk_probability):
            return self._mark_split(message)

        if self._roll(self.config.duplicate_chunk_probability):
            self._signal_duplicate(self._random.next_int(10, 100))

        if self._roll(self.config.reorder_probability):
            self._buffer.append(BufferedMessage(message, self._clock()))
            if len(self._buffer) >= 2 and self._random.next_boolean(0.5):
                held = self._buffer.pop(self._random.next_int(0, len(self._buffer)))
                self._log.debug("%s: releasing reordered message", self.name)
                return held.message
            self._log.debug("%s: holding message (%d buffered)", self.name, len(self._buffer))
            return None

        return message

    async def after_receive(self, message: Any) -> Any:
        if self._context is None or not self._activated():
            return message
        await self._delay(self.config.chunk_jitter_ms, "incoming chunk")
        return message

    def _mark_split(self, message: Any) -> Any:
        if not isinstance(message, dict):
            return message
        self._log.debug("%s: marking message as split", self.name)
        return {
            **message,
            "_chaos_split": True,
            "_chaos_chunk_id": self._random.next_int(1000, 10000),
            "_chaos_total_chunks": self._random.next_int(2, 5),
        }

    def _signal_duplicate(self, delay_ms: int) -> None:
        # Only signalled and logged; the message itself is not re-sent.
        async def signal() -> None:
            await self._sleep(delay_ms / 1000)
            self._log.debug("%s: duplicate chunk after %dms", self.name, delay_ms)

        self.duplicate_chunk_signals += 1
        task = asyncio.create_task(signal())
        self._signal_tasks.add(task)
        task.add_done_callback(self._signal_tasks.discard)

    def flush_buffer(self) -> list[Any]:
        """Remove and return every held message, oldest first."""
        messages = [held.message for held in self._buffer]
        self._buffer.clear()
        return messages

    async def restore(self) -> None:
        dropped = self.flush_buffer()
        if dropped:
            self._log.debug("%s: discarded %d held messages", self.name, len(dropped))
        for task in list(self._signal_tasks):
            task.cancel()
        await super().restore()
