"""Network-level chaos: latency, packet loss, duplication and corruption."""

from __future__ import annotations

import copy
from typing import Any

from mcpcheck.chaos import ChaosPlugin, PluginHook, PluginSendResult, ScheduledDuplicate
from mcpcheck.config import NetworkChaosConfig
from mcpcheck.corruption import corrupt
from mcpcheck.error import ChaosInjectedDrop

# Re-send window for duplicated messages, in milliseconds
DUPLICATE_DELAY_MS = (10, 100)


class NetworkChaosPlugin(ChaosPlugin):
    """Simulates an unreliable network between harness and server.

    When the plugin activates on an outgoing message it delays it, then may
    drop it, schedule a duplicate, or corrupt it. Incoming messages may be
    delayed and corrupted.
    """

    name = "network-chaos"
    description = "Simulates network delays, drops, duplicates and corruption"
    hooks = frozenset({PluginHook.BEFORE_SEND, PluginHook.AFTER_RECEIVE})
    activation_rate = 0.1

    def __init__(self, config: NetworkChaosConfig | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.config = config or NetworkChaosConfig()

    async def before_send(self, message: Any) -> Any:
        if self._context is None or not self._activated():
            return PluginSendResult(message)

        await self._delay(self.config.delay_ms, "outgoing message")

        if self._roll(self.config.drop_probability):
            self._log.debug("%s: dropping outgoing message", self.name)
            raise ChaosInjectedDrop("Network chaos: simulated packet drop")

        duplicates: list[ScheduledDuplicate] = []
        if self._roll(self.config.duplicate_probability):
            delay_ms = self._random.next_int(*DUPLICATE_DELAY_MS)
            self._log.debug("%s: duplicating message after %dms", self.name, delay_ms)
            duplicates.append(ScheduledDuplicate(copy.deepcopy(message), delay_ms))

        if self._roll(self.config.corrupt_probability):
            self._log.debug("%s: corrupting outgoing message", self.name)
            message = corrupt(message, self._random)

        return PluginSendResult(message, duplicates)

    async def after_receive(self, message: Any) -> Any:
        if self._context is None or not self._activated():
            return message

        await self._delay(self.config.delay_ms, "incoming message")

        if self._roll(self.config.corrupt_probability):
            self._log.debug("%s: corrupting incoming message", self.name)
            message = corrupt(message, self._random)
        return message
