"""Chaos plugin contract and the controller that runs the pipeline.

Plugins are chained in registration order. On send each plugin sees the
message produced by the previous one; a plugin that raises
``ChaosInjectedDrop`` (or returns None) ends the pipeline and the message
is not sent. Any other plugin failure is recorded, logged and skipped:
chaos must never take the harness down with it.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from mcpcheck.config import ChaosConfig, MsRange
from mcpcheck.error import ChaosInjectedDrop, PluginFailure
from mcpcheck.prng import SeededRandom
from mcpcheck.transport import Sleep

logger = logging.getLogger(__name__)

MAX_RECORDED_FAILURES = 1000


class PluginHook(str, Enum):
    """Pipeline stages a plugin can take part in."""

    BEFORE_SEND = "before_send"
    AFTER_RECEIVE = "after_receive"
    DURING_CONNECTION = "during_connection"


@dataclass(frozen=True, slots=True)
class ChaosContext:
    """Handed to every plugin at initialization.

    Attributes:
        transport: The transport chaos is applied to
        logger: Where plugins report what they inject
        seed: Seed for every plugin's random source
        config: The run's chaos configuration
    """

    transport: Any
    logger: logging.Logger
    seed: int
    config: ChaosConfig


@dataclass(frozen=True, slots=True)
class ScheduledDuplicate:
    """A copy of a sent message to be re-sent after ``delay_ms``."""

    message: Any
    delay_ms: int


@dataclass(slots=True)
class PluginSendResult:
    message: Any
    duplicates: list[ScheduledDuplicate] = field(default_factory=list)


@dataclass(slots=True)
class ChaosResult:
    """Outcome of the send pipeline. ``message`` is None when dropped."""

    message: Any
    duplicates: list[ScheduledDuplicate] = field(default_factory=list)

    @property
    def dropped(self) -> bool:
        return self.message is None


class ChaosPlugin:
    """Base class for chaos plugins.

    Subclasses declare the hooks they take part in and override the
    matching methods. Hooks pass messages through untouched until
    ``initialize`` has been called. Each plugin draws from its own
    ``SeededRandom`` seeded with the context seed.

    Args:
        sleep: Awaitable used for injected delays
        activation_rate: Probability that the plugin acts on a given
            message; defaults to the class's ``activation_rate``
    """

    name: ClassVar[str] = "chaos"
    description: ClassVar[str] = ""
    hooks: ClassVar[frozenset[PluginHook]] = frozenset()
    activation_rate: float = 0.1

    def __init__(self, *, sleep: Sleep = asyncio.sleep, activation_rate: float | None = None) -> None:
        self.enabled = True
        self._context: ChaosContext | None = None
        self._random = SeededRandom(0)
        self._sleep = sleep
        if activation_rate is not None:
            self.activation_rate = activation_rate

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, enabled={self.enabled})"

    @property
    def context(self) -> ChaosContext | None:
        return self._context

    @property
    def random(self) -> SeededRandom:
        return self._random

    def supports(self, hook: PluginHook) -> bool:
        return hook in self.hooks

    async def initialize(self, context: ChaosContext) -> None:
        """Bind to a context. Repeated calls are no-ops."""
        if self._context is not None:
            return
        self._context = context
        self._random = SeededRandom(context.seed)
        self._on_initialize(context)
        context.logger.debug("Chaos plugin %s initialized", self.name)

    def _on_initialize(self, context: ChaosContext) -> None:
        pass

    async def before_send(self, message: Any) -> Any:
        return message

    async def after_receive(self, message: Any) -> Any:
        return message

    async def during_connection(self) -> None:
        return None

    async def restore(self) -> None:
        if self._context is not None:
            self._context.logger.debug("Chaos plugin %s restored", self.name)

    # -------------------------------------------------------------------------
    # Helpers for subclasses
    # -------------------------------------------------------------------------

    @property
    def _log(self) -> logging.Logger:
        return self._context.logger if self._context else logger

    def _activated(self) -> bool:
        return self._random.next_boolean(self.activation_rate)

    def _roll(self, probability: float) -> bool:
        """Draw only for non-zero probabilities so disabled knobs cost no draws."""
        return probability > 0 and self._random.next_boolean(probability)

    async def _delay(self, window: MsRange, label: str) -> int:
        low, high = window
        delay_ms = self._random.next_int(low, high)
        if delay_ms > 0:
            self._log.debug("%s: delaying %s by %dms", self.name, label, delay_ms)
            await self._sleep(delay_ms / 1000)
        return delay_ms


class ChaosController:
    """Runs registered plugins against traffic when chaos is enabled.

    The controller's enabled flag is separate from each plugin's: a message
    passes through untouched unless both are on. Only the most recent
    ``max_failures`` plugin failures are kept.
    """

    def __init__(
        self, config: ChaosConfig | None = None, *, max_failures: int = MAX_RECORDED_FAILURES
    ) -> None:
        self.config = config or ChaosConfig()
        self.plugins: list[ChaosPlugin] = []
        self.failures: deque[PluginFailure] = deque(maxlen=max_failures)
        self._context: ChaosContext | None = None
        self._enabled = False
        self._random = SeededRandom(self.config.seed)

    @property
    def context(self) -> ChaosContext | None:
        return self._context

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def random(self) -> SeededRandom:
        return self._random

    def register(self, plugin: ChaosPlugin) -> None:
        self.plugins.append(plugin)

    def enable(self) -> None:
        self._enabled = True
        self._log.info("Chaos engineering enabled (seed=%d)", self.config.seed)

    def disable(self) -> None:
        self._enabled = False
        self._log.info("Chaos engineering disabled")

    async def initialize(self, context: ChaosContext) -> None:
        self._context = context
        for plugin in self.plugins:
            if not plugin.enabled:
                continue
            try:
                await plugin.initialize(context)
            except Exception as e:
                self._record_failure(plugin, "initialize", e)
        if self.config.enable:
            self.enable()

    def should_apply_chaos(self) -> bool:
        """Intensity-gated coin flip for callers making their own decisions."""
        if not self._enabled:
            return False
        return self._random.next_boolean(self.config.intensity)

    async def apply_send_chaos(self, message: Any) -> ChaosResult:
        if not self._enabled or self._context is None:
            return ChaosResult(message)

        current = message
        duplicates: list[ScheduledDuplicate] = []
        for plugin in self.plugins:
            if not (plugin.enabled and plugin.supports(PluginHook.BEFORE_SEND)):
                continue
            try:
                result = await plugin.before_send(current)
            except ChaosInjectedDrop as drop:
                self._log.debug("Message dropped by %s: %s", plugin.name, drop.message)
                return ChaosResult(None, duplicates)
            except Exception as e:
                self._record_failure(plugin, "before_send", e)
                continue

            if isinstance(result, PluginSendResult):
                current = result.message
                duplicates.extend(result.duplicates)
            else:
                current = result
            if current is None:
                self._log.debug("Message withheld by %s", plugin.name)
                break

        return ChaosResult(current, duplicates)

    async def apply_receive_chaos(self, message: Any) -> Any:
        if not self._enabled or self._context is None:
            return message

        current = message
        for plugin in self.plugins:
            if not (plugin.enabled and plugin.supports(PluginHook.AFTER_RECEIVE)):
                continue
            try:
                current = await plugin.after_receive(current)
            except Exception as e:
                self._record_failure(plugin, "after_receive", e)
        return current

    async def apply_connection_chaos(self) -> None:
        if not self._enabled or self._context is None:
            return
        for plugin in self.plugins:
            if not (plugin.enabled and plugin.supports(PluginHook.DURING_CONNECTION)):
                continue
            try:
                await plugin.during_connection()
            except Exception as e:
                self._record_failure(plugin, "during_connection", e)

    async def restore(self) -> None:
        """Restore every plugin concurrently, then disable chaos."""
        if self._context is None:
            self._enabled = False
            return
        self._log.info("Restoring normal operation")

        async def restore_one(plugin: ChaosPlugin) -> None:
            try:
                await plugin.restore()
            except Exception as e:
                self._record_failure(plugin, "restore", e)

        await asyncio.gather(*(restore_one(plugin) for plugin in self.plugins))
        self.disable()

    @property
    def _log(self) -> logging.Logger:
        return self._context.logger if self._context else logger

    def _record_failure(self, plugin: ChaosPlugin, phase: str, error: Exception) -> None:
        failure = PluginFailure(
            f"Chaos plugin {plugin.name} failed in {phase}: {error}",
            data={"plugin": plugin.name, "phase": phase},
        )
        failure.__cause__ = error
        self.failures.append(failure)
        self._log.warning("%s", failure.message)
