"""Timing chaos: processing delays and a fixed clock skew.

The skew is drawn once at initialization and applied to every timestamp-
like field in traffic in both directions, whether or not the delay gate
fires. A field is timestamp-like when its name contains one of
``TIMESTAMP_KEY_PATTERNS`` (case-insensitive) and its value is a number or
an ISO-8601 string.
"""

from __future__ import annotations

import copy
import re
import time
from datetime import datetime, timedelta
from typing import Any

from mcpcheck.chaos import ChaosContext, ChaosPlugin, PluginHook
from mcpcheck.config import TimingChaosConfig
from mcpcheck.transport import Clock

TIMESTAMP_KEY_PATTERNS = (
    "timestamp",
    "time",
    "createdat",
    "updatedat",
    "starttime",
    "endtime",
    "created",
    "modified",
    "startedat",
    "completedat",
)
ISO_TIMESTAMP = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")


def is_timestamp_field(key: str, value: Any) -> bool:
    lowered = key.lower()
    if not any(pattern in lowered for pattern in TIMESTAMP_KEY_PATTERNS):
        return False
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    return isinstance(value, str) and bool(ISO_TIMESTAMP.match(value))


def _shift_iso(value: str, skew_ms: int) -> str:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return value
    shifted = (parsed + timedelta(milliseconds=skew_ms)).isoformat(timespec="milliseconds")
    if value.endswith("Z"):
        shifted = shifted.replace("+00:00", "Z")
    return shifted


class TimingChaosPlugin(ChaosPlugin):
    name = "timing-chaos"
    description = "Injects processing delays and clock skew"
    hooks = frozenset(
        {PluginHook.BEFORE_SEND, PluginHook.AFTER_RECEIVE, PluginHook.DURING_CONNECTION}
    )
    activation_rate = 0.1

    def __init__(
        self,
        config: TimingChaosConfig | None = None,
        *,
        clock: Clock = time.time,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.config = config or TimingChaosConfig()
        self._clock = clock
        self._clock_skew_ms = 0

    @property
    def clock_skew_ms(self) -> int:
        return self._clock_skew_ms

    def _on_initialize(self, context: ChaosContext) -> None:
        low, high = self.config.clock_skew_ms
        self._clock_skew_ms = self._random.next_int(low, high)
        context.logger.debug("%s: clock skew %dms", self.name, self._clock_skew_ms)

    async def before_send(self, message: Any) -> Any:
        if self._context is None:
            return message
        if self._activated():
            await self._delay(self.config.processing_delay_ms, "outgoing message")
        return self.apply_clock_skew(message)

    async def after_receive(self, message: Any) -> Any:
        if self._context is None:
            return message
        if self._activated():
            await self._delay(self.config.processing_delay_ms, "incoming message")
        return self.apply_clock_skew(message)

    async def during_connection(self) -> None:
        if self._context is None or not self._activated():
            return
        low, high = self.config.processing_delay_ms
        delay_ms = self._random.next_int(low, high * 2)
        if delay_ms > 0:
            self._log.debug("%s: delaying connection by %dms", self.name, delay_ms)
            await self._sleep(delay_ms / 1000)

    def apply_clock_skew(self, message: Any) -> Any:
        """Return a copy of ``message`` with every timestamp shifted."""
        if not self._clock_skew_ms or not isinstance(message, (dict, list)):
            return message
        result = copy.deepcopy(message)
        self._shift(result)
        return result

    def _shift(self, node: dict[str, Any] | list[Any]) -> None:
        items = list(node.items()) if isinstance(node, dict) else list(enumerate(node))
        for key, value in items:
            if isinstance(key, str) and is_timestamp_field(key, value):
                if isinstance(value, str):
                    node[key] = _shift_iso(value, self._clock_skew_ms)
                else:
                    node[key] = value + self._clock_skew_ms
            elif isinstance(value, (dict, list)):
                self._shift(value)

    def adjusted_time(self) -> float:
        """Current wall-clock time in milliseconds, as seen with the skew."""
        return self._clock() * 1000 + self._clock_skew_ms

    def reduce_timeout(self, timeout: float) -> float:
        return timeout * self.config.timeout_reduction_factor
