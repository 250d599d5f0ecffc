"""Protocol-level chaos: aborts, malformed JSON, unsolicited messages and
schema violations.

Checks run in a fixed order (abort, malformed, unexpected, schema) and the
first one that fires decides the outcome.
"""

from __future__ import annotations

import copy
import json
import math
import re
from typing import Any

from mcpcheck.chaos import ChaosPlugin, PluginHook
from mcpcheck.config import ProtocolChaosConfig
from mcpcheck.error import ChaosInjectedDrop
from mcpcheck.messages import JSONRPC_VERSION, RawPayload

_QUOTED_STRING = re.compile(r'"([^"\\]*)"')
_ENVELOPE_FIELDS = ("jsonrpc", "id", "method", "params")


class ProtocolChaosPlugin(ChaosPlugin):
    name = "protocol-chaos"
    description = "Injects protocol violations and malformed messages"
    hooks = frozenset({PluginHook.BEFORE_SEND, PluginHook.AFTER_RECEIVE})
    activation_rate = 0.05

    def __init__(self, config: ProtocolChaosConfig | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.config = config or ProtocolChaosConfig()

    async def before_send(self, message: Any) -> Any:
        if self._context is None or not self._activated():
            return message

        if self._roll(self.config.inject_abort_probability):
            self._log.debug("%s: aborting outgoing message", self.name)
            raise ChaosInjectedDrop("Protocol chaos: simulated connection abort")
        if self._roll(self.config.malformed_json_probability):
            self._log.debug("%s: sending malformed JSON", self.name)
            return self.malformed_json(message)
        if self._roll(self.config.unexpected_message_probability):
            self._log.debug("%s: sending unexpected message", self.name)
            return self.unexpected_message(message)
        if self._roll(self.config.invalid_schema_probability):
            self._log.debug("%s: sending schema violation", self.name)
            return self.schema_violation(message)
        return message

    async def after_receive(self, message: Any) -> Any:
        if self._context is None or not self._activated():
            return message
        if self._roll(self.config.malformed_json_probability):
            self._log.debug("%s: corrupting incoming message", self.name)
            return self.malformed_json(message)
        return message

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def malformed_json(self, message: Any) -> Any:
        """Apply one of five malformations; non-objects pass through the
        object-based ones unchanged."""
        try:
            text = json.dumps(message, ensure_ascii=False, default=str)
        except ValueError:
            return message

        match self._random.next_int(0, 5):
            case 0:
                cut = self._random.next_int(1, max(2, len(text) - 5))
                return RawPayload(text[:cut])
            case 1:
                return RawPayload(self._syntax_error(text))
            case 2:
                if not isinstance(message, dict):
                    return message
                return {**message, "_chaosEncoding": "\ufffd\ufffe\uffff", "_corrupted": True}
            case 3:
                if not isinstance(message, dict):
                    return message
                invalid = self._random.choice((math.nan, math.inf, -math.inf))
                return {**message, "_invalidValue": invalid}
            case _:
                if not isinstance(message, dict):
                    return message
                result = dict(message)
                result.pop(self._random.choice(_ENVELOPE_FIELDS), None)
                return result

    def _syntax_error(self, text: str) -> str:
        match self._random.next_int(0, 5):
            case 0:
                return text[:-1] if text.endswith("}") else text
            case 1:
                return _QUOTED_STRING.sub(
                    lambda m: m.group(1) if self._random.next_boolean(0.3) else m.group(0),
                    text,
                )
            case 2:
                return text.replace(",", ",,", 1)
            case 3:
                return text.replace(":", "", 1)
            case _:
                return text[:-1] + ",}" if text.endswith("}") else text

    def unexpected_message(self, message: Any) -> Any:
        """Replace the message with one the peer is not expecting."""
        original = message if isinstance(message, dict) else {}
        match self._random.next_int(0, 4):
            case 0:
                return {
                    "jsonrpc": JSONRPC_VERSION,
                    "id": self._random.next_int(1000, 10000),
                    "method": "chaos/unexpected",
                    "params": {"chaos": True},
                }
            case 1:
                return {
                    "jsonrpc": JSONRPC_VERSION,
                    "id": self._random.next_int(1000, 10000),
                    "result": {"chaos": "unexpected_result"},
                }
            case 2:
                return {
                    "jsonrpc": "3.0",
                    "id": original.get("id"),
                    "method": "initialize",
                    "params": original.get("params"),
                }
            case _:
                return {
                    "jsonrpc": JSONRPC_VERSION,
                    "id": original.get("id"),
                    "error": {
                        "code": -32000,
                        "message": "Chaos injected error",
                        "data": {"originalMessage": message},
                    },
                }

    def schema_violation(self, message: Any) -> Any:
        if not isinstance(message, dict):
            return message
        result = copy.deepcopy(message)
        match self._random.next_int(0, 5):
            case 0:
                result.pop("jsonrpc", None)
            case 1:
                result["jsonrpc"] = "1.0"
            case 2:
                result["id"] = "invalid_id"
            case 3:
                if "params" in result:
                    result["params"] = "invalid_params"
            case _:
                result["extraField"] = "should_not_be_here"
        return result
