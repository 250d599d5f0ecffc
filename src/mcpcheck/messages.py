"""JSON-RPC envelopes exchanged with the server under test.

Envelopes are frozen dataclasses with a ``to_json`` method, mirroring how
they appear on the wire:

    request:       {"jsonrpc": "2.0", "id": ..., "method": ..., "params"?: ...}
    response:      {"jsonrpc": "2.0", "id": ..., "result": ...}
                   {"jsonrpc": "2.0", "id": ..., "error": {code, message, data?}}
    notification:  {"jsonrpc": "2.0", "method": ..., "params"?: ...}

Chaos plugins work on the decoded JSON value rather than on envelopes, so
anything that is not an envelope is passed through as an opaque JSON value.
``RawPayload`` is the escape hatch for mutations that must put text on the
wire which is not valid JSON at all.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Final, Union

from mcpcheck.error import MessageParseError

JSONRPC_VERSION: Final[str] = "2.0"

# Standard JSON-RPC error codes
PARSE_ERROR: Final[int] = -32700
INVALID_REQUEST: Final[int] = -32600
METHOD_NOT_FOUND: Final[int] = -32601
INVALID_PARAMS: Final[int] = -32602
INTERNAL_ERROR: Final[int] = -32603


def is_valid_id(x: object) -> bool:
    """Check if x can be used as a correlation id.

    bool is a subclass of int, so True/False are rejected explicitly.
    """
    if isinstance(x, bool):
        return False
    return isinstance(x, (str, int))


@dataclass(frozen=True, slots=True)
class JsonRpcRequest:
    id: str | int
    method: str
    params: Any | None = None

    def to_json(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "jsonrpc": JSONRPC_VERSION,
            "id": self.id,
            "method": self.method,
        }
        if self.params is not None:
            result["params"] = self.params
        return result


@dataclass(frozen=True, slots=True)
class JsonRpcNotification:
    method: str
    params: Any | None = None

    def to_json(self) -> dict[str, Any]:
        result: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": self.method}
        if self.params is not None:
            result["params"] = self.params
        return result


@dataclass(frozen=True, slots=True)
class JsonRpcError:
    code: int
    message: str
    data: Any | None = None

    def to_json(self) -> dict[str, Any]:
        result: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            result["data"] = self.data
        return result

    @staticmethod
    def from_json(value: Any) -> JsonRpcError:
        """Parse an error member leniently; peers under test get it wrong."""
        if not isinstance(value, dict):
            return JsonRpcError(INTERNAL_ERROR, str(value))
        code = value.get("code")
        if not isinstance(code, int) or isinstance(code, bool):
            code = INTERNAL_ERROR
        message = value.get("message")
        if not isinstance(message, str):
            message = "Unknown error"
        return JsonRpcError(code, message, value.get("data"))


@dataclass(frozen=True, slots=True)
class JsonRpcResponse:
    id: str | int
    result: Any | None = None
    error: JsonRpcError | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_json(self) -> dict[str, Any]:
        result: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            result["error"] = self.error.to_json()
        else:
            result["result"] = self.result
        return result


@dataclass(frozen=True, slots=True)
class RawPayload:
    """Text written to the wire verbatim, valid JSON or not."""

    text: str


Envelope = Union[JsonRpcRequest, JsonRpcResponse, JsonRpcNotification]
# Anything a transport accepts: an envelope, raw text, or an opaque JSON value.
Message = Union[JsonRpcRequest, JsonRpcResponse, JsonRpcNotification, RawPayload, Any]


def to_json_value(message: Message) -> Any:
    """Lower an envelope to its JSON value; other messages pass through."""
    if isinstance(message, (JsonRpcRequest, JsonRpcResponse, JsonRpcNotification)):
        return message.to_json()
    return message


def serialize_message(message: Message) -> str:
    """Serialize a message to its wire text (without framing).

    Raises:
        TypeError, ValueError: If the value is not JSON serializable
    """
    if isinstance(message, RawPayload):
        return message.text
    return json.dumps(to_json_value(message), ensure_ascii=False)


def decode_json(text: str) -> Any:
    """Decode one frame of wire text.

    Raises:
        MessageParseError: If the text is not valid JSON
    """
    try:
        return json.loads(text)
    except ValueError as e:
        raise MessageParseError(f"Failed to parse JSON message: {e}", data=text) from e


def reparse(text: str) -> Any:
    """Decode text if it is still valid JSON, otherwise keep it raw."""
    try:
        return json.loads(text)
    except ValueError:
        return RawPayload(text)


def parse_message(value: Any) -> Envelope | None:
    """Classify a decoded JSON value.

    Returns:
        The matching envelope, or None if the value is not a recognisable
        request, response or notification.
    """
    if not isinstance(value, dict):
        return None

    msg_id = value.get("id")
    has_id = "id" in value and is_valid_id(msg_id)
    method = value.get("method")

    if has_id and ("result" in value or "error" in value):
        if "error" in value and value["error"] is not None:
            return JsonRpcResponse(msg_id, error=JsonRpcError.from_json(value["error"]))
        return JsonRpcResponse(msg_id, result=value.get("result"))

    if isinstance(method, str):
        if has_id:
            return JsonRpcRequest(msg_id, method, value.get("params"))
        if "id" not in value:
            return JsonRpcNotification(method, value.get("params"))

    return None
