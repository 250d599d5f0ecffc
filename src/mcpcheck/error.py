"""Error types for the mcp-check harness.

Every error raised by the core carries an ErrorCode so callers (test suites,
reporters) can classify failures without string matching. Subclasses exist
for each failure family so they can also be caught individually.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error classification."""

    TARGET_TYPE_MISMATCH = "target_type_mismatch"
    CONNECTION_TIMEOUT = "connection_timeout"
    CONNECTION_ERROR = "connection_error"
    NOT_CONNECTED = "not_connected"
    PARSE_ERROR = "parse_error"
    WRITE_ERROR = "write_error"
    REQUEST_TIMEOUT = "request_timeout"
    PROTOCOL_ERROR = "protocol_error"
    CHAOS_DROP = "chaos_drop"
    PLUGIN_FAILURE = "plugin_failure"
    INVALID_STATE = "invalid_state"


class CheckError(Exception):
    """Base class for all harness errors.

    Attributes:
        code: The error classification
        message: Human readable description
        data: Optional structured context
    """

    default_code: ErrorCode = ErrorCode.CONNECTION_ERROR

    def __init__(
        self,
        message: str,
        code: ErrorCode | None = None,
        data: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message
        self.data = data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code.value}: {self.message})"


class TargetTypeMismatchError(CheckError):
    default_code = ErrorCode.TARGET_TYPE_MISMATCH


class ConnectionTimeoutError(CheckError):
    default_code = ErrorCode.CONNECTION_TIMEOUT


class TransportConnectionError(CheckError):
    default_code = ErrorCode.CONNECTION_ERROR


class NotConnectedError(CheckError):
    default_code = ErrorCode.NOT_CONNECTED


class MessageParseError(CheckError):
    """A frame could not be decoded. Non-fatal: the frame is dropped."""

    default_code = ErrorCode.PARSE_ERROR


class WriteError(CheckError):
    default_code = ErrorCode.WRITE_ERROR


class RequestTimeoutError(CheckError):
    default_code = ErrorCode.REQUEST_TIMEOUT


class ProtocolError(CheckError):
    """Error object returned by the peer in a response.

    Attributes:
        rpc_code: The numeric JSON-RPC error code sent by the peer
    """

    default_code = ErrorCode.PROTOCOL_ERROR

    def __init__(self, message: str, rpc_code: int = -32603, data: Any | None = None) -> None:
        super().__init__(message, data=data)
        self.rpc_code = rpc_code

    @classmethod
    def from_wire(cls, error: Any) -> ProtocolError:
        """Build from a response's ``error`` member."""
        if not isinstance(error, dict):
            return cls(f"MCP Error -32603: {error}", data=error)
        rpc_code = error.get("code")
        if not isinstance(rpc_code, int) or isinstance(rpc_code, bool):
            rpc_code = -32603
        text = error.get("message")
        if not isinstance(text, str):
            text = "Unknown error"
        return cls(f"MCP Error {rpc_code}: {text}", rpc_code=rpc_code, data=error.get("data"))


class ChaosInjectedDrop(CheckError):
    """Raised by a chaos plugin to simulate loss of the current message."""

    default_code = ErrorCode.CHAOS_DROP


class PluginFailure(CheckError):
    """A chaos plugin failed. Never propagates past the controller."""

    default_code = ErrorCode.PLUGIN_FAILURE


class InvalidStateError(CheckError):
    default_code = ErrorCode.INVALID_STATE
