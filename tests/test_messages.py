"""Tests for JSON-RPC envelopes and message classification."""

import json

import pytest

from mcpcheck.error import MessageParseError
from mcpcheck.messages import (
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    RawPayload,
    decode_json,
    is_valid_id,
    parse_message,
    reparse,
    serialize_message,
)


class TestEnvelopes:
    """Tests for envelope serialization."""

    def test_request_without_params(self) -> None:
        """params is omitted when absent."""
        assert JsonRpcRequest("a", "ping").to_json() == {
            "jsonrpc": "2.0",
            "id": "a",
            "method": "ping",
        }

    def test_notification(self) -> None:
        """Notifications carry no id."""
        wire = json.loads(serialize_message(JsonRpcNotification("notifications/initialized")))
        assert wire == {"jsonrpc": "2.0", "method": "notifications/initialized"}

    def test_error_response(self) -> None:
        """Error responses carry the error object instead of a result."""
        response = JsonRpcResponse(1, error=JsonRpcError(-32601, "Method not found"))
        assert response.is_error
        assert response.to_json() == {
            "jsonrpc": "2.0",
            "id": 1,
            "error": {"code": -32601, "message": "Method not found"},
        }

    def test_serialize_keeps_unicode(self) -> None:
        """Non-ASCII text is written as UTF-8, not escaped."""
        assert "héllo" in serialize_message({"text": "héllo"})

    def test_raw_payload_verbatim(self) -> None:
        """RawPayload is never re-encoded."""
        assert serialize_message(RawPayload("{broken")) == "{broken"


class TestParsing:
    """Tests for decoding and classification."""

    def test_decode_invalid_json(self) -> None:
        """Invalid text raises MessageParseError carrying the text."""
        with pytest.raises(MessageParseError) as exc_info:
            decode_json("{nope")
        assert exc_info.value.data == "{nope"

    def test_reparse(self) -> None:
        """Valid text is decoded, invalid text is kept raw."""
        assert reparse('{"a": 1}') == {"a": 1}
        assert reparse('{"a": ') == RawPayload('{"a": ')

    def test_classify_response(self) -> None:
        """id plus result is a response."""
        parsed = parse_message({"jsonrpc": "2.0", "id": 3, "result": {"ok": True}})
        assert parsed == JsonRpcResponse(3, result={"ok": True})

    def test_classify_error_response(self) -> None:
        """A malformed error member is read leniently."""
        parsed = parse_message({"jsonrpc": "2.0", "id": 3, "error": {"code": "bad"}})
        assert isinstance(parsed, JsonRpcResponse)
        assert parsed.error == JsonRpcError(-32603, "Unknown error")

    def test_classify_notification(self) -> None:
        """method without id is a notification."""
        parsed = parse_message({"jsonrpc": "2.0", "method": "log", "params": {"level": "info"}})
        assert parsed == JsonRpcNotification("log", {"level": "info"})

    def test_classify_request(self) -> None:
        """method with id is a request."""
        parsed = parse_message({"jsonrpc": "2.0", "id": "r1", "method": "sampling/create"})
        assert parsed == JsonRpcRequest("r1", "sampling/create")

    def test_unrecognized(self) -> None:
        """Anything else is not an envelope."""
        assert parse_message([1, 2, 3]) is None
        assert parse_message({"jsonrpc": "2.0"}) is None
        assert parse_message({"jsonrpc": "2.0", "id": True, "result": 1}) is None

    def test_valid_ids(self) -> None:
        """Strings and integers are ids; booleans are not."""
        assert is_valid_id("x")
        assert is_valid_id(0)
        assert not is_valid_id(False)
        assert not is_valid_id(None)
