"""Tests for transport selection."""

import pytest

from mcpcheck.chaos import ChaosController
from mcpcheck.chaos_transport import ChaosTransport
from mcpcheck.config import MessageTarget, ProcessTarget, StreamTarget, TargetKind
from mcpcheck.error import TargetTypeMismatchError
from mcpcheck.stdio_transport import StdioTransport
from mcpcheck.tcp_transport import TcpTransport
from mcpcheck.transport import ConnectionState
from mcpcheck.transport_factory import TransportFactory, create_transport
from mcpcheck.ws_transport import WebSocketTransport
from tests.conftest import LoopbackTransport


class TestTransportFactory:
    """Tests for TransportFactory and create_transport."""

    @pytest.mark.parametrize(
        ("target", "expected"),
        [
            (ProcessTarget(command="server"), StdioTransport),
            (StreamTarget(host="localhost", port=9000), TcpTransport),
            (MessageTarget(url="ws://localhost:9000"), WebSocketTransport),
        ],
    )
    def test_binding_per_kind(self, target, expected) -> None:
        """Each target kind gets its binding, unconnected."""
        transport = create_transport(target)
        assert type(transport) is expected
        assert transport.state is ConnectionState.DISCONNECTED

    def test_supports(self) -> None:
        """Kinds are recognised by enum or by their wire name."""
        factory = TransportFactory()
        assert factory.supports(TargetKind.PROCESS)
        assert factory.supports("websocket")
        assert not factory.supports("carrier-pigeon")
        assert set(factory.supported_kinds()) == set(TargetKind)

    def test_unsupported_target(self) -> None:
        """Targets without a known kind are rejected."""
        with pytest.raises(TargetTypeMismatchError, match="Unsupported transport type"):
            TransportFactory().create(object())

    def test_register_replaces_binding(self) -> None:
        """A custom constructor can replace a built-in binding."""
        factory = TransportFactory()
        factory.register(TargetKind.STREAM, LoopbackTransport)
        transport = create_transport(StreamTarget(host="localhost", port=1), factory=factory)
        assert isinstance(transport, LoopbackTransport)

    def test_chaos_wrapping(self) -> None:
        """Passing a controller wraps the binding."""
        controller = ChaosController()
        transport = create_transport(ProcessTarget(command="server"), chaos=controller)
        assert isinstance(transport, ChaosTransport)
        assert isinstance(transport.transport, StdioTransport)
        assert transport.controller is controller
