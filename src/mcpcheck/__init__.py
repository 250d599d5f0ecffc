"""mcp-check - transport and chaos core for testing MCP servers

This package connects to a Model Context Protocol server over a child
process, a TCP socket or a WebSocket, correlates JSON-RPC requests with
responses, and can inject seeded, reproducible faults into the traffic.
"""

from mcpcheck.config import (
    ChaosConfig,
    ClientConfig,
    MessageTarget,
    NetworkChaosConfig,
    ProcessTarget,
    ProtocolChaosConfig,
    RetryConfig,
    StreamChaosConfig,
    StreamTarget,
    Target,
    TargetKind,
    TimingChaosConfig,
    parse_target,
)
from mcpcheck.error import (
    ChaosInjectedDrop,
    CheckError,
    ConnectionTimeoutError,
    ErrorCode,
    InvalidStateError,
    MessageParseError,
    NotConnectedError,
    PluginFailure,
    ProtocolError,
    RequestTimeoutError,
    TargetTypeMismatchError,
    TransportConnectionError,
    WriteError,
)
from mcpcheck.messages import (
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    RawPayload,
)
from mcpcheck.prng import SeededRandom
from mcpcheck.transport import (
    BaseTransport,
    ConnectionState,
    Transport,
    TransportEvent,
    TransportStats,
)
from mcpcheck.stdio_transport import StdioTransport
from mcpcheck.tcp_transport import TcpTransport
from mcpcheck.ws_transport import WebSocketTransport
from mcpcheck.chaos import (
    ChaosContext,
    ChaosController,
    ChaosPlugin,
    ChaosResult,
    PluginHook,
    PluginSendResult,
    ScheduledDuplicate,
)
from mcpcheck.network_chaos import NetworkChaosPlugin
from mcpcheck.protocol_chaos import ProtocolChaosPlugin
from mcpcheck.stream_chaos import StreamChaosPlugin
from mcpcheck.timing_chaos import TimingChaosPlugin
from mcpcheck.chaos_transport import ChaosTransport
from mcpcheck.chaos_factory import create_by_intensity, create_default
from mcpcheck.transport_factory import TransportFactory, create_transport
from mcpcheck.client import McpTestClient

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "ChaosConfig",
    "ClientConfig",
    "MessageTarget",
    "NetworkChaosConfig",
    "ProcessTarget",
    "ProtocolChaosConfig",
    "RetryConfig",
    "StreamChaosConfig",
    "StreamTarget",
    "Target",
    "TargetKind",
    "TimingChaosConfig",
    "parse_target",
    # Errors
    "ChaosInjectedDrop",
    "CheckError",
    "ConnectionTimeoutError",
    "ErrorCode",
    "InvalidStateError",
    "MessageParseError",
    "NotConnectedError",
    "PluginFailure",
    "ProtocolError",
    "RequestTimeoutError",
    "TargetTypeMismatchError",
    "TransportConnectionError",
    "WriteError",
    # Messages
    "JsonRpcError",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "RawPayload",
    "SeededRandom",
    # Transports
    "BaseTransport",
    "ConnectionState",
    "StdioTransport",
    "TcpTransport",
    "Transport",
    "TransportEvent",
    "TransportFactory",
    "TransportStats",
    "WebSocketTransport",
    "create_transport",
    # Chaos
    "ChaosContext",
    "ChaosController",
    "ChaosPlugin",
    "ChaosResult",
    "ChaosTransport",
    "NetworkChaosPlugin",
    "PluginHook",
    "PluginSendResult",
    "ProtocolChaosPlugin",
    "ScheduledDuplicate",
    "StreamChaosPlugin",
    "TimingChaosPlugin",
    "create_by_intensity",
    "create_default",
    # Client
    "McpTestClient",
]
