"""Selects the transport binding for a target descriptor."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from mcpcheck.chaos import ChaosController
from mcpcheck.chaos_transport import ChaosTransport
from mcpcheck.config import TargetKind
from mcpcheck.error import TargetTypeMismatchError
from mcpcheck.stdio_transport import StdioTransport
from mcpcheck.tcp_transport import TcpTransport
from mcpcheck.transport import BaseTransport
from mcpcheck.ws_transport import WebSocketTransport

logger = logging.getLogger(__name__)

TransportCreator = Callable[[], BaseTransport]


class TransportFactory:
    """Registry of transport constructors keyed by target kind."""

    def __init__(self) -> None:
        self._creators: dict[TargetKind, TransportCreator] = {
            TargetKind.PROCESS: StdioTransport,
            TargetKind.STREAM: TcpTransport,
            TargetKind.MESSAGE: WebSocketTransport,
        }

    def register(self, kind: TargetKind, creator: TransportCreator) -> None:
        """Add or replace the constructor for a kind."""
        self._creators[TargetKind(kind)] = creator

    def supports(self, kind: TargetKind | str) -> bool:
        try:
            return TargetKind(kind) in self._creators
        except ValueError:
            return False

    def supported_kinds(self) -> list[TargetKind]:
        return list(self._creators)

    def create(self, target: Any) -> BaseTransport:
        """Build an unconnected transport for ``target``.

        Raises:
            TargetTypeMismatchError: If no binding handles the target's kind
        """
        kind = getattr(target, "kind", None)
        creator = self._creators.get(kind) if isinstance(kind, TargetKind) else None
        if creator is None:
            raise TargetTypeMismatchError(f"Unsupported transport type: {kind}")
        transport = creator()
        logger.debug("Created %s for %s target", type(transport).__name__, kind.value)
        return transport


default_factory = TransportFactory()


def create_transport(
    target: Any,
    chaos: ChaosController | None = None,
    factory: TransportFactory | None = None,
) -> BaseTransport | ChaosTransport:
    """Build a transport for ``target``, wrapped in chaos when a controller is given."""
    transport = (factory or default_factory).create(target)
    if chaos is not None:
        return ChaosTransport(transport, chaos)
    return transport
