"""
Tunneling-client services.

- base:    TunnelService protocol and ServiceFactory type
- control: ControlSessionService (tcp/tls, websocket, kcp/quic datagram)
"""

from .base import ServiceFactory, TunnelService
from .control import ControlSessionService

__all__ = [
    "ServiceFactory",
    "TunnelService",
    "ControlSessionService",
]
