"""socketit — request/response and publish messaging over WebSockets.

Exports the building blocks most applications need:
  - Server   — accepts connections, one Channel per peer
  - Client   — single auto-reconnecting connection with periodic pings
  - Channel  — per-connection request correlation and route dispatch
  - ServerConfig / ClientConfig — settings models
"""

from . import log_setup
from .channel import Channel
from .client import Client
from .config import ClientConfig, ServerConfig
from .errors import (
    ChannelClosedError,
    HandlerError,
    MethodNotFoundError,
    NotConnectedError,
    ProtocolError,
    RemoteError,
    RequestTimeoutError,
    SocketitError,
)
from .server import Server
from .transport import Transport, WebSocketTransport

__version__ = "0.1.0"
__all__ = [
    "log_setup",
    "Channel",
    "Client",
    "ClientConfig",
    "ServerConfig",
    "Server",
    "Transport",
    "WebSocketTransport",
    "SocketitError",
    "NotConnectedError",
    "RequestTimeoutError",
    "ChannelClosedError",
    "ProtocolError",
    "RemoteError",
    "MethodNotFoundError",
    "HandlerError",
]
