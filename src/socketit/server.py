"""Server — accepts WebSocket connections and wraps each one in a Channel.

The server keeps the live set of Channels (a channel leaves the set when it
disconnects) and re-emits:

  - ``listening(port)``             — the endpoint is accepting connections
  - ``connection(channel, request)`` — a new peer; *request* is the HTTP
                                      upgrade request (or the ASGI WebSocket)
  - ``error(exc)``                  — the endpoint failed to start
"""

from __future__ import annotations

import logging
import socket
from collections.abc import Mapping
from typing import Any

from fastapi import FastAPI
from websockets.asyncio.server import Server as _WebSocketServer
from websockets.asyncio.server import ServerConnection, serve

from . import asgi
from .channel import Channel, Handler
from .config import ServerConfig
from .events import EventEmitter
from .tls import load_certificate_material, server_ssl_context
from .transport import Transport, WebSocketTransport

logger = logging.getLogger(__name__)

SHUTDOWN_CODE = 1001


class Server(EventEmitter):
    """Multi-connection socketit endpoint."""

    def __init__(
        self,
        config: ServerConfig | None = None,
        *,
        routes: Mapping[str, Handler] | None = None,
        app: FastAPI | None = None,
        sock: socket.socket | None = None,
    ) -> None:
        super().__init__()
        self.config = config or ServerConfig()
        self.routes: dict[str, Handler] = dict(routes or {})
        self.channels: set[Channel] = set()
        self._app = app
        self._sock = sock
        self._ws_server: _WebSocketServer | None = None
        self._mounted = False
        self.accepting = False

    @property
    def port(self) -> int | None:
        """Port actually bound, or None for an external app / before start."""
        if self._ws_server is None:
            return None
        for sock in self._ws_server.sockets:
            return sock.getsockname()[1]
        return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Bring up the endpoint.  Raises ``OSError`` if the port cannot bind."""
        if self._app is not None:
            if not self._mounted:
                asgi.mount(self, self._app, self.config.path)
                self._mounted = True
            self.accepting = True
            return

        ssl_context = None
        if self.config.tls:
            material = load_certificate_material(
                self.config.cert, self.config.key, self.config.ca
            )
            ssl_context = server_ssl_context(material)

        compression = "deflate" if self.config.compression else None
        try:
            if self._sock is not None:
                self._ws_server = await serve(
                    self._handle_connection,
                    sock=self._sock.dup(),
                    ssl=ssl_context,
                    compression=compression,
                    process_request=self._check_path,
                )
            else:
                self._ws_server = await serve(
                    self._handle_connection,
                    self.config.host,
                    self.config.port,
                    ssl=ssl_context,
                    compression=compression,
                    process_request=self._check_path,
                )
        except OSError as exc:
            logger.error(
                "Could not listen on %s:%d: %s", self.config.host, self.config.port, exc
            )
            self.emit("error", exc)
            raise

        self.accepting = True
        scheme = "wss" if ssl_context else "ws"
        logger.info(
            "socketit listening on %s://%s:%s%s",
            scheme,
            self.config.host,
            self.port,
            self.config.path,
        )
        self.emit("listening", self.port)

    async def stop(self) -> None:
        """Stop accepting, close live channels, then release the endpoint.

        An externally owned app or socket is left to its owner.  The first
        error encountered is re-raised after every step has been attempted.
        """
        first_error: BaseException | None = None
        self.accepting = False

        ws_server, self._ws_server = self._ws_server, None
        if ws_server is not None:
            ws_server.close(close_connections=False)

        for channel in list(self.channels):
            try:
                await channel.close(SHUTDOWN_CODE, "server shutting down")
            except Exception as exc:
                logger.warning("Error closing channel during shutdown: %s", exc)
                first_error = first_error or exc

        if ws_server is not None:
            try:
                await ws_server.wait_closed()
            except Exception as exc:
                logger.warning("Error closing listener: %s", exc)
                first_error = first_error or exc

        logger.info("socketit server stopped.")
        if first_error is not None:
            raise first_error

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def _check_path(self, connection: ServerConnection, request: Any) -> Any:
        if not self.accepting:
            return connection.respond(503, "Server shutting down\n")
        if self.config.path not in ("", "/") and request.path.split("?", 1)[0] != self.config.path:
            return connection.respond(404, "Not Found\n")
        return None

    async def _handle_connection(self, ws: ServerConnection) -> None:
        await self.serve_transport(WebSocketTransport(ws), ws.request)

    async def serve_transport(self, transport: Transport, request: Any) -> None:
        """Wrap *transport* in a Channel and hold it until it closes."""
        channel = Channel(transport, self.routes)
        self.channels.add(channel)
        channel.on("disconnected", lambda code, reason: self._forget(channel, code, reason))
        logger.info("Peer connected (total=%d)", len(self.channels))
        self.emit("connection", channel, request)
        await transport.wait_closed()

    def _forget(self, channel: Channel, code: int, reason: str) -> None:
        self.channels.discard(channel)
        logger.info(
            "Peer disconnected (code=%s reason=%r total=%d)",
            code,
            reason,
            len(self.channels),
        )

    def get_channel_info(self) -> list[dict[str, Any]]:
        return [
            {
                "online": channel.is_online,
                "pending": channel.pending_count,
                "remote": _remote_address(channel),
            }
            for channel in self.channels
        ]


def _remote_address(channel: Channel) -> str | None:
    transport = channel.transport
    if isinstance(transport, WebSocketTransport):
        address = transport.connection.remote_address
        if address:
            return f"{address[0]}:{address[1]}"
    return None
