"""Client — one logical socketit connection that survives reconnects.

State machine::

    connecting -> open -> (closed | errored) -> [reconnect delay] -> connecting ...

Only a manual ``close()`` stops the cycle.  Every successful open yields a
fresh :class:`Channel`; channels from earlier connections are never reused.

Events:
  - ``connected(channel)``
  - ``disconnected(code, reason)`` — also after a failed connection attempt
  - ``error(exc)``
  - ``reconnecting(delay)``        — a new attempt is scheduled
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from collections.abc import Mapping

from websockets.asyncio.client import connect
from websockets.exceptions import WebSocketException

from .channel import Channel, Handler
from .config import ClientConfig
from .errors import SocketitError
from .events import EventEmitter
from .tls import client_ssl_context
from .transport import ABNORMAL_CLOSURE, WebSocketTransport

logger = logging.getLogger(__name__)


class Client(EventEmitter):
    """Auto-reconnecting socketit client.

    Must be constructed while an event loop is running: construction
    schedules the first connection attempt.
    """

    def __init__(
        self,
        url: str,
        config: ClientConfig | None = None,
        *,
        routes: Mapping[str, Handler] | None = None,
    ) -> None:
        super().__init__()
        self.url = url
        self.config = config or ClientConfig()
        self.routes: dict[str, Handler] = dict(routes or {})
        self.channel: Channel | None = None
        self._transport: WebSocketTransport | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._ping_task: asyncio.Task[None] | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._manual_close = False
        self._connected_event = asyncio.Event()
        self.connect()

    @property
    def is_connected(self) -> bool:
        return self.channel is not None and self.channel.is_online

    # ------------------------------------------------------------------
    # Connecting
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Start a connection attempt unless one is already outstanding."""
        self._cancel_reconnect()
        if self._connect_task is not None and not self._connect_task.done():
            return
        if self._transport is not None:
            return
        self._connect_task = asyncio.get_running_loop().create_task(self._attempt())

    def _ssl_context(self) -> ssl.SSLContext | None:
        if not self.url.startswith("wss://"):
            return None
        return client_ssl_context(self.config.verify_certificates, self.config.ca)

    async def _attempt(self) -> None:
        logger.info("Connecting to %s", self.url)
        try:
            ws = await connect(
                self.url,
                ssl=self._ssl_context(),
                compression="deflate" if self.config.compression else None,
                ping_interval=None,
                open_timeout=self.config.open_timeout,
            )
        except (OSError, TimeoutError, WebSocketException) as exc:
            logger.warning("Could not connect to %s: %s", self.url, exc)
            self.emit("error", exc)
            self._on_disconnected(None, ABNORMAL_CLOSURE, str(exc))
            return
        except Exception as exc:
            logger.exception("Unexpected failure connecting to %s", self.url)
            self.emit("error", exc)
            self._on_disconnected(None, ABNORMAL_CLOSURE, str(exc) or type(exc).__name__)
            return

        self._manual_close = False
        transport = WebSocketTransport(ws)
        self._transport = transport
        channel = Channel(transport, self.routes)
        self.channel = channel
        channel.on("disconnected", lambda code, reason: self._on_disconnected(transport, code, reason))
        channel.on("error", lambda exc: self.emit("error", exc))
        logger.info("Connected to %s", self.url)
        self._connected_event.set()
        self.emit("connected", channel)
        if self.config.ping_interval:
            self._start_ping(channel)

    async def wait_connected(self, timeout: float | None = None) -> Channel:
        """Wait until a channel is open and return it."""
        while True:
            channel = self.channel
            if channel is not None and channel.is_online:
                return channel
            self._connected_event.clear()
            await asyncio.wait_for(self._connected_event.wait(), timeout=timeout)

    # ------------------------------------------------------------------
    # Disconnect / reconnect
    # ------------------------------------------------------------------

    def _on_disconnected(
        self, transport: WebSocketTransport | None, code: int, reason: str
    ) -> None:
        if transport is not self._transport:
            return  # a superseded connection
        self._transport = None
        self.channel = None
        self._connected_event.clear()
        self._stop_ping()
        self.emit("disconnected", code, reason)

        if self._manual_close or not self.config.auto_reconnect:
            return
        delay = self.config.reconnect_interval
        logger.warning("Disconnected from %s. Reconnecting in %.1fs…", self.url, delay)
        self._cancel_reconnect()
        self._reconnect_handle = asyncio.get_running_loop().call_later(delay, self.connect)
        self.emit("reconnecting", delay)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    # ------------------------------------------------------------------
    # Health check
    # ------------------------------------------------------------------

    def _start_ping(self, channel: Channel) -> None:
        self._stop_ping()
        self._ping_task = asyncio.create_task(self._ping_loop(channel))

    def _stop_ping(self) -> None:
        task, self._ping_task = self._ping_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _ping_loop(self, channel: Channel) -> None:
        interval = self.config.ping_interval
        while True:
            await asyncio.sleep(interval)
            if channel is not self.channel:
                return
            if not channel.is_online:
                continue
            try:
                await channel.request("ping", None, timeout=interval / 2)
            except SocketitError as exc:
                if channel is not self.channel:
                    return
                logger.warning("Ping to %s failed (%s); closing connection.", self.url, exc)
                await channel.close()
                return

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the connection and stop reconnecting.  Idempotent."""
        self._manual_close = True
        self._stop_ping()
        self._cancel_reconnect()
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
            try:
                await self._connect_task
            except asyncio.CancelledError:
                pass
        channel = self.channel
        if channel is not None:
            await channel.close()
            await channel.transport.wait_closed()
