"""Transport — the duplex text-frame connection a Channel runs on.

A transport exposes readiness (``is_open``), ``send``/``close`` coroutines and
four events:

  - ``open``                 — the connection became usable
  - ``message(text)``        — one inbound frame, in arrival order
  - ``close(code, reason)``  — emitted exactly once when the connection ends
  - ``error(exc)``           — an unexpected failure or a dropped connection;
                               always followed by ``close``

Frames are not delivered until ``start()`` is called, so the owner can
subscribe first without racing the reader.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from .events import EventEmitter

logger = logging.getLogger(__name__)

ABNORMAL_CLOSURE = 1006


class Transport(EventEmitter, ABC):
    """Abstract duplex frame connection."""

    def __init__(self) -> None:
        super().__init__()
        self._closed_event = asyncio.Event()
        self._close_emitted = False

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while frames can be sent."""

    @abstractmethod
    async def send(self, text: str) -> None:
        """Send one text frame."""

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Begin closing the connection.  Safe to call more than once."""

    def start(self) -> None:
        """Begin delivering inbound frames to ``message`` listeners."""

    async def wait_closed(self) -> None:
        """Block until ``close`` has been emitted."""
        await self._closed_event.wait()

    def _emit_close(self, code: int, reason: str) -> None:
        if self._close_emitted:
            return
        self._close_emitted = True
        self._closed_event.set()
        self.emit("close", code, reason)


class WebSocketTransport(Transport):
    """Transport over a ``websockets`` asyncio connection (client or server)."""

    def __init__(self, ws: Any) -> None:
        super().__init__()
        self._ws = ws
        self._reader: asyncio.Task[None] | None = None

    @property
    def connection(self) -> Any:
        return self._ws

    @property
    def is_open(self) -> bool:
        return not self._close_emitted and self._ws.state is State.OPEN

    def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.create_task(self._read_loop())

    async def send(self, text: str) -> None:
        await self._ws.send(text)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self._ws.close(code=code, reason=reason)

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="replace")
                self.emit("message", raw)
        except ConnectionClosed as exc:
            # No close frame from the peer: the connection was lost, not closed.
            if exc.rcvd is None:
                logger.warning("WebSocket connection lost: %s", exc)
                self.emit("error", exc)
        except Exception as exc:
            logger.warning("WebSocket read failed: %s", exc)
            self.emit("error", exc)
        finally:
            code = self._ws.close_code
            reason = self._ws.close_reason or ""
            self._emit_close(ABNORMAL_CLOSURE if code is None else code, reason)
