"""Channel — the per-connection request/response and publish engine.

A Channel wraps exactly one Transport for its whole life:

  - outbound ``request`` frames are correlated with their ``response`` by id,
    each with its own timeout
  - inbound ``request``/``publish`` frames are dispatched to the route table;
    requests always get exactly one response (200, 404 or 500)
  - transport lifecycle is re-emitted as ``connected``, ``disconnected(code,
    reason)`` and ``error(exc)``

Once the transport closes, the Channel is inert and must not be reused; a
reconnect produces a brand-new Channel.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Union

from . import wire
from .errors import (
    ChannelClosedError,
    HandlerError,
    MethodNotFoundError,
    NotConnectedError,
    ProtocolError,
    RemoteError,
    RequestTimeoutError,
)
from .events import EventEmitter
from .models import PublishMessage, RequestMessage, ResponseMessage, StatusCode
from .transport import ABNORMAL_CLOSURE, Transport

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0  # seconds

Handler = Callable[[Any, "Channel"], Union[Any, Awaitable[Any]]]


async def _pong(data: Any, channel: Channel) -> str:
    return "pong"


class Channel(EventEmitter):
    """Protocol engine bound to one transport."""

    def __init__(
        self,
        transport: Transport,
        routes: Mapping[str, Handler] | None = None,
    ) -> None:
        super().__init__()
        self._transport = transport
        self.routes: dict[str, Handler] = {"ping": _pong, **(routes or {})}
        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._handler_tasks: set[asyncio.Task[None]] = set()
        self._closed = False

        transport.on("message", self._on_message)
        transport.on("close", self._on_close)
        transport.on("error", self._on_error)
        transport.on("open", self._on_open)

        if transport.is_open:
            self._on_open()
        transport.start()

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def is_online(self) -> bool:
        return not self._closed and self._transport.is_open

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Transport lifecycle
    # ------------------------------------------------------------------

    def _on_open(self) -> None:
        self.emit("connected")

    def _on_close(self, code: int, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        self._transport.remove_all_listeners()
        self._abandon_pending(code, reason)
        logger.debug("Channel disconnected (code=%s reason=%r)", code, reason)
        self.emit("disconnected", code, reason)

    def _on_error(self, exc: Exception) -> None:
        if self._closed:
            return
        self.emit("error", exc)
        self._on_close(ABNORMAL_CLOSURE, str(exc))

    def _abandon_pending(self, code: int, reason: str) -> None:
        pending, self._pending = self._pending, {}
        for fut in pending.values():
            if not fut.done():
                fut.set_exception(
                    ChannelClosedError(
                        f"Channel closed before response arrived (code={code} reason={reason!r})"
                    )
                )

    # ------------------------------------------------------------------
    # Incoming frame dispatch
    # ------------------------------------------------------------------

    def _on_message(self, raw: str) -> None:
        try:
            message = wire.parse_message(raw)
        except ProtocolError as exc:
            logger.warning("Dropping malformed frame (%s): %.200s", exc, raw)
            return

        if isinstance(message, ResponseMessage):
            self._settle(message)
            return

        task = asyncio.create_task(self._dispatch(message))
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_tasks.discard)

    def _settle(self, resp: ResponseMessage) -> None:
        fut = self._pending.pop(str(resp.ack), None)
        if fut is None or fut.done():
            logger.debug("Dropping response for unknown or expired id %s", resp.ack)
            return
        if resp.ok:
            fut.set_result(resp.data)
        elif resp.code == StatusCode.NOT_FOUND:
            fut.set_exception(MethodNotFoundError(resp.code, resp.error_message, resp.data))
        elif resp.code == StatusCode.HANDLER_ERROR:
            fut.set_exception(HandlerError(resp.code, resp.error_message, resp.data))
        else:
            fut.set_exception(RemoteError(resp.code, resp.error_message, resp.data))

    async def _dispatch(self, message: RequestMessage | PublishMessage) -> None:
        is_request = isinstance(message, RequestMessage)
        handler = self.routes.get(message.method)

        if handler is None:
            if is_request:
                await self._reply(
                    wire.build_error(
                        message.id,
                        StatusCode.NOT_FOUND,
                        f"Method '{message.method}' not found",
                    )
                )
            else:
                logger.debug("No route for published method '%s'", message.method)
            return

        try:
            result = handler(message.data, self)
            if inspect.isawaitable(result):
                result = await result
            if not is_request:
                return
            frame = wire.build_success(message.id, result)
        except Exception as exc:
            if not is_request:
                logger.debug("Publish handler '%s' failed: %s", message.method, exc)
                return
            logger.debug("Route handler '%s' failed: %s", message.method, exc)
            frame = wire.build_error(
                message.id,
                StatusCode.HANDLER_ERROR,
                str(exc) or type(exc).__name__,
            )
        await self._reply(frame)

    async def _reply(self, frame: str) -> None:
        try:
            await self._send(frame)
        except Exception as exc:
            logger.warning("Failed to send response: %s", exc)

    # ------------------------------------------------------------------
    # Outgoing
    # ------------------------------------------------------------------

    async def _send(self, frame: str) -> None:
        if not self.is_online:
            raise NotConnectedError("WebSocket is not open")
        await self._transport.send(frame)

    async def request(
        self,
        method: str,
        data: Any = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> Any:
        """Call *method* on the peer and return its result.

        Raises :class:`NotConnectedError` if the transport is not open,
        :class:`RequestTimeoutError` after *timeout* seconds without a
        response, :class:`MethodNotFoundError` / :class:`HandlerError` for
        404 / 500 responses and :class:`ChannelClosedError` if the channel
        closes first.
        """
        if not self.is_online:
            raise NotConnectedError("WebSocket is not open")

        request_id = wire.new_request_id()
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[Any] = loop.create_future()
        self._pending[request_id] = fut
        try:
            await self._send(wire.build_request(method, data, request_id=request_id))
        except NotConnectedError:
            self._discard(request_id, fut)
            raise
        except Exception as exc:
            self._discard(request_id, fut)
            raise NotConnectedError(f"Failed to send request: {exc}", exc) from exc

        timer = loop.call_later(timeout, self._expire, request_id, timeout)
        try:
            return await fut
        finally:
            timer.cancel()
            self._pending.pop(request_id, None)

    def _discard(self, request_id: str, fut: asyncio.Future[Any]) -> None:
        # The channel may have closed mid-send and already failed this future.
        self._pending.pop(request_id, None)
        if fut.done():
            fut.exception()
        else:
            fut.cancel()

    def _expire(self, request_id: str, timeout: float) -> None:
        fut = self._pending.pop(request_id, None)
        if fut is not None and not fut.done():
            fut.set_exception(RequestTimeoutError(timeout))

    async def publish(self, method: str, data: Any = None) -> None:
        """Send a fire-and-forget message.  Failures are logged, never raised."""
        try:
            await self._send(wire.build_publish(method, data))
        except Exception as exc:
            logger.error("Failed to publish '%s': %s", method, exc)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self._transport.close(code, reason)
