"""Minimal observer interface shared by transports, channels, servers and clients."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    """Named-event subscription with sync or async listeners.

    Listeners run in registration order.  A coroutine returned by a listener
    is scheduled on the running loop; its failure is logged, as is any
    exception raised synchronously by a listener.  One misbehaving listener
    never stops the others from being notified.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}
        self._listener_tasks: set[asyncio.Task[Any]] = set()

    def on(self, event: str, listener: Listener) -> Listener:
        """Subscribe *listener* to *event*.  Returns the listener for chaining."""
        self._listeners.setdefault(event, []).append(listener)
        return listener

    def once(self, event: str, listener: Listener) -> Listener:
        """Subscribe *listener* for a single delivery of *event*."""

        def _wrapper(*args: Any) -> Any:
            self.off(event, _wrapper)
            return listener(*args)

        _wrapper.__wrapped__ = listener  # type: ignore[attr-defined]
        return self.on(event, _wrapper)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        for registered in listeners:
            if registered == listener or getattr(registered, "__wrapped__", None) == listener:
                listeners.remove(registered)
                break
        if not listeners:
            del self._listeners[event]

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, *args: Any) -> bool:
        """Notify every listener of *event*.  Returns True if any were registered."""
        listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            try:
                result = listener(*args)
            except Exception:
                logger.exception("Listener for '%s' raised", event)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._listener_tasks.add(task)
                task.add_done_callback(self._listener_done(event))
        return bool(listeners)

    def _listener_done(self, event: str) -> Callable[[asyncio.Task[Any]], None]:
        def _done(task: asyncio.Task[Any]) -> None:
            self._listener_tasks.discard(task)
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                logger.error(
                    "Async listener for '%s' failed: %s", event, exc, exc_info=exc
                )

        return _done
