"""Host socketit inside an externally owned FastAPI application.

The application (and whatever ASGI server runs it) stays under its owner's
control; the socketit Server only registers a WebSocket route on it::

    app = FastAPI()
    server = Server(ServerConfig(path="/ws"), app=app, routes={"echo": echo})
    await server.start()          # returns immediately
    # uvicorn.run(app, ...)       # owner serves the app
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, WebSocket
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketState

from .transport import ABNORMAL_CLOSURE, Transport

if TYPE_CHECKING:
    from .server import Server

logger = logging.getLogger(__name__)

TRY_AGAIN_LATER = 1013


class StarletteTransport(Transport):
    """Transport over an accepted FastAPI/Starlette ``WebSocket``."""

    def __init__(self, websocket: WebSocket) -> None:
        super().__init__()
        self._ws = websocket
        self._reader: asyncio.Task[None] | None = None

    @property
    def is_open(self) -> bool:
        return (
            not self._close_emitted
            and self._ws.client_state is WebSocketState.CONNECTED
            and self._ws.application_state is WebSocketState.CONNECTED
        )

    def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.create_task(self._read_loop())

    async def send(self, text: str) -> None:
        await self._ws.send_text(text)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._ws.application_state is not WebSocketState.CONNECTED:
            return
        await self._ws.close(code=code, reason=reason or None)

    async def _read_loop(self) -> None:
        code, reason = ABNORMAL_CLOSURE, ""
        try:
            while True:
                message = await self._ws.receive()
                if message["type"] == "websocket.disconnect":
                    code = message.get("code", 1000)
                    reason = message.get("reason") or ""
                    break
                text = message.get("text")
                if text is None:
                    text = (message.get("bytes") or b"").decode("utf-8", errors="replace")
                self.emit("message", text)
        except Exception as exc:
            logger.warning("ASGI WebSocket read failed: %s", exc)
            self.emit("error", exc)
        finally:
            self._emit_close(code, reason)


def mount(server: Server, app: FastAPI, path: str) -> None:
    """Register *server*'s acceptor as a WebSocket route at *path* on *app*."""

    async def _endpoint(websocket: WebSocket) -> None:
        if not server.accepting:
            await websocket.close(code=TRY_AGAIN_LATER)
            return
        await websocket.accept()
        transport = StarletteTransport(websocket)
        await server.serve_transport(transport, websocket)

    app.add_api_websocket_route(path, _endpoint)
    logger.info("socketit acceptor mounted at %s", path)


def create_status_app(
    get_channels: Callable[[], list[dict[str, Any]]],
    *,
    title: str = "socketit",
) -> FastAPI:
    """Return a FastAPI app exposing ``GET /status`` for a running server."""
    app = FastAPI(title=title, docs_url=None, redoc_url=None)

    @app.get("/status")
    async def get_status() -> JSONResponse:
        channels = get_channels()
        return JSONResponse({"running": True, "connections": len(channels), "channels": channels})

    return app
