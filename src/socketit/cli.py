"""Typer CLI entrypoint for socketit.

Commands:
  serve    — run a socketit server with the demo routes
  call     — send one request and print the result
  publish  — send one publish message
  cert     — write a self-signed certificate/key pair
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
import tempfile
from pathlib import Path
from typing import Any, Optional

import typer
import uvicorn
from rich.console import Console

from . import log_setup
from .asgi import create_status_app
from .channel import Channel
from .client import Client
from .config import ClientConfig, ServerConfig, load_config
from .errors import SocketitError
from .server import Server
from .tls import (
    create_self_signed_cert,
    load_certificate_material,
    write_certificate_material,
)

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="socketit",
    help="Request/response and publish messaging over WebSockets.",
    add_completion=False,
)
console = Console()
err_console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Demo routes
# ---------------------------------------------------------------------------


async def echo(data: Any, channel: Channel) -> Any:
    return data


async def hello(data: Any, channel: Channel) -> str:
    name = data.get("name") if isinstance(data, dict) else None
    return f"Hello, {name or 'World'}!"


DEMO_ROUTES = {"echo": echo, "hello": hello}


def _parse_data(raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", "-H", help="Bind host"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port (default 8080)"),
    path: Optional[str] = typer.Option(None, "--path", help="WebSocket path"),
    tls: bool = typer.Option(False, "--tls", help="Serve wss:// (self-signs without --cert/--key)"),
    cert: Optional[Path] = typer.Option(None, "--cert", help="PEM certificate file"),
    key: Optional[Path] = typer.Option(None, "--key", help="PEM private key file"),
    ca: Optional[Path] = typer.Option(None, "--ca", help="PEM CA bundle"),
    no_compression: bool = typer.Option(False, "--no-compression", help="Disable permessage-deflate"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON server config"),
    asgi: bool = typer.Option(False, "--asgi", help="Mount on a FastAPI app with GET /status, served by uvicorn"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", help="Directory for rotating log files"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Run a socketit server exposing the ``echo`` and ``hello`` routes."""
    log_setup.init("server", log_dir, level="DEBUG" if verbose else "INFO")
    config = load_config(ServerConfig, config_file)
    overrides: dict[str, Any] = {
        "host": host,
        "port": port,
        "path": path,
        "cert": cert,
        "key": key,
        "ca": ca,
    }
    update = {k: v for k, v in overrides.items() if v is not None}
    if tls:
        update["tls"] = True
    if no_compression:
        update["compression"] = False
    config = ServerConfig.model_validate({**config.model_dump(), **update})

    if asgi:
        asyncio.run(_serve_asgi(config))
    else:
        asyncio.run(_serve(config))


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    def _shutdown(*_: object) -> None:
        logger.info("Shutdown signal received.")
        stop_event.set()

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, _shutdown)
    else:
        signal.signal(signal.SIGTERM, _shutdown)
        signal.signal(signal.SIGINT, _shutdown)


async def _serve(config: ServerConfig) -> None:
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    server = Server(config, routes=DEMO_ROUTES)
    await server.start()
    try:
        await stop_event.wait()
        logger.info("Shutting down. Connected peers: %d", len(server.channels))
    finally:
        await server.stop()


async def _serve_asgi(config: ServerConfig) -> None:
    stop_event = asyncio.Event()
    server: Server | None = None

    def _channel_info() -> list[dict[str, Any]]:
        return server.get_channel_info() if server else []

    fastapi_app = create_status_app(_channel_info)
    server = Server(config, routes=DEMO_ROUTES, app=fastapi_app)
    await server.start()

    with tempfile.TemporaryDirectory() as tmp:
        ssl_options: dict[str, Any] = {}
        if config.tls:
            material = load_certificate_material(config.cert, config.key, config.ca)
            cert_path, key_path = write_certificate_material(material, Path(tmp))
            ssl_options = {"ssl_certfile": str(cert_path), "ssl_keyfile": str(key_path)}
            if config.ca:
                ssl_options["ssl_ca_certs"] = str(config.ca)

        uv_config = uvicorn.Config(
            app=fastapi_app,
            host=config.host,
            port=config.port,
            log_level="warning",
            loop="none",  # use the existing event loop
            ws_per_message_deflate=config.compression,
            **ssl_options,
        )
        uv_server = uvicorn.Server(uv_config)
        serve_task = asyncio.create_task(uv_server.serve())
        stop_task = asyncio.create_task(stop_event.wait())
        _install_signal_handlers(stop_event)
        logger.info(
            "socketit (ASGI) on %s://%s:%d%s  status: /status",
            "wss" if config.tls else "ws",
            config.host,
            config.port,
            config.path,
        )

        done, pending = await asyncio.wait(
            [serve_task, stop_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        await server.stop()
        if stop_task in done:
            uv_server.should_exit = True
            await serve_task
        else:
            serve_task.result()  # re-raise a bind failure
        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    logger.info("socketit ASGI server stopped.")


# ---------------------------------------------------------------------------
# call / publish
# ---------------------------------------------------------------------------


async def _open_channel(url: str, config: ClientConfig) -> tuple[Client, Channel]:
    """Connect once (no auto-reconnect) and return the open channel."""
    loop = asyncio.get_running_loop()
    outcome: asyncio.Future[Channel] = loop.create_future()

    def _connected(channel: Channel) -> None:
        if not outcome.done():
            outcome.set_result(channel)

    def _failed(exc: Exception) -> None:
        if not outcome.done():
            outcome.set_exception(SocketitError(f"Could not connect to {url}: {exc}", exc))

    client = Client(url, config)
    client.once("connected", _connected)
    client.once("error", _failed)
    try:
        channel = await asyncio.wait_for(outcome, timeout=config.open_timeout)
    except BaseException:
        await client.close()
        raise
    return client, channel


def _client_config(
    config_file: Path | None, insecure: bool, timeout: float | None
) -> ClientConfig:
    config = load_config(ClientConfig, config_file)
    update: dict[str, Any] = {"auto_reconnect": False, "ping_interval": 0}
    if insecure:
        update["verify_certificates"] = False
    if timeout is not None:
        update["request_timeout"] = timeout
    return config.model_copy(update=update)


async def _call(url: str, method: str, data: Any, config: ClientConfig) -> Any:
    client, channel = await _open_channel(url, config)
    try:
        return await channel.request(method, data, timeout=config.request_timeout)
    finally:
        await client.close()


async def _publish(url: str, method: str, data: Any, config: ClientConfig) -> None:
    client, channel = await _open_channel(url, config)
    try:
        await channel.publish(method, data)
    finally:
        await client.close()


@app.command()
def call(
    url: str = typer.Argument(..., help="Server URL, e.g. ws://localhost:8080"),
    method: str = typer.Argument(..., help="Route name"),
    data: Optional[str] = typer.Argument(None, help="JSON payload (plain strings allowed)"),
    timeout: Optional[float] = typer.Option(None, "--timeout", "-t", help="Request timeout in seconds"),
    insecure: bool = typer.Option(False, "--insecure", "-k", help="Accept any TLS certificate"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON client config"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Send one request and print its JSON result."""
    log_setup.init("client", level="DEBUG" if verbose else "WARNING")
    config = _client_config(config_file, insecure, timeout)
    try:
        result = asyncio.run(_call(url, method, _parse_data(data), config))
    except (SocketitError, TimeoutError) as exc:
        err_console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1)
    console.print_json(json.dumps(result))


@app.command()
def publish(
    url: str = typer.Argument(..., help="Server URL, e.g. ws://localhost:8080"),
    method: str = typer.Argument(..., help="Route name"),
    data: Optional[str] = typer.Argument(None, help="JSON payload (plain strings allowed)"),
    insecure: bool = typer.Option(False, "--insecure", "-k", help="Accept any TLS certificate"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON client config"),
) -> None:
    """Send one publish message (no reply is expected)."""
    log_setup.init("client", level="WARNING")
    config = _client_config(config_file, insecure, None)
    try:
        asyncio.run(_publish(url, method, _parse_data(data), config))
    except (SocketitError, TimeoutError) as exc:
        err_console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1)
    console.print(f"[green]Published[/green] {method}")


# ---------------------------------------------------------------------------
# cert
# ---------------------------------------------------------------------------


@app.command()
def cert(
    out_dir: Path = typer.Argument(..., help="Directory for cert.pem and key.pem"),
    common_name: str = typer.Option("localhost", "--common-name", "-n"),
    days: int = typer.Option(365, "--days", help="Validity in days"),
) -> None:
    """Write a self-signed RSA-2048 certificate and key."""
    material = create_self_signed_cert(common_name, days)
    cert_path, key_path = write_certificate_material(material, out_dir)
    console.print(f"[green]Certificate written to[/green] {cert_path}")
    console.print(f"[green]Private key written to[/green] {key_path}")


if __name__ == "__main__":
    app()
