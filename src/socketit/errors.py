"""Exception hierarchy raised to callers of the socketit API."""

from __future__ import annotations

from typing import Any


class SocketitError(Exception):
    """Base exception for every socketit failure."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class NotConnectedError(SocketitError):
    """A frame was sent while the transport was not open."""


class RequestTimeoutError(SocketitError):
    """No response arrived before the request timeout expired."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Request timed out after {int(timeout * 1000)}ms")
        self.timeout = timeout


class ChannelClosedError(SocketitError):
    """The channel closed while a request was still waiting for its response."""


class ProtocolError(SocketitError):
    """A frame could not be parsed as a socketit message."""


class RemoteError(SocketitError):
    """The peer answered a request with a non-success status code."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


class MethodNotFoundError(RemoteError):
    """The peer has no route registered for the requested method (404)."""


class HandlerError(RemoteError):
    """The peer's route handler raised while serving the request (500)."""
