"""Pytest configuration and fixtures."""

import asyncio
import socket

import pytest

from socketit.transport import Transport


class MemoryTransport(Transport):
    """In-process transport; frames sent on one end arrive at its peer."""

    def __init__(self, is_open=True):
        super().__init__()
        self.peer = None
        self.sent = []
        self._open = is_open
        self._started = False
        self._backlog = []

    @property
    def is_open(self):
        return self._open and not self._close_emitted

    def start(self):
        self._started = True
        backlog, self._backlog = self._backlog, []
        for text in backlog:
            self.emit("message", text)

    def deliver(self, text):
        """Inject an inbound frame as if the peer had sent it."""
        if self._started:
            self.emit("message", text)
        else:
            self._backlog.append(text)

    def open(self):
        self._open = True
        self.emit("open")

    async def send(self, text):
        if not self.is_open:
            raise ConnectionError("transport closed")
        self.sent.append(text)
        if self.peer is not None:
            asyncio.get_running_loop().call_soon(self.peer.deliver, text)

    async def close(self, code=1000, reason=""):
        self.drop(code, reason)
        if self.peer is not None:
            self.peer.drop(code, reason)

    def drop(self, code=1006, reason=""):
        self._open = False
        self._emit_close(code, reason)

    def fail(self, exc):
        self.emit("error", exc)


def memory_pair():
    """Return two linked open transports."""
    left, right = MemoryTransport(), MemoryTransport()
    left.peer, right.peer = right, left
    return left, right


@pytest.fixture
def transport_pair():
    return memory_pair()


@pytest.fixture
def free_port():
    """An ephemeral port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
