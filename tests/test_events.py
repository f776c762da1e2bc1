"""Tests for the EventEmitter observer interface."""

import asyncio

import pytest

from socketit.events import EventEmitter


def test_listeners_receive_arguments_in_order():
    emitter = EventEmitter()
    calls = []
    emitter.on("x", lambda a, b: calls.append(("first", a, b)))
    emitter.on("x", lambda a, b: calls.append(("second", a, b)))

    assert emitter.emit("x", 1, 2) is True
    assert calls == [("first", 1, 2), ("second", 1, 2)]


def test_emit_without_listeners_returns_false():
    assert EventEmitter().emit("nothing") is False


def test_once_fires_a_single_time():
    emitter = EventEmitter()
    calls = []
    emitter.once("x", calls.append)
    emitter.emit("x", 1)
    emitter.emit("x", 2)
    assert calls == [1]
    assert emitter.listener_count("x") == 0


def test_off_removes_once_listener_by_original():
    emitter = EventEmitter()
    calls = []
    emitter.once("x", calls.append)
    emitter.off("x", calls.append)
    emitter.emit("x", 1)
    assert calls == []


def test_failing_listener_does_not_block_others(caplog):
    emitter = EventEmitter()
    calls = []

    def _boom(_):
        raise RuntimeError("listener failure")

    emitter.on("x", _boom)
    emitter.on("x", calls.append)
    emitter.emit("x", 7)

    assert calls == [7]
    assert "listener failure" in caplog.text


def test_remove_all_listeners():
    emitter = EventEmitter()
    emitter.on("a", print)
    emitter.on("b", print)
    emitter.remove_all_listeners("a")
    assert emitter.listener_count("a") == 0
    assert emitter.listener_count("b") == 1
    emitter.remove_all_listeners()
    assert emitter.listener_count("b") == 0


@pytest.mark.asyncio
async def test_async_listener_is_scheduled():
    emitter = EventEmitter()
    seen = asyncio.Event()

    async def _listener(value):
        assert value == "v"
        seen.set()

    emitter.on("x", _listener)
    emitter.emit("x", "v")
    await asyncio.wait_for(seen.wait(), timeout=1)


def test_off_removes_bound_method_listener():
    class _Sink:
        def __init__(self):
            self.seen = []

        def handle(self, value):
            self.seen.append(value)

    emitter = EventEmitter()
    sink = _Sink()
    emitter.on("x", sink.handle)
    emitter.off("x", sink.handle)
    emitter.emit("x", 1)
    assert sink.seen == []
    assert emitter.listener_count("x") == 0
