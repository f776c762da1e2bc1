"""Tests for the Channel protocol engine over in-memory transports."""

import asyncio
import gc
import json
import logging

import pytest

from socketit import wire
from socketit.channel import Channel
from socketit.errors import (
    ChannelClosedError,
    HandlerError,
    MethodNotFoundError,
    NotConnectedError,
    RemoteError,
    RequestTimeoutError,
)

from .conftest import MemoryTransport, memory_pair


def _channels(server_routes=None, client_routes=None):
    left, right = memory_pair()
    return Channel(left, client_routes), Channel(right, server_routes)


async def _identity(data, channel):
    return data


class TestRequest:
    @pytest.mark.asyncio
    async def test_echo_resolves_with_payload(self):
        client, _ = _channels(server_routes={"echo": _identity})
        assert await client.request("echo", {"a": 1}) == {"a": 1}
        assert client.pending_count == 0

    @pytest.mark.asyncio
    async def test_sync_handler(self):
        client, _ = _channels(server_routes={"add": lambda data, ch: data["x"] + data["y"]})
        assert await client.request("add", {"x": 2, "y": 3}) == 5

    @pytest.mark.asyncio
    async def test_builtin_ping(self):
        client, _ = _channels()
        assert await client.request("ping") == "pong"

    @pytest.mark.asyncio
    async def test_ping_can_be_overridden(self):
        client, _ = _channels(server_routes={"ping": lambda data, ch: "custom"})
        assert await client.request("ping") == "custom"

    @pytest.mark.asyncio
    async def test_unknown_method_is_not_found(self):
        client, _ = _channels()
        with pytest.raises(MethodNotFoundError, match="reverse") as info:
            await client.request("reverse", "abc")
        assert info.value.code == 404
        assert str(info.value) == "Method 'reverse' not found"

    @pytest.mark.asyncio
    async def test_handler_failure_carries_message(self):
        async def _boom(data, channel):
            raise ValueError("boom")

        client, _ = _channels(server_routes={"boom": _boom})
        with pytest.raises(HandlerError) as info:
            await client.request("boom")
        assert str(info.value) == "boom"
        assert info.value.code == 500

    @pytest.mark.asyncio
    async def test_handler_failure_without_text_uses_class_name(self):
        def _bare(data, channel):
            raise KeyError()

        client, _ = _channels(server_routes={"bare": _bare})
        with pytest.raises(HandlerError, match="KeyError"):
            await client.request("bare")

    @pytest.mark.asyncio
    async def test_unserialisable_result_is_handler_error(self):
        client, _ = _channels(server_routes={"obj": lambda data, ch: object()})
        with pytest.raises(HandlerError):
            await client.request("obj")

    @pytest.mark.asyncio
    async def test_concurrent_requests_match_by_id(self):
        async def _delayed(data, channel):
            await asyncio.sleep(data["delay"])
            return data["tag"]

        client, _ = _channels(server_routes={"delayed": _delayed})
        delays = [0.05, 0.0, 0.03, 0.01, 0.04]
        results = await asyncio.gather(
            *(
                client.request("delayed", {"delay": d, "tag": i})
                for i, d in enumerate(delays)
            )
        )
        assert results == list(range(len(delays)))
        assert client.pending_count == 0

    @pytest.mark.asyncio
    async def test_handler_can_call_back_on_same_channel(self):
        async def _ask_back(data, channel):
            return await channel.request("whoami")

        client, _ = _channels(
            server_routes={"ask_back": _ask_back},
            client_routes={"whoami": lambda data, ch: "client"},
        )
        assert await client.request("ask_back") == "client"

    @pytest.mark.asyncio
    async def test_other_status_codes_are_remote_errors(self):
        transport = MemoryTransport()
        channel = Channel(transport)
        call = asyncio.create_task(channel.request("m"))
        await asyncio.sleep(0)
        request_id = json.loads(transport.sent[0])["id"]
        transport.deliver(
            json.dumps({"type": "response", "ack": request_id, "code": 418, "data": {"message": "teapot"}})
        )
        with pytest.raises(RemoteError, match="teapot") as info:
            await call
        assert info.value.code == 418


class TestTimeout:
    @pytest.mark.asyncio
    async def test_request_times_out_and_late_response_is_ignored(self):
        transport = MemoryTransport()
        channel = Channel(transport)

        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(RequestTimeoutError, match="timed out after 50ms"):
            await channel.request("slow", timeout=0.05)
        assert loop.time() - started >= 0.049
        assert channel.pending_count == 0

        request_id = json.loads(transport.sent[0])["id"]
        transport.deliver(wire.build_success(request_id, "too late"))
        await asyncio.sleep(0)
        assert channel.pending_count == 0

    @pytest.mark.asyncio
    async def test_response_cancels_timer(self):
        client, _ = _channels(server_routes={"echo": _identity})
        assert await client.request("echo", 1, timeout=0.05) == 1
        # the timer must not fire into a settled call
        await asyncio.sleep(0.08)
        assert client.pending_count == 0

    @pytest.mark.asyncio
    async def test_unknown_ack_is_dropped(self):
        transport = MemoryTransport()
        channel = Channel(transport)
        transport.deliver(wire.build_success("forged", 1))
        await asyncio.sleep(0)
        assert channel.is_online


class TestNotConnected:
    @pytest.mark.asyncio
    async def test_request_fails_immediately(self):
        channel = Channel(MemoryTransport(is_open=False))
        with pytest.raises(NotConnectedError):
            await channel.request("echo", timeout=10)
        assert channel.pending_count == 0

    @pytest.mark.asyncio
    async def test_close_during_send_leaves_no_unretrieved_failure(self):
        class _DropsOnSend(MemoryTransport):
            async def send(self, text):
                self.drop(1006, "reset")
                raise ConnectionError("reset during send")

        unhandled = []
        loop = asyncio.get_running_loop()
        loop.set_exception_handler(lambda _loop, context: unhandled.append(context))
        try:
            channel = Channel(_DropsOnSend())
            with pytest.raises(NotConnectedError):
                await channel.request("m")
            assert channel.pending_count == 0
            del channel
            gc.collect()
            assert unhandled == []
        finally:
            loop.set_exception_handler(None)

    @pytest.mark.asyncio
    async def test_publish_failure_is_logged_not_raised(self, caplog):
        channel = Channel(MemoryTransport(is_open=False))
        with caplog.at_level(logging.ERROR, logger="socketit.channel"):
            await channel.publish("news", 1)
        assert "Failed to publish 'news'" in caplog.text


class TestPublish:
    @pytest.mark.asyncio
    async def test_publish_runs_peer_handler_without_pending_entry(self):
        received = asyncio.Event()
        seen = []

        def _news(data, channel):
            seen.append(data)
            received.set()

        client, _ = _channels(server_routes={"news": _news})
        await client.publish("news", {"headline": "hi"})
        assert client.pending_count == 0

        await asyncio.wait_for(received.wait(), timeout=1)
        assert seen == [{"headline": "hi"}]

    @pytest.mark.asyncio
    async def test_publish_never_answers(self):
        def _fails(data, ch):
            raise RuntimeError("ignored too")

        transport = MemoryTransport()
        Channel(transport, {"news": lambda data, ch: "ignored", "fails": _fails})
        transport.deliver(wire.build_publish("news", 1))
        transport.deliver(wire.build_publish("fails", 2))
        transport.deliver(wire.build_publish("unknown", 3))
        await asyncio.sleep(0.01)
        assert transport.sent == []


class TestMalformedFrames:
    @pytest.mark.asyncio
    async def test_malformed_frame_is_dropped(self, caplog):
        client, server = _channels(server_routes={"echo": _identity})
        with caplog.at_level(logging.WARNING, logger="socketit.channel"):
            server.transport.deliver("{not json")
            server.transport.deliver('{"type": "request", "method": "echo"}')
            await asyncio.sleep(0)
        assert "Dropping malformed frame" in caplog.text
        assert server.is_online
        assert await client.request("echo", "still works") == "still works"

    @pytest.mark.asyncio
    async def test_response_without_code_does_not_settle(self):
        transport = MemoryTransport()
        channel = Channel(transport)
        call = asyncio.ensure_future(channel.request("m", timeout=0.1))
        await asyncio.sleep(0)

        request_id = json.loads(transport.sent[0])["id"]
        transport.deliver(json.dumps({"type": "response", "ack": request_id}))
        with pytest.raises(RequestTimeoutError):
            await call


class TestLifecycle:
    def test_connected_fires_for_already_open_transport(self):
        class _Recording(Channel):
            def __init__(self, transport):
                self.seen = []
                super().__init__(transport)

            def emit(self, event, *args):
                self.seen.append(event)
                return super().emit(event, *args)

        channel = _Recording(MemoryTransport())
        assert channel.seen == ["connected"]
        assert channel.is_online

    def test_connected_fires_on_later_open(self):
        transport = MemoryTransport(is_open=False)
        channel = Channel(transport)
        seen = []
        channel.on("connected", lambda: seen.append(True))
        transport.open()
        assert seen == [True]
        assert channel.is_online

    @pytest.mark.asyncio
    async def test_close_emits_disconnected_and_detaches(self):
        transport = MemoryTransport()
        channel = Channel(transport)
        events = []
        channel.on("disconnected", lambda code, reason: events.append((code, reason)))

        await channel.close(4000, "bye")

        assert events == [(4000, "bye")]
        assert not channel.is_online
        assert transport.listener_count("message") == 0
        assert transport.listener_count("close") == 0

    @pytest.mark.asyncio
    async def test_error_converges_on_disconnected(self):
        transport = MemoryTransport()
        channel = Channel(transport)
        events = []
        channel.on("error", lambda exc: events.append(("error", str(exc))))
        channel.on("disconnected", lambda code, reason: events.append(("disconnected", code)))

        transport.fail(RuntimeError("reset"))
        transport.drop()

        assert events == [("error", "reset"), ("disconnected", 1006)]

    @pytest.mark.asyncio
    async def test_pending_calls_rejected_on_disconnect(self):
        transport = MemoryTransport()
        channel = Channel(transport)
        call = asyncio.create_task(channel.request("slow", timeout=30))
        await asyncio.sleep(0)
        assert channel.pending_count == 1

        transport.drop(1006, "gone")

        with pytest.raises(ChannelClosedError):
            await call
        assert channel.pending_count == 0
