"""Tests for StreamRelay."""

import asyncio

import aiohttp
import pytest
from aiohttp import web

from thinkrelay.gateway.errors import StreamRelayError, error_response
from thinkrelay.gateway.stream_relay import HEARTBEAT_FRAME, StreamRelay


def _running_heartbeats() -> list[asyncio.Task]:
    return [
        t
        for t in asyncio.all_tasks()
        if not t.done() and t.get_coro().__qualname__ == "StreamRelay._heartbeat"
    ]


class TestStreamRelay:
    """Tests for relaying an upstream byte stream to the caller."""

    @pytest.fixture
    async def serve_relay(self):
        """Start a server whose handler relays the given chunk source."""
        runners = []
        outcome: dict = {"finished": asyncio.Event(), "errors": []}

        async def start(relay: StreamRelay, chunks_factory):
            async def handler(request: web.Request) -> web.StreamResponse:
                try:
                    return await relay.relay(request, chunks_factory(), "trace-1")
                except StreamRelayError as e:
                    outcome["errors"].append(e)
                    return error_response(e, "trace-1")
                finally:
                    outcome["finished"].set()

            app = web.Application()
            app.router.add_get("/stream", handler)
            runner = web.AppRunner(app)
            await runner.setup()
            site = web.TCPSite(runner, "127.0.0.1", 0)
            await site.start()
            runners.append(runner)

            port = site._server.sockets[0].getsockname()[1]
            return f"http://127.0.0.1:{port}/stream", outcome

        yield start

        for runner in runners:
            await runner.cleanup()

    async def test_relays_bytes_verbatim(self, serve_relay):
        """Bytes reach the caller unchanged and in order."""
        chunks = [f"data: {{\"n\": {i}}}\n\n".encode() for i in range(50)]

        async def source():
            for chunk in chunks:
                yield chunk

        url, _ = await serve_relay(StreamRelay(heartbeat_interval=15.0), source)

        async with aiohttp.ClientSession() as session, session.get(url) as resp:
            assert resp.status == 200
            body = await resp.read()

        assert body == b"".join(chunks)

    async def test_event_stream_headers(self, serve_relay):
        async def source():
            yield b"data: [DONE]\n\n"

        url, _ = await serve_relay(StreamRelay(), source)

        async with aiohttp.ClientSession() as session, session.get(url) as resp:
            await resp.read()

            assert resp.headers["Content-Type"].startswith("text/event-stream")
            assert resp.headers["Cache-Control"] == "no-cache"
            assert resp.headers["X-Trace-Id"] == "trace-1"

    async def test_heartbeats_interleave_with_data(self, serve_relay):
        """Heartbeat frames are sent while upstream is quiet, data stays intact."""

        async def source():
            yield b"data: first\n\n"
            await asyncio.sleep(0.3)
            yield b"data: second\n\n"

        url, outcome = await serve_relay(StreamRelay(heartbeat_interval=0.05), source)

        async with aiohttp.ClientSession() as session, session.get(url) as resp:
            body = await resp.read()

        assert body.startswith(b"data: first\n\n")
        assert body.count(HEARTBEAT_FRAME) >= 2
        assert body.replace(HEARTBEAT_FRAME, b"") == b"data: first\n\ndata: second\n\n"

        await asyncio.wait_for(outcome["finished"].wait(), timeout=2)
        assert _running_heartbeats() == []

    async def test_heartbeat_stops_after_stream_end(self, serve_relay):
        async def source():
            yield b"data: only\n\n"

        url, outcome = await serve_relay(StreamRelay(heartbeat_interval=0.01), source)

        async with aiohttp.ClientSession() as session, session.get(url) as resp:
            await resp.read()

        await asyncio.wait_for(outcome["finished"].wait(), timeout=2)
        await asyncio.sleep(0.05)
        assert _running_heartbeats() == []

    async def test_caller_disconnect_cancels_relay(self, serve_relay):
        """Closing the caller connection stops forwarding and the heartbeat."""
        source_closed = asyncio.Event()

        async def source():
            try:
                yield b"data: first\n\n"
                while True:
                    await asyncio.sleep(10)
                    yield b"data: never\n\n"
            finally:
                source_closed.set()

        url, outcome = await serve_relay(StreamRelay(heartbeat_interval=0.05), source)

        async with aiohttp.ClientSession() as session:
            resp = await session.get(url)
            first = await resp.content.readuntil(b"\n\n")
            assert first == b"data: first\n\n"
            resp.close()

        await asyncio.wait_for(outcome["finished"].wait(), timeout=2)
        await asyncio.wait_for(source_closed.wait(), timeout=2)
        assert outcome["errors"] == []
        assert _running_heartbeats() == []

    async def test_upstream_read_error_closes_connection(self, serve_relay):
        """A failing upstream read aborts the stream without a clean end."""

        async def source():
            yield b"data: first\n\n"
            raise aiohttp.ClientPayloadError("upstream went away")

        url, outcome = await serve_relay(StreamRelay(heartbeat_interval=15.0), source)

        async with aiohttp.ClientSession() as session, session.get(url) as resp:
            assert resp.status == 200
            with pytest.raises(aiohttp.ClientError):
                await resp.read()

        await asyncio.wait_for(outcome["finished"].wait(), timeout=2)
        assert len(outcome["errors"]) == 1
        assert "upstream went away" in outcome["errors"][0].message
        assert _running_heartbeats() == []
