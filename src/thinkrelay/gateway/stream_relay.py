"""Event-stream relay from the upstream response to the caller.

Bytes are copied verbatim and in order as they arrive. A heartbeat task
writes SSE comment frames on a fixed interval so intermediaries do not time
out long generations. Both run as tasks under one scope: whichever finishes
first (upstream end, read error, caller disconnect) cancels the other.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from thinkrelay.gateway.errors import StreamRelayError

if TYPE_CHECKING:
    from aiohttp import web

logger = logging.getLogger(__name__)

HEARTBEAT_FRAME = b": heartbeat\n\n"

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def _task_error(task: asyncio.Task) -> BaseException | None:
    if task.cancelled():
        return None
    return task.exception()


@dataclass
class StreamRelay:
    """Pass-through relay for ``text/event-stream`` responses."""

    heartbeat_interval: float = 15.0

    async def relay(
        self,
        request: web.Request,
        chunks: AsyncIterable[bytes],
        trace_id: str | None = None,
    ) -> web.StreamResponse:
        """Relay ``chunks`` to the caller as an event stream.

        Returns the finished response on upstream end or caller disconnect.
        A disconnect is noticed on the next write, so at most one heartbeat
        interval after it happens.

        Raises:
            StreamRelayError: If reading upstream fails mid-stream. The caller
                connection has already been closed and the error carries the
                started response.
        """
        from aiohttp import web

        headers = dict(SSE_HEADERS)
        if trace_id:
            headers["X-Trace-Id"] = trace_id
        response = web.StreamResponse(status=200, headers=headers)
        await response.prepare(request)

        write_lock = asyncio.Lock()
        copier = asyncio.create_task(self._copy(response, chunks, write_lock, trace_id))
        heartbeat = asyncio.create_task(self._heartbeat(response, write_lock, trace_id))
        tasks = (copier, heartbeat)

        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        copy_error = _task_error(copier)
        heartbeat_error = _task_error(heartbeat)

        if isinstance(copy_error, ConnectionResetError) or isinstance(
            heartbeat_error, ConnectionResetError
        ):
            logger.debug("[%s] Client disconnected during streaming", trace_id)
            return response

        error = copy_error or heartbeat_error
        if error is not None:
            logger.error("[%s] Error during streaming: %s", trace_id, error)
            response.force_close()
            if request.transport is not None:
                request.transport.close()
            raise StreamRelayError(f"Stream relay failed: {error}", response) from error

        try:
            await response.write_eof()
        except ConnectionResetError:
            logger.debug("[%s] Client disconnected before end of stream", trace_id)
        return response

    async def _copy(
        self,
        response: web.StreamResponse,
        chunks: AsyncIterable[bytes],
        write_lock: asyncio.Lock,
        trace_id: str | None,
    ) -> None:
        chunk_count = 0
        byte_count = 0
        async for chunk in chunks:
            if not chunk:
                continue
            async with write_lock:
                await response.write(chunk)
            chunk_count += 1
            byte_count += len(chunk)
            logger.debug("[%s] Relayed chunk %d (%d bytes)", trace_id, chunk_count, len(chunk))

        logger.info(
            "[%s] Stream complete, relayed %d chunks (%d bytes)",
            trace_id,
            chunk_count,
            byte_count,
        )

    async def _heartbeat(
        self,
        response: web.StreamResponse,
        write_lock: asyncio.Lock,
        trace_id: str | None,
    ) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            async with write_lock:
                await response.write(HEARTBEAT_FRAME)
            logger.debug("[%s] Sent heartbeat", trace_id)
