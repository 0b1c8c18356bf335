"""
Relay service - copies the upstream response to the client line by line.
"""
from __future__ import annotations

from typing import AsyncIterator, Callable, Tuple

import anyio
import httpx
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from skproxy.errors import RelayInterruptedError, StreamingUnsupportedError
from skproxy.logging import get_logger
from skproxy.services.sinks import ASGIResponseSink, FlushableWriter, ResponseSink

logger = get_logger(__name__)

STREAMING_UNSUPPORTED_MESSAGE = "Streaming not supported"

# Framing is recomputed by the server for the relayed body, and httpx has
# already decoded any content-encoding.
EXCLUDED_RESPONSE_HEADERS = frozenset({
    b"content-length", b"transfer-encoding", b"connection", b"keep-alive", b"content-encoding"
})


async def iter_lines(
    chunks: AsyncIterator[bytes],
    max_line_size: int = 0,
) -> AsyncIterator[Tuple[bytes, bool]]:
    """
    Split a byte stream on ``\\n``.

    Yields ``(segment, partial)`` pairs. Complete lines come without the
    newline and without one trailing ``\\r``; a final unterminated line is
    yielded at EOF the same way. With ``max_line_size`` set, a line that grows
    past it is yielded in ``partial`` pieces of that size as it arrives.
    """
    buffer = bytearray()
    async for chunk in chunks:
        buffer.extend(chunk)
        while True:
            index = buffer.find(b"\n")
            if index < 0:
                break
            line = bytes(buffer[:index])
            del buffer[:index + 1]
            yield _drop_cr(line), False
        while max_line_size and len(buffer) >= max_line_size:
            segment = bytes(buffer[:max_line_size])
            del buffer[:max_line_size]
            yield segment, True
    if buffer:
        yield _drop_cr(bytes(buffer)), False


def _drop_cr(line: bytes) -> bytes:
    if line.endswith(b"\r"):
        return line[:-1]
    return line


def copy_headers(upstream: httpx.Response, sink: ResponseSink) -> None:
    """Copy every upstream header value to the sink as raw bytes, duplicates included."""
    for key, value in upstream.headers.raw:
        if key.lower() in EXCLUDED_RESPONSE_HEADERS:
            continue
        sink.add_header(key, value)


async def relay(upstream: httpx.Response, sink: ResponseSink, max_line_size: int = 0) -> int:
    """
    Relay an upstream response to the client, flushing after every line.

    Headers and status are staged on the sink before any body byte. Each line
    is written with its newline restored and flushed before the next one is
    read, so a body without a trailing newline gets one appended.
    The upstream response is closed on every exit path.

    Args:
        upstream: Response from ``dispatch``, body unread
        sink: Client-facing sink
        max_line_size: Flush a line early once it reaches this many bytes (0 = never)

    Returns:
        The number of segments relayed

    Raises:
        StreamingUnsupportedError: If the sink cannot flush; nothing was committed
        RelayInterruptedError: If reading upstream or writing to the client
            failed after the response was committed
    """
    try:
        copy_headers(upstream, sink)
        sink.write_header(upstream.status_code)

        if not isinstance(sink, FlushableWriter):
            raise StreamingUnsupportedError(STREAMING_UNSUPPORTED_MESSAGE)

        count = 0
        try:
            async for segment, partial in iter_lines(upstream.aiter_bytes(), max_line_size):
                await sink.write(segment if partial else segment + b"\n")
                await sink.flush()
                count += 1
        except httpx.HTTPError as e:
            raise RelayInterruptedError(f"Upstream body read failed: {e}") from e
        except httpx.StreamError as e:
            raise RelayInterruptedError(f"Upstream body unavailable: {e}") from e

        await sink.close()
        return count
    finally:
        with anyio.CancelScope(shield=True):
            await upstream.aclose()


class RelayResponse(Response):
    """
    Starlette response that streams an upstream response through ``relay``.

    A client disconnect, seen on ``receive``, cancels the relay.
    """

    def __init__(
        self,
        upstream: httpx.Response,
        max_line_size: int = 0,
        sink_factory: Callable[[Send], ResponseSink] = ASGIResponseSink,
    ):
        self.upstream = upstream
        self.max_line_size = max_line_size
        self.sink_factory = sink_factory
        self.status_code = upstream.status_code
        self.background = None
        self.init_headers()

    async def _run_relay(self, sink: ResponseSink) -> None:
        try:
            count = await relay(self.upstream, sink, self.max_line_size)
            logger.debug(f"Relayed {count} lines from {self.upstream.url}")
        except StreamingUnsupportedError as e:
            logger.error(f"Cannot relay {self.upstream.url}: {e}")
            await sink.send_error(e.status_code, e.message)
        except RelayInterruptedError as e:
            # Status already sent; the connection ends without a complete body
            logger.warning(f"Relay from {self.upstream.url} interrupted: {e}")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        sink = self.sink_factory(send)

        async with anyio.create_task_group() as task_group:

            async def run_relay() -> None:
                await self._run_relay(sink)
                task_group.cancel_scope.cancel()

            async def watch_disconnect() -> None:
                while True:
                    message = await receive()
                    if message["type"] == "http.disconnect":
                        break
                if not sink.finished:
                    sink.disconnected = True
                    logger.info(f"Client disconnected, stopping relay from {self.upstream.url}")
                task_group.cancel_scope.cancel()

            task_group.start_soon(run_relay)
            await watch_disconnect()
