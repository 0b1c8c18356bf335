"""
Response sinks - the client-facing side of the relay.

A sink stages the status and headers and only commits them when the first
body bytes go out, so an error response can still replace them until then.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, MutableMapping, Optional, Tuple, Union

from starlette.responses import JSONResponse

from skproxy.errors import RelayInterruptedError

Message = MutableMapping[str, Any]
Send = Callable[[Message], Awaitable[None]]


class ResponseSink:
    """Base sink: staged headers and status, plain writes, no flushing."""

    def __init__(self):
        self.status_code: Optional[int] = None
        self.headers: List[Tuple[bytes, bytes]] = []
        self.committed = False
        self.disconnected = False
        self.finished = False

    def add_header(self, key: Union[str, bytes], value: Union[str, bytes]) -> None:
        """Append a header value; repeated keys are kept, not merged. Bytes pass through as-is."""
        if self.committed:
            raise RuntimeError("Headers already sent")
        if isinstance(key, str):
            key = key.encode("latin-1")
        if isinstance(value, str):
            value = value.encode("latin-1")
        self.headers.append((key.lower(), value))

    def write_header(self, status_code: int) -> None:
        """Set the response status. Only the first call has any effect."""
        if self.status_code is None:
            self.status_code = status_code

    async def write(self, data: bytes) -> None:
        raise NotImplementedError

    async def send_error(self, status_code: int, detail: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


class FlushableWriter(ResponseSink):
    """A sink whose written bytes can be pushed to the client on demand."""

    async def flush(self) -> None:
        raise NotImplementedError


class BufferedASGISink(ResponseSink):
    """
    Sink over an ASGI ``send`` callable that holds the whole body until ``close``.

    It cannot stream, so the relay refuses it.
    """

    def __init__(self, send: Send):
        super().__init__()
        self._send = send
        self._buffer = bytearray()

    def _ensure_connected(self) -> None:
        if self.disconnected:
            raise RelayInterruptedError("Client disconnected")

    async def _send_message(self, message: Dict[str, Any]) -> None:
        try:
            await self._send(message)
        except OSError as e:
            self.disconnected = True
            raise RelayInterruptedError(f"Client write failed: {e}") from e

    async def _commit(self) -> None:
        if self.committed:
            return
        self.committed = True
        await self._send_message({
            "type": "http.response.start",
            "status": self.status_code or 200,
            "headers": self.headers,
        })

    async def write(self, data: bytes) -> None:
        self._ensure_connected()
        self._buffer.extend(data)

    async def close(self) -> None:
        """Send whatever is buffered and end the body."""
        if self.finished:
            return
        self._ensure_connected()
        await self._commit()
        chunk = bytes(self._buffer)
        self._buffer.clear()
        self.finished = True
        await self._send_message({"type": "http.response.body", "body": chunk, "more_body": False})

    async def send_error(self, status_code: int, detail: str) -> None:
        if self.committed:
            raise RuntimeError("Cannot send an error response after headers were sent")
        response = JSONResponse({"detail": detail}, status_code=status_code)
        self.committed = True
        self.finished = True
        self._buffer.clear()
        await self._send_message({
            "type": "http.response.start",
            "status": response.status_code,
            "headers": response.raw_headers,
        })
        await self._send_message({"type": "http.response.body", "body": response.body, "more_body": False})


class ASGIResponseSink(BufferedASGISink, FlushableWriter):
    """
    Streaming sink over an ASGI ``send`` callable.

    ``flush`` sends the buffered bytes as one body message with
    ``more_body=True``; the start message goes out on the first flush.
    """

    async def flush(self) -> None:
        self._ensure_connected()
        await self._commit()
        if not self._buffer:
            return
        chunk = bytes(self._buffer)
        self._buffer.clear()
        await self._send_message({"type": "http.response.body", "body": chunk, "more_body": True})
