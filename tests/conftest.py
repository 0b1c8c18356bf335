"""
Shared test fixtures and helpers.
"""
from __future__ import annotations

import os
from typing import AsyncIterator, List, Tuple

import httpx
import pytest

from skproxy.config import get_config
from skproxy.services.proxy_config import ProxyConfig
from skproxy.services.sinks import FlushableWriter, ResponseSink


TEST_SECRET = "abc"
TEST_TARGET = "https://api.example.com/ignored-base-path"


class RecordingSink(ResponseSink):
    """Sink that records every call in order. Cannot flush."""

    def __init__(self):
        super().__init__()
        self.events: List[Tuple[str, object]] = []
        self.body = bytearray()
        self.errors: List[Tuple[int, str]] = []

    def add_header(self, key, value) -> None:
        super().add_header(key, value)
        self.events.append(("header", (key, value)))

    def write_header(self, status_code: int) -> None:
        super().write_header(status_code)
        self.events.append(("status", status_code))

    async def write(self, data: bytes) -> None:
        self.committed = True
        self.body.extend(data)
        self.events.append(("write", data))

    async def send_error(self, status_code: int, detail: str) -> None:
        self.errors.append((status_code, detail))

    async def close(self) -> None:
        self.finished = True
        self.events.append(("close", None))


class RecordingFlushableSink(RecordingSink, FlushableWriter):
    """Recording sink that supports flushing."""

    def __init__(self, log: List[str] | None = None):
        super().__init__()
        self.log = log

    async def flush(self) -> None:
        self.events.append(("flush", None))
        if self.log is not None:
            self.log.append(f"flush {bytes(self.body)!r}")


async def byte_chunks(*chunks: bytes) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


def make_upstream(
    content=b"",
    status_code: int = 200,
    headers=None,
    url: str = "https://api.example.com/v1/stream",
) -> httpx.Response:
    """Build an unread upstream response the way dispatch returns one."""
    if isinstance(content, bytes):
        content = byte_chunks(content)
    return httpx.Response(
        status_code,
        headers=headers,
        content=content,
        request=httpx.Request("GET", url),
    )


@pytest.fixture
def proxy_config() -> ProxyConfig:
    """Config with a target whose own path must be ignored."""
    return ProxyConfig(target_url=httpx.URL(TEST_TARGET), secret=TEST_SECRET)


@pytest.fixture
def recording_sink() -> RecordingFlushableSink:
    return RecordingFlushableSink()


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Drop SKPROXY_* variables and run from an empty directory (no .env)."""
    for key in list(os.environ):
        if key.startswith("SKPROXY_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    get_config.cache_clear()
    yield tmp_path
    get_config.cache_clear()
