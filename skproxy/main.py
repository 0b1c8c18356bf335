"""
skproxy - streaming reverse proxy with bearer credential injection

FastAPI application factory.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from skproxy.logging import get_logger
from skproxy.routers import relay
from skproxy.services.proxy_config import ProxyConfig
from skproxy.state import AppState

logger = get_logger(__name__)


def _init_http_client(state: AppState) -> None:
    """Create the shared upstream client. No timeout unless one was configured."""
    state.http_client = httpx.AsyncClient(timeout=state.config.upstream_timeout)
    logger.info(f"HTTP client initialized for {state.config.target_url}")


async def _shutdown_http_client(state: AppState) -> None:
    """Close the shared HTTP client."""
    if state.http_client:
        await state.http_client.aclose()
        state.http_client = None
        logger.info("HTTP client closed")


def create_app(proxy_config: ProxyConfig, http_client: httpx.AsyncClient | None = None) -> FastAPI:
    """
    Build the proxy application.

    Args:
        proxy_config: Target and secret, resolved at startup
        http_client: Optional client to use instead of one owned by the app

    Every path is forwarded upstream, so docs and schema routes are disabled.
    """
    state = AppState(proxy_config, http_client)
    owns_client = http_client is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager - handles startup and shutdown."""
        if owns_client:
            _init_http_client(state)

        yield

        if owns_client:
            await _shutdown_http_client(state)

    app = FastAPI(
        title="skproxy",
        description="Streaming reverse proxy with bearer credential injection",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.proxy = state
    app.router.routes.extend(relay.routes)
    return app
