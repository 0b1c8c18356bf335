"""
Application state - config and shared client, created once per app.
"""
from __future__ import annotations

import httpx
from fastapi import Request

from skproxy.services.proxy_config import ProxyConfig


class AppState:
    """
    Application state container.
    Attached to ``app.state`` by ``create_app`` and looked up per request with ``get_app_state``.
    The config is frozen; the client is set by the lifespan unless one was given.
    """

    def __init__(self, config: ProxyConfig, http_client: httpx.AsyncClient | None = None):
        self.config = config
        self.http_client = http_client


def get_app_state(request: Request) -> AppState:
    return request.app.state.proxy
