"""
Relay router - forwards every request upstream and streams the answer back.

The route is a plain ASGI endpoint rather than a FastAPI path operation so
that Starlette matches it for every method, including WebDAV and custom ones.
"""
from __future__ import annotations

from fastapi import HTTPException, Request, Response
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from skproxy.errors import ProxyError, UpstreamUnreachableError
from skproxy.logging import get_logger
from skproxy.services.proxy import build_outbound_request, dispatch
from skproxy.services.relay import RelayResponse
from skproxy.state import AppState, get_app_state

logger = get_logger(__name__)


def _inbound_path(request: Request) -> str:
    """Path as the client sent it, percent-encoding intact."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.split(b"?", 1)[0].decode("latin-1")
    return request.url.path


def _map_proxy_error(error: ProxyError, method: str, path: str) -> HTTPException:
    """Map errors raised before the response is committed to HTTP exceptions."""
    if isinstance(error, UpstreamUnreachableError):
        logger.error(f"Connection error to upstream for {method} {path}: {error.message}")
        return HTTPException(status_code=502, detail=error.message)

    logger.error(f"Failed to build upstream request for {method} {path}: {error.message}")
    return HTTPException(status_code=error.status_code or 500, detail=error.message)


async def proxy(request: Request, state: AppState) -> Response:
    """
    Forward the request to the target with the credential injected.

    **Flow:**
    1. Build the outbound request (same method, path, query, headers and body;
       `Host` and `Authorization` overridden)
    2. Send it and wait for the upstream status and headers
    3. Relay status, headers and the body line by line

    Responds 500 if the outbound request cannot be built and 502 if the
    upstream cannot be reached.
    """
    if state.http_client is None:
        logger.error("HTTP client not initialized")
        raise HTTPException(status_code=500, detail="Internal server error")

    path = _inbound_path(request)
    method = request.method

    try:
        outbound = build_outbound_request(
            client=state.http_client,
            method=method,
            path=path,
            query=request.scope.get("query_string", b""),
            headers=request.headers.raw,
            body=request.stream(),
            config=state.config,
        )
        upstream = await dispatch(state.http_client, outbound)
    except ProxyError as e:
        raise _map_proxy_error(e, method, path)

    logger.info(f"{method} {path} -> {upstream.status_code}")
    return RelayResponse(upstream, max_line_size=state.config.max_line_size)


class ProxyEndpoint:
    """ASGI endpoint around ``proxy``. HTTP exceptions reach the app's exception handlers."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        response = await proxy(request, get_app_state(request))
        await response(scope, receive, send)


# Starlette matches every method when an ASGI app (not a function) is the endpoint
routes = [
    Route("/{path:path}", endpoint=ProxyEndpoint(), name="proxy", include_in_schema=False),
]
