"""
Proxy service - builds the outbound request and dispatches it upstream.
"""
from __future__ import annotations

import os
import re
from typing import AsyncIterator, Iterable, List, Optional, Set, Tuple

import httpx

from skproxy.errors import RequestConstructionError, UpstreamUnreachableError
from skproxy.services.proxy_config import ProxyConfig
from skproxy.services.security import bearer_authorization

# RFC 9110 token characters
_METHOD_PATTERN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


def _declares_body(headers: httpx.Headers) -> bool:
    return "content-length" in headers or "transfer-encoding" in headers


def build_target_url(config: ProxyConfig, path: str, query: bytes) -> httpx.URL:
    """
    Replace the path and query of the target base URL with the inbound ones.

    Scheme, host and port come from the target; its own path is discarded.
    """
    try:
        return config.target_url.copy_with(path=path, query=query or None)
    except (httpx.InvalidURL, TypeError, ValueError) as e:
        raise RequestConstructionError(f"Invalid outbound URL: {e}") from e


def build_outbound_request(
    client: httpx.AsyncClient,
    method: str,
    path: str,
    query: bytes,
    headers: Iterable[Tuple[bytes, bytes]],
    body: Optional[AsyncIterator[bytes]],
    config: ProxyConfig,
) -> httpx.Request:
    """
    Build the upstream request for one inbound request.

    Args:
        client: Shared HTTP client the request will be sent with
        method: Inbound HTTP method, passed through unchanged
        path: Inbound path (percent-encoded form)
        query: Inbound raw query string, without the leading '?'
        headers: Inbound raw header pairs, copied in order with duplicates
        body: Inbound body stream, passed through unread
        config: Target and secret

    Returns:
        The outbound request, not yet sent

    Raises:
        RequestConstructionError: If the method is not a valid token or the
            outbound URL cannot be formed
    """
    if not method or not _METHOD_PATTERN.match(method):
        raise RequestConstructionError(f"Invalid method {method!r}")

    url = build_target_url(config, path, query)

    # A fresh Headers object so the inbound header list is never mutated
    outbound_headers = httpx.Headers(list(headers))
    outbound_headers["Host"] = url.netloc.decode("ascii")
    outbound_headers["Authorization"] = bearer_authorization(config.secret)

    content = body if body is not None and _declares_body(outbound_headers) else None

    try:
        return client.build_request(method, url, headers=outbound_headers, content=content)
    except (httpx.InvalidURL, TypeError, ValueError) as e:
        raise RequestConstructionError(f"Failed to build outbound request: {e}") from e


async def dispatch(client: httpx.AsyncClient, request: httpx.Request) -> httpx.Response:
    """
    Send the request upstream and return as soon as the response headers arrive.

    The body is left unread; the caller owns the response and must close it.

    Raises:
        UpstreamUnreachableError: If connecting or completing the request fails
    """
    try:
        return await client.send(request, stream=True)
    except httpx.RequestError as e:
        raise UpstreamUnreachableError(describe_error(e)) from e


def describe_error(error: BaseException) -> str:
    """
    Join the messages of an exception and everything it was raised from.

    httpx reports a refused connection as "All connection attempts failed";
    the OS error that names the refusal is only on the cause chain, possibly
    inside an exception group.
    """
    parts: List[str] = []
    _collect_messages(error, parts, set())
    return ": ".join(parts)


def _collect_messages(error: Optional[BaseException], parts: List[str], seen: Set[int]) -> None:
    if error is None or id(error) in seen:
        return
    seen.add(id(error))

    messages = [str(error) or type(error).__name__]
    if isinstance(error, OSError) and error.errno is not None:
        messages.append(os.strerror(error.errno))
    for message in messages:
        if not any(message in part for part in parts):
            parts.append(message)

    for child in getattr(error, "exceptions", ()):
        if isinstance(child, BaseException):
            _collect_messages(child, parts, seen)
    _collect_messages(error.__cause__ or error.__context__, parts, seen)
