"""
Proxy error taxonomy.

Every error carries the HTTP status the client sees when the error happens
before the response is committed. ``RelayInterruptedError`` has none: by the
time it is raised the upstream status line has already been sent.
"""
from __future__ import annotations

from typing import Optional


class ProxyError(Exception):
    """Base class for all proxy errors."""

    status_code: Optional[int] = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(ProxyError):
    """Missing or invalid target URL, or no usable secret. Fatal at startup."""

    status_code = None


class RequestConstructionError(ProxyError):
    """The outbound request could not be built from the inbound one."""

    status_code = 500


class UpstreamUnreachableError(ProxyError):
    """Connecting to the upstream or completing the request failed."""

    status_code = 502


class StreamingUnsupportedError(ProxyError):
    """The client-facing sink cannot be flushed incrementally."""

    status_code = 500


class RelayInterruptedError(ProxyError):
    """Copying the body failed after status and headers were committed."""

    status_code = None
