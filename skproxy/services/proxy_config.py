"""
Proxy config service - builds the immutable target/secret value used by the relay.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, TextIO

import httpx

from skproxy.config import AppConfig
from skproxy.errors import ConfigurationError
from skproxy.logging import get_logger
from skproxy.services.security import MISSING_SOURCE_MESSAGE, resolve_secret

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProxyConfig:
    """Target and credential, fixed for the lifetime of the process."""
    target_url: httpx.URL
    secret: str = field(repr=False)
    upstream_timeout: Optional[float] = None
    max_line_size: int = 0


def parse_target(target: Optional[str]) -> httpx.URL:
    """
    Parse the upstream base URL.

    Raises:
        ConfigurationError: If the target is missing or not an absolute http(s) URL
    """
    if not target:
        raise ConfigurationError(MISSING_SOURCE_MESSAGE)

    try:
        url = httpx.URL(target)
    except httpx.InvalidURL as e:
        raise ConfigurationError(f"Invalid target URL: {e}") from e

    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(f"Invalid target URL: {target!r} is not an absolute http(s) URL")
    return url


def load_proxy_config(settings: AppConfig, stdin: Optional[TextIO] = None) -> ProxyConfig:
    """
    Validate settings and resolve the secret into a ProxyConfig.

    Raises:
        ConfigurationError: If the target or the secret cannot be resolved
    """
    target_url = parse_target(settings.target)

    sources = [
        name for name, given in (
            ("--sk", settings.sk is not None),
            ("--sk-file", bool(settings.sk_file)),
            ("--sk-stdin", settings.sk_stdin),
        ) if given
    ]
    if len(sources) > 1:
        logger.warning(f"Multiple secret sources given ({', '.join(sources)}); using {sources[0]}")

    if settings.max_line_size < 0:
        raise ConfigurationError("max_line_size must not be negative")
    if settings.upstream_timeout is not None and settings.upstream_timeout <= 0:
        raise ConfigurationError("upstream_timeout must be positive")

    secret = resolve_secret(
        sk=settings.sk.get_secret_value() if settings.sk is not None else None,
        sk_file=settings.sk_file,
        sk_stdin=settings.sk_stdin,
        stdin=stdin,
    )

    return ProxyConfig(
        target_url=target_url,
        secret=secret,
        upstream_timeout=settings.upstream_timeout,
        max_line_size=settings.max_line_size,
    )
