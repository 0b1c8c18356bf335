"""
Command line entry point: resolves the config, then serves the proxy with uvicorn.

Run with: skproxy --target https://api.openai.com --sk-file ./key.txt
"""
from __future__ import annotations

import argparse
from typing import List, Optional, TextIO

import uvicorn
from dotenv import load_dotenv
from pydantic import ValidationError

from skproxy.config import AppConfig, get_config
from skproxy.errors import ConfigurationError
from skproxy.logging import configure_logging, get_logger
from skproxy.main import create_app
from skproxy.services.proxy_config import load_proxy_config

logger = get_logger(__name__)

UVICORN_LOG_LEVELS = ("critical", "error", "warning", "info", "debug", "trace")


def build_parser() -> argparse.ArgumentParser:
    # Defaults live in AppConfig so the environment can supply them too
    parser = argparse.ArgumentParser(
        prog="skproxy",
        description="Reverse proxy that injects a bearer secret and streams responses line by line",
    )
    parser.add_argument("--port", type=int, help="Port to listen on (default: 8080)")
    parser.add_argument("--bind", help="Host/IP to bind to (default: 127.0.0.1)")
    parser.add_argument("--target", help="Target base URL (e.g. https://api.openai.com)")
    parser.add_argument("--sk", help="Secret key for Authorization header")
    parser.add_argument("--sk-file", help="File containing the secret key")
    parser.add_argument("--sk-stdin", action="store_true", default=None, help="Read the secret key from stdin")
    parser.add_argument(
        "--upstream-timeout",
        type=float,
        help="Upstream timeout in seconds (default: none, streams may stay open indefinitely)",
    )
    parser.add_argument(
        "--max-line-size",
        type=int,
        help="Relay a line early once it reaches this many bytes (default: 0, wait for the newline)",
    )
    parser.add_argument("--log-level", help="Log level (default: INFO)")
    return parser


def load_settings(args: argparse.Namespace) -> AppConfig:
    """
    Merge command line flags over environment settings; without flags the cached environment settings are used.

    Raises:
        ConfigurationError: If a value fails validation
    """
    overrides = {key: value for key, value in vars(args).items() if value is not None}
    try:
        if not overrides:
            return get_config()
        return AppConfig(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _configure_logging(level: str) -> None:
    try:
        configure_logging(level)
    except ValueError as e:
        raise ConfigurationError(f"Invalid log level {level!r}: {e}") from e


def main(argv: Optional[List[str]] = None, stdin: Optional[TextIO] = None) -> int:
    """
    Resolve configuration and run the server.

    Returns a nonzero exit status, without binding any socket, when the
    target or the secret cannot be resolved.
    """
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args)
        _configure_logging(settings.log_level)
        proxy_config = load_proxy_config(settings, stdin=stdin)
    except ConfigurationError as e:
        logger.error(e.message)
        return 1

    app = create_app(proxy_config)
    log_level = settings.log_level.lower()

    logger.info(f"Proxy listening on http://{settings.bind}:{settings.port}")
    uvicorn.run(
        app,
        host=settings.bind,
        port=settings.port,
        log_level=log_level if log_level in UVICORN_LOG_LEVELS else "info",
    )
    return 0
