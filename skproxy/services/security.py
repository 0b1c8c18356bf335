"""
Security service - resolves the upstream secret and builds the credential header.
"""
from __future__ import annotations

import sys
from typing import Optional, TextIO

from skproxy.errors import ConfigurationError

MISSING_SOURCE_MESSAGE = "Must provide --target and one of --sk, --sk-file, or --sk-stdin."


def resolve_secret(
    sk: Optional[str] = None,
    sk_file: Optional[str] = None,
    sk_stdin: bool = False,
    stdin: Optional[TextIO] = None,
) -> str:
    """
    Resolve the secret from exactly one source.

    A literal secret wins, then the file, then the first line of stdin.
    Whichever source is used, surrounding whitespace is trimmed.

    Raises:
        ConfigurationError: If no source is given, the chosen source cannot
            be read, or the resolved secret is empty
    """
    if sk:
        secret = sk
    elif sk_file:
        try:
            with open(sk_file, "r", encoding="utf-8") as f:
                secret = f.read()
        except OSError as e:
            raise ConfigurationError(f"Failed to read sk file: {e}") from e
    elif sk_stdin:
        stream = stdin if stdin is not None else sys.stdin
        try:
            secret = stream.readline()
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Failed to read from stdin: {e}") from e
        if not secret:
            raise ConfigurationError("Failed to read from stdin: EOF")
    else:
        raise ConfigurationError(MISSING_SOURCE_MESSAGE)

    secret = secret.strip()
    if not secret:
        raise ConfigurationError("Secret key is empty")
    return secret


def bearer_authorization(secret: str) -> str:
    """Value of the Authorization header sent upstream."""
    return f"Bearer {secret}"
