"""
Application configuration from environment variables.

Command line flags (see ``skproxy.cli``) are passed as init kwargs and take
precedence over the environment and ``.env``.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    bind: str = "127.0.0.1"
    port: int = 8080
    target: Optional[str] = None
    sk: Optional[SecretStr] = None
    sk_file: Optional[str] = None
    sk_stdin: bool = False
    # None keeps long-lived streams open indefinitely
    upstream_timeout: Optional[float] = None
    # 0 buffers each line in full, however long
    max_line_size: int = 0
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="SKPROXY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_config() -> AppConfig:
    return AppConfig()
