"""
Configuration management for copyparty_bridge.
Loads environment variables (and an optional .env file) into a Settings object.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 8_000
DEFAULT_UPLOAD_CONCURRENCY = 4
DEFAULT_MOBILE_UPLOAD_CONCURRENCY = 2
DEFAULT_HISTORY_LIMIT = 200


@dataclass(frozen=True)
class Settings:
    """Backend and upload settings, read once per operation."""

    base_url: str = ""
    public_base_url: str = ""
    root_path: str = "/"
    password: str = ""
    cookie: str = ""
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    upload_concurrency: int = DEFAULT_UPLOAD_CONCURRENCY
    mobile_upload_concurrency: int = DEFAULT_MOBILE_UPLOAD_CONCURRENCY
    history_limit: int = DEFAULT_HISTORY_LIMIT

    @property
    def configured(self) -> bool:
        return bool(self.base_url)


def parse_positive_int(value: str | None) -> int | None:
    """Parse a strictly positive integer, returning None for anything else."""
    if not value:
        return None
    try:
        parsed = int(value.strip())
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def _env(name: str) -> str:
    return (os.getenv(name) or "").strip()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    parsed = parse_positive_int(raw)
    if raw and parsed is None:
        logger.warning(f"Ignoring invalid {name}={raw!r}; using {default}")
    return parsed if parsed is not None else default


def get_settings(*, load_env_file: bool = True) -> Settings:
    """
    Load configuration from environment variables.

    Args:
        load_env_file: Also read a .env file from the working directory
            (existing environment variables take precedence)

    Returns:
        A Settings instance. An empty base_url means copyparty is not configured.
    """
    if load_env_file:
        load_dotenv(find_dotenv(usecwd=True))

    return Settings(
        base_url=_env("COPYPARTY_BASE_URL"),
        public_base_url=_env("COPYPARTY_PUBLIC_BASE_URL"),
        root_path=_env("COPYPARTY_ROOT_PATH") or "/",
        password=_env("COPYPARTY_PASSWORD"),
        cookie=_env("COPYPARTY_COOKIE"),
        timeout_ms=_env_int("COPYPARTY_TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
        upload_concurrency=_env_int("UPLOAD_CONCURRENCY", DEFAULT_UPLOAD_CONCURRENCY),
        mobile_upload_concurrency=_env_int(
            "UPLOAD_CONCURRENCY_MOBILE", DEFAULT_MOBILE_UPLOAD_CONCURRENCY
        ),
        history_limit=_env_int("UPLOAD_HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT),
    )
