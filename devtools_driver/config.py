from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_API_URL = "http://localhost:9222"
DEFAULT_BASE_URL = "http://localhost"

# Chrome drops the connection when one logical message arrives fragmented, so
# every command goes out as a single frame up to this size.
DEFAULT_MAX_MESSAGE_SIZE = 100 * 1024 * 1024


def _env_float(name: str, default: float | None) -> float | None:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    if raw.lower() in {"none", "off", "0"}:
        return None
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.environ.get(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


@dataclass
class DriverConfig:
    api_url: str = DEFAULT_API_URL
    base_url: str = DEFAULT_BASE_URL
    connect_timeout: float = 10.0
    # None means "wait forever", matching an unresponsive browser hanging the caller.
    command_timeout: float | None = None
    read_poll_interval: float = 0.5
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE
    http_timeout: float = 5.0
    wait_poll_interval: float = 0.01
    animation_playback_rate: float = 100000.0
    ignore_certificate_errors: bool = False

    @staticmethod
    def normalize_api_url(raw: str | None) -> str:
        url = (raw or "").strip().rstrip("/")
        if not url:
            return DEFAULT_API_URL
        if "://" not in url:
            url = f"http://{url}"
        return url

    @classmethod
    def from_env(cls) -> DriverConfig:
        poll = _env_float("DEVTOOLS_READ_POLL_INTERVAL", 0.5)
        try:
            max_size = int(os.environ.get("DEVTOOLS_MAX_MESSAGE_SIZE") or DEFAULT_MAX_MESSAGE_SIZE)
        except ValueError:
            max_size = DEFAULT_MAX_MESSAGE_SIZE
        return cls(
            api_url=cls.normalize_api_url(os.environ.get("DEVTOOLS_API_URL")),
            base_url=(os.environ.get("DEVTOOLS_BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
            connect_timeout=_env_float("DEVTOOLS_CONNECT_TIMEOUT", 10.0) or 10.0,
            command_timeout=_env_float("DEVTOOLS_COMMAND_TIMEOUT", None),
            read_poll_interval=poll if poll else 0.5,
            max_message_size=max(1024, max_size),
            http_timeout=_env_float("DEVTOOLS_HTTP_TIMEOUT", 5.0) or 5.0,
            ignore_certificate_errors=_env_bool("DEVTOOLS_IGNORE_CERT_ERRORS", False),
        )


__all__ = ["DEFAULT_API_URL", "DEFAULT_BASE_URL", "DEFAULT_MAX_MESSAGE_SIZE", "DriverConfig"]
