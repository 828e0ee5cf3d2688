from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

import httpx

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 5.0


@dataclass(frozen=True)
class CLIConfig:
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT

    def http_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.timeout, connect=min(self.connect_timeout, self.timeout))


def _env_seconds(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        seconds = float(raw) if raw else default
    except ValueError:
        return default
    return seconds if seconds > 0 else default


def load_config(
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CLIConfig:
    """Resolve CLI settings; explicit options win over ``API_BASE_URL`` and friends."""
    url = base_url or os.getenv("API_BASE_URL") or DEFAULT_BASE_URL
    return CLIConfig(
        base_url=url.rstrip("/"),
        timeout=timeout if timeout is not None else _env_seconds("CLI_HTTP_TIMEOUT", DEFAULT_TIMEOUT),
        connect_timeout=_env_seconds("CLI_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT),
    )
