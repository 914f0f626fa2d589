from __future__ import annotations

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Listener
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = _env_int("PORT", 8080)

    # Build identity, echoed by /version
    app_pool: str = os.getenv("APP_POOL", "unknown")
    release_id: str = os.getenv("RELEASE_ID", "unknown")

    # Chaos
    # Must stay above any upstream health-check timeout or Timeout mode goes unnoticed.
    chaos_timeout_s: float = _env_float("CHAOS_TIMEOUT_S", 30.0)
    disconnect_poll_s: float = _env_float("CHAOS_DISCONNECT_POLL_S", 0.5)

    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
