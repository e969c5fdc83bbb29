"""Settings for page-view tracking and the daily roll-up."""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_number(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


PUBLIC_ORIGIN = (os.getenv("PUBLIC_ORIGIN") or "http://localhost:5173").rstrip("/")
VIEW_TRANSFER_ENABLED = _env_flag("VIEW_TRANSFER_ENABLED", True)
VIEW_TRANSFER_TIME = os.getenv("VIEW_TRANSFER_TIME", "23:59")
VIEW_TRANSFER_CHECK_SECONDS = _env_number("VIEW_TRANSFER_CHECK_SECONDS", 60)
VIEW_DWELL_THRESHOLD_MS = int(_env_number("VIEW_DWELL_THRESHOLD_MS", 10_000))
VIEW_DWELL_POLL_SECONDS = _env_number("VIEW_DWELL_POLL_SECONDS", 0.2)

__all__ = [
    "PUBLIC_ORIGIN",
    "VIEW_TRANSFER_ENABLED",
    "VIEW_TRANSFER_TIME",
    "VIEW_TRANSFER_CHECK_SECONDS",
    "VIEW_DWELL_THRESHOLD_MS",
    "VIEW_DWELL_POLL_SECONDS",
]
