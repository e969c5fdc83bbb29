"""Guards for the anonymous page-view endpoints."""

from __future__ import annotations

import os
import threading
import time
from collections import defaultdict, deque
from typing import Deque, DefaultDict, Tuple

from fastapi import HTTPException, Request

from app.config.view_settings import PUBLIC_ORIGIN


def _normalize_origin(value: str) -> str:
    return value.rstrip("/").lower()


def _trusted_origins() -> Tuple[str, ...]:
    entries = [entry for entry in os.getenv("TRUSTED_ORIGINS", "").split(",") if entry.strip()]
    entries.append(PUBLIC_ORIGIN)
    return tuple(_normalize_origin(entry.strip()) for entry in entries)


TRUSTED_ORIGINS = _trusted_origins()

_RATE_LOCK = threading.Lock()
_RATE_BUCKETS: DefaultDict[str, Deque[float]] = defaultdict(deque)


def get_client_ip(request: Request) -> str:
    """Best effort extraction of the visitor IP address."""

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",")[0].strip()
        if candidate:
            return candidate
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def enforce_same_origin(request: Request) -> None:
    """Reject view tracking posted from a foreign site."""

    origin = request.headers.get("origin")
    if not origin:
        return
    normalized_origin = _normalize_origin(origin)
    if normalized_origin in TRUSTED_ORIGINS:
        return
    host = request.headers.get("host")
    if host and normalized_origin == _normalize_origin(f"{request.url.scheme or 'http'}://{host}"):
        return
    raise HTTPException(status_code=403, detail="Origine de la requête non autorisée.")


def rate_limit_request(
    request: Request,
    *,
    scope: str,
    limit: int,
    window_seconds: int,
) -> None:
    """Sliding window limit per client IP and scope, kept in memory."""

    identifier = f"{scope}:{get_client_ip(request)}"
    now = time.monotonic()
    with _RATE_LOCK:
        bucket = _RATE_BUCKETS[identifier]
        while bucket and now - bucket[0] > window_seconds:
            bucket.popleft()
        if len(bucket) >= limit:
            raise HTTPException(status_code=429, detail="Trop de requêtes. Réessayez plus tard.")
        bucket.append(now)


def reset_rate_limits() -> None:
    with _RATE_LOCK:
        _RATE_BUCKETS.clear()


__all__ = ["enforce_same_origin", "rate_limit_request", "reset_rate_limits", "get_client_ip"]
