"""Shared utilities for talking to Supabase/PostgREST."""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional, Sequence, TypeVar

from fastapi import HTTPException
from httpx import HTTPError as HttpxError
from postgrest import APIError as PostgrestAPIError
from postgrest import SyncPostgrestClient

from app.config.supabase_client import SUPABASE_ANON_KEY, SUPABASE_URL

logger = logging.getLogger(__name__)
T = TypeVar("T")


def extract_bearer_token(header_value: Optional[str]) -> str:
    """Return the Bearer token from an Authorization header."""

    if not header_value:
        raise HTTPException(status_code=401, detail="Authentification requise.")
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Jeton Bearer invalide.")
    token = parts[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Jeton Bearer manquant.")
    return token


def create_postgrest_client(
    access_token: str,
    *,
    prefer: Optional[str] = None,
    api_key: Optional[str] = None,
) -> SyncPostgrestClient:
    """Instantiate a PostgREST client authenticated with the provided token."""

    resolved_api_key = api_key or SUPABASE_ANON_KEY or access_token
    if not SUPABASE_URL or not resolved_api_key:
        raise RuntimeError("Supabase is not configured.")

    headers: Dict[str, str] = {
        "apikey": resolved_api_key,
        "Accept": "application/json",
    }
    if prefer:
        headers["Prefer"] = prefer

    client = SyncPostgrestClient(f"{SUPABASE_URL.rstrip('/')}/rest/v1", headers=headers)
    client.auth(access_token)
    return client


def call_with_retry(
    operation: Callable[[], T],
    *,
    label: str,
    retries: int = 2,
    backoff_seconds: Sequence[float] = (0.2, 0.5, 1.0),
) -> T:
    """Run a blocking PostgREST call with a short retry/backoff on transport errors."""

    attempts = retries + 1
    for attempt in range(1, attempts + 1):
        start = time.monotonic()
        try:
            result = operation()
            duration_ms = (time.monotonic() - start) * 1000
            logger.debug(
                "Supabase call succeeded",
                extra={"label": label, "duration_ms": round(duration_ms, 2)},
            )
            return result
        except HttpxError as exc:
            duration_ms = (time.monotonic() - start) * 1000
            logger.warning(
                "Supabase call failed",
                extra={
                    "label": label,
                    "attempt": attempt,
                    "duration_ms": round(duration_ms, 2),
                    "error": str(exc),
                },
            )
            if attempt >= attempts:
                raise RuntimeError("Supabase unreachable.") from exc
            delay = backoff_seconds[min(attempt - 1, len(backoff_seconds) - 1)]
            time.sleep(delay)
    raise RuntimeError("Supabase unreachable.")


def postgrest_status(exc: PostgrestAPIError) -> int:
    """Best effort extraction of an HTTP status code from the API error."""

    try:
        return int(exc.code) if exc.code else 502
    except (TypeError, ValueError):
        return 502


def describe_store_error(exc: BaseException) -> str:
    """Short, log-friendly description of a store failure."""

    if isinstance(exc, PostgrestAPIError):
        return f"PostgREST {postgrest_status(exc)}: {exc.message or 'unknown error'}"
    return f"{type(exc).__name__}: {exc}"


__all__ = [
    "call_with_retry",
    "create_postgrest_client",
    "describe_store_error",
    "extract_bearer_token",
    "postgrest_status",
]
