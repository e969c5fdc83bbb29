"""Helpers for working with Supabase access tokens."""

from __future__ import annotations

import base64
import json
from typing import Any, Dict

from fastapi import HTTPException


def decode_access_token(access_token: str) -> Dict[str, Any]:
    """Return the JWT payload of a Supabase access token (signature is checked by PostgREST)."""

    if not access_token:
        raise HTTPException(status_code=401, detail="Authentification requise.")

    segments = access_token.split(".")
    if len(segments) != 3:
        raise HTTPException(status_code=401, detail="Jeton d'authentification invalide.")
    payload_segment = segments[1]
    padding = "=" * (-len(payload_segment) % 4)
    try:
        decoded = base64.urlsafe_b64decode((payload_segment + padding).encode("ascii"))
        claims = json.loads(decoded.decode("utf-8"))
    except (ValueError, UnicodeError) as exc:
        raise HTTPException(status_code=401, detail="Jeton d'authentification invalide.") from exc
    if not isinstance(claims, dict):
        raise HTTPException(status_code=401, detail="Jeton d'authentification invalide.")
    return claims


def require_user_id(access_token: str) -> str:
    """Return the `sub` claim or reject the request."""

    user_id = decode_access_token(access_token).get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Utilisateur Supabase invalide.")
    return str(user_id)


__all__ = ["decode_access_token", "require_user_id"]
