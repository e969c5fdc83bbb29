"""Supabase connection settings."""

from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY")


def get_service_token() -> Optional[str]:
    """Return the key used by background jobs and public endpoints."""

    return SUPABASE_SERVICE_ROLE_KEY or SUPABASE_ANON_KEY


__all__ = [
    "get_service_token",
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
    "SUPABASE_SERVICE_ROLE_KEY",
]
