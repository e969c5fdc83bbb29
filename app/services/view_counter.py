"""Page view counters: canonical URLs, reads and the qualifying-view increment.

Reads never raise past this module. Each operation returns a `StoreResult`
holding either the value read from Supabase or the zero default together with
the (already logged) cause of the failure.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Generic, Iterable, Optional, TypeVar

from app.schemas import ShopRef, ShopViewSummary, ViewCounts
from app.services.page_views_dao import SupabasePageViewsDAO
from app.services.postgrest_client import describe_store_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

SESSION_KEY_PREFIX = "pv_counted:"
_WHITESPACE_RE = re.compile(r"\s+")
_TRAILING_ID_RE = re.compile(r"/(\d+)/?$")


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    value: T
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "StoreResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, default: T, exc: BaseException, *, context: str) -> "StoreResult[T]":
        cause = describe_store_error(exc)
        logger.error("%s failed: %s", context, cause)
        return cls(value=default, error=cause)


def normalize_shop_name(name: Optional[str]) -> str:
    return _WHITESPACE_RE.sub("", name or "").lower()


def build_shop_url(origin: str, name: Optional[str], shop_id: Any) -> str:
    """Canonical page identity: `<origin>/shop/<normalized name>/<shop id>`."""

    return f"{origin.rstrip('/')}/shop/{normalize_shop_name(name)}/{shop_id}"


def trailing_identifier(page_url: str) -> Optional[str]:
    match = _TRAILING_ID_RE.search(page_url or "")
    return match.group(1) if match else None


def name_segment(page_url: str) -> Optional[str]:
    parts = (page_url or "").rstrip("/").split("/")
    return parts[-2] if len(parts) >= 2 else None


def session_key(page_url: str) -> str:
    return f"{SESSION_KEY_PREFIX}{page_url}"


def _sum_counts(rows: Iterable[Any]) -> int:
    return sum(row.view_count for row in rows)


async def get_today(dao: SupabasePageViewsDAO, page_url: str) -> StoreResult[int]:
    """Live count for an exact URL; 0 when no row exists."""

    try:
        rows = await dao.fetch_live_by_url(page_url)
    except Exception as exc:
        return StoreResult.failure(0, exc, context="today views lookup")
    return StoreResult.success(rows[0].view_count if rows else 0)


async def get_total(dao: SupabasePageViewsDAO, page_url: str) -> StoreResult[int]:
    """Sum of the historical counts stored under an exact URL."""

    try:
        rows = await dao.fetch_history_by_url(page_url)
    except Exception as exc:
        return StoreResult.failure(0, exc, context="total views lookup")
    return StoreResult.success(_sum_counts(rows))


async def get_today_by_id(dao: SupabasePageViewsDAO, identifier: Any) -> StoreResult[int]:
    """Live count summed across every URL ending with `/<identifier>`."""

    try:
        rows = await dao.fetch_live_by_suffix(identifier)
    except Exception as exc:
        return StoreResult.failure(0, exc, context="today views lookup by id")
    return StoreResult.success(_sum_counts(rows))


async def get_total_by_id(dao: SupabasePageViewsDAO, identifier: Any) -> StoreResult[int]:
    try:
        rows = await dao.fetch_history_by_suffix(identifier)
    except Exception as exc:
        return StoreResult.failure(0, exc, context="total views lookup by id")
    return StoreResult.success(_sum_counts(rows))


async def increment(dao: SupabasePageViewsDAO, canonical_url: str, identifier: Any) -> StoreResult[int]:
    """Count one qualifying view and return the new live count.

    The live row is looked up by trailing id so a counter recorded under a
    stale shop name is merged and its URL rewritten to `canonical_url`. This
    is a read-modify-write: two concurrent callers may both read N and write N+1.
    """

    try:
        existing = await dao.fetch_live_by_suffix(identifier)
        if existing:
            current = existing[0]
            updated = await dao.update_live(
                current.id,
                view_count=current.view_count + 1,
                page_url=canonical_url,
            )
            if current.page_url != canonical_url:
                logger.info("Merged live counter %s into %s", current.page_url, canonical_url)
            return StoreResult.success(updated.view_count)
        inserted = await dao.insert_live(canonical_url, 1)
        return StoreResult.success(inserted.view_count)
    except Exception as exc:
        return StoreResult.failure(0, exc, context="page view increment")


async def rename_page_urls(dao: SupabasePageViewsDAO, old_url: str, new_url: str) -> StoreResult[bool]:
    """Move live and historical rows from `old_url` to `new_url` after a shop rename.

    Only runs when both URLs carry the same trailing id and differ in the name
    segment; anything else is reported as `False` without touching the store.
    """

    same_id = trailing_identifier(old_url) is not None and trailing_identifier(old_url) == trailing_identifier(new_url)
    if not same_id or name_segment(old_url) == name_segment(new_url):
        return StoreResult.success(False)

    errors = []
    for label, operation in (("live", dao.rename_live_url), ("historical", dao.rename_history_url)):
        try:
            await operation(old_url, new_url)
        except Exception as exc:
            errors.append(StoreResult.failure(False, exc, context=f"{label} page url rename").error)
    if errors:
        return StoreResult(value=False, error="; ".join(errors))
    logger.info("Renamed page views %s -> %s", old_url, new_url)
    return StoreResult.success(True)


async def get_shop_counts(dao: SupabasePageViewsDAO, origin: str, name: Optional[str], shop_id: Any) -> ViewCounts:
    url = build_shop_url(origin, name, shop_id)
    today = await get_today(dao, url)
    total = await get_total(dao, url)
    return ViewCounts(today=today.value, total=total.value)


async def summarize_shops(dao: SupabasePageViewsDAO, origin: str, shops: Iterable[ShopRef]) -> ShopViewSummary:
    """Sum today's and historical counts over several shops, one shop at a time."""

    selected = list(shops)
    summary = ShopViewSummary(shops=selected)
    for shop in selected:
        counts = await get_shop_counts(dao, origin, shop.name, shop.id)
        summary.today += counts.today
        summary.total += counts.total
    return summary


__all__ = [
    "StoreResult",
    "build_shop_url",
    "get_shop_counts",
    "get_today",
    "get_today_by_id",
    "get_total",
    "get_total_by_id",
    "increment",
    "name_segment",
    "normalize_shop_name",
    "rename_page_urls",
    "session_key",
    "summarize_shops",
    "trailing_identifier",
]
