"""Data access for the live (`page_views`) and historical (`daily_page_views`) counters."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from app.config.supabase_client import get_service_token
from app.schemas import HistoricalRecord, LiveCounter
from app.services.postgrest_client import call_with_retry, create_postgrest_client

logger = logging.getLogger(__name__)

LIVE_TABLE = "page_views"
HISTORY_TABLE = "daily_page_views"
LIVE_PAGE_SIZE = 1000


def suffix_pattern(identifier: Any) -> str:
    """LIKE pattern matching every URL that ends with `/<identifier>`."""

    return f"%/{identifier}"


class SupabasePageViewsDAO:
    """DAO relying on Supabase/PostgREST for the page view tables.

    Every method raises on store failure (`postgrest.APIError`, `RuntimeError`);
    callers in `view_counter`, `view_rollup` and `view_reports` decide how to
    degrade.
    """

    def __init__(self, access_token: Optional[str] = None, *, api_key: Optional[str] = None):
        self.page_size = LIVE_PAGE_SIZE
        self.access_token = access_token
        self.api_key = api_key

    def _client(self, *, prefer: Optional[str] = None):
        token = self.access_token or get_service_token()
        if not token:
            raise RuntimeError("Supabase is not configured.")
        return create_postgrest_client(token, prefer=prefer, api_key=self.api_key)

    async def _execute(
        self,
        label: str,
        build: Callable[[Any], Any],
        *,
        prefer: Optional[str] = None,
        retry: bool = True,
    ) -> List[Dict[str, Any]]:
        """Run one PostgREST request; `retry=False` for writes that must not be sent twice."""

        def _request() -> List[Dict[str, Any]]:
            with self._client(prefer=prefer) as client:
                response = build(client).execute()
                return response.data or []

        return await asyncio.to_thread(call_with_retry, _request, label=label, retries=2 if retry else 0)

    # live counters

    async def fetch_live_by_url(self, page_url: str) -> List[LiveCounter]:
        rows = await self._execute(
            "page_views:by_url",
            lambda client: client.table(LIVE_TABLE).select("id,page_url,view_count").eq("page_url", page_url),
        )
        return [LiveCounter.model_validate(row) for row in rows]

    async def fetch_live_by_suffix(self, identifier: Any) -> List[LiveCounter]:
        rows = await self._execute(
            "page_views:by_suffix",
            lambda client: (
                client.table(LIVE_TABLE)
                .select("id,page_url,view_count")
                .like("page_url", suffix_pattern(identifier))
                .order("id")
            ),
        )
        return [LiveCounter.model_validate(row) for row in rows]

    async def fetch_all_live(self) -> List[LiveCounter]:
        """Every live row, read page by page to stay under the PostgREST max-rows cap."""

        rows: List[Dict[str, Any]] = []
        start = 0
        while True:
            end = start + self.page_size - 1
            page = await self._execute(
                "page_views:all",
                lambda client, start=start, end=end: (
                    client.table(LIVE_TABLE).select("id,page_url,view_count").order("id").range(start, end)
                ),
            )
            rows.extend(page)
            if len(page) < self.page_size:
                break
            start += self.page_size
        return [LiveCounter.model_validate(row) for row in rows]

    async def insert_live(self, page_url: str, view_count: int = 1) -> LiveCounter:
        rows = await self._execute(
            "page_views:insert",
            lambda client: client.table(LIVE_TABLE).insert({"page_url": page_url, "view_count": view_count}),
            prefer="return=representation",
            retry=False,
        )
        if not rows:
            return LiveCounter(page_url=page_url, view_count=view_count)
        return LiveCounter.model_validate(rows[0])

    async def update_live(self, row_id: int, *, view_count: int, page_url: str) -> LiveCounter:
        rows = await self._execute(
            "page_views:update",
            lambda client: (
                client.table(LIVE_TABLE)
                .update({"view_count": view_count, "page_url": page_url})
                .eq("id", row_id)
            ),
            prefer="return=representation",
        )
        if not rows:
            return LiveCounter(id=row_id, page_url=page_url, view_count=view_count)
        return LiveCounter.model_validate(rows[0])

    async def clear_live(self, row_ids: Sequence[int]) -> None:
        """Delete the given live rows; rows created since they were read are kept."""

        ids = [row_id for row_id in row_ids if row_id is not None]
        if not ids:
            return
        await self._execute(
            "page_views:clear",
            lambda client: client.table(LIVE_TABLE).delete().in_("id", ids),
        )

    async def rename_live_url(self, old_url: str, new_url: str) -> None:
        await self._execute(
            "page_views:rename",
            lambda client: client.table(LIVE_TABLE).update({"page_url": new_url}).eq("page_url", old_url),
        )

    # history

    async def fetch_history_by_url(self, page_url: str) -> List[HistoricalRecord]:
        rows = await self._execute(
            "daily_page_views:by_url",
            lambda client: (
                client.table(HISTORY_TABLE).select("page_url,view_count,view_date").eq("page_url", page_url)
            ),
        )
        return [HistoricalRecord.model_validate(row) for row in rows]

    async def fetch_history_by_suffix(self, identifier: Any) -> List[HistoricalRecord]:
        rows = await self._execute(
            "daily_page_views:by_suffix",
            lambda client: (
                client.table(HISTORY_TABLE)
                .select("page_url,view_count,view_date")
                .like("page_url", suffix_pattern(identifier))
            ),
        )
        return [HistoricalRecord.model_validate(row) for row in rows]

    async def fetch_history_between(self, start: str, end: str) -> List[HistoricalRecord]:
        """Rows whose `view_date` string sorts within [start, end]."""

        rows = await self._execute(
            "daily_page_views:range",
            lambda client: (
                client.table(HISTORY_TABLE)
                .select("page_url,view_count,view_date")
                .gte("view_date", start)
                .lte("view_date", end)
                .order("view_date")
            ),
        )
        return [HistoricalRecord.model_validate(row) for row in rows]

    async def insert_history(self, records: Sequence[HistoricalRecord]) -> int:
        if not records:
            return 0
        payload = [record.model_dump() for record in records]
        await self._execute(
            "daily_page_views:insert",
            lambda client: client.table(HISTORY_TABLE).insert(payload),
            retry=False,
        )
        return len(payload)

    async def rename_history_url(self, old_url: str, new_url: str) -> None:
        await self._execute(
            "daily_page_views:rename",
            lambda client: client.table(HISTORY_TABLE).update({"page_url": new_url}).eq("page_url", old_url),
        )


__all__ = ["SupabasePageViewsDAO", "suffix_pattern", "LIVE_TABLE", "HISTORY_TABLE"]
