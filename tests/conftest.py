from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, List, Optional, Sequence, Set

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("VIEW_TRANSFER_ENABLED", "false")
os.environ.setdefault("PUBLIC_ORIGIN", "https://menu.example")

from app.schemas import HistoricalRecord, LiveCounter
from app.services.page_views_dao import SupabasePageViewsDAO


class StoreDown(RuntimeError):
    pass


class InMemoryPageViewsDAO(SupabasePageViewsDAO):
    """Keeps both tables in lists; `fail` names the operations that should raise."""

    def __init__(self, live: Sequence[LiveCounter] = (), history: Sequence[HistoricalRecord] = ()):
        super().__init__("test-token")
        self.live: List[LiveCounter] = []
        self.history: List[HistoricalRecord] = list(history)
        self.fail: Set[str] = set()
        self.calls: List[str] = []
        self._next_id = 1
        for row in live:
            self._add_live(row.page_url, row.view_count, row.id)

    def _add_live(self, page_url: str, view_count: int, row_id: Optional[int] = None) -> LiveCounter:
        row = LiveCounter(id=row_id or self._next_id, page_url=page_url, view_count=view_count)
        self._next_id = max(self._next_id, row.id) + 1
        self.live.append(row)
        return row

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail:
            raise StoreDown(f"{name} unavailable")

    async def fetch_live_by_url(self, page_url: str) -> List[LiveCounter]:
        self._record("fetch_live_by_url")
        return [row.model_copy() for row in self.live if row.page_url == page_url]

    async def fetch_live_by_suffix(self, identifier: Any) -> List[LiveCounter]:
        self._record("fetch_live_by_suffix")
        return [row.model_copy() for row in self.live if row.page_url.endswith(f"/{identifier}")]

    async def fetch_all_live(self) -> List[LiveCounter]:
        self._record("fetch_all_live")
        return [row.model_copy() for row in self.live]

    async def insert_live(self, page_url: str, view_count: int = 1) -> LiveCounter:
        self._record("insert_live")
        return self._add_live(page_url, view_count).model_copy()

    async def update_live(self, row_id: int, *, view_count: int, page_url: str) -> LiveCounter:
        self._record("update_live")
        for row in self.live:
            if row.id == row_id:
                row.view_count = view_count
                row.page_url = page_url
                return row.model_copy()
        return LiveCounter(id=row_id, page_url=page_url, view_count=view_count)

    async def clear_live(self, row_ids: Sequence[int]) -> None:
        self._record("clear_live")
        doomed = set(row_ids)
        self.live = [row for row in self.live if row.id not in doomed]

    async def rename_live_url(self, old_url: str, new_url: str) -> None:
        self._record("rename_live_url")
        for row in self.live:
            if row.page_url == old_url:
                row.page_url = new_url

    async def fetch_history_by_url(self, page_url: str) -> List[HistoricalRecord]:
        self._record("fetch_history_by_url")
        return [row.model_copy() for row in self.history if row.page_url == page_url]

    async def fetch_history_by_suffix(self, identifier: Any) -> List[HistoricalRecord]:
        self._record("fetch_history_by_suffix")
        return [row.model_copy() for row in self.history if row.page_url.endswith(f"/{identifier}")]

    async def fetch_history_between(self, start: str, end: str) -> List[HistoricalRecord]:
        self._record("fetch_history_between")
        return [row.model_copy() for row in self.history if start <= row.view_date <= end]

    async def insert_history(self, records: Sequence[HistoricalRecord]) -> int:
        self._record("insert_history")
        self.history.extend(record.model_copy() for record in records)
        return len(records)

    async def rename_history_url(self, old_url: str, new_url: str) -> None:
        self._record("rename_history_url")
        for row in self.history:
            if row.page_url == old_url:
                row.page_url = new_url


@pytest.fixture()
def store() -> InMemoryPageViewsDAO:
    return InMemoryPageViewsDAO()
