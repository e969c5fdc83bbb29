"""Range reporting over historical and live page views."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Set

from app.schemas import RangeEntry, RangeReport
from app.services.page_views_dao import SupabasePageViewsDAO
from app.services.postgrest_client import describe_store_error
from app.services.view_counter import trailing_identifier

logger = logging.getLogger(__name__)


@dataclass
class _Bucket:
    total: int = 0
    urls: Set[str] = field(default_factory=set)
    example_url: str = ""

    def add(self, page_url: str, count: int) -> None:
        self.total += count
        self.urls.add(page_url)
        if not self.example_url:
            self.example_url = page_url


def in_scope(page_url: str, allowed_prefixes: Optional[Sequence[str]]) -> bool:
    """`None` means unrestricted; an empty list allows nothing."""

    if allowed_prefixes is None:
        return True
    return any(page_url.startswith(prefix) for prefix in allowed_prefixes if prefix)


def _accumulate(buckets: Dict[str, _Bucket], rows: Iterable, allowed_prefixes: Optional[Sequence[str]]) -> None:
    for row in rows:
        if not in_scope(row.page_url, allowed_prefixes):
            continue
        key = trailing_identifier(row.page_url) or row.page_url
        buckets.setdefault(key, _Bucket()).add(row.page_url, row.view_count)


async def aggregate_views(
    dao: SupabasePageViewsDAO,
    from_date: date,
    to_date: date,
    allowed_prefixes: Optional[Sequence[str]] = None,
    *,
    today: Optional[date] = None,
) -> RangeReport:
    """Per-shop totals for the inclusive range, optionally scoped to URL prefixes.

    Live counters belong to today and are merged only when the range reaches
    today. A failing query contributes nothing instead of failing the report.
    """

    if from_date > to_date:
        from_date, to_date = to_date, from_date
    today = today or date.today()
    includes_today = to_date >= today

    buckets: Dict[str, _Bucket] = {}

    start = f"{from_date.isoformat()} 00:00"
    end = f"{to_date.isoformat()} 23:59"
    try:
        history = await dao.fetch_history_between(start, end)
    except Exception as exc:
        logger.error("Error fetching historical views for %s..%s: %s", start, end, describe_store_error(exc))
        history = []
    _accumulate(buckets, history, allowed_prefixes)

    if includes_today:
        try:
            live = await dao.fetch_all_live()
        except Exception as exc:
            logger.error("Error fetching live views for report: %s", describe_store_error(exc))
            live = []
        _accumulate(buckets, live, allowed_prefixes)

    entries: List[RangeEntry] = [
        RangeEntry(
            identifier=identifier,
            total=bucket.total,
            distinct_url_count=len(bucket.urls),
            example_url=bucket.example_url,
        )
        for identifier, bucket in buckets.items()
    ]
    entries.sort(key=lambda entry: (-entry.total, entry.identifier))

    return RangeReport(
        from_date=from_date,
        to_date=to_date,
        includes_today=includes_today,
        grand_total=sum(entry.total for entry in entries),
        entries=entries,
    )


__all__ = ["aggregate_views", "in_scope"]
