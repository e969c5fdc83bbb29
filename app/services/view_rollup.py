"""Daily roll-up of live page counters into the historical ledger."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional, Set, Tuple

from app.config.view_settings import VIEW_TRANSFER_CHECK_SECONDS, VIEW_TRANSFER_TIME
from app.schemas import HistoricalRecord, TransferResult
from app.services.page_views_dao import SupabasePageViewsDAO
from app.services.postgrest_client import describe_store_error

logger = logging.getLogger(__name__)

VIEW_DATE_FORMAT = "%Y-%m-%d %H:%M"
DEFAULT_TRANSFER_TIME = (23, 59)


def format_view_date(moment: datetime) -> str:
    return moment.strftime(VIEW_DATE_FORMAT)


def parse_time_of_day(value: Optional[str]) -> Tuple[int, int]:
    """Parse `HH:MM`; falls back to 23:59 on anything malformed."""

    try:
        hh, mm = map(int, (value or "").strip().split(":"))
    except ValueError:
        logger.warning("Invalid transfer time %r, using 23:59", value)
        return DEFAULT_TRANSFER_TIME
    if 0 <= hh <= 23 and 0 <= mm <= 59:
        return hh, mm
    logger.warning("Invalid transfer time %r, using 23:59", value)
    return DEFAULT_TRANSFER_TIME


def seconds_until(now: datetime, hour: int, minute: int) -> float:
    """Seconds until the next `hour:minute` strictly after `now`."""

    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


def is_transfer_time(now: datetime, hour: int, minute: int) -> bool:
    return now.hour == hour and now.minute == minute


async def transfer_daily_views(dao: SupabasePageViewsDAO, now: Optional[datetime] = None) -> TransferResult:
    """Copy every live counter into `daily_page_views`, then delete the copied rows.

    The delete only runs after a successful insert and only targets the ids that
    were read, so a counter created meanwhile waits for the next transfer. A
    failure can at worst duplicate history, never lose live counts.
    """

    try:
        live_rows = await dao.fetch_all_live()
    except Exception as exc:
        cause = describe_store_error(exc)
        logger.error("Error fetching page views for transfer: %s", cause)
        return TransferResult(error=cause)

    if not live_rows:
        logger.debug("No live page views to transfer")
        return TransferResult()

    view_date = format_view_date(now or datetime.now())
    records = [
        HistoricalRecord(page_url=row.page_url, view_count=row.view_count, view_date=view_date)
        for row in live_rows
    ]
    try:
        await dao.insert_history(records)
    except Exception as exc:
        cause = describe_store_error(exc)
        logger.error("Error inserting daily views, live counters kept: %s", cause)
        return TransferResult(view_date=view_date, error=cause)

    try:
        await dao.clear_live([row.id for row in live_rows])
    except Exception as exc:
        cause = describe_store_error(exc)
        logger.error(
            "Error clearing page_views after transfer, history may be duplicated",
            extra={"view_date": view_date, "rows": len(records), "error": cause},
        )
        return TransferResult(moved=len(records), view_date=view_date, inserted=True, error=cause)

    logger.info("Transferred %s page view counters at %s", len(records), view_date)
    return TransferResult(moved=len(records), view_date=view_date, inserted=True, cleared=True)


async def transfer_views_now(dao: SupabasePageViewsDAO) -> TransferResult:
    """On-demand transfer stamped with the current time."""

    return await transfer_daily_views(dao, datetime.now())


class DailyRollupScheduler:
    """Runs a transfer once a day at a configured local time.

    `start()` arms a one-shot timer for the next occurrence of the time of day;
    when it fires the transfer runs and a recurring check takes over, running
    the transfer again whenever the clock reads the configured minute. Owned by
    the application lifespan.
    """

    def __init__(
        self,
        transfer: Callable[[], Awaitable[Any]],
        *,
        at: str = VIEW_TRANSFER_TIME,
        check_interval: float = VIEW_TRANSFER_CHECK_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.transfer = transfer
        self.hour, self.minute = parse_time_of_day(at)
        self.check_interval = max(1.0, float(check_interval))
        self.clock = clock

        self._timeout_handle: Optional[asyncio.TimerHandle] = None
        self._check_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self._last_run_key: Optional[str] = None
        self._armed_for: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self._timeout_handle is not None or self._check_task is not None

    @property
    def last_run_key(self) -> Optional[str]:
        return self._last_run_key

    def start(self) -> None:
        if self.running:
            return
        loop = asyncio.get_running_loop()
        now = self.clock()
        delay = seconds_until(now, self.hour, self.minute)
        self._armed_for = (now + timedelta(seconds=delay)).replace(second=0, microsecond=0)
        self._timeout_handle = loop.call_later(delay, self._on_first_fire)
        logger.info(
            "Daily view transfer armed for %02d:%02d (in %.0fs)", self.hour, self.minute, delay
        )

    def stop(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None
        if self._check_task is not None:
            self._check_task.cancel()
            self._check_task = None

    def _on_first_fire(self) -> None:
        self._timeout_handle = None
        loop = asyncio.get_running_loop()
        self._spawn(self.run_if_due(scheduled_for=self._armed_for or self.clock()))
        self._check_task = loop.create_task(self._check_loop())

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _check_loop(self) -> None:
        while True:
            await asyncio.sleep(self.check_interval)
            await self.run_if_due()

    async def run_if_due(self, *, scheduled_for: Optional[datetime] = None) -> bool:
        """Run the transfer when the configured minute is current and not yet handled.

        `scheduled_for` is the minute the one-shot timer was armed for; the run
        is keyed on it so an early timer cannot free the real minute for a
        second transfer.
        """

        if scheduled_for is None:
            now = self.clock()
            if not is_transfer_time(now, self.hour, self.minute):
                return False
            key = format_view_date(now)
        else:
            key = format_view_date(scheduled_for)
        if key == self._last_run_key:
            return False
        self._last_run_key = key
        try:
            await self.transfer()
        except Exception:
            logger.exception("Scheduled page view transfer failed")
        return True


__all__ = [
    "DailyRollupScheduler",
    "format_view_date",
    "is_transfer_time",
    "parse_time_of_day",
    "seconds_until",
    "transfer_daily_views",
    "transfer_views_now",
]
