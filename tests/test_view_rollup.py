import asyncio
from datetime import datetime

from conftest import InMemoryPageViewsDAO

from app.schemas import HistoricalRecord, LiveCounter
from app.services.view_rollup import (
    DailyRollupScheduler,
    format_view_date,
    parse_time_of_day,
    seconds_until,
    transfer_daily_views,
)

ORIGIN = "https://menu.example"


def _live_store() -> InMemoryPageViewsDAO:
    return InMemoryPageViewsDAO(
        live=[
            LiveCounter(page_url=f"{ORIGIN}/shop/acme/1", view_count=3),
            LiveCounter(page_url=f"{ORIGIN}/shop/lebistro/2", view_count=8),
        ],
        history=[HistoricalRecord(page_url=f"{ORIGIN}/shop/acme/1", view_count=1, view_date="2024-04-30 23:59")],
    )


def test_transfer_moves_every_live_row() -> None:
    store = _live_store()

    result = asyncio.run(transfer_daily_views(store, datetime(2024, 5, 1, 23, 59, 30)))

    assert result.moved == 2
    assert result.inserted and result.cleared
    assert result.view_date == "2024-05-01 23:59"
    assert store.live == []
    moved = [(row.page_url, row.view_count) for row in store.history if row.view_date == "2024-05-01 23:59"]
    assert moved == [(f"{ORIGIN}/shop/acme/1", 3), (f"{ORIGIN}/shop/lebistro/2", 8)]


def test_transfer_with_nothing_live_is_a_noop(store: InMemoryPageViewsDAO) -> None:
    result = asyncio.run(transfer_daily_views(store))

    assert result.moved == 0
    assert store.history == []
    assert "insert_history" not in store.calls
    assert "clear_live" not in store.calls


def test_insert_failure_keeps_live_counters() -> None:
    store = _live_store()
    store.fail.add("insert_history")

    result = asyncio.run(transfer_daily_views(store))

    assert result.error
    assert not result.inserted
    assert len(store.live) == 2
    assert "clear_live" not in store.calls


def test_delete_failure_is_logged_not_raised() -> None:
    store = _live_store()
    store.fail.add("clear_live")

    result = asyncio.run(transfer_daily_views(store))

    assert result.inserted and not result.cleared
    assert result.error
    assert len(store.live) == 2
    assert len(store.history) == 3


def test_schedule_helpers() -> None:
    assert parse_time_of_day("07:05") == (7, 5)
    assert parse_time_of_day("25:00") == (23, 59)
    assert parse_time_of_day("noon") == (23, 59)
    assert seconds_until(datetime(2024, 5, 1, 23, 58, 0), 23, 59) == 60
    assert seconds_until(datetime(2024, 5, 1, 23, 59, 0), 23, 59) == 24 * 3600
    assert format_view_date(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02 03:04"


def test_run_if_due_fires_once_per_matching_minute() -> None:
    runs = []
    now = {"value": datetime(2024, 5, 1, 23, 58, 30)}

    async def _transfer() -> None:
        runs.append(now["value"])

    scheduler = DailyRollupScheduler(_transfer, at="23:59", check_interval=60, clock=lambda: now["value"])

    async def _run() -> None:
        assert await scheduler.run_if_due() is False
        now["value"] = datetime(2024, 5, 1, 23, 59, 1)
        assert await scheduler.run_if_due() is True
        now["value"] = datetime(2024, 5, 1, 23, 59, 50)
        assert await scheduler.run_if_due() is False
        now["value"] = datetime(2024, 5, 2, 23, 59, 5)
        assert await scheduler.run_if_due() is True

    asyncio.run(_run())

    assert len(runs) == 2


def test_start_stop_is_idempotent_and_restartable() -> None:
    async def _transfer() -> None:
        return None

    scheduler = DailyRollupScheduler(_transfer, clock=lambda: datetime(2024, 5, 1, 12, 0))

    async def _run() -> None:
        scheduler.stop()
        assert not scheduler.running
        scheduler.start()
        handle = scheduler._timeout_handle
        scheduler.start()
        assert scheduler._timeout_handle is handle
        assert scheduler.running
        scheduler.stop()
        scheduler.stop()
        assert not scheduler.running
        scheduler.start()
        assert scheduler.running
        scheduler.stop()

    asyncio.run(_run())


def test_first_fire_runs_transfer_and_arms_recurring_check() -> None:
    runs = []

    async def _transfer() -> None:
        runs.append("transfer")

    moment = datetime(2024, 5, 1, 23, 58, 59, 950000)
    scheduler = DailyRollupScheduler(_transfer, at="23:59", check_interval=60, clock=lambda: moment)

    async def _run() -> None:
        scheduler.start()
        await asyncio.sleep(0.2)
        assert scheduler._timeout_handle is None
        assert scheduler._check_task is not None
        scheduler.stop()
        assert not scheduler.running

    asyncio.run(_run())

    assert runs == ["transfer"]


class RacingDAO(InMemoryPageViewsDAO):
    """A visitor counts a new shop while the transfer is writing history."""

    async def insert_history(self, records):
        inserted = await super().insert_history(records)
        self._add_live(f"{ORIGIN}/shop/newshop/77", 1)
        return inserted


def test_transfer_keeps_counters_created_mid_transfer() -> None:
    store = RacingDAO(live=[LiveCounter(page_url=f"{ORIGIN}/shop/acme/1", view_count=3)])

    result = asyncio.run(transfer_daily_views(store, datetime(2024, 5, 1, 23, 59)))

    assert result.moved == 1 and result.cleared
    assert [row.page_url for row in store.history] == [f"{ORIGIN}/shop/acme/1"]
    assert [(row.page_url, row.view_count) for row in store.live] == [(f"{ORIGIN}/shop/newshop/77", 1)]


def test_early_first_fire_blocks_the_same_day_check() -> None:
    runs = []
    now = {"value": datetime(2024, 5, 1, 23, 58, 59, 950000)}

    async def _transfer() -> None:
        runs.append(now["value"])

    scheduler = DailyRollupScheduler(_transfer, at="23:59", check_interval=60, clock=lambda: now["value"])

    async def _run() -> None:
        assert await scheduler.run_if_due(scheduled_for=datetime(2024, 5, 1, 23, 59)) is True
        now["value"] = datetime(2024, 5, 1, 23, 59, 30)
        assert await scheduler.run_if_due() is False
        now["value"] = datetime(2024, 5, 2, 23, 59, 30)
        assert await scheduler.run_if_due() is True

    asyncio.run(_run())

    assert len(runs) == 2
    assert scheduler.last_run_key == "2024-05-02 23:59"


def test_timer_firing_early_is_keyed_on_the_armed_minute() -> None:
    runs = []
    now = {"value": datetime(2024, 5, 1, 23, 58, 59, 950000)}

    async def _transfer() -> None:
        runs.append(now["value"])

    scheduler = DailyRollupScheduler(_transfer, at="23:59", check_interval=60, clock=lambda: now["value"])

    async def _run() -> None:
        scheduler.start()
        await asyncio.sleep(0.2)
        scheduler.stop()
        assert scheduler.last_run_key == "2024-05-01 23:59"
        now["value"] = datetime(2024, 5, 1, 23, 59, 40)
        assert await scheduler.run_if_due() is False

    asyncio.run(_run())

    assert len(runs) == 1
