"""FastAPI application exposing page-view tracking and reporting."""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict

sys.path.append(str(Path(__file__).resolve().parents[1]))

from fastapi import FastAPI

from app.api.routes.views import router as views_router
from app.config.view_settings import (
    VIEW_TRANSFER_CHECK_SECONDS,
    VIEW_TRANSFER_ENABLED,
    VIEW_TRANSFER_TIME,
)
from app.services.page_views_dao import SupabasePageViewsDAO
from app.services.view_rollup import DailyRollupScheduler, transfer_daily_views

logger = logging.getLogger(__name__)


def build_scheduler() -> DailyRollupScheduler:
    dao = SupabasePageViewsDAO()

    async def _transfer():
        return await transfer_daily_views(dao)

    return DailyRollupScheduler(
        _transfer,
        at=VIEW_TRANSFER_TIME,
        check_interval=VIEW_TRANSFER_CHECK_SECONDS,
    )


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    scheduler = build_scheduler() if VIEW_TRANSFER_ENABLED else None
    application.state.rollup_scheduler = scheduler
    if scheduler is not None:
        scheduler.start()
    else:
        logger.info("Daily view transfer disabled")
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


app = FastAPI(title="Digital Menu Views", lifespan=lifespan)

app.include_router(views_router)


@app.get("/health")
def health() -> Dict[str, str]:
    scheduler = getattr(app.state, "rollup_scheduler", None)
    return {
        "status": "ok",
        "rollup": "running" if scheduler is not None and scheduler.running else "stopped",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="127.0.0.1", port=8000, reload=True)
