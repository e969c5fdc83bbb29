"""Visible dwell-time tracking for one mounted shop page.

A visit counts as a view once the page has been visible for a cumulative
`threshold_ms`. Hidden time never accrues and the count is issued at most once
per canonical URL for as long as the tab-scoped session store keeps its flag.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, MutableMapping, Optional

from app.config.view_settings import VIEW_DWELL_POLL_SECONDS, VIEW_DWELL_THRESHOLD_MS
from app.services.view_counter import session_key

logger = logging.getLogger(__name__)


class DwellTimer:
    def __init__(
        self,
        page_url: str,
        on_threshold: Callable[[], Awaitable[Any]],
        *,
        session_store: MutableMapping[str, str],
        is_visible: Callable[[], bool] = lambda: True,
        clock: Callable[[], float] = time.monotonic,
        threshold_ms: int = VIEW_DWELL_THRESHOLD_MS,
        poll_interval: float = VIEW_DWELL_POLL_SECONDS,
    ):
        self.page_url = page_url
        self.on_threshold = on_threshold
        self.session_store = session_store
        self.is_visible = is_visible
        self.clock = clock
        self.threshold_ms = threshold_ms
        self.poll_interval = poll_interval

        self.accumulated_ms = 0.0
        self.visible_since: Optional[float] = None
        self.has_counted = False
        self.is_session_suppressed = False
        self._mounted = False
        self._task: Optional[asyncio.Task] = None

    @property
    def session_key(self) -> str:
        return session_key(self.page_url)

    @property
    def active(self) -> bool:
        return self._mounted and not self.has_counted and not self.is_session_suppressed

    def mount(self) -> bool:
        """Prepare accrual; returns False when this tab already counted the page."""

        self._mounted = True
        if self.session_store.get(self.session_key):
            self.is_session_suppressed = True
            self.has_counted = True
            logger.debug("View already counted in this session for %s", self.page_url)
            return False
        if self.is_visible():
            self.visible_since = self.clock()
        return True

    def set_visibility(self, visible: bool) -> None:
        if not self.active:
            return
        self.visible_since = self.clock() if visible else None

    async def tick(self) -> bool:
        """Take one sample; returns True when this sample triggered the count."""

        if not self.active:
            return False
        if not self.is_visible():
            self.visible_since = None
            return False

        now = self.clock()
        if self.visible_since is None:
            self.visible_since = now
        self.accumulated_ms += (now - self.visible_since) * 1000
        self.visible_since = now

        if self.accumulated_ms < self.threshold_ms:
            return False

        self.has_counted = True
        self._cancel_polling()
        try:
            await self.on_threshold()
        finally:
            self.session_store[self.session_key] = "1"
        return True

    async def _poll(self) -> None:
        while self.active:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.tick()
            except Exception:
                logger.exception("Page view increment failed for %s", self.page_url)

    def start(self) -> Optional[asyncio.Task]:
        """Mount and arm the polling task on the running loop."""

        if self._task is not None:
            return self._task
        if not self.mount():
            return None
        self._task = asyncio.get_running_loop().create_task(self._poll())
        return self._task

    def _cancel_polling(self) -> None:
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def unmount(self) -> None:
        self._cancel_polling()
        self._mounted = False
        self.visible_since = None


__all__ = ["DwellTimer"]
