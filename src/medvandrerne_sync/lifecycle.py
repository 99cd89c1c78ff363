"""Foreground/background tracking with a soft refresh on long resumes."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable

from .models import LifecycleState

if TYPE_CHECKING:
    from .cache import CacheStore
    from .synchronizer import DataSynchronizer, SyncReport

logger = logging.getLogger("medvandrerne_sync.lifecycle")

_SUSPENDED_STATES = {"background", "inactive", "suspended"}


class LifecycleMonitor:
    """Tracks Active/Suspended transitions and refreshes after long suspensions.

    The soft refresh invalidates dynamic categories and then runs a
    non-forcing ``get_all``: the invalidation already guarantees one fetch per
    dynamic category, and static categories are served from cache while they
    are within TTL.
    """

    def __init__(
        self,
        cache: CacheStore,
        synchronizer: DataSynchronizer,
        threshold_seconds: float = 60.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.cache = cache
        self.synchronizer = synchronizer
        self.threshold = timedelta(seconds=threshold_seconds)
        self.clock = clock
        self.state = LifecycleState.ACTIVE
        self.suspended_at: datetime | None = None

    @staticmethod
    def parse_state(value: str | LifecycleState) -> LifecycleState:
        if isinstance(value, LifecycleState):
            return value
        if value == "active":
            return LifecycleState.ACTIVE
        if value in _SUSPENDED_STATES:
            return LifecycleState.SUSPENDED
        raise ValueError(f"Unknown lifecycle state: {value!r}")

    async def on_state_change(self, new_state: str | LifecycleState) -> SyncReport | None:
        """Feed a lifecycle transition; returns the refresh report when one ran."""
        state = self.parse_state(new_state)
        if state is self.state:
            return None

        if state is LifecycleState.SUSPENDED:
            self.state = state
            self.suspended_at = self.clock()
            logger.debug("App suspended at %s", self.suspended_at.isoformat())
            return None

        self.state = state
        suspended_at, self.suspended_at = self.suspended_at, None
        if suspended_at is None:
            return None
        elapsed = self.clock() - suspended_at
        if elapsed <= self.threshold:
            logger.debug("Resumed after %.0fs, no refresh needed", elapsed.total_seconds())
            return None

        logger.info("Resumed after %.0fs, running soft refresh", elapsed.total_seconds())
        return await self.soft_refresh()

    async def soft_refresh(self) -> SyncReport:
        self.cache.invalidate_all_dynamic()
        return await self.synchronizer.get_all(force_refresh=False)

    async def run_forever(self, is_shutdown: Callable[[], bool], interval_seconds: float = 300.0) -> None:
        """Periodically re-check freshness while the app is active."""
        logger.info("Lifecycle refresh loop started (interval=%.0fs)", interval_seconds)
        while not is_shutdown():
            await asyncio.sleep(interval_seconds)
            if is_shutdown() or self.state is not LifecycleState.ACTIVE:
                continue
            try:
                await self.synchronizer.get_all(force_refresh=False)
            except Exception as exc:
                logger.exception("Periodic refresh error: %s", exc)
