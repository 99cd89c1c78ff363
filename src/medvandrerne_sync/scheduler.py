"""Activity reminder scheduler on top of the OS notification backend.

Keeps at most one pending reminder per activity.  ``schedule`` cancels any
existing reminder for the activity before creating a new one, ``cancel``
removes every match (duplicates included), and ``cleanup`` is the two-pass
repair run on every cold start:

1. drop reminders whose fire time has already passed;
2. per activity, keep only the reminder with the latest fire time.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING, Any, Callable

from .models import Activity, ScheduledReminder, normalize_entity_id
from .store import dump_json, load_json

if TYPE_CHECKING:
    from .protocols import NotificationBackendProtocol, StoreProtocol

logger = logging.getLogger("medvandrerne_sync.scheduler")

INDEX_KEY = "reminder_index"

_MONTHS_NB = (
    "januar", "februar", "mars", "april", "mai", "juni",
    "juli", "august", "september", "oktober", "november", "desember",
)


@dataclass(slots=True)
class CleanupReport:
    expired_removed: int = 0
    duplicates_removed: int = 0
    kept: list[ScheduledReminder] = field(default_factory=list)


class ReminderScheduler:
    """Maps activities to at most one locally scheduled reminder each."""

    def __init__(
        self,
        backend: NotificationBackendProtocol,
        store: StoreProtocol,
        reminder_hour: int = 18,
        lead_minutes: int = 60,
        default_activity_hour: int = 9,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.backend = backend
        self.store = store
        self.reminder_hour = reminder_hour
        self.lead = timedelta(minutes=lead_minutes)
        self.default_activity_hour = default_activity_hour
        self.clock = clock
        # one lock per activity id ever touched; kept for the process lifetime
        # since dropping a lock another task is waiting on would split the queue
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @classmethod
    def from_settings(
        cls, backend: NotificationBackendProtocol, store: StoreProtocol, settings: Any, clock: Callable[[], datetime] = datetime.now
    ) -> ReminderScheduler:
        return cls(
            backend,
            store,
            reminder_hour=settings.reminder_hour,
            lead_minutes=settings.reminder_lead_minutes,
            default_activity_hour=settings.default_activity_hour,
            clock=clock,
        )

    # --- fire time ---

    def activity_start(self, activity: Activity) -> datetime:
        clock_time = activity.clock_time()
        if clock_time is None:
            # an all-day activity is treated as starting at the default hour, so
            # its short-notice reminder fires one lead before that (08:00 with
            # defaults) rather than at the default hour itself
            return datetime.combine(activity.date, time(self.default_activity_hour))
        return datetime.combine(activity.date, time(*clock_time))

    def fire_time_for(self, activity: Activity) -> datetime | None:
        """Evening before the activity, else ``lead`` before its start, else None."""
        return self._plan(activity)[0]

    def _plan(self, activity: Activity) -> tuple[datetime | None, bool]:
        now = self.clock()
        evening_before = datetime.combine(activity.date - timedelta(days=1), time(self.reminder_hour))
        if evening_before > now:
            return evening_before, False
        shortly_before = self.activity_start(activity) - self.lead
        if shortly_before > now:
            return shortly_before, True
        return None, True

    def _content(self, activity: Activity, shortly_before: bool) -> dict[str, Any]:
        clock_time = activity.clock_time()
        if shortly_before:
            start = self.activity_start(activity)
            body = f"Starter kl. {start:%H:%M}"
        elif clock_time is not None:
            body = f"I morgen kl. {activity.time}"
        elif activity.multi_day:
            body = f"Starter {activity.date.day}. {_MONTHS_NB[activity.date.month - 1]}"
        else:
            body = "I morgen"
        return {
            "title": activity.title or "Aktivitet",
            "body": body,
            "data": {"activityId": activity.id, "activityTitle": activity.title},
            "sound": True,
        }

    # --- reminder index ---

    def _index(self) -> dict[str, str]:
        data = load_json(self.store, INDEX_KEY, {})
        return data if isinstance(data, dict) else {}

    def _save_index(self, index: dict[str, str]) -> None:
        self.store.set_state(INDEX_KEY, dump_json(index))

    # --- operations ---

    async def schedule(self, activity: Activity) -> ScheduledReminder | None:
        """Replace any reminder for ``activity`` with a fresh one.

        Returns None when the fire time has already passed (any existing
        reminder is cancelled then), when permission is refused or cannot be
        requested, or when the backend rejects the request.
        """
        fire_at, shortly_before = self._plan(activity)
        if fire_at is None:
            # a moved activity may still hold a reminder for its old date
            await self.cancel(activity.id)
            logger.info("Activity %s starts too soon or has passed, no reminder", activity.id)
            return None

        try:
            granted = await self.backend.request_permissions()
        except Exception as exc:
            logger.warning("Permission request failed, skipping reminder for %s: %s", activity.id, exc)
            return None
        if not granted:
            logger.warning("Notification permission not granted, skipping reminder for %s", activity.id)
            return None

        async with self._locks[activity.id]:
            await self._cancel_unlocked(activity.id)
            try:
                handle = await self.backend.schedule(self._content(activity, shortly_before), fire_at)
            except Exception as exc:
                logger.warning("Failed to schedule reminder for activity %s: %s", activity.id, exc)
                return None
            index = self._index()
            index[handle] = activity.id
            self._save_index(index)

        logger.info("Scheduled reminder %s for activity %s at %s", handle, activity.id, fire_at.isoformat())
        return ScheduledReminder(entity_id=activity.id, fire_at=fire_at, handle=handle)

    async def cancel(self, entity_id: Any) -> int:
        """Cancel every reminder for ``entity_id``; returns how many were removed."""
        key = normalize_entity_id(entity_id)
        async with self._locks[key]:
            return await self._cancel_unlocked(key)

    async def _cancel_unlocked(self, entity_id: str) -> int:
        handles = {reminder.handle for reminder in await self.reminders_for(entity_id)}
        index = self._index()
        handles.update(handle for handle, owner in index.items() if owner == entity_id)
        removed = 0
        for handle in sorted(handles):
            if await self._cancel_handle(handle):
                removed += 1
            index.pop(handle, None)
        if handles:
            self._save_index(index)
            logger.info("Cancelled %d reminder(s) for activity %s", removed, entity_id)
        return removed

    async def _cancel_handle(self, handle: str) -> bool:
        try:
            await self.backend.cancel(handle)
            return True
        except Exception as exc:
            logger.warning("Failed to cancel reminder %s: %s", handle, exc)
            return False

    async def cancel_all(self) -> int:
        reminders = await self.list_activity_reminders()
        removed = 0
        for reminder in reminders:
            if await self._cancel_handle(reminder.handle):
                removed += 1
        self._save_index({})
        logger.info("Cancelled all %d activity reminder(s)", removed)
        return removed

    async def list_activity_reminders(self) -> list[ScheduledReminder]:
        """All pending backend notifications that belong to an activity."""
        try:
            entries = await self.backend.list_scheduled()
        except Exception as exc:
            logger.warning("Could not list scheduled notifications: %s", exc)
            return []
        reminders = []
        for entry in entries:
            reminder = _reminder_from_entry(entry)
            if reminder is not None:
                reminders.append(reminder)
        return reminders

    async def reminders_for(self, entity_id: Any) -> list[ScheduledReminder]:
        key = normalize_entity_id(entity_id)
        return [r for r in await self.list_activity_reminders() if r.entity_id == key]

    async def cleanup(self) -> CleanupReport:
        """Two-pass repair: drop expired reminders, then collapse duplicates to the latest."""
        report = CleanupReport()
        now = self.clock()
        reminders = await self.list_activity_reminders()

        live: list[ScheduledReminder] = []
        for reminder in reminders:
            if reminder.fire_at <= now:
                if await self._cancel_handle(reminder.handle):
                    report.expired_removed += 1
            else:
                live.append(reminder)

        by_entity: dict[str, list[ScheduledReminder]] = defaultdict(list)
        for reminder in live:
            by_entity[reminder.entity_id].append(reminder)
        for group in by_entity.values():
            group.sort(key=lambda r: r.fire_at, reverse=True)
            report.kept.append(group[0])
            for duplicate in group[1:]:
                if await self._cancel_handle(duplicate.handle):
                    report.duplicates_removed += 1

        self._save_index({r.handle: r.entity_id for r in report.kept})
        logger.info(
            "Reminder cleanup: %d expired, %d duplicate(s) removed, %d kept",
            report.expired_removed,
            report.duplicates_removed,
            len(report.kept),
        )
        return report


def _reminder_from_entry(entry: dict[str, Any]) -> ScheduledReminder | None:
    content = entry.get("content") or {}
    data = content.get("data") or {}
    activity_id = data.get("activityId")
    if activity_id in (None, ""):
        return None
    fire_at = entry.get("fire_at")
    if isinstance(fire_at, str):
        try:
            fire_at = datetime.fromisoformat(fire_at)
        except ValueError:
            fire_at = None
    if not isinstance(fire_at, datetime):
        # fired or trigger-less entries sort as already expired
        fire_at = datetime.min
    return ScheduledReminder(
        entity_id=normalize_entity_id(activity_id),
        fire_at=fire_at,
        handle=str(entry.get("handle")),
    )
