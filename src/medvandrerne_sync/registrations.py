"""Local activity registrations kept in step with reminders and remote counts.

The local registration set is authoritative for "is this user registered".
Every join/leave persists the set first, then adjusts the reminder, then
fires a best-effort remote increment/decrement.  A failed remote write is
logged as drift and never rolls back the local change.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

from .models import Activity, ScheduledReminder, normalize_entity_id
from .store import dump_json, load_json

if TYPE_CHECKING:
    from .protocols import GatewayProtocol, StoreProtocol
    from .scheduler import ReminderScheduler

logger = logging.getLogger("medvandrerne_sync.registrations")

REGISTRATIONS_KEY = "registrations"
COUNTS_KEY = "registration_counts"


@dataclass(frozen=True, slots=True)
class RemoteSyncResult:
    action: str
    entity_id: str
    ok: bool
    count: int | None = None
    error: str | None = None


@dataclass(slots=True)
class ReconcileReport:
    scheduled: int = 0
    already_ok: int = 0
    skipped_past: int = 0
    unknown: int = 0


def activities_by_id(payload: Any) -> dict[str, Activity]:
    """Parse an ``activities`` payload into activities keyed by canonical id."""
    result: dict[str, Activity] = {}
    if not isinstance(payload, list):
        return result
    for row in payload:
        if isinstance(row, Activity):
            result[row.id] = row
            continue
        if not isinstance(row, dict):
            continue
        try:
            activity = Activity.from_payload(row)
        except (TypeError, ValueError) as exc:
            logger.debug("Skipping activity row %r: %s", row.get("id"), exc)
            continue
        result[activity.id] = activity
    return result


class RegistrationReconciler:
    """Owns the local registration set and its reminder/remote side effects."""

    def __init__(
        self,
        store: StoreProtocol,
        scheduler: ReminderScheduler,
        gateway: GatewayProtocol,
        user_id: str,
        user_name: str = "Anonym",
    ):
        self.store = store
        self.scheduler = scheduler
        self.gateway = gateway
        self.user_id = user_id
        self.user_name = user_name
        self._pending: set[asyncio.Task[RemoteSyncResult]] = set()

    # --- local set ---

    def registrations(self) -> list[str]:
        raw = load_json(self.store, REGISTRATIONS_KEY, [])
        if not isinstance(raw, list):
            return []
        seen: list[str] = []
        for value in raw:
            key = normalize_entity_id(value)
            if key and key not in seen:
                seen.append(key)
        return seen

    def _save(self, ids: list[str]) -> None:
        self.store.set_state(REGISTRATIONS_KEY, dump_json(ids))

    def is_joined(self, entity_id: Any) -> bool:
        return normalize_entity_id(entity_id) in self.registrations()

    # --- join / leave ---

    async def join(self, activity: Activity | dict[str, Any]) -> ScheduledReminder | None:
        if not isinstance(activity, Activity):
            activity = Activity.from_payload(activity)
        ids = self.registrations()
        if activity.id not in ids:
            ids.append(activity.id)
            self._save(ids)
        logger.info("Joined activity %s", activity.id)

        self._spawn_remote(
            "register",
            activity.id,
            lambda: self.gateway.register(activity.id, self.user_id, self.user_name),
        )
        return await self.scheduler.schedule(activity)

    async def leave(self, entity_id: Any) -> int:
        key = normalize_entity_id(entity_id)
        ids = self.registrations()
        if key in ids:
            ids.remove(key)
            self._save(ids)
        logger.info("Left activity %s", key)

        self._spawn_remote(
            "unregister",
            key,
            lambda: self.gateway.unregister(key, self.user_id),
        )
        return await self.scheduler.cancel(key)

    # --- best-effort remote effects ---

    def _spawn_remote(self, action: str, entity_id: str, call: Callable[[], Awaitable[int | None]]) -> None:
        task = asyncio.create_task(self._run_remote(action, entity_id, call))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run_remote(
        self, action: str, entity_id: str, call: Callable[[], Awaitable[int | None]]
    ) -> RemoteSyncResult:
        try:
            count = await call()
        except Exception as exc:
            logger.warning("Remote %s for activity %s failed, local state kept: %s", action, entity_id, exc)
            return RemoteSyncResult(action, entity_id, ok=False, error=str(exc))
        if count is not None:
            self._store_counts({entity_id: count})
        return RemoteSyncResult(action, entity_id, ok=True, count=count)

    async def flush_remote(self) -> list[RemoteSyncResult]:
        """Wait for every outstanding remote effect and return the outcomes."""
        results: list[RemoteSyncResult] = []
        while self._pending:
            batch = list(self._pending)
            results.extend(await asyncio.gather(*batch))
            self._pending.difference_update(batch)
        return results

    # --- remote count cache ---

    def counts(self) -> dict[str, int]:
        raw = load_json(self.store, COUNTS_KEY, {})
        return raw if isinstance(raw, dict) else {}

    def count_for(self, entity_id: Any) -> int:
        return int(self.counts().get(normalize_entity_id(entity_id), 0))

    def _store_counts(self, updates: dict[str, int], replace: bool = False) -> None:
        counts = {} if replace else self.counts()
        counts.update(updates)
        self.store.set_state(COUNTS_KEY, dump_json(counts))

    async def refresh_counts(self) -> dict[str, int]:
        try:
            counts = await self.gateway.registration_counts()
        except Exception as exc:
            logger.warning("Could not refresh registration counts: %s", exc)
            return self.counts()
        self._store_counts(counts, replace=True)
        return counts

    async def refresh_count(self, entity_id: Any) -> int:
        key = normalize_entity_id(entity_id)
        try:
            counts = await self.gateway.registration_counts(key)
        except Exception as exc:
            logger.warning("Could not refresh registration count for %s: %s", key, exc)
            return self.count_for(key)
        self._store_counts({key: int(counts.get(key, 0))})
        return self.count_for(key)

    # --- cold start ---

    async def reconcile(self, activities: Iterable[Activity] | Any) -> ReconcileReport:
        """Make sure each registered, still-upcoming activity has exactly one reminder."""
        known = activities_by_id(activities if isinstance(activities, list) else list(activities or []))
        report = ReconcileReport()
        for entity_id in self.registrations():
            activity = known.get(entity_id)
            if activity is None:
                report.unknown += 1
                continue
            fire_at = self.scheduler.fire_time_for(activity)
            if fire_at is None:
                await self.scheduler.cancel(entity_id)
                report.skipped_past += 1
                continue
            existing = await self.scheduler.reminders_for(entity_id)
            if len(existing) == 1 and existing[0].fire_at == fire_at:
                report.already_ok += 1
                continue
            if await self.scheduler.schedule(activity) is not None:
                report.scheduled += 1
        logger.info(
            "Reconciled registrations: %d scheduled, %d already ok, %d past, %d unknown",
            report.scheduled,
            report.already_ok,
            report.skipped_past,
            report.unknown,
        )
        return report

    async def cold_start(self, activities: Iterable[Activity] | Any) -> ReconcileReport:
        await self.scheduler.cleanup()
        return await self.reconcile(activities)
