"""Tests for the activity reminder scheduler."""

from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest

from medvandrerne_sync.models import Activity
from medvandrerne_sync.scheduler import INDEX_KEY, ReminderScheduler
from medvandrerne_sync.store import load_json


@pytest.fixture
def scheduler(backend, store, clock):
    return ReminderScheduler(backend, store, clock=clock)


def _activity(day: date, time: str | None = "10:00", activity_id: str = "42", **kwargs) -> Activity:
    return Activity(id=activity_id, title="Tur til Vardåsen", date=day, time=time, **kwargs)


class TestFireTime:
    def test_evening_before(self, scheduler):
        # now is 2024-06-09 08:00
        activity = _activity(date(2024, 6, 10))
        assert scheduler.fire_time_for(activity) == datetime(2024, 6, 9, 18, 0)

    def test_falls_back_to_an_hour_before_start(self, scheduler, clock):
        clock.now = datetime(2024, 6, 9, 19, 0)
        activity = _activity(date(2024, 6, 10))
        assert scheduler.fire_time_for(activity) == datetime(2024, 6, 10, 9, 0)

    def test_fallback_uses_default_hour_without_clock_time(self, scheduler, clock):
        clock.now = datetime(2024, 6, 9, 19, 0)
        activity = _activity(date(2024, 6, 10), time=None)
        assert scheduler.fire_time_for(activity) == datetime(2024, 6, 10, 8, 0)

    def test_skips_when_both_windows_passed(self, scheduler, clock):
        clock.now = datetime(2024, 6, 10, 9, 30)
        assert scheduler.fire_time_for(_activity(date(2024, 6, 10))) is None

    def test_exact_boundary_is_not_future(self, scheduler, clock):
        clock.now = datetime(2024, 6, 9, 18, 0)
        assert scheduler.fire_time_for(_activity(date(2024, 6, 10))) == datetime(2024, 6, 10, 9, 0)
        clock.now = datetime(2024, 6, 10, 9, 0)
        assert scheduler.fire_time_for(_activity(date(2024, 6, 10))) is None

    def test_past_activity(self, scheduler):
        assert scheduler.fire_time_for(_activity(date(2024, 1, 1))) is None


class TestSchedule:
    @pytest.mark.asyncio
    async def test_creates_one_reminder(self, scheduler, backend, store):
        reminder = await scheduler.schedule(_activity(date(2024, 6, 10)))
        assert reminder is not None
        assert reminder.entity_id == "42"
        assert reminder.fire_at == datetime(2024, 6, 9, 18, 0)
        assert len(backend.entries) == 1
        assert load_json(store, INDEX_KEY, {}) == {reminder.handle: "42"}

    @pytest.mark.asyncio
    async def test_content(self, scheduler, backend):
        await scheduler.schedule(_activity(date(2024, 6, 10)))
        (entry,) = backend.entries.values()
        assert entry["content"]["title"] == "Tur til Vardåsen"
        assert entry["content"]["body"] == "I morgen kl. 10:00"
        assert entry["content"]["data"] == {"activityId": "42", "activityTitle": "Tur til Vardåsen"}

    @pytest.mark.asyncio
    async def test_multi_day_body(self, scheduler, backend):
        await scheduler.schedule(_activity(date(2024, 6, 14), time=None, multi_day=True))
        (entry,) = backend.entries.values()
        assert entry["content"]["body"] == "Starter 14. juni"

    @pytest.mark.asyncio
    async def test_fallback_body(self, scheduler, backend, clock):
        clock.now = datetime(2024, 6, 9, 20, 0)
        await scheduler.schedule(_activity(date(2024, 6, 10)))
        (entry,) = backend.entries.values()
        assert entry["content"]["body"] == "Starter kl. 10:00"

    @pytest.mark.asyncio
    async def test_past_activity_skipped_silently(self, scheduler, backend):
        assert await scheduler.schedule(_activity(date(2024, 6, 1))) is None
        assert backend.entries == {}

    @pytest.mark.asyncio
    async def test_permission_denied(self, scheduler, backend):
        backend.granted = False
        assert await scheduler.schedule(_activity(date(2024, 6, 10))) is None
        assert backend.entries == {}

    @pytest.mark.asyncio
    async def test_reschedule_replaces_existing(self, scheduler, backend):
        first = await scheduler.schedule(_activity(date(2024, 6, 10)))
        second = await scheduler.schedule(_activity(date(2024, 6, 12)))
        assert list(backend.entries) == [second.handle]
        assert first.handle in backend.cancelled

    @pytest.mark.asyncio
    async def test_backend_failure_returns_none(self, scheduler, backend):
        async def broken(content, fire_at):
            raise RuntimeError("scheduler unavailable")

        backend.schedule = broken
        assert await scheduler.schedule(_activity(date(2024, 6, 10))) is None

    @pytest.mark.asyncio
    async def test_permission_request_error_returns_none(self, scheduler, backend):
        async def broken():
            raise RuntimeError("permission API unavailable")

        backend.request_permissions = broken
        assert await scheduler.schedule(_activity(date(2024, 6, 10))) is None
        assert backend.entries == {}

    @pytest.mark.asyncio
    async def test_past_activity_drops_reminder_for_old_date(self, scheduler, backend):
        stale = backend.seed("42", datetime(2024, 6, 19, 18, 0))
        assert await scheduler.schedule(_activity(date(2024, 6, 9), time="08:30")) is None
        assert stale in backend.cancelled
        assert backend.entries == {}

    @pytest.mark.asyncio
    async def test_lock_is_reused_per_activity(self, scheduler):
        await scheduler.schedule(_activity(date(2024, 6, 10)))
        await scheduler.cancel(42)
        await scheduler.schedule(_activity(date(2024, 6, 12)))
        assert list(scheduler._locks) == ["42"]


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_removes_every_match(self, scheduler, backend):
        backend.seed("42", datetime(2024, 6, 9, 18, 0))
        backend.seed(42, datetime(2024, 6, 10, 9, 0))
        other = backend.seed("7", datetime(2024, 6, 9, 18, 0))

        assert await scheduler.cancel(42) == 2
        assert list(backend.entries) == [other]

    @pytest.mark.asyncio
    async def test_cancel_unknown_is_noop(self, scheduler, backend):
        assert await scheduler.cancel("missing") == 0
        assert backend.cancelled == []

    @pytest.mark.asyncio
    async def test_cancel_uses_index_when_listing_lacks_data(self, scheduler, backend):
        reminder = await scheduler.schedule(_activity(date(2024, 6, 10)))
        backend.entries[reminder.handle]["content"] = {"title": "stripped"}
        assert await scheduler.cancel("42") == 1
        assert backend.entries == {}

    @pytest.mark.asyncio
    async def test_cancel_all(self, scheduler, backend, store):
        await scheduler.schedule(_activity(date(2024, 6, 10), activity_id="1"))
        await scheduler.schedule(_activity(date(2024, 6, 11), activity_id="2"))
        backend.entries["foreign"] = {"handle": "foreign", "content": {"title": "x"}, "fire_at": datetime(2024, 7, 1)}

        assert await scheduler.cancel_all() == 2
        assert list(backend.entries) == ["foreign"]
        assert load_json(store, INDEX_KEY, None) == {}


class TestCleanup:
    @pytest.mark.asyncio
    async def test_keeps_latest_of_duplicates(self, scheduler, backend):
        backend.seed("42", datetime(2024, 6, 9, 18, 0))
        latest = backend.seed("42", datetime(2024, 6, 12, 18, 0))
        backend.seed("42", datetime(2024, 6, 10, 9, 0))

        report = await scheduler.cleanup()

        assert report.duplicates_removed == 2
        assert list(backend.entries) == [latest]
        assert [r.handle for r in report.kept] == [latest]

    @pytest.mark.asyncio
    async def test_removes_expired_first(self, scheduler, backend, clock):
        expired = backend.seed("42", clock.now - timedelta(hours=1))
        future = backend.seed("42", clock.now + timedelta(hours=1))
        backend.seed("9", clock.now - timedelta(days=2))

        report = await scheduler.cleanup()

        assert report.expired_removed == 2
        assert report.duplicates_removed == 0
        assert list(backend.entries) == [future]
        assert expired in backend.cancelled

    @pytest.mark.asyncio
    async def test_entry_without_fire_time_counts_as_expired(self, scheduler, backend):
        backend.entries["odd"] = {"handle": "odd", "content": {"data": {"activityId": "5"}}, "fire_at": None}
        report = await scheduler.cleanup()
        assert report.expired_removed == 1
        assert backend.entries == {}

    @pytest.mark.asyncio
    async def test_ignores_non_activity_notifications(self, scheduler, backend):
        backend.entries["other"] = {"handle": "other", "content": {"title": "x"}, "fire_at": datetime(2020, 1, 1)}
        await scheduler.cleanup()
        assert "other" in backend.entries

    @pytest.mark.asyncio
    async def test_rebuilds_index(self, scheduler, backend, store):
        reminder = await scheduler.schedule(_activity(date(2024, 6, 10)))
        duplicate = backend.seed("42", datetime(2024, 6, 9, 12, 0))
        store.set_state(INDEX_KEY, '{"gone": "99"}')

        await scheduler.cleanup()

        assert load_json(store, INDEX_KEY, {}) == {reminder.handle: "42"}
        assert duplicate not in backend.entries

    @pytest.mark.asyncio
    async def test_at_most_one_after_churn(self, scheduler, backend):
        activity = _activity(date(2024, 6, 10))
        await scheduler.schedule(activity)
        await scheduler.cancel(activity.id)
        await scheduler.schedule(activity)
        await scheduler.schedule(activity)
        backend.seed(activity.id, datetime(2024, 6, 9, 10, 0))  # left behind by a crash
        await scheduler.cleanup()
        assert len(backend.for_activity("42")) == 1
