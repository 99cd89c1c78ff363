"""Shared test fixtures for the sync engine tests."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from medvandrerne_sync.errors import TransportFailure  # noqa: E402
from medvandrerne_sync.models import CacheCategory  # noqa: E402
from medvandrerne_sync.store import SQLiteStore  # noqa: E402

START = datetime(2024, 6, 9, 8, 0)


class FakeClock:
    """Controllable replacement for ``datetime.now``."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@dataclass
class FakeGateway:
    """In-memory gateway recording every call."""

    payloads: dict[CacheCategory, Any] = field(default_factory=dict)
    failing: set[CacheCategory] = field(default_factory=set)
    bulk_fails: bool = True
    remote_fails: bool = False
    counts: dict[str, int] = field(default_factory=dict)
    users: list[dict[str, Any]] = field(default_factory=list)
    calls: list[tuple[str, Any]] = field(default_factory=list)

    def payload_for(self, category: CacheCategory) -> Any:
        return self.payloads.get(category, [f"{category.value}-v1"])

    async def fetch_category(self, category: CacheCategory) -> Any:
        self.calls.append(("fetch", category))
        if category in self.failing:
            raise TransportFailure(category.endpoint, "offline")
        return self.payload_for(category)

    async def fetch_all(self) -> dict[str, Any]:
        self.calls.append(("fetch_all", None))
        if self.bulk_fails:
            raise TransportFailure("all.php", "offline")
        return {
            category.bulk_key: self.payload_for(category)
            for category in CacheCategory
            if category not in self.failing
        }

    async def register(self, activity_id: str, user_id: str, user_name: str) -> int | None:
        self.calls.append(("register", activity_id))
        if self.remote_fails:
            raise TransportFailure("registrations/register.php", "offline")
        self.counts[activity_id] = self.counts.get(activity_id, 0) + 1
        return self.counts[activity_id]

    async def unregister(self, activity_id: str, user_id: str) -> int | None:
        self.calls.append(("unregister", activity_id))
        if self.remote_fails:
            raise TransportFailure("registrations/unregister.php", "offline")
        self.counts[activity_id] = max(0, self.counts.get(activity_id, 0) - 1)
        return self.counts[activity_id]

    async def registration_counts(self, activity_id: str | None = None) -> dict[str, int]:
        self.calls.append(("counts", activity_id))
        if self.remote_fails:
            raise TransportFailure("registrations/get.php", "offline")
        if activity_id is not None:
            return {activity_id: self.counts.get(activity_id, 0)}
        return dict(self.counts)

    async def lookup_users(self, phone_numbers: list[str]) -> list[dict[str, Any]]:
        self.calls.append(("lookup", list(phone_numbers)))
        if self.remote_fails:
            raise TransportFailure("users/lookup.php", "offline")
        return [user for user in self.users if user.get("phone") in phone_numbers]

    async def notify_contact_added(self, target_user_id: str, added_by_id: str, added_by_name: str) -> None:
        self.calls.append(("notify_added", target_user_id))
        if self.remote_fails:
            raise TransportFailure("contacts/notify-added.php", "offline")

    def fetches(self, category: CacheCategory | None = None) -> int:
        return sum(
            1 for name, arg in self.calls
            if name == "fetch" and (category is None or arg == category)
        )


class FakeNotificationBackend:
    """In-memory stand-in for the OS notification scheduler."""

    def __init__(self, granted: bool = True) -> None:
        self.granted = granted
        self.entries: dict[str, dict[str, Any]] = {}
        self.cancelled: list[str] = []
        self._next = 0

    async def request_permissions(self) -> bool:
        return self.granted

    async def schedule(self, content: dict[str, Any], fire_at: datetime) -> str:
        self._next += 1
        handle = f"notif_{self._next}"
        self.entries[handle] = {"handle": handle, "content": content, "fire_at": fire_at}
        return handle

    async def cancel(self, handle: str) -> None:
        self.cancelled.append(handle)
        self.entries.pop(handle, None)

    async def list_scheduled(self) -> list[dict[str, Any]]:
        return [dict(entry) for entry in self.entries.values()]

    def seed(self, activity_id: Any, fire_at: datetime) -> str:
        """Plant a reminder directly, as a previous app run would have left it."""
        self._next += 1
        handle = f"seed_{self._next}"
        self.entries[handle] = {
            "handle": handle,
            "content": {"title": "seeded", "data": {"activityId": activity_id}},
            "fire_at": fire_at,
        }
        return handle

    def for_activity(self, activity_id: str) -> list[dict[str, Any]]:
        return [
            entry for entry in self.entries.values()
            if str(entry["content"].get("data", {}).get("activityId")) == activity_id
        ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path) -> SQLiteStore:
    s = SQLiteStore(tmp_path / "sync.db")
    s.bootstrap()
    yield s
    s.close()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def backend() -> FakeNotificationBackend:
    return FakeNotificationBackend()
