from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from .errors import UnknownCategoryError

_CLOCK_RE = re.compile(r"(\d{1,2}):(\d{2})")


class TtlClass(str, Enum):
    """How long a category stays trustworthy without a re-fetch."""

    STATIC = "static"
    DYNAMIC = "dynamic"
    DEFAULT = "default"


class CacheCategory(str, Enum):
    """Closed set of remote data categories held in the cache."""

    ORGANIZATION = "organization"
    MISSION = "mission"
    CORE_ACTIVITIES = "core-activities"
    LOCAL_GROUPS = "local-groups"
    ADMINISTRATION = "administration"
    BOARD = "board"
    SUPPORTERS = "supporters"
    ACTIVITIES = "activities"
    NEWS = "news"
    CALENDAR = "calendar"
    RESOURCES = "resources"

    @property
    def ttl_class(self) -> TtlClass:
        return _CATEGORY_SPECS[self].ttl_class

    @property
    def endpoint(self) -> str:
        return _CATEGORY_SPECS[self].endpoint

    @property
    def bulk_key(self) -> str:
        return _CATEGORY_SPECS[self].bulk_key

    @property
    def is_static(self) -> bool:
        return self.ttl_class is TtlClass.STATIC

    @classmethod
    def parse(cls, value: str | CacheCategory) -> CacheCategory:
        """Resolve a category from its tag or its key in the bulk response."""
        if isinstance(value, CacheCategory):
            return value
        for category in cls:
            if value == category.value or value == category.bulk_key:
                return category
        raise UnknownCategoryError(f"Unknown data category: {value!r}")


@dataclass(frozen=True, slots=True)
class _CategorySpec:
    ttl_class: TtlClass
    endpoint: str
    bulk_key: str


_CATEGORY_SPECS: dict[CacheCategory, _CategorySpec] = {
    CacheCategory.ORGANIZATION: _CategorySpec(TtlClass.STATIC, "organization.php", "organization"),
    CacheCategory.MISSION: _CategorySpec(TtlClass.STATIC, "mission.php", "mission"),
    CacheCategory.CORE_ACTIVITIES: _CategorySpec(TtlClass.STATIC, "core-activities.php", "coreActivities"),
    CacheCategory.LOCAL_GROUPS: _CategorySpec(TtlClass.STATIC, "local-groups.php", "localGroups"),
    CacheCategory.ADMINISTRATION: _CategorySpec(TtlClass.STATIC, "administration.php", "administration"),
    CacheCategory.BOARD: _CategorySpec(TtlClass.STATIC, "board.php", "board"),
    CacheCategory.SUPPORTERS: _CategorySpec(TtlClass.STATIC, "supporters.php", "supporters"),
    CacheCategory.ACTIVITIES: _CategorySpec(TtlClass.DYNAMIC, "activities.php", "activities"),
    CacheCategory.NEWS: _CategorySpec(TtlClass.DYNAMIC, "news.php", "news"),
    CacheCategory.CALENDAR: _CategorySpec(TtlClass.DYNAMIC, "calendar.php", "calendar"),
    CacheCategory.RESOURCES: _CategorySpec(TtlClass.DEFAULT, "resources.php", "resources"),
}

_missing = set(CacheCategory) - set(_CATEGORY_SPECS)
if _missing:
    raise RuntimeError(f"Categories missing from the catalogue: {sorted(c.value for c in _missing)}")


class LifecycleState(str, Enum):
    """Coarse application lifecycle states."""

    ACTIVE = "active"
    SUSPENDED = "suspended"


def normalize_entity_id(value: Any) -> str:
    """Canonical string form of an entity id (``7``, ``"7"`` and ``" 7 "`` agree)."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


@dataclass(frozen=True, slots=True)
class CacheEntry:
    category: CacheCategory
    payload: Any
    stored_at: datetime | None  # None = payload with no recorded freshness


@dataclass(frozen=True, slots=True)
class ScheduledReminder:
    entity_id: str
    fire_at: datetime
    handle: str


@dataclass(frozen=True, slots=True)
class Activity:
    id: str
    title: str
    date: date
    time: str | None = None
    multi_day: bool = False

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Activity:
        """Build an activity from a remote payload row.

        Raises ValueError when the row has no id or no parseable date.
        """
        raw_id = data.get("id")
        raw_date = data.get("date")
        if raw_id in (None, "") or not raw_date:
            raise ValueError("activity needs both id and date")
        if isinstance(raw_date, date):
            day = raw_date
        else:
            day = date.fromisoformat(str(raw_date)[:10])
        time_text = data.get("time") or None
        return cls(
            id=normalize_entity_id(raw_id),
            title=str(data.get("title") or ""),
            date=day,
            time=str(time_text) if time_text else None,
            multi_day=bool(data.get("multiDay", False)),
        )

    def clock_time(self) -> tuple[int, int] | None:
        """First ``HH:MM`` found in ``time`` (``"18:00-19:00"`` gives 18:00)."""
        if not self.time:
            return None
        match = _CLOCK_RE.search(self.time)
        if not match:
            return None
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour > 23 or minute > 59:
            return None
        return hour, minute
