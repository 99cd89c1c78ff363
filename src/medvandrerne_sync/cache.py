"""Per-category payload cache with TTL-based freshness.

Payloads for every category live in one blob (``cache_payload``); their
timestamps live in a separate map (``cache_timestamps``) so freshness can be
checked without deserializing the payloads.  A payload may outlive its
timestamp: invalidation drops only the timestamp, leaving the payload as a
stale fallback.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

from .models import CacheCategory, CacheEntry, TtlClass
from .store import dump_json, load_json

if TYPE_CHECKING:
    from .protocols import StoreProtocol

logger = logging.getLogger("medvandrerne_sync.cache")

PAYLOAD_KEY = "cache_payload"
TIMESTAMPS_KEY = "cache_timestamps"


class CacheStore:
    """Owns cached payloads and their freshness registry."""

    def __init__(
        self,
        store: StoreProtocol,
        ttl_seconds: dict[TtlClass, float],
        clock: Callable[[], datetime] = datetime.now,
    ):
        missing = set(TtlClass) - set(ttl_seconds)
        if missing:
            raise ValueError(f"TTL missing for classes: {sorted(t.value for t in missing)}")
        self.store = store
        self._ttls = {ttl_class: timedelta(seconds=seconds) for ttl_class, seconds in ttl_seconds.items()}
        self.clock = clock

    @classmethod
    def from_settings(cls, store: StoreProtocol, settings: Any, clock: Callable[[], datetime] = datetime.now) -> CacheStore:
        return cls(
            store,
            {
                TtlClass.STATIC: settings.static_ttl_seconds,
                TtlClass.DYNAMIC: settings.dynamic_ttl_seconds,
                TtlClass.DEFAULT: settings.default_ttl_seconds,
            },
            clock=clock,
        )

    def ttl(self, category: CacheCategory) -> timedelta:
        return self._ttls[category.ttl_class]

    def _payloads(self) -> dict[str, Any]:
        data = load_json(self.store, PAYLOAD_KEY, {})
        return data if isinstance(data, dict) else {}

    def _timestamps(self) -> dict[str, str]:
        data = load_json(self.store, TIMESTAMPS_KEY, {})
        return data if isinstance(data, dict) else {}

    def _stored_at(self, category: CacheCategory) -> datetime | None:
        raw = self._timestamps().get(category.value)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except (TypeError, ValueError):
            return None

    def read(self, category: CacheCategory) -> CacheEntry | None:
        payloads = self._payloads()
        if category.value not in payloads:
            return None
        return CacheEntry(
            category=category,
            payload=payloads[category.value],
            stored_at=self._stored_at(category),
        )

    def age(self, category: CacheCategory) -> timedelta | None:
        stored_at = self._stored_at(category)
        if stored_at is None:
            return None
        return self.clock() - stored_at

    def is_valid(self, category: CacheCategory) -> bool:
        age = self.age(category)
        if age is None:
            return False
        return age < self.ttl(category)

    def write(self, category: CacheCategory, payload: Any) -> CacheEntry:
        """Replace the payload and its timestamp in one store transaction."""
        stored_at = self.clock()
        payloads = self._payloads()
        timestamps = self._timestamps()
        payloads[category.value] = payload
        timestamps[category.value] = stored_at.isoformat()
        self.store.set_many({
            PAYLOAD_KEY: dump_json(payloads),
            TIMESTAMPS_KEY: dump_json(timestamps),
        })
        logger.debug("Cached %s at %s", category.value, stored_at.isoformat())
        return CacheEntry(category=category, payload=payload, stored_at=stored_at)

    def invalidate(self, category: CacheCategory) -> None:
        self._drop_timestamps([category])

    def invalidate_all_dynamic(self) -> list[CacheCategory]:
        """Drop timestamps for every non-static category; static ones keep theirs."""
        categories = [category for category in CacheCategory if not category.is_static]
        self._drop_timestamps(categories)
        logger.info("Invalidated dynamic categories: %s", ", ".join(c.value for c in categories))
        return categories

    def _drop_timestamps(self, categories: list[CacheCategory]) -> None:
        timestamps = self._timestamps()
        changed = False
        for category in categories:
            if timestamps.pop(category.value, None) is not None:
                changed = True
        if changed:
            self.store.set_state(TIMESTAMPS_KEY, dump_json(timestamps))

    def clear(self) -> None:
        self.store.delete_many([PAYLOAD_KEY, TIMESTAMPS_KEY])
        logger.info("Cleared cached payloads and timestamps")
