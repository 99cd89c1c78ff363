"""Cache-aware access to remote categories.

``get`` serves a category from the cache while it is within TTL, fetches on
a miss or when forced, and falls back to the last cached payload of any age
when the gateway fails.  ``get_all`` does the same across every category with
each category succeeding or failing on its own.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .cache import CacheStore
from .errors import TransportFailure
from .models import CacheCategory

if TYPE_CHECKING:
    from .protocols import GatewayProtocol

logger = logging.getLogger("medvandrerne_sync.synchronizer")


@dataclass(slots=True)
class CategoryResult:
    category: CacheCategory
    payload: Any = None
    refreshed: bool = False  # payload came from the gateway in this call
    stale: bool = False  # gateway failed; payload is the last cached one
    error: BaseException | None = None  # set only when no payload could be produced

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class SyncReport:
    results: dict[CacheCategory, CategoryResult] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(result.ok for result in self.results.values())

    @property
    def failures(self) -> dict[CacheCategory, BaseException]:
        return {c: r.error for c, r in self.results.items() if r.error is not None}

    @property
    def refreshed(self) -> list[CacheCategory]:
        return [c for c, r in self.results.items() if r.refreshed]

    def payloads(self) -> dict[str, Any]:
        """Payloads keyed the way the bulk endpoint keys them."""
        return {c.bulk_key: r.payload for c, r in self.results.items() if r.ok}


class DataSynchronizer:
    """Orchestrates cache validity checks, gateway fetches and stale fallback."""

    def __init__(self, cache: CacheStore, gateway: GatewayProtocol):
        self.cache = cache
        self.gateway = gateway

    async def get(self, category: CacheCategory | str, force_refresh: bool = False) -> Any:
        """Return the current payload for ``category``.

        Raises ``TransportFailure`` only when the gateway fails and nothing is
        cached for the category.
        """
        result = await self._resolve(CacheCategory.parse(category), force_refresh)
        if result.error is not None:
            raise result.error
        return result.payload

    async def _resolve(self, category: CacheCategory, force_refresh: bool) -> CategoryResult:
        if not force_refresh and self.cache.is_valid(category):
            entry = self.cache.read(category)
            if entry is not None:
                logger.debug("Cache hit for %s", category.value)
                return CategoryResult(category, payload=entry.payload)

        try:
            payload = await self.gateway.fetch_category(category)
        except TransportFailure as exc:
            return self._fallback(category, exc)

        self.cache.write(category, payload)
        return CategoryResult(category, payload=payload, refreshed=True)

    def _fallback(self, category: CacheCategory, exc: BaseException) -> CategoryResult:
        entry = self.cache.read(category)
        if entry is None:
            logger.warning("Fetching %s failed with nothing cached: %s", category.value, exc)
            return CategoryResult(category, error=exc)
        logger.warning(
            "Fetching %s failed, serving cached copy from %s: %s",
            category.value,
            entry.stored_at.isoformat() if entry.stored_at else "unknown time",
            exc,
        )
        return CategoryResult(category, payload=entry.payload, stale=True)

    async def get_all(self, force_refresh: bool = False) -> SyncReport:
        """Resolve every category.

        Categories needing a fetch are first requested through the bulk
        endpoint; any the bulk call could not supply fall back to their own
        per-category fetch.
        """
        report = SyncReport()
        pending: list[CacheCategory] = []
        for category in CacheCategory:
            entry = None
            if not force_refresh and self.cache.is_valid(category):
                entry = self.cache.read(category)
            if entry is None:
                pending.append(category)
            else:
                report.results[category] = CategoryResult(category, payload=entry.payload)

        if len(pending) > 1:
            await self._apply_bulk(pending, report)

        remaining = [category for category in pending if category not in report.results]
        if remaining:
            outcomes = await asyncio.gather(
                *(self._resolve(category, force_refresh=True) for category in remaining),
                return_exceptions=True,
            )
            for category, outcome in zip(remaining, outcomes):
                if isinstance(outcome, BaseException):
                    if isinstance(outcome, asyncio.CancelledError):
                        raise outcome
                    logger.error("Unexpected error refreshing %s: %s", category.value, outcome)
                    outcome = CategoryResult(category, error=outcome)
                report.results[category] = outcome

        logger.info(
            "Refresh finished: %d refreshed, %d failed, %d from cache",
            len(report.refreshed),
            len(report.failures),
            len(report.results) - len(report.refreshed) - len(report.failures),
        )
        return report

    async def _apply_bulk(self, pending: list[CacheCategory], report: SyncReport) -> None:
        try:
            bulk = await self.gateway.fetch_all()
        except TransportFailure as exc:
            logger.warning("Bulk fetch failed, falling back per category: %s", exc)
            return
        for category in pending:
            payload = bulk.get(category.bulk_key)
            if payload is None:
                continue
            self.cache.write(category, payload)
            report.results[category] = CategoryResult(category, payload=payload, refreshed=True)

    async def refresh_all(self) -> SyncReport:
        return await self.get_all(force_refresh=True)

    async def clear_and_reload(self) -> SyncReport:
        self.cache.clear()
        return await self.get_all(force_refresh=True)
