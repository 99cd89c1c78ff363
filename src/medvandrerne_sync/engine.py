from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable

from .cache import CacheStore
from .config import SyncSettings
from .contacts import ContactBook
from .gateway import HttpDataGateway
from .identity import get_or_create_user_id
from .lifecycle import LifecycleMonitor
from .models import CacheCategory
from .protocols import GatewayProtocol, NotificationBackendProtocol, StoreProtocol
from .registrations import ReconcileReport, RegistrationReconciler
from .scheduler import ReminderScheduler
from .store import SQLiteStore
from .synchronizer import DataSynchronizer, SyncReport

logger = logging.getLogger("medvandrerne_sync.engine")


class SyncEngine:
    """Wires the data-freshness and reminder components for the UI layer.

    The OS notification backend is always supplied by the host; the store and
    gateway default to the SQLite store and HTTP gateway built from settings.
    """

    def __init__(
        self,
        settings: SyncSettings,
        notification_backend: NotificationBackendProtocol,
        *,
        gateway: GatewayProtocol | None = None,
        store: StoreProtocol | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings
        if store is None:
            store = SQLiteStore(Path(settings.db_path))
        self.store = store
        self.store.bootstrap()
        self.gateway = gateway if gateway is not None else HttpDataGateway.from_settings(settings)
        self.user_id = get_or_create_user_id(self.store)

        self.cache = CacheStore.from_settings(self.store, settings, clock=clock)
        self.synchronizer = DataSynchronizer(self.cache, self.gateway)
        self.lifecycle = LifecycleMonitor(
            self.cache,
            self.synchronizer,
            threshold_seconds=settings.resume_refresh_threshold_seconds,
            clock=clock,
        )
        self.scheduler = ReminderScheduler.from_settings(notification_backend, self.store, settings, clock=clock)
        self.registrations = RegistrationReconciler(
            self.store,
            self.scheduler,
            self.gateway,
            user_id=self.user_id,
            user_name=settings.user_name,
        )
        self.contacts = ContactBook(
            self.store,
            self.gateway,
            user_id=self.user_id,
            user_name=settings.user_name,
            default_phone_prefix=settings.default_phone_prefix,
            clock=clock,
        )

    async def start(self) -> tuple[SyncReport, ReconcileReport]:
        """Cold start: load data, repair reminders, then sync registration counts."""
        report = await self.synchronizer.get_all(force_refresh=False)
        activities_result = report.results.get(CacheCategory.ACTIVITIES)
        activities = activities_result.payload if activities_result and activities_result.ok else []
        reconcile = await self.registrations.cold_start(activities or [])
        await self.registrations.refresh_counts()
        logger.info(
            "Engine started for %s: %d categories loaded, %d failed",
            self.user_id,
            len(report.results) - len(report.failures),
            len(report.failures),
        )
        return report, reconcile

    async def close(self) -> None:
        await self.registrations.flush_remote()
        aclose = getattr(self.gateway, "aclose", None)
        if aclose is not None:
            await aclose()
        self.store.close()
