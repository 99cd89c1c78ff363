"""Protocol interfaces for the engine's external collaborators.

The persistent store, the remote data gateway and the OS notification
scheduler live outside the engine; these protocols pin down what the
engine needs from each, enabling fakes in tests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from .models import CacheCategory


@runtime_checkable
class StoreProtocol(Protocol):
    """Protocol for the durable key-value store."""

    def bootstrap(self) -> None:
        """Initialize storage schema."""
        ...

    def get_state(self, key: str) -> str | None:
        """Get a key-value state entry."""
        ...

    def set_state(self, key: str, value: str) -> None:
        """Set a key-value state entry."""
        ...

    def set_many(self, items: dict[str, str]) -> None:
        """Set several entries in one transaction (all or nothing)."""
        ...

    def delete_state(self, key: str) -> None:
        """Delete a key-value state entry if present."""
        ...

    def delete_many(self, keys: list[str]) -> None:
        """Delete several entries in one transaction."""
        ...

    def close(self) -> None:
        """Close storage connections."""
        ...


@runtime_checkable
class GatewayProtocol(Protocol):
    """Protocol for the remote data gateway.

    Every method raises ``TransportFailure`` when the call cannot complete.
    """

    async def fetch_category(self, category: CacheCategory) -> Any:
        """Fetch the payload for one category."""
        ...

    async def fetch_all(self) -> dict[str, Any]:
        """Fetch every category in one response keyed by bulk key."""
        ...

    async def register(self, activity_id: str, user_id: str, user_name: str) -> int | None:
        """Record a registration remotely; returns the updated count when known."""
        ...

    async def unregister(self, activity_id: str, user_id: str) -> int | None:
        """Remove a registration remotely; returns the updated count when known."""
        ...

    async def registration_counts(self, activity_id: str | None = None) -> dict[str, int]:
        """Fetch aggregate registration counts (all, or just one activity)."""
        ...

    async def lookup_users(self, phone_numbers: list[str]) -> list[dict[str, Any]]:
        """Look up profiles for a batch of phone numbers."""
        ...

    async def notify_contact_added(self, target_user_id: str, added_by_id: str, added_by_name: str) -> None:
        """Tell the remote side that a contact was added."""
        ...


@runtime_checkable
class NotificationBackendProtocol(Protocol):
    """Protocol for the OS-level local notification scheduler."""

    async def request_permissions(self) -> bool:
        """Ask for (or confirm) permission to post notifications."""
        ...

    async def schedule(self, content: dict[str, Any], fire_at: datetime) -> str:
        """Schedule a notification; returns its handle."""
        ...

    async def cancel(self, handle: str) -> None:
        """Cancel a scheduled notification."""
        ...

    async def list_scheduled(self) -> list[dict[str, Any]]:
        """List pending notifications as ``{"handle", "content", "fire_at"}`` dicts."""
        ...
