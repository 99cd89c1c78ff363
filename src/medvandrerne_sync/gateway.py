"""HTTP client for the organization's backend API."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from .errors import TransportFailure
from .models import CacheCategory, normalize_entity_id

logger = logging.getLogger("medvandrerne_sync.gateway")

_NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
}


class HttpDataGateway:
    """Remote data gateway backed by ``httpx.AsyncClient``.

    Every failure (connection error, HTTP error status, unparseable body or an
    explicit ``"success": false``) surfaces as ``TransportFailure``.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: Any) -> HttpDataGateway:
        return cls(settings.api_base_url, timeout=settings.request_timeout_seconds)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        url = f"{self.base_url}/{endpoint}"
        try:
            response = await self._get_client().request(method, url, params=params, json=json, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise TransportFailure(endpoint, f"HTTP {exc.response.status_code}", exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            raise TransportFailure(endpoint, str(exc) or type(exc).__name__) from exc
        except ValueError as exc:
            raise TransportFailure(endpoint, "response was not valid JSON") from exc

        if isinstance(data, dict) and data.get("success") is False:
            raise TransportFailure(endpoint, str(data.get("error") or "request rejected"))
        return data

    async def fetch_category(self, category: CacheCategory) -> Any:
        logger.info("Fetching %s from %s", category.value, category.endpoint)
        return await self._request("GET", category.endpoint)

    async def fetch_all(self) -> dict[str, Any]:
        logger.info("Fetching all categories")
        data = await self._request("GET", "all.php")
        if not isinstance(data, dict):
            raise TransportFailure("all.php", "expected a JSON object")
        return data

    async def register(self, activity_id: str, user_id: str, user_name: str) -> int | None:
        data = await self._request(
            "POST",
            "registrations/register.php",
            json={"activityId": activity_id, "userId": user_id, "userName": user_name},
        )
        return _count_from(data)

    async def unregister(self, activity_id: str, user_id: str) -> int | None:
        data = await self._request(
            "POST",
            "registrations/unregister.php",
            json={"activityId": activity_id, "userId": user_id},
        )
        return _count_from(data)

    async def registration_counts(self, activity_id: str | None = None) -> dict[str, int]:
        params = {"activityId": activity_id} if activity_id is not None else None
        data = await self._request("GET", "registrations/get.php", params=params)
        if not isinstance(data, dict):
            return {}
        if activity_id is not None:
            count = _count_from(data)
            return {normalize_entity_id(activity_id): count or 0}
        counts = data.get("registrationCounts") or {}
        if not isinstance(counts, dict):
            return {}
        return {normalize_entity_id(key): int(value or 0) for key, value in counts.items()}

    async def lookup_users(self, phone_numbers: list[str]) -> list[dict[str, Any]]:
        if not phone_numbers:
            return []
        data = await self._request(
            "POST",
            "users/lookup.php",
            params={"_t": int(time.time() * 1000)},
            json={"phoneNumbers": phone_numbers},
            headers=_NO_CACHE_HEADERS,
        )
        users = data.get("users") if isinstance(data, dict) else None
        return [user for user in users or [] if isinstance(user, dict)]

    async def notify_contact_added(self, target_user_id: str, added_by_id: str, added_by_name: str) -> None:
        await self._request(
            "POST",
            "contacts/notify-added.php",
            json={
                "targetUserId": target_user_id,
                "addedById": added_by_id,
                "addedByName": added_by_name,
            },
        )


def _count_from(data: Any) -> int | None:
    if not isinstance(data, dict):
        return None
    count = data.get("registrationCount")
    if count is None:
        return None
    try:
        return int(count)
    except (TypeError, ValueError):
        return None
