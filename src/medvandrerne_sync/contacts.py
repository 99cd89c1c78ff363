"""Locally held contact list, enriched from the remote user directory."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from .errors import TransportFailure
from .models import normalize_entity_id
from .store import dump_json, load_json

if TYPE_CHECKING:
    from .protocols import GatewayProtocol, StoreProtocol

logger = logging.getLogger("medvandrerne_sync.contacts")

CONTACTS_KEY = "contacts"


def normalize_phone(phone: str, default_prefix: str = "+47") -> str:
    """Strip whitespace and add the country prefix when the number has none."""
    compact = re.sub(r"\s+", "", phone or "")
    if not compact or compact.startswith("+"):
        return compact
    if compact.startswith("00"):
        return "+" + compact[2:]
    return default_prefix + re.sub(r"^0", "", compact)


class ContactBook:
    def __init__(
        self,
        store: StoreProtocol,
        gateway: GatewayProtocol,
        user_id: str,
        user_name: str = "Anonym",
        default_phone_prefix: str = "+47",
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.gateway = gateway
        self.user_id = user_id
        self.user_name = user_name
        self.default_phone_prefix = default_phone_prefix
        self.clock = clock

    def all(self) -> list[dict[str, Any]]:
        raw = load_json(self.store, CONTACTS_KEY, [])
        if not isinstance(raw, list):
            return []
        return [contact for contact in raw if isinstance(contact, dict) and "id" in contact]

    def _save(self, contacts: list[dict[str, Any]]) -> None:
        self.store.set_state(CONTACTS_KEY, dump_json(contacts))

    def get(self, contact_id: Any) -> dict[str, Any] | None:
        key = normalize_entity_id(contact_id)
        for contact in self.all():
            if normalize_entity_id(contact["id"]) == key:
                return contact
        return None

    def has(self, contact_id: Any) -> bool:
        return self.get(contact_id) is not None

    async def add(self, contact: dict[str, Any], notify: bool = True) -> bool:
        """Insert or update ``contact``; returns True when it already existed.

        New contacts go to the front of the list and, when ``notify`` is set,
        the added user is told about it (best effort).
        """
        key = normalize_entity_id(contact["id"])
        now = self.clock().isoformat()
        contacts = self.all()
        for index, existing in enumerate(contacts):
            if normalize_entity_id(existing["id"]) == key:
                contacts[index] = {**existing, **contact, "id": key, "updatedAt": now}
                self._save(contacts)
                return True

        contacts.insert(0, {**contact, "id": key, "addedAt": now, "updatedAt": now})
        self._save(contacts)
        logger.info("Added contact %s", key)
        if notify:
            target = normalize_entity_id(contact.get("userId") or key)
            try:
                await self.gateway.notify_contact_added(target, self.user_id, self.user_name)
            except TransportFailure as exc:
                logger.warning("Could not notify %s about new contact: %s", target, exc)
        return False

    def remove(self, contact_id: Any) -> bool:
        key = normalize_entity_id(contact_id)
        contacts = self.all()
        kept = [contact for contact in contacts if normalize_entity_id(contact["id"]) != key]
        if len(kept) == len(contacts):
            return False
        self._save(kept)
        logger.info("Removed contact %s", key)
        return True

    async def enrich(self, contact_ids: list[Any] | None = None) -> int:
        """Merge remote profiles into stored contacts matched by phone number.

        Returns the number of contacts updated.  A transport failure leaves the
        stored contacts untouched.
        """
        wanted = None if contact_ids is None else {normalize_entity_id(c) for c in contact_ids}
        contacts = self.all()
        by_phone: dict[str, int] = {}
        for index, contact in enumerate(contacts):
            if wanted is not None and normalize_entity_id(contact["id"]) not in wanted:
                continue
            phone = contact.get("phone")
            if phone:
                by_phone[normalize_phone(str(phone), self.default_phone_prefix)] = index
        if not by_phone:
            return 0

        try:
            users = await self.gateway.lookup_users(sorted(by_phone))
        except TransportFailure as exc:
            logger.warning("Contact lookup failed, keeping local contacts: %s", exc)
            return 0

        updated = 0
        for user in users:
            phone = user.get("phone") or user.get("phoneNumber")
            if not phone:
                continue
            index = by_phone.get(normalize_phone(str(phone), self.default_phone_prefix))
            if index is None:
                continue
            contact = contacts[index]
            contacts[index] = {
                **contact,
                **user,
                "id": contact["id"],
                "userId": user.get("id", contact.get("userId")),
                "addedAt": contact.get("addedAt"),
                "updatedAt": self.clock().isoformat(),
            }
            updated += 1
        if updated:
            self._save(contacts)
        logger.info("Enriched %d of %d contact(s) from remote lookup", updated, len(by_phone))
        return updated
