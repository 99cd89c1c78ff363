from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from uuid import uuid4

if TYPE_CHECKING:
    from .protocols import StoreProtocol

logger = logging.getLogger("medvandrerne_sync.identity")

USER_ID_KEY = "user_id"


def get_or_create_user_id(store: StoreProtocol) -> str:
    """Return the device's anonymous user id, generating it on first use."""
    existing = store.get_state(USER_ID_KEY)
    if existing:
        return existing
    user_id = f"user_{uuid4().hex}"
    store.set_state(USER_ID_KEY, user_id)
    logger.info("Generated anonymous user id %s", user_id)
    return user_id
