# =============================================================================
# homeroom_core/offline/session_store.py
# Current authenticated principal
# =============================================================================

from __future__ import annotations
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)

CURRENT_USER_KEY = "homeroom_current_user"

SESSION_FIELDS = ("id", "username", "role", "fullName", "linkedRecordId")


class SessionStore:
    """
    Durable record of the signed-in user.

    Independent of the snapshot: a stale or empty cache never signs the
    user out, and logging out leaves the cache alone.
    """

    def __init__(self, store):
        self._store = store

    def get(self) -> Optional[Dict[str, Any]]:
        raw = self._store.get(CURRENT_USER_KEY)
        if not isinstance(raw, dict) or not raw.get("id"):
            return None
        return raw

    def set(self, user: Dict[str, Any]) -> None:
        # Principal fields only; echoed passwords are dropped
        session = {k: user.get(k) for k in SESSION_FIELDS if user.get(k) is not None}
        self._store.set(CURRENT_USER_KEY, session)
        logger.info(f"Session started for {session.get('username')}")

    def clear(self) -> None:
        self._store.delete(CURRENT_USER_KEY)
        logger.info("Session cleared")
