# =============================================================================
# homeroom_core/config/credentials.py
# Development-mode endpoint/key overrides kept in the local store
# =============================================================================

from __future__ import annotations
from typing import Optional, Tuple

from homeroom_core.logging import get_logger

logger = get_logger(__name__)

STORAGE_API_URL = "APP_GAS_URL"
STORAGE_API_KEY = "APP_API_KEY"


class DevCredentialStore:
    """
    Script URL and API key entered at runtime (direct mode only).

    Values saved here win over the ones from EngineSettings, so an admin
    can point a development client at another script without a restart.
    """

    def __init__(self, store):
        self._store = store

    def get_api_url(self) -> Optional[str]:
        return self._store.get(STORAGE_API_URL) or None

    def get_api_key(self) -> Optional[str]:
        return self._store.get(STORAGE_API_KEY) or None

    def set_api_url(self, url: str) -> None:
        self._store.set(STORAGE_API_URL, url.strip())
        logger.info("Development script URL updated")

    def set_api_key(self, key: str) -> None:
        self._store.set(STORAGE_API_KEY, key.strip())
        logger.info("Development API key updated")

    def clear(self) -> None:
        self._store.delete(STORAGE_API_URL)
        self._store.delete(STORAGE_API_KEY)

    def resolve(self, script_url: str, api_key: str) -> Tuple[str, str]:
        """Return (url, key), preferring stored overrides."""
        return (
            self.get_api_url() or script_url,
            self.get_api_key() or api_key,
        )
