# =============================================================================
# homeroom_core/offline/gateway.py
# Remote Gateway to the spreadsheet script endpoint
# =============================================================================
"""
Remote gateway: one POST per call, carrying the envelope

    {"action": "<namespace>.<verb>", "data": {...}}

and expecting back

    {"ok": true, "data": ...}   or   {"ok": false, "error": "..."}

Two strategies share the interface:
- RelayGateway:  posts to a relay that injects the shared secret itself
- DirectGateway: posts straight to the script and embeds ``apiKey``
                 (local development only)

The gateway knows nothing about collections.
"""

from __future__ import annotations
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from homeroom_core.config import ConnectionMode, DevCredentialStore, EngineSettings
from homeroom_core.errors import (
    ConfigurationError,
    ProtocolError,
    RelayUnavailableError,
    RemoteError,
    RemoteErrorKind,
)
from homeroom_core.logging import get_logger

logger = get_logger(__name__)

# Error codes a newer script returns for actions it does not implement
UNSUPPORTED_ACTION_CODES = {"UNSUPPORTED_ACTION", "UNKNOWN_ACTION"}

# Messages older scripts return for the same condition
LEGACY_UNSUPPORTED_MESSAGES = ("Unknown table: data", "Invalid action format")

PREVIEW_LENGTH = 100


def classify_remote_error(result: Dict[str, Any]) -> RemoteErrorKind:
    """Decide whether a failure envelope means "action not supported"."""
    code = str(result.get("code") or "").upper()
    if code in UNSUPPORTED_ACTION_CODES:
        return RemoteErrorKind.UNSUPPORTED_ACTION

    message = str(result.get("error") or "")
    if any(marker in message for marker in LEGACY_UNSUPPORTED_MESSAGES):
        return RemoteErrorKind.UNSUPPORTED_ACTION
    return RemoteErrorKind.OTHER


class BaseGateway(ABC):
    """Abstract base class for both gateway strategies"""

    mode: ConnectionMode

    def __init__(self, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    @property
    @abstractmethod
    def endpoint(self) -> str:
        """URL the envelope is posted to"""

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Whether every setting needed to reach the endpoint is present"""

    @abstractmethod
    def _missing_configuration(self) -> ConfigurationError:
        """Error describing what is missing"""

    def _build_payload(self, action: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return {"action": action, "data": data}

    def call(self, action: str, data: Optional[Dict[str, Any]] = None) -> Any:
        """
        Send one request and return the ``data`` field of the reply.

        Raises:
            ConfigurationError: endpoint/credentials missing (no request sent)
            RelayUnavailableError: relay could not be reached
            ProtocolError: reply was markup or not a JSON object
            RemoteError: reply had a falsy ``ok``
        """
        if not self.is_configured:
            raise self._missing_configuration()

        payload = self._build_payload(action, data or {})

        try:
            response = self.session.post(
                self.endpoint,
                data=json.dumps(payload, default=str),
                timeout=self.timeout,
                allow_redirects=True,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Remote call {action} could not reach {self.endpoint}: {e}")
            raise RelayUnavailableError(f"Relay unreachable: {e}", action=action) from e

        return self._parse_response(action, response)

    def _parse_response(self, action: str, response: requests.Response) -> Any:
        # Relays report their own failures as JSON with 500/502, so the
        # body is parsed whatever the status code.
        text = response.text or ""
        preview = text.strip()[:PREVIEW_LENGTH]

        if text.lstrip().startswith("<"):
            logger.error(f"Remote call {action} returned markup (HTTP {response.status_code}): {preview}")
            raise ProtocolError(
                "Relay returned an HTML page instead of JSON",
                action=action,
                preview=preview,
            )

        try:
            result = json.loads(text)
        except ValueError:
            logger.error(f"Remote call {action} returned non-JSON (HTTP {response.status_code}): {preview}")
            raise ProtocolError(
                "Relay returned a body that is not JSON",
                action=action,
                preview=preview,
            ) from None

        if not isinstance(result, dict):
            raise ProtocolError(
                "Relay returned JSON that is not an envelope object",
                action=action,
                preview=preview,
            )

        if not result.get("ok"):
            kind = classify_remote_error(result)
            message = result.get("error") or "Unknown API error"
            logger.warning(f"Remote call {action} failed ({kind.value}): {message}")
            raise RemoteError(message, action=action, kind=kind)

        return result.get("data")

    def ping(self) -> bool:
        """Connectivity check; errors propagate to the caller."""
        return self.call("ping") == "pong"

    def describe(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "endpoint": self.endpoint,
            "configured": self.is_configured,
        }


class RelayGateway(BaseGateway):
    """Production strategy: the relay holds the secret."""

    mode = ConnectionMode.RELAY

    def __init__(self, relay_url: str, timeout: float = 30.0, session: Optional[requests.Session] = None):
        super().__init__(timeout=timeout, session=session)
        self.relay_url = (relay_url or "").strip()

    @property
    def endpoint(self) -> str:
        return self.relay_url

    @property
    def is_configured(self) -> bool:
        return bool(self.relay_url)

    def _missing_configuration(self) -> ConfigurationError:
        return ConfigurationError("Relay URL is not configured", config_key="relay_url")


class DirectGateway(BaseGateway):
    """
    Development strategy: talk to the script directly with a client-held key.

    URL and key are resolved on every call so values saved through
    DevCredentialStore take effect immediately.
    """

    mode = ConnectionMode.DIRECT

    def __init__(
        self,
        script_url: str = "",
        api_key: str = "",
        credentials: Optional[DevCredentialStore] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(timeout=timeout, session=session)
        self.script_url = (script_url or "").strip()
        self.api_key = (api_key or "").strip()
        self.credentials = credentials

    def _resolve(self):
        if self.credentials is None:
            return self.script_url, self.api_key
        return self.credentials.resolve(self.script_url, self.api_key)

    @property
    def endpoint(self) -> str:
        return self._resolve()[0]

    @property
    def is_configured(self) -> bool:
        url, key = self._resolve()
        return bool(url) and bool(key)

    def _missing_configuration(self) -> ConfigurationError:
        url, _ = self._resolve()
        missing = "api_key" if url else "script_url"
        return ConfigurationError(
            "Direct mode needs both a script URL and an API key",
            config_key=missing,
        )

    def _build_payload(self, action: str, data: Dict[str, Any]) -> Dict[str, Any]:
        payload = super()._build_payload(action, data)
        payload["apiKey"] = self._resolve()[1]
        return payload

    def describe(self) -> Dict[str, Any]:
        info = super().describe()
        info["api_key_set"] = bool(self._resolve()[1])
        return info


def create_gateway(
    settings: EngineSettings,
    credentials: Optional[DevCredentialStore] = None,
    session: Optional[requests.Session] = None,
) -> BaseGateway:
    """Pick the gateway strategy for the configured connection mode."""
    if settings.mode is ConnectionMode.DIRECT:
        return DirectGateway(
            script_url=settings.script_url,
            api_key=settings.api_key,
            credentials=credentials,
            timeout=settings.timeout,
            session=session,
        )
    return RelayGateway(settings.relay_url, timeout=settings.timeout, session=session)
