# =============================================================================
# homeroom_core/errors/exceptions.py
# Custom Exception Hierarchy for the Homeroom data engine
# =============================================================================

from enum import Enum
from typing import Any, Dict, Optional


class HomeroomError(Exception):
    """
    Base exception for all Homeroom engine errors.

    Subclasses set ``code`` and ``recoverable`` as class attributes and pass
    their context as keyword arguments; non-None context values end up in
    ``details``.
    """

    code = "HR_000"
    recoverable = True

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if recoverable is not None:
            self.recoverable = recoverable
        self.details = dict(details or {})
        self.details.update({key: value for key, value in context.items() if value is not None})

    def __str__(self) -> str:
        text = f"[{self.code}] {self.message}"
        return f"{text} | Details: {self.details}" if self.details else text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "details": dict(self.details),
            "recoverable": self.recoverable,
        }


class ConfigurationError(HomeroomError):
    """Endpoint URL or credential missing or invalid; nothing was sent."""

    code = "CONFIG_001"
    recoverable = False

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, config_key=config_key, expected_type=expected_type, **kwargs)


# =============================================================================
# REMOTE PROTOCOL
# =============================================================================

class ProtocolError(HomeroomError):
    """The relay answered with something other than the JSON envelope."""

    code = "PROTO_001"

    def __init__(
        self,
        message: str,
        action: Optional[str] = None,
        preview: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, action=action, preview=preview, **kwargs)


class RelayUnavailableError(ProtocolError):
    """The relay could not be reached at all (refused, timed out)."""

    code = "PROTO_002"


class RemoteErrorKind(Enum):
    """Classification of a structured failure returned by the script endpoint."""
    UNSUPPORTED_ACTION = "unsupported_action"
    OTHER = "other"


class RemoteError(HomeroomError):
    """The endpoint answered ``{"ok": false, "error": ...}``."""

    code = "REMOTE_001"

    def __init__(
        self,
        message: str,
        action: Optional[str] = None,
        kind: RemoteErrorKind = RemoteErrorKind.OTHER,
        **kwargs,
    ):
        super().__init__(message, action=action, kind=kind.value, **kwargs)
        self.action = action
        self.kind = kind

    @property
    def is_unsupported_action(self) -> bool:
        return self.kind is RemoteErrorKind.UNSUPPORTED_ACTION


# =============================================================================
# LOCAL DATA
# =============================================================================

class NotFoundError(HomeroomError):
    """An operation named a record that is not in the local snapshot."""

    code = "DATA_404"

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, collection=collection, record_id=record_id, **kwargs)
