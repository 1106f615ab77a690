# =============================================================================
# homeroom_core/errors/__init__.py
# Centralized Error Handling for the Homeroom data engine
# =============================================================================

from .exceptions import (
    HomeroomError,
    ConfigurationError,
    ProtocolError,
    RelayUnavailableError,
    RemoteError,
    RemoteErrorKind,
    NotFoundError,
)

from .handlers import (
    handle_error,
)

__all__ = [
    # Exceptions
    "HomeroomError",
    "ConfigurationError",
    "ProtocolError",
    "RelayUnavailableError",
    "RemoteError",
    "RemoteErrorKind",
    "NotFoundError",
    # Handlers
    "handle_error",
]
