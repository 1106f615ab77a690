# homeroom_core/config/__init__.py
"""
Engine configuration: settings file, environment overrides and
development-mode credentials.
"""
from .settings import (
    ConnectionMode,
    EngineSettings,
    load_settings,
)
from .credentials import DevCredentialStore

__all__ = [
    "ConnectionMode",
    "EngineSettings",
    "load_settings",
    "DevCredentialStore",
]
