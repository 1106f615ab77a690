# =============================================================================
# homeroom_core/config/settings.py
# Engine Settings: secrets.toml + environment overrides
# =============================================================================
"""
Settings for the Homeroom data engine.

Expected secrets.toml format:

    [homeroom]
    mode = "relay"                      # or "direct" for local development
    relay_url = "https://school.example.org/.netlify/functions/api"
    script_url = "https://script.google.com/macros/s/.../exec"
    api_key = "your_secret_key"         # direct mode only
    timeout = 30
    data_dir = "local_data"
    sync_interval = 0                   # seconds, 0 disables background sync

Environment variables (HOMEROOM_*) override individual keys.
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import toml

from homeroom_core.errors import ConfigurationError
from homeroom_core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SECRETS_PATH = Path(".streamlit") / "secrets.toml"
DEFAULT_DATA_DIR = Path("local_data")
DEFAULT_RELAY_URL = ""

ENV_OVERRIDES = {
    "mode": "HOMEROOM_MODE",
    "relay_url": "HOMEROOM_RELAY_URL",
    "script_url": "HOMEROOM_SCRIPT_URL",
    "api_key": "HOMEROOM_API_KEY",
    "timeout": "HOMEROOM_TIMEOUT",
    "data_dir": "HOMEROOM_DATA_DIR",
    "sync_interval": "HOMEROOM_SYNC_INTERVAL",
}


class ConnectionMode(Enum):
    """How the client reaches the script endpoint."""
    RELAY = "relay"     # Relay injects the shared secret server-side
    DIRECT = "direct"   # Local development: client holds the key


@dataclass
class EngineSettings:
    """Configuration for the engine and its remote gateway"""
    mode: ConnectionMode = ConnectionMode.RELAY
    relay_url: str = DEFAULT_RELAY_URL
    script_url: str = ""
    api_key: str = ""
    timeout: float = 30.0
    data_dir: Path = DEFAULT_DATA_DIR
    background_interval: float = 0.0

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)

    @property
    def is_direct(self) -> bool:
        return self.mode is ConnectionMode.DIRECT


def _load_secrets_toml(path: Path) -> Dict[str, Any]:
    """Load the [homeroom] table from a secrets.toml file."""
    if not path.exists():
        return {}

    try:
        secrets = toml.load(path)
    except (toml.TomlDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable secrets file {path}: {e}")
        return {}

    section = secrets.get("homeroom", {})
    if not isinstance(section, dict):
        logger.warning(f"Ignoring malformed [homeroom] section in {path}")
        return {}
    return dict(section)


def _parse_mode(value: Any) -> ConnectionMode:
    if isinstance(value, ConnectionMode):
        return value
    try:
        return ConnectionMode(str(value).strip().lower())
    except ValueError:
        raise ConfigurationError(
            f"Unknown connection mode: {value!r}",
            config_key="mode",
            expected_type="relay | direct",
        )


def _parse_number(key: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Setting {key} must be numeric, got {value!r}",
            config_key=key,
            expected_type="number",
        )


def load_settings(
    secrets_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> EngineSettings:
    """
    Build EngineSettings from secrets.toml with environment overrides.

    Args:
        secrets_path: Path to secrets.toml (default: .streamlit/secrets.toml)
        env: Environment mapping (default: os.environ)

    Returns:
        EngineSettings
    """
    env = os.environ if env is None else env
    raw = _load_secrets_toml(Path(secrets_path) if secrets_path else DEFAULT_SECRETS_PATH)

    for key, var in ENV_OVERRIDES.items():
        if env.get(var):
            raw[key] = env[var]

    settings = EngineSettings(
        mode=_parse_mode(raw.get("mode", ConnectionMode.RELAY.value)),
        relay_url=str(raw.get("relay_url", DEFAULT_RELAY_URL)).strip(),
        script_url=str(raw.get("script_url", "")).strip(),
        api_key=str(raw.get("api_key", "")).strip(),
        timeout=_parse_number("timeout", raw.get("timeout", 30)),
        data_dir=Path(raw.get("data_dir", DEFAULT_DATA_DIR)),
        background_interval=_parse_number("sync_interval", raw.get("sync_interval", 0)),
    )

    logger.debug(f"Settings loaded: mode={settings.mode.value}, data_dir={settings.data_dir}")
    return settings
