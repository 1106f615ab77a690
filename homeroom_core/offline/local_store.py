# =============================================================================
# homeroom_core/offline/local_store.py
# Durable Key-Value Store (SQLite)
# =============================================================================
"""
LocalStore - SQLite-backed durable key-value record.

Holds the full snapshot, the current session and the development-mode
credentials, each as one JSON document under its own key.

Features:
- Automatic schema creation
- Thread-local connections
- Transaction support
- Corrupt values read back as the caller's default
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, List
import logging

logger = logging.getLogger(__name__)


class LocalStore:
    """
    Local SQLite key-value store.

    Usage:
        store = LocalStore(Path("local_data") / "homeroom.db")
        store.set("homeroom_current_user", {"id": "u1"})
        store.get("homeroom_current_user")
    """

    DB_FILENAME = "homeroom.db"

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """

    def __init__(self, db_path: Path):
        """
        Initialize local store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._initialized = False
        self.initialize()

    @classmethod
    def in_directory(cls, data_dir: Path) -> LocalStore:
        """Create a store at <data_dir>/homeroom.db."""
        return cls(Path(data_dir) / cls.DB_FILENAME)

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "connection", None) is None:
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            self._local.connection = conn
            with self._connections_lock:
                self._connections.append(conn)
        return self._local.connection

    @contextmanager
    def transaction(self):
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        with self.transaction() as conn:
            conn.execute(self.SCHEMA)

        self._initialized = True
        logger.info(f"Local store initialized at: {self.db_path}")

    # =========================================================================
    # KEY-VALUE OPERATIONS
    # =========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        """
        Read a value.

        Returns the default when the key is absent or its stored text is
        not valid JSON.
        """
        row = self._get_connection().execute(
            "SELECT value FROM kv_store WHERE key = ?", [key]
        ).fetchone()
        if row is None or row["value"] is None:
            return default

        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as e:
            logger.warning(f"Discarding undecodable value for {key}: {e}")
            return default

    def set(self, key: str, value: Any) -> None:
        """Write a value, replacing any previous one."""
        payload = json.dumps(value, default=str)
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO kv_store (key, value, updated_at)
                VALUES (?, ?, ?)
                """,
                [key, payload, datetime.now().isoformat()],
            )

    def set_raw(self, key: str, text: str) -> None:
        """Write pre-serialized text (used for migrations and tests)."""
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
                [key, text, datetime.now().isoformat()],
            )

    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if something was removed."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM kv_store WHERE key = ?", [key])
            return cursor.rowcount > 0

    def keys(self) -> List[str]:
        rows = self._get_connection().execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        return [row["key"] for row in rows]

    def close(self) -> None:
        """Close every connection opened by this store."""
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()
