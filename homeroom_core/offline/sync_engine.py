# =============================================================================
# homeroom_core/offline/sync_engine.py
# Full-snapshot Synchronization Engine
# =============================================================================
"""
SyncEngine - replaces the local snapshot with the remote state.

Protocol:
1. Missing configuration -> NOT_CONFIGURED, no network traffic
2. One bulk request (``data.syncAll``)
3. If the endpoint does not support it, one ``<namespace>.list`` request
   per collection, strictly one after another
4. Normalize, stamp last sync, install atomically, persist
5. Any other failure -> ERROR with the previous snapshot untouched

At most one refresh runs at a time: the SYNCING status is the mutex.
"""

from __future__ import annotations
import re
import threading
from typing import Any, Dict, Optional
import logging

from homeroom_core.errors import ConfigurationError, ProtocolError, RemoteError
from homeroom_core.logging import LogContext
from homeroom_core.offline.snapshot import COLLECTIONS, LocalCache, Snapshot, utc_now
from homeroom_core.offline.status import StatusBroadcaster, SyncStatus

logger = logging.getLogger(__name__)

BULK_SYNC_ACTION = "data.syncAll"

DATED_COLLECTIONS = ("attendance", "behaviors")

_DATE_WITH_TIME = re.compile(r"^(\d{4}-\d{2}-\d{2})[T ]")


# =============================================================================
# NORMALIZATION
# =============================================================================

def normalize_date(value: Any) -> Any:
    """Truncate '2024-03-01T17:00:00.000Z' style values to '2024-03-01'."""
    if isinstance(value, str):
        match = _DATE_WITH_TIME.match(value)
        if match:
            return match.group(1)
    return value


def coerce_number(value: Any, default: int) -> float:
    """
    Numeric value of a spreadsheet cell, or ``default`` when it is
    missing, non-numeric or zero.
    """
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return default
    if number != number or number == 0:  # NaN or zero
        return default
    return int(number) if number.is_integer() else number


def normalize_payload(payload: Dict[str, Any]) -> Snapshot:
    """Build a clean Snapshot from a bulk or aggregated fallback payload."""
    snapshot = Snapshot.from_dict(payload)

    for name in DATED_COLLECTIONS:
        for record in getattr(snapshot, name):
            if "date" in record:
                record["date"] = normalize_date(record["date"])

    for student in snapshot.students:
        student["xp"] = coerce_number(student.get("xp"), 0)
        student["level"] = coerce_number(student.get("level"), 1)

    # lastSync is stamped by the engine, never taken from the server
    snapshot.last_sync = None
    return snapshot


# =============================================================================
# ENGINE
# =============================================================================

class SyncEngine:
    """
    Refreshes the LocalCache from the remote endpoint.

    Usage:
        engine = SyncEngine(gateway, cache, broadcaster)
        engine.initialize()
        engine.refresh()          # blocks until the refresh completes
        engine.start(interval=300)  # optional periodic refresh
    """

    def __init__(self, gateway, cache: LocalCache, broadcaster: StatusBroadcaster):
        self._gateway = gateway
        self._cache = cache
        self._broadcaster = broadcaster
        self._sync_thread: Optional[threading.Thread] = None
        self._stop_sync = threading.Event()

    @property
    def is_syncing(self) -> bool:
        return self._broadcaster.status is SyncStatus.SYNCING

    def initialize(self) -> SyncStatus:
        """
        Set the initial status from the gateway configuration (no network).

        A refresh already in flight keeps its SYNCING status.
        """
        status = SyncStatus.IDLE if self._gateway.is_configured else SyncStatus.NOT_CONFIGURED
        if not self._broadcaster.transition_unless_syncing(status, last_sync=self._cache.last_sync):
            logger.debug("Initialize during a refresh, status left at SYNCING")
            return SyncStatus.SYNCING
        logger.info(f"SyncEngine initialized ({status.value})")
        return status

    def refresh(self) -> bool:
        """
        Perform a full refresh.

        Returns:
            True if a new snapshot was installed. Failures are logged and
            reported through the status, never raised.
        """
        if self.is_syncing:
            logger.debug("Refresh already in flight, skipping")
            return False

        if not self._gateway.is_configured:
            logger.warning("Refresh skipped: remote endpoint not configured")
            self._broadcaster.transition_unless_syncing(SyncStatus.NOT_CONFIGURED)
            return False

        if not self._broadcaster.try_begin_sync():
            logger.debug("Refresh already in flight, skipping")
            return False

        try:
            with LogContext(logger, "Full sync"):
                snapshot = normalize_payload(self._fetch_all())
                snapshot.last_sync = utc_now()
                self._cache.install(snapshot)
        except ConfigurationError as e:
            logger.warning(f"Refresh aborted, configuration missing: {e.message}")
            self._broadcaster.transition(SyncStatus.NOT_CONFIGURED)
            return False
        except Exception as e:
            logger.warning(f"Refresh failed, keeping the cached snapshot: {e}")
            self._broadcaster.transition(SyncStatus.ERROR)
            return False

        logger.info(f"Snapshot installed: {snapshot.counts()}")
        self._broadcaster.transition(SyncStatus.IDLE, last_sync=snapshot.last_sync)
        return True

    def _fetch_all(self) -> Dict[str, Any]:
        try:
            payload = self._gateway.call(BULK_SYNC_ACTION)
        except RemoteError as e:
            if not e.is_unsupported_action:
                raise
            logger.warning(f"Bulk sync not supported ({e.message}), falling back to per-collection sync")
            return self._fetch_each()

        if not isinstance(payload, dict):
            raise ProtocolError(
                "Bulk sync returned no collection map",
                action=BULK_SYNC_ACTION,
                preview=repr(payload)[:100],
            )
        return payload

    def _fetch_each(self) -> Dict[str, Any]:
        """Sequential fallback: one list request per collection."""
        payload: Dict[str, Any] = {}
        for spec in COLLECTIONS:
            action = spec.action("list")
            records = self._gateway.call(action)
            if records is None:
                records = []
            if not isinstance(records, list):
                raise ProtocolError(
                    f"{action} did not return a list",
                    action=action,
                    preview=repr(records)[:100],
                )
            payload[spec.payload_key] = records
            logger.debug(f"Fetched {len(records)} {spec.name}")
        return payload

    # =========================================================================
    # BACKGROUND REFRESH
    # =========================================================================

    def start(self, interval: float) -> None:
        """Start a daemon thread that refreshes every ``interval`` seconds."""
        if interval <= 0:
            raise ValueError("Background sync interval must be positive")
        if self._sync_thread is not None and self._sync_thread.is_alive():
            return

        self._stop_sync.clear()
        self._sync_thread = threading.Thread(
            target=self._sync_loop,
            args=(interval,),
            daemon=True,
            name="SyncEngine",
        )
        self._sync_thread.start()
        logger.info(f"Background sync started (every {interval:g}s)")

    def stop(self) -> None:
        """Stop the background refresh thread."""
        self._stop_sync.set()
        if self._sync_thread:
            self._sync_thread.join(timeout=10)
            self._sync_thread = None
        logger.info("Background sync stopped")

    def _sync_loop(self, interval: float) -> None:
        while not self._stop_sync.wait(timeout=interval):
            self.refresh()
