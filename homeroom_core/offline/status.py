# =============================================================================
# homeroom_core/offline/status.py
# Sync Status Broadcasting
# =============================================================================
"""
StatusBroadcaster - current sync status plus last sync time, pushed to
subscribers on every transition.

Features:
- Immediate delivery of the current state on subscribe
- Strictly ordered notifications (delivered under the broadcaster lock)
- Failing listeners are logged and skipped
"""

from __future__ import annotations
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional
import logging

logger = logging.getLogger(__name__)

_UNCHANGED = object()


class SyncStatus(Enum):
    """Synchronization status states."""
    IDLE = "IDLE"                      # Ready; last refresh (if any) succeeded
    SYNCING = "SYNCING"                # A refresh is in flight
    ERROR = "ERROR"                    # Last refresh failed; cache kept
    NOT_CONFIGURED = "NOT_CONFIGURED"  # Endpoint or credentials missing


@dataclass(frozen=True)
class SyncState:
    """Snapshot of the broadcaster for polling callers."""
    status: SyncStatus
    last_sync: Optional[datetime]


StatusListener = Callable[[SyncStatus, Optional[datetime]], None]


class StatusBroadcaster:
    """
    Holds the current SyncStatus and notifies listeners.

    Usage:
        broadcaster = StatusBroadcaster()
        unsubscribe = broadcaster.subscribe(lambda status, last: print(status))
        broadcaster.transition(SyncStatus.SYNCING)
        unsubscribe()
    """

    def __init__(
        self,
        initial: SyncStatus = SyncStatus.IDLE,
        last_sync: Optional[datetime] = None,
    ):
        self._status = initial
        self._last_sync = last_sync
        self._listeners: List[StatusListener] = []
        self._lock = threading.RLock()

    @property
    def status(self) -> SyncStatus:
        return self._status

    def get_state(self) -> SyncState:
        with self._lock:
            return SyncState(self._status, self._last_sync)

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """
        Register a listener and call it right away with the current state.

        Returns:
            Function that removes the listener
        """
        with self._lock:
            self._listeners.append(listener)
            self._deliver(listener, self._status, self._last_sync)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def transition(self, status: SyncStatus, last_sync=_UNCHANGED) -> None:
        """Set the status (and optionally the last sync time) and notify."""
        with self._lock:
            previous = self._status
            self._status = status
            if last_sync is not _UNCHANGED:
                self._last_sync = last_sync
            logger.info(f"Sync status: {previous.value} -> {status.value}")
            self._notify()

    def try_begin_sync(self) -> bool:
        """
        Move to SYNCING unless already there.

        Returns:
            False if a refresh is already in flight
        """
        with self._lock:
            if self._status is SyncStatus.SYNCING:
                return False
            self.transition(SyncStatus.SYNCING)
            return True

    def transition_unless_syncing(self, status: SyncStatus, last_sync=_UNCHANGED) -> bool:
        """
        Like ``transition`` but leaves an in-flight refresh alone; only the
        refresh that began the sync may move the status off SYNCING.

        Returns:
            False if a refresh is in flight and nothing changed
        """
        with self._lock:
            if self._status is SyncStatus.SYNCING:
                return False
            self.transition(status, last_sync)
            return True

    def _notify(self) -> None:
        for listener in list(self._listeners):
            self._deliver(listener, self._status, self._last_sync)

    @staticmethod
    def _deliver(listener: StatusListener, status: SyncStatus, last_sync: Optional[datetime]) -> None:
        try:
            listener(status, last_sync)
        except Exception as e:
            logger.error(f"Error in sync status listener: {e}", exc_info=True)

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        state = self.get_state()
        return {
            "status": state.status.value,
            "is_syncing": state.status is SyncStatus.SYNCING,
            "last_sync": state.last_sync.isoformat() if state.last_sync else None,
            "listeners": len(self._listeners),
        }
