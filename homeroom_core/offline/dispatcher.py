# =============================================================================
# homeroom_core/offline/dispatcher.py
# Best-effort dispatch of optimistic writes
# =============================================================================
"""
RemoteDispatcher - unbounded FIFO queue of remote mutations drained by a
single daemon worker.

Optimistic writes have already been applied and persisted locally when
they are submitted here. A failed remote call is logged and counted; it
is never retried, rolled back or raised to the original caller.
"""

from __future__ import annotations
import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from homeroom_core.errors import handle_error

logger = logging.getLogger(__name__)


@dataclass
class RemoteTask:
    """One remote mutation waiting to be sent."""
    action: str
    data: Dict[str, Any]
    created_at: datetime = field(default_factory=datetime.now)


class RemoteDispatcher:
    """
    Fire-and-forget sender for remote mutations.

    Usage:
        dispatcher = RemoteDispatcher(gateway)
        dispatcher.submit("students.update", student)
        dispatcher.flush(timeout=5)   # tests / shutdown only
    """

    def __init__(self, gateway):
        self._gateway = gateway
        self._queue: queue.Queue = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._worker_lock = threading.Lock()
        self._closed = False
        self.sent_count = 0
        self.failed_count = 0

    def submit(self, action: str, data: Dict[str, Any]) -> None:
        """Queue a remote mutation. Never blocks on the network, never raises."""
        if self._closed:
            logger.warning(f"Dispatcher closed, dropping {action}")
            return
        self._queue.put(RemoteTask(action, dict(data)))
        self._ensure_worker()

    def _ensure_worker(self) -> None:
        with self._worker_lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(
                target=self._run,
                daemon=True,
                name="RemoteDispatcher",
            )
            self._worker.start()

    def _run(self) -> None:
        while True:
            task = self._queue.get()
            try:
                if task is None:
                    return
                self._send(task)
            finally:
                self._queue.task_done()

    def _send(self, task: RemoteTask) -> None:
        try:
            self._gateway.call(task.action, task.data)
            self.sent_count += 1
            logger.debug(f"Remote {task.action} delivered")
        except Exception as e:
            self.failed_count += 1
            handle_error(e, user_message=f"Background {task.action} failed; local change kept")

    @property
    def pending_count(self) -> int:
        return self._queue.unfinished_tasks

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every submitted task has been attempted.

        Returns:
            True if the queue drained before the timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def close(self, timeout: float = 5.0) -> None:
        """Drain outstanding tasks and stop the worker."""
        if self._closed:
            return
        self._closed = True
        if self._worker is not None and self._worker.is_alive():
            self._queue.put(None)
            self._worker.join(timeout=timeout)
        logger.info(f"Dispatcher stopped: {self.sent_count} sent, {self.failed_count} failed")

    def stats(self) -> Dict[str, int]:
        return {
            "pending": self.pending_count,
            "sent": self.sent_count,
            "failed": self.failed_count,
        }
