# =============================================================================
# homeroom_core/offline/snapshot.py
# Local Snapshot of every domain collection
# =============================================================================
"""
Snapshot - the full local copy of all domain collections plus last sync time.

Components:
- Snapshot:       dataclass with one list of records per collection
- COLLECTIONS:    registry mapping each collection to its payload key and
                  remote action namespace
- SnapshotStore:  load/save of the whole snapshot under one durable key
- LocalCache:     the owned aggregate (snapshot + lock + store) that the
                  sync engine and the data service share
"""

from __future__ import annotations
import copy
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional
import logging

logger = logging.getLogger(__name__)

CACHE_KEY = "homeroom_cache_v4"


@dataclass(frozen=True)
class CollectionSpec:
    """Describes one domain collection."""
    name: str          # Snapshot attribute
    payload_key: str   # Key in bulk payloads and in the cached document
    namespace: str     # Remote action namespace, e.g. "behavior" -> "behavior.list"

    def action(self, verb: str) -> str:
        return f"{self.namespace}.{verb}"


# Order matters: the fallback sync lists collections in this order.
COLLECTIONS: List[CollectionSpec] = [
    CollectionSpec("users", "users", "users"),
    CollectionSpec("classes", "classes", "classes"),
    CollectionSpec("students", "students", "students"),
    CollectionSpec("parents", "parents", "parents"),
    CollectionSpec("attendance", "attendance", "attendance"),
    CollectionSpec("behaviors", "behaviors", "behavior"),
    CollectionSpec("announcements", "announcements", "announcements"),
    CollectionSpec("documents", "documents", "documents"),
    CollectionSpec("tasks", "tasks", "tasks"),
    CollectionSpec("task_replies", "taskReplies", "taskReplies"),
    CollectionSpec("threads", "threads", "messageThreads"),
    CollectionSpec("messages", "messages", "messages"),
    CollectionSpec("questions", "questions", "questions"),
]

COLLECTIONS_BY_NAME: Dict[str, CollectionSpec] = {spec.name: spec for spec in COLLECTIONS}


def get_collection_spec(name: str) -> CollectionSpec:
    try:
        return COLLECTIONS_BY_NAME[name]
    except KeyError:
        raise KeyError(f"Unknown collection: {name}") from None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (with or without trailing Z); None if unparsable."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Snapshot:
    """
    One list of records per domain collection plus the last sync time.

    Every collection is always a list once constructed; records are plain
    dicts keyed by the remote field names (``classId``, ``fullName``, ...).
    """
    users: List[Dict[str, Any]] = field(default_factory=list)
    classes: List[Dict[str, Any]] = field(default_factory=list)
    students: List[Dict[str, Any]] = field(default_factory=list)
    parents: List[Dict[str, Any]] = field(default_factory=list)
    attendance: List[Dict[str, Any]] = field(default_factory=list)
    behaviors: List[Dict[str, Any]] = field(default_factory=list)
    announcements: List[Dict[str, Any]] = field(default_factory=list)
    documents: List[Dict[str, Any]] = field(default_factory=list)
    tasks: List[Dict[str, Any]] = field(default_factory=list)
    task_replies: List[Dict[str, Any]] = field(default_factory=list)
    threads: List[Dict[str, Any]] = field(default_factory=list)
    messages: List[Dict[str, Any]] = field(default_factory=list)
    questions: List[Dict[str, Any]] = field(default_factory=list)
    last_sync: Optional[datetime] = None

    @classmethod
    def empty(cls) -> Snapshot:
        return cls()

    @classmethod
    def from_dict(cls, raw: Any) -> Snapshot:
        """
        Build a snapshot from a cached document or a sync payload.

        Absent or non-list collections become empty lists, non-dict
        records are dropped and an unparsable lastSync becomes None.
        """
        if not isinstance(raw, dict):
            return cls.empty()

        values: Dict[str, Any] = {}
        for spec in COLLECTIONS:
            items = raw.get(spec.payload_key)
            if not isinstance(items, list):
                items = []
            values[spec.name] = [dict(item) for item in items if isinstance(item, dict)]

        return cls(last_sync=parse_timestamp(raw.get("lastSync")), **values)

    def to_dict(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            spec.payload_key: getattr(self, spec.name) for spec in COLLECTIONS
        }
        doc["lastSync"] = self.last_sync.isoformat() if self.last_sync else None
        return doc

    def collection(self, name: str) -> List[Dict[str, Any]]:
        return getattr(self, get_collection_spec(name).name)

    def copy(self) -> Snapshot:
        """Deep copy: no list or record is shared with the original."""
        values = {
            f.name: copy.deepcopy(getattr(self, f.name))
            for f in fields(self)
            if f.name != "last_sync"
        }
        return Snapshot(last_sync=self.last_sync, **values)

    def counts(self) -> Dict[str, int]:
        return {spec.name: len(getattr(self, spec.name)) for spec in COLLECTIONS}


class SnapshotStore:
    """Durable backing of the snapshot: the whole document under one key."""

    def __init__(self, store, key: str = CACHE_KEY):
        self._store = store
        self._key = key

    def load(self) -> Snapshot:
        """Restore the last saved snapshot; anything unreadable becomes empty."""
        try:
            raw = self._store.get(self._key)
        except Exception as e:
            logger.warning(f"Snapshot could not be read, starting empty: {e}")
            return Snapshot.empty()

        if raw is None:
            return Snapshot.empty()
        if not isinstance(raw, dict):
            logger.warning("Cached snapshot is malformed, starting empty")
            return Snapshot.empty()
        return Snapshot.from_dict(raw)

    def save(self, snapshot: Snapshot) -> None:
        self._store.set(self._key, snapshot.to_dict())


class LocalCache:
    """
    The owned snapshot aggregate.

    Readers and writers take the same re-entrant lock, so a mutation's
    "compute, persist" step is never observed half-done and a sync install
    replaces every collection at once.
    """

    def __init__(self, snapshot_store: SnapshotStore):
        self._snapshot_store = snapshot_store
        self._lock = threading.RLock()
        self._snapshot = snapshot_store.load()
        self._working: Optional[Snapshot] = None
        logger.debug(f"Local cache loaded: {self._snapshot.counts()}")

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def last_sync(self) -> Optional[datetime]:
        with self._lock:
            return self._snapshot.last_sync

    @contextmanager
    def read(self) -> Iterator[Snapshot]:
        """Consistent read-only view of the current snapshot."""
        with self._lock:
            yield self._working if self._working is not None else self._snapshot

    @contextmanager
    def mutate(self) -> Iterator[Snapshot]:
        """
        Yield a working copy of the snapshot for changes.

        The copy is saved and made current only when the block completes;
        if the block or the save raises, memory and disk both keep the
        previous snapshot. A nested mutate shares the outer working copy.
        """
        with self._lock:
            if self._working is not None:
                yield self._working
                return

            self._working = self._snapshot.copy()
            try:
                yield self._working
                self._snapshot_store.save(self._working)
                self._snapshot = self._working
            finally:
                self._working = None

    def install(self, snapshot: Snapshot) -> None:
        """Persist a replacement snapshot, then make it current."""
        with self._lock:
            self._snapshot_store.save(snapshot)
            self._snapshot = snapshot

    def export(self) -> Snapshot:
        with self._lock:
            return self._snapshot.copy()
