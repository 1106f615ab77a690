# =============================================================================
# homeroom_core/offline/data_service.py
# Classroom Data Service - Single API for offline-first reads and writes
# =============================================================================
"""
ClassroomDataService - the primary API for all classroom data.

Reads come from the local snapshot only. Writes are applied to the
snapshot and persisted before the call returns, then the matching remote
mutation is queued on the RemoteDispatcher (local write wins, remote is
best effort). Only refresh(), login/registration and the connectivity
check wait on the network.

Usage:
------
from homeroom_core.offline import create_data_service

service = create_data_service()
service.initialize(refresh=True)

unsubscribe = service.subscribe(lambda status, last_sync: print(status))
students = service.get_students_by_class("c1")
service.award_xp("s1", 10)
"""

from __future__ import annotations
import copy
import json
import math
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

import pandas as pd

from homeroom_core.config import DevCredentialStore, EngineSettings, load_settings
from homeroom_core.errors import NotFoundError, ProtocolError
from homeroom_core.logging import get_logger
from homeroom_core.offline.dispatcher import RemoteDispatcher
from homeroom_core.offline.gateway import BaseGateway, create_gateway
from homeroom_core.offline.local_store import LocalStore
from homeroom_core.offline.session_store import SessionStore
from homeroom_core.offline.snapshot import (
    COLLECTIONS,
    CollectionSpec,
    LocalCache,
    Snapshot,
    SnapshotStore,
    get_collection_spec,
    utc_now,
)
from homeroom_core.offline.status import StatusBroadcaster, StatusListener, SyncState, SyncStatus
from homeroom_core.offline.sync_engine import SyncEngine, coerce_number

logger = get_logger(__name__)

XP_PER_LEVEL = 100

# Collections whose new records are shown newest first
PREPENDED_COLLECTIONS = ("announcements", "documents", "tasks")

# Display name used for the parent side of a synthesized thread
DEFAULT_PARENT_LABEL = "PHHS"

THREAD_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "homeroom/message-thread")


def new_id() -> str:
    return str(uuid.uuid4())


def thread_id_for_student(student_id: str) -> str:
    """Stable thread identifier for a student's messaging thread."""
    return str(uuid.uuid5(THREAD_ID_NAMESPACE, str(student_id)))


def level_for_xp(xp: float) -> int:
    return math.floor(xp / XP_PER_LEVEL) + 1


def _date_part(value: Any) -> str:
    return str(value or "")[:10]


def _is_truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _index_of(records: List[Dict[str, Any]], record_id: Any) -> Optional[int]:
    for idx, record in enumerate(records):
        if record.get("id") == record_id:
            return idx
    return None


class Outbox:
    """Remote mutations staged during a local write."""

    def __init__(self):
        self.items: List[Tuple[str, Dict[str, Any]]] = []

    def submit(self, action: str, data: Dict[str, Any]) -> None:
        self.items.append((action, dict(data)))


@contextmanager
def local_write(cache: LocalCache, dispatcher: RemoteDispatcher) -> Iterator[Tuple[Snapshot, Outbox]]:
    """
    Change the snapshot and persist it, then queue the staged remote
    mutations.

    Nothing is queued unless the save succeeded. Queueing happens under the
    cache lock, so remote mutations leave in the order of the local writes.
    """
    outbox = Outbox()
    with cache.lock:
        with cache.mutate() as snapshot:
            yield snapshot, outbox
        for action, data in outbox.items:
            dispatcher.submit(action, data)


# =============================================================================
# GENERIC COLLECTION ACCESS
# =============================================================================

class CollectionRepository:
    """
    Snapshot-backed CRUD for one collection.

    Every mutator persists before returning and queues
    ``<namespace>.create|update|delete`` on the dispatcher.
    """

    def __init__(
        self,
        spec: CollectionSpec,
        cache: LocalCache,
        dispatcher: RemoteDispatcher,
        prepend: bool = False,
    ):
        self.spec = spec
        self._cache = cache
        self._dispatcher = dispatcher
        self._prepend = prepend

    @property
    def name(self) -> str:
        return self.spec.name

    def _records(self, snapshot: Snapshot) -> List[Dict[str, Any]]:
        return getattr(snapshot, self.spec.name)

    def list(
        self,
        predicate: Optional[Callable[[Dict[str, Any]], bool]] = None,
        **filters: Any,
    ) -> List[Dict[str, Any]]:
        """
        Records matching every ``field=value`` filter and the predicate.

        Returns copies; changing them does not touch the cache.
        """
        with self._cache.read() as snapshot:
            return [
                copy.deepcopy(record)
                for record in self._records(snapshot)
                if all(record.get(key) == value for key, value in filters.items())
                and (predicate is None or predicate(record))
            ]

    def get(self, record_id: Any) -> Optional[Dict[str, Any]]:
        with self._cache.read() as snapshot:
            records = self._records(snapshot)
            idx = _index_of(records, record_id)
            return copy.deepcopy(records[idx]) if idx is not None else None

    def create(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Add a record (assigning an id if it has none)."""
        created = copy.deepcopy(record)
        if not created.get("id"):
            created["id"] = new_id()

        with local_write(self._cache, self._dispatcher) as (snapshot, outbox):
            records = self._records(snapshot)
            if self._prepend:
                records.insert(0, created)
            else:
                records.append(created)
            outbox.submit(self.spec.action("create"), created)

        logger.debug(f"Created {self.spec.name} {created['id']}")
        return copy.deepcopy(created)

    def update(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Replace the record with the same id.

        An id missing from the snapshot changes nothing locally; the remote
        update is still sent.
        """
        if not record.get("id"):
            raise ValueError(f"Cannot update {self.spec.name} without an id")

        updated = copy.deepcopy(record)
        with local_write(self._cache, self._dispatcher) as (snapshot, outbox):
            records = self._records(snapshot)
            idx = _index_of(records, updated["id"])
            if idx is not None:
                records[idx] = updated
            else:
                logger.debug(f"Update of unknown {self.spec.name} {updated['id']} sent remote only")
            outbox.submit(self.spec.action("update"), updated)

        return copy.deepcopy(updated)

    def remove(self, record_id: Any) -> None:
        with local_write(self._cache, self._dispatcher) as (snapshot, outbox):
            setattr(
                snapshot,
                self.spec.name,
                [r for r in self._records(snapshot) if r.get("id") != record_id],
            )
            outbox.submit(self.spec.action("delete"), {"id": record_id})

    def count(self) -> int:
        with self._cache.read() as snapshot:
            return len(self._records(snapshot))


# =============================================================================
# FACADE
# =============================================================================

class ClassroomDataService:
    """
    Public surface of the offline-first engine.

    Collection repositories are available as attributes named after the
    snapshot collections (``service.students``, ``service.task_replies``, ...)
    and through ``collection(name)``.
    """

    def __init__(
        self,
        gateway: BaseGateway,
        cache: LocalCache,
        session_store: SessionStore,
        dispatcher: Optional[RemoteDispatcher] = None,
        broadcaster: Optional[StatusBroadcaster] = None,
        settings: Optional[EngineSettings] = None,
        credentials: Optional[DevCredentialStore] = None,
    ):
        self.settings = settings or EngineSettings()
        self.credentials = credentials
        self.gateway = gateway
        self.cache = cache
        self.session_store = session_store
        self.dispatcher = dispatcher or RemoteDispatcher(gateway)
        self.broadcaster = broadcaster or StatusBroadcaster(last_sync=cache.last_sync)
        self.sync_engine = SyncEngine(gateway, cache, self.broadcaster)

        self.repositories: Dict[str, CollectionRepository] = {}
        for spec in COLLECTIONS:
            repo = CollectionRepository(
                spec,
                cache,
                self.dispatcher,
                prepend=spec.name in PREPENDED_COLLECTIONS,
            )
            self.repositories[spec.name] = repo
            setattr(self, spec.name, repo)

    def collection(self, name: str) -> CollectionRepository:
        return self.repositories[get_collection_spec(name).name]

    # =========================================================================
    # ENGINE CONTROL
    # =========================================================================

    def initialize(self, refresh: bool = False) -> SyncStatus:
        """Set the initial sync status; optionally run a first refresh."""
        status = self.sync_engine.initialize()
        if refresh and status is SyncStatus.IDLE:
            self.refresh()
        return self.broadcaster.status

    def refresh(self) -> bool:
        return self.sync_engine.refresh()

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        return self.broadcaster.subscribe(listener)

    def get_sync_state(self) -> SyncState:
        return self.broadcaster.get_state()

    def check_connection(self) -> bool:
        """Ping the endpoint. Configuration and remote errors are raised."""
        return self.gateway.ping()

    def start_background_sync(self, interval: Optional[float] = None) -> None:
        self.sync_engine.start(interval or self.settings.background_interval)

    def flush_remote(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued remote mutations to be attempted."""
        return self.dispatcher.flush(timeout)

    def shutdown(self) -> None:
        self.sync_engine.stop()
        self.dispatcher.close()

    def export_snapshot(self) -> Snapshot:
        return self.cache.export()

    def to_dataframe(self, name: str, **filters: Any) -> pd.DataFrame:
        """Collection records as a DataFrame (one column per field)."""
        return pd.DataFrame(self.collection(name).list(**filters))

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync and dispatch status for UI display."""
        info = self.broadcaster.get_status_display()
        info.update({
            "remote": self.gateway.describe(),
            "dispatch": self.dispatcher.stats(),
        })
        with self.cache.read() as snapshot:
            info["counts"] = snapshot.counts()
        return info

    # =========================================================================
    # AUTH (errors reach the caller)
    # =========================================================================

    def login(self, username: str, password: str) -> Optional[Dict[str, Any]]:
        payload = {
            "username": str(username).strip(),
            "password": str(password).strip(),
        }
        user = self.gateway.call("auth.login", payload)
        if user:
            self.session_store.set(user)
            logger.info(f"User {payload['username']} signed in")
        return user or None

    def register(self, user: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        clean = dict(user)
        for key in ("username", "password", "fullName"):
            clean[key] = str(user.get(key, "")).strip()
        new_user = self.gateway.call("auth.register", clean)
        if new_user:
            self.session_store.set(new_user)
        return new_user or None

    def get_current_user(self) -> Optional[Dict[str, Any]]:
        return self.session_store.get()

    def logout(self) -> None:
        self.session_store.clear()

    # =========================================================================
    # USERS
    # =========================================================================

    def get_users(self) -> List[Dict[str, Any]]:
        return self.users.list()

    def add_user(self, user: Dict[str, Any]) -> Dict[str, Any]:
        """
        Register a user for someone else (admin screen).

        The server assigns the identity, so this call waits for it and
        raises on failure.
        """
        new_user = self.gateway.call("auth.register", dict(user))
        if not isinstance(new_user, dict):
            raise ProtocolError("auth.register returned no user", action="auth.register")
        with self.cache.mutate() as snapshot:
            snapshot.users.append(dict(new_user))
        return dict(new_user)

    def update_user(self, user: Dict[str, Any]) -> Dict[str, Any]:
        return self.users.update(user)

    def remove_user(self, user_id: str) -> None:
        self.users.remove(user_id)

    # =========================================================================
    # STUDENTS
    # =========================================================================

    def get_students(self) -> List[Dict[str, Any]]:
        return self.students.list()

    def get_students_by_class(self, class_id: str) -> List[Dict[str, Any]]:
        return self.students.list(classId=class_id)

    def add_student(self, student: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(student)
        record["xp"] = student.get("xp") or 0
        record["level"] = student.get("level") or 1
        return self.students.create(record)

    def award_xp(self, student_id: str, points: float) -> Dict[str, Any]:
        """
        Add ``points`` (may be negative) to a student's XP and recompute
        the level as floor(xp / 100) + 1.

        Raises:
            NotFoundError: the student is not in the local snapshot
        """
        with local_write(self.cache, self.dispatcher) as (snapshot, outbox):
            idx = _index_of(snapshot.students, student_id)
            if idx is None:
                raise NotFoundError(
                    f"Student {student_id} not found",
                    collection="students",
                    record_id=student_id,
                )

            student = snapshot.students[idx]
            xp = coerce_number(student.get("xp"), 0) + points
            updated = {**student, "xp": xp, "level": level_for_xp(xp)}
            snapshot.students[idx] = updated
            outbox.submit("students.update", updated)

        logger.info(f"Student {student_id} {points:+g} XP -> {xp:g} (level {updated['level']})")
        return dict(updated)

    # =========================================================================
    # ATTENDANCE
    # =========================================================================

    def get_attendance(self, class_id: str, date: str) -> List[Dict[str, Any]]:
        """One record per student for the given day (the latest wins)."""
        day = _date_part(date)
        records = self.attendance.list(
            lambda a: _date_part(a.get("date")) == day, classId=class_id
        )
        unique: Dict[Any, Dict[str, Any]] = {}
        for record in records:
            unique[record.get("studentId")] = record
        return list(unique.values())

    def get_attendance_range(self, class_id: str, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        """One record per student and day within [start_date, end_date]."""
        records = self.attendance.list(
            lambda a: start_date <= _date_part(a.get("date")) <= end_date,
            classId=class_id,
        )
        unique: Dict[Any, Dict[str, Any]] = {}
        for record in records:
            unique[(record.get("studentId"), _date_part(record.get("date")))] = record
        return list(unique.values())

    def get_student_attendance(self, student_id: str, month: int, year: int) -> List[Dict[str, Any]]:
        """One record per day of the month for a student."""
        prefix = f"{year}-{month:02d}"
        records = self.attendance.list(
            lambda a: str(a.get("date") or "").startswith(prefix), studentId=student_id
        )
        unique: Dict[str, Dict[str, Any]] = {}
        for record in records:
            unique[_date_part(record.get("date"))] = record
        return list(unique.values())

    def save_attendance(self, class_id: str, date: str, items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Upsert one attendance record per item (``studentId``, ``status``,
        ``note``) for the class and day.
        """
        day = _date_part(date)
        saved = []

        with local_write(self.cache, self.dispatcher) as (snapshot, outbox):
            for item in items:
                idx = next(
                    (
                        i for i, a in enumerate(snapshot.attendance)
                        if a.get("classId") == class_id
                        and a.get("studentId") == item["studentId"]
                        and _date_part(a.get("date")) == day
                    ),
                    None,
                )
                if idx is not None:
                    record = {
                        **snapshot.attendance[idx],
                        "status": item.get("status"),
                        "note": item.get("note") or "",
                    }
                    snapshot.attendance[idx] = record
                    outbox.submit("attendance.update", record)
                else:
                    record = {
                        "id": new_id(),
                        "classId": class_id,
                        "studentId": item["studentId"],
                        "date": day,
                        "status": item.get("status"),
                        "note": item.get("note") or "",
                    }
                    snapshot.attendance.append(record)
                    outbox.submit("attendance.create", record)
                saved.append(dict(record))

        logger.info(f"Attendance saved for class {class_id} on {day}: {len(saved)} records")
        return saved

    # =========================================================================
    # BEHAVIORS
    # =========================================================================

    def get_behaviors(
        self,
        class_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Class behavior log, newest first."""
        def in_range(record: Dict[str, Any]) -> bool:
            day = _date_part(record.get("date"))
            if start_date and day < start_date:
                return False
            if end_date and day > end_date:
                return False
            return True

        records = self.behaviors.list(in_range, classId=class_id)
        return sorted(records, key=lambda b: str(b.get("date") or ""), reverse=True)

    def get_student_behaviors(self, student_id: str) -> List[Dict[str, Any]]:
        return self.behaviors.list(studentId=student_id)

    # =========================================================================
    # ANNOUNCEMENTS / DOCUMENTS / TASKS
    # =========================================================================

    def get_announcements(self, class_id: str) -> List[Dict[str, Any]]:
        """Pinned first, then newest first."""
        records = self.announcements.list(classId=class_id)
        records.sort(key=lambda a: str(a.get("createdAt") or ""), reverse=True)
        records.sort(key=lambda a: not _is_truthy(a.get("pinned")))
        return records

    def get_documents(self, class_id: str) -> List[Dict[str, Any]]:
        return self.documents.list(classId=class_id)

    def get_tasks(self, class_id: str) -> List[Dict[str, Any]]:
        return self.tasks.list(classId=class_id)

    def get_task_replies(self, task_id: str) -> List[Dict[str, Any]]:
        return self.task_replies.list(taskId=task_id)

    def reply_task(self, reply: Dict[str, Any]) -> Dict[str, Any]:
        """One reply per task and student: a second reply replaces the first
        and keeps its id."""
        with local_write(self.cache, self.dispatcher) as (snapshot, outbox):
            idx = next(
                (
                    i for i, r in enumerate(snapshot.task_replies)
                    if r.get("taskId") == reply.get("taskId")
                    and r.get("studentId") == reply.get("studentId")
                ),
                None,
            )
            if idx is not None:
                record = {**reply, "id": snapshot.task_replies[idx].get("id")}
                snapshot.task_replies[idx] = record
                outbox.submit("taskReplies.update", record)
            else:
                record = dict(reply)
                if not record.get("id"):
                    record["id"] = new_id()
                snapshot.task_replies.append(record)
                outbox.submit("taskReplies.create", record)
        return dict(record)

    # =========================================================================
    # MESSAGING
    # =========================================================================

    def get_all_threads(self) -> List[Dict[str, Any]]:
        return self.threads.list()

    def get_thread_for_student(self, student_id: str) -> Dict[str, Any]:
        """
        The messaging thread keyed by ``student_id``, created on first use.

        Lookup and creation happen under the cache lock and the thread id is
        derived from the student id, so repeated or concurrent calls return
        the same thread.
        """
        with self.cache.lock:
            with self.cache.read() as snapshot:
                existing = next(
                    (t for t in snapshot.threads if t.get("threadKey") == student_id), None
                )
                if existing is not None:
                    return dict(existing)

                student = next((s for s in snapshot.students if s.get("id") == student_id), None)
                class_id = student.get("classId") if student else None
                klass = next((c for c in snapshot.classes if c.get("id") == class_id), None)

            thread = {
                "id": thread_id_for_student(student_id),
                "threadKey": student_id,
                "participantsJson": json.dumps(
                    {
                        "studentName": student.get("fullName") if student else None,
                        "className": klass.get("className") if klass else None,
                        "teacherName": klass.get("homeroomTeacher") if klass else None,
                        "parentName": DEFAULT_PARENT_LABEL,
                    },
                    ensure_ascii=False,
                ),
                "lastMessageAt": utc_now().isoformat(),
            }

            with local_write(self.cache, self.dispatcher) as (snapshot, outbox):
                snapshot.threads.append(thread)
                outbox.submit("messageThreads.create", thread)

        logger.info(f"Created message thread {thread['id']} for student {student_id}")
        return dict(thread)

    def get_messages(self, thread_id: str) -> List[Dict[str, Any]]:
        return self.messages.list(threadId=thread_id)

    def send_message(self, thread_id: str, role: str, content: str) -> Dict[str, Any]:
        message = {
            "id": new_id(),
            "threadId": thread_id,
            "fromRole": role,
            "content": content,
            "createdAt": utc_now().isoformat(),
        }

        with local_write(self.cache, self.dispatcher) as (snapshot, outbox):
            snapshot.messages.append(message)
            # The server assigns the message id
            outbox.submit(
                "messages.create",
                {"threadId": thread_id, "fromRole": role, "content": content},
            )
            idx = _index_of(snapshot.threads, thread_id)
            if idx is not None:
                thread = {**snapshot.threads[idx], "lastMessageAt": message["createdAt"]}
                snapshot.threads[idx] = thread
                outbox.submit("messageThreads.update", thread)

        return dict(message)

    # =========================================================================
    # QUESTIONS (game)
    # =========================================================================

    def get_questions(self) -> List[Dict[str, Any]]:
        return self.questions.list()


def create_data_service(
    settings: Optional[EngineSettings] = None,
    store: Optional[LocalStore] = None,
) -> ClassroomDataService:
    """
    Wire a ClassroomDataService with the default collaborators.

    Args:
        settings: Engine settings (default: load_settings())
        store: Durable key-value store (default: <data_dir>/homeroom.db)
    """
    settings = settings or load_settings()
    store = store or LocalStore.in_directory(settings.data_dir)

    credentials = DevCredentialStore(store)
    gateway = create_gateway(settings, credentials=credentials)
    cache = LocalCache(SnapshotStore(store))

    service = ClassroomDataService(
        gateway=gateway,
        cache=cache,
        session_store=SessionStore(store),
        settings=settings,
        credentials=credentials,
    )
    logger.info(f"Data service ready ({gateway.mode.value} mode, data in {settings.data_dir})")
    return service
