# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import threading
from typing import Any, Callable, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest

from homeroom_core.config import ConnectionMode, DevCredentialStore, EngineSettings
from homeroom_core.errors import ConfigurationError
from homeroom_core.offline.gateway import BaseGateway
from homeroom_core.offline.local_store import LocalStore
from homeroom_core.offline.session_store import SessionStore
from homeroom_core.offline.snapshot import LocalCache, SnapshotStore


# =============================================================================
# FAKE REMOTE ENDPOINT
# =============================================================================

class FakeGateway(BaseGateway):
    """
    Scripted gateway: records every call and answers from a response table.

    A response may be a value, an exception instance (raised) or a callable
    taking the request data.
    """

    mode = ConnectionMode.RELAY

    def __init__(self, responses: Optional[Dict[str, Any]] = None, configured: bool = True):
        super().__init__(timeout=1.0, session=MagicMock())
        self.responses: Dict[str, Any] = dict(responses or {})
        self.configured = configured
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self._calls_lock = threading.Lock()

    @property
    def endpoint(self) -> str:
        return "https://relay.test/api" if self.configured else ""

    @property
    def is_configured(self) -> bool:
        return self.configured

    def _missing_configuration(self) -> ConfigurationError:
        return ConfigurationError("Relay URL is not configured", config_key="relay_url")

    def call(self, action: str, data: Optional[Dict[str, Any]] = None) -> Any:
        if not self.is_configured:
            raise self._missing_configuration()

        with self._calls_lock:
            self.calls.append((action, dict(data or {})))

        response = self.responses.get(action)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(data or {})
        return response

    def actions(self) -> List[str]:
        with self._calls_lock:
            return [action for action, _ in self.calls]

    def calls_for(self, action: str) -> List[Dict[str, Any]]:
        with self._calls_lock:
            return [data for name, data in self.calls if name == action]


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def bulk_payload() -> Dict[str, Any]:
    """A data.syncAll answer: 1 class, 3 students, some dated records"""
    return {
        "users": [
            {"id": "u1", "username": "teacher", "role": "TEACHER", "fullName": "Nguyen Van A"},
        ],
        "classes": [
            {"id": "c1", "className": "10A1", "homeroomTeacher": "Nguyen Van A"},
        ],
        "students": [
            {"id": "s1", "fullName": "Tran Thi B", "classId": "c1", "xp": "95", "level": "1"},
            {"id": "s2", "fullName": "Le Van C", "classId": "c1", "xp": "", "level": None},
            {"id": "s3", "fullName": "Pham Thi D", "classId": "c1", "xp": 250, "level": 3},
        ],
        "attendance": [
            {"id": "a1", "classId": "c1", "studentId": "s1",
             "date": "2024-03-04T17:00:00.000Z", "status": "Có mặt"},
            {"id": "a2", "classId": "c1", "studentId": "s2",
             "date": "2024-03-04", "status": "Vắng"},
        ],
        "behaviors": [
            {"id": "b1", "classId": "c1", "studentId": "s1",
             "date": "2024-03-05T08:30:00Z", "type": "PRAISE", "points": 5},
        ],
        "tasks": [{"id": "t1", "classId": "c1", "title": "Sign the form"}],
        "taskReplies": [],
        "threads": None,
        "lastSync": "2020-01-01T00:00:00Z",
    }


@pytest.fixture
def fallback_lists(bulk_payload) -> Dict[str, Any]:
    """Per-collection list answers equivalent to bulk_payload"""
    return {
        "users.list": bulk_payload["users"],
        "classes.list": bulk_payload["classes"],
        "students.list": bulk_payload["students"],
        "parents.list": [],
        "attendance.list": bulk_payload["attendance"],
        "behavior.list": bulk_payload["behaviors"],
        "announcements.list": [],
        "documents.list": [],
        "tasks.list": bulk_payload["tasks"],
        "taskReplies.list": [],
        "messageThreads.list": None,
        "messages.list": [],
        "questions.list": [],
    }


# =============================================================================
# ENGINE FIXTURES
# =============================================================================

@pytest.fixture
def local_store(tmp_path):
    """SQLite store in a temporary data directory"""
    store = LocalStore.in_directory(tmp_path / "local_data")
    yield store
    store.close()


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def unconfigured_gateway():
    return FakeGateway(configured=False)


@pytest.fixture
def make_cache(local_store) -> Callable[[], LocalCache]:
    """Factory: a LocalCache restored from the shared store"""
    def _make() -> LocalCache:
        return LocalCache(SnapshotStore(local_store))
    return _make


@pytest.fixture
def make_service(local_store, make_cache):
    """Factory: a ClassroomDataService over the shared store"""
    from homeroom_core.offline.data_service import ClassroomDataService

    services = []

    def _make(gateway: BaseGateway, settings: Optional[EngineSettings] = None):
        service = ClassroomDataService(
            gateway=gateway,
            cache=make_cache(),
            session_store=SessionStore(local_store),
            settings=settings or EngineSettings(data_dir=local_store.db_path.parent),
            credentials=DevCredentialStore(local_store),
        )
        services.append(service)
        return service

    yield _make

    for service in services:
        service.shutdown()


@pytest.fixture
def service(make_service, fake_gateway):
    """Service wired to the default FakeGateway"""
    return make_service(fake_gateway)


@pytest.fixture
def synced_service(make_service, fake_gateway, bulk_payload):
    """Service that already completed one bulk refresh"""
    fake_gateway.responses["data.syncAll"] = bulk_payload
    service = make_service(fake_gateway)
    service.initialize(refresh=True)
    return service


@pytest.fixture
def mock_streamlit(monkeypatch):
    """Replace streamlit in the sync panel module with a MagicMock"""
    from homeroom_core.ui import sync_panel

    st = MagicMock()
    st.columns.side_effect = lambda spec, **kwargs: [
        MagicMock() for _ in range(spec if isinstance(spec, int) else len(spec))
    ]
    st.button.return_value = False
    monkeypatch.setattr(sync_panel, "st", st)
    return st
