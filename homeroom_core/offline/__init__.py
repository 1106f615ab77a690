# =============================================================================
# homeroom_core/offline/__init__.py
# Offline-First Data Engine for the Homeroom classroom app
# =============================================================================
"""
Offline-First Data Engine

Every read is served from a local snapshot of the classroom spreadsheet,
every write is applied locally first and then pushed to the remote
endpoint in the background. The snapshot is replaced wholesale by an
explicit refresh.

Architecture:
------------
    ClassroomDataService      (single API - screens use this only)
      |-- CollectionRepository x 13   (snapshot-backed CRUD)
      |-- LocalCache -> SnapshotStore -> LocalStore (SQLite key/value)
      |-- SessionStore                (signed-in user)
      |-- RemoteDispatcher            (fire-and-forget writes)
      |-- SyncEngine                  (bulk sync + per-collection fallback)
      |      `-- StatusBroadcaster    (IDLE / SYNCING / ERROR / NOT_CONFIGURED)
      `-- RelayGateway | DirectGateway (one POST per call)

Usage:
------
from homeroom_core.offline import create_data_service

service = create_data_service()
service.initialize(refresh=True)
print(service.get_sync_state().status)
"""

from homeroom_core.offline.local_store import LocalStore

from homeroom_core.offline.snapshot import (
    COLLECTIONS,
    CollectionSpec,
    LocalCache,
    Snapshot,
    SnapshotStore,
    get_collection_spec,
)

from homeroom_core.offline.session_store import SessionStore

from homeroom_core.offline.gateway import (
    BaseGateway,
    DirectGateway,
    RelayGateway,
    create_gateway,
)

from homeroom_core.offline.status import (
    StatusBroadcaster,
    SyncState,
    SyncStatus,
)

from homeroom_core.offline.dispatcher import RemoteDispatcher

from homeroom_core.offline.sync_engine import (
    SyncEngine,
    normalize_payload,
)

from homeroom_core.offline.data_service import (
    ClassroomDataService,
    CollectionRepository,
    create_data_service,
)

__all__ = [
    # Durable storage
    "LocalStore",
    "COLLECTIONS",
    "CollectionSpec",
    "LocalCache",
    "Snapshot",
    "SnapshotStore",
    "get_collection_spec",
    "SessionStore",
    # Remote access
    "BaseGateway",
    "DirectGateway",
    "RelayGateway",
    "create_gateway",
    "RemoteDispatcher",
    # Sync
    "StatusBroadcaster",
    "SyncState",
    "SyncStatus",
    "SyncEngine",
    "normalize_payload",
    # Unified Service (Main API)
    "ClassroomDataService",
    "CollectionRepository",
    "create_data_service",
]
