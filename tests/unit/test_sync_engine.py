# =============================================================================
# tests/unit/test_sync_engine.py
# Unit Tests for SyncEngine and payload normalization
# =============================================================================

import threading
from datetime import datetime, timezone

import pytest

from homeroom_core.errors import ConfigurationError, ProtocolError, RemoteError, RemoteErrorKind
from homeroom_core.offline.snapshot import COLLECTIONS
from homeroom_core.offline.status import StatusBroadcaster, SyncStatus
from homeroom_core.offline.sync_engine import (
    BULK_SYNC_ACTION,
    SyncEngine,
    coerce_number,
    normalize_date,
    normalize_payload,
)

UNSUPPORTED = RemoteError("Unknown table: data", action=BULK_SYNC_ACTION, kind=RemoteErrorKind.UNSUPPORTED_ACTION)


@pytest.fixture
def engine_parts(fake_gateway, make_cache):
    cache = make_cache()
    broadcaster = StatusBroadcaster(last_sync=cache.last_sync)
    engine = SyncEngine(fake_gateway, cache, broadcaster)
    return engine, cache, broadcaster


class TestNormalization:
    """Test payload normalization"""

    @pytest.mark.parametrize("value,expected", [
        ("2024-03-04T17:00:00.000Z", "2024-03-04"),
        ("2024-03-04 08:00:00", "2024-03-04"),
        ("2024-03-04", "2024-03-04"),
        ("", ""),
        (None, None),
    ])
    def test_normalize_date(self, value, expected):
        assert normalize_date(value) == expected

    @pytest.mark.parametrize("value,default,expected", [
        ("95", 0, 95),
        (" 12.5 ", 0, 12.5),
        (250, 0, 250),
        ("", 0, 0),
        (None, 1, 1),
        ("abc", 1, 1),
        (0, 1, 1),
        (True, 0, 0),
        (float("nan"), 0, 0),
    ])
    def test_coerce_number(self, value, default, expected):
        assert coerce_number(value, default) == expected

    def test_normalize_payload(self, bulk_payload):
        snapshot = normalize_payload(bulk_payload)

        assert [a["date"] for a in snapshot.attendance] == ["2024-03-04", "2024-03-04"]
        assert snapshot.behaviors[0]["date"] == "2024-03-05"
        assert [(s["xp"], s["level"]) for s in snapshot.students] == [(95, 1), (0, 1), (250, 3)]
        assert snapshot.threads == []
        assert snapshot.parents == []

    def test_server_last_sync_is_ignored(self, bulk_payload):
        assert normalize_payload(bulk_payload).last_sync is None


class TestRefresh:
    """Test the refresh protocol"""

    def test_bulk_refresh_installs_snapshot(self, engine_parts, fake_gateway, bulk_payload):
        engine, cache, broadcaster = engine_parts
        fake_gateway.responses[BULK_SYNC_ACTION] = bulk_payload

        assert engine.refresh() is True

        assert fake_gateway.actions() == [BULK_SYNC_ACTION]
        with cache.read() as snapshot:
            assert [s["id"] for s in snapshot.students] == ["s1", "s2", "s3"]
            assert len(snapshot.classes) == 1
        state = broadcaster.get_state()
        assert state.status is SyncStatus.IDLE
        assert state.last_sync is not None
        assert state.last_sync == cache.last_sync
        assert state.last_sync.year >= 2024

    def test_status_sequence(self, engine_parts, fake_gateway, bulk_payload):
        engine, _, broadcaster = engine_parts
        fake_gateway.responses[BULK_SYNC_ACTION] = bulk_payload
        received = []
        broadcaster.subscribe(lambda status, last: received.append(status))

        engine.refresh()

        assert received == [SyncStatus.IDLE, SyncStatus.SYNCING, SyncStatus.IDLE]

    def test_fallback_lists_every_collection_in_order(self, engine_parts, fake_gateway, fallback_lists):
        engine, cache, broadcaster = engine_parts
        fake_gateway.responses[BULK_SYNC_ACTION] = UNSUPPORTED
        fake_gateway.responses.update(fallback_lists)

        assert engine.refresh() is True

        assert fake_gateway.actions() == [BULK_SYNC_ACTION] + [spec.action("list") for spec in COLLECTIONS]
        with cache.read() as snapshot:
            assert len(snapshot.students) == 3
            assert snapshot.attendance[0]["date"] == "2024-03-04"
            assert snapshot.threads == []
        assert broadcaster.status is SyncStatus.IDLE

    def test_fallback_installs_same_aggregate_as_bulk(
        self, fake_gateway, make_cache, bulk_payload, fallback_lists
    ):
        fake_gateway.responses[BULK_SYNC_ACTION] = bulk_payload
        bulk_cache = make_cache()
        SyncEngine(fake_gateway, bulk_cache, StatusBroadcaster()).refresh()
        bulk_counts = bulk_cache.export().counts()

        fake_gateway.responses[BULK_SYNC_ACTION] = UNSUPPORTED
        fake_gateway.responses.update(fallback_lists)
        fallback_cache = make_cache()
        SyncEngine(fake_gateway, fallback_cache, StatusBroadcaster()).refresh()

        assert fallback_cache.export().counts() == bulk_counts

    def test_other_remote_error_does_not_fall_back(self, engine_parts, fake_gateway):
        engine, _, broadcaster = engine_parts
        fake_gateway.responses[BULK_SYNC_ACTION] = RemoteError("Unauthorized", action=BULK_SYNC_ACTION)

        assert engine.refresh() is False

        assert fake_gateway.actions() == [BULK_SYNC_ACTION]
        assert broadcaster.status is SyncStatus.ERROR

    def test_failed_refresh_keeps_previous_snapshot(self, engine_parts, fake_gateway, bulk_payload):
        engine, cache, broadcaster = engine_parts
        fake_gateway.responses[BULK_SYNC_ACTION] = bulk_payload
        engine.refresh()
        before = cache.export().to_dict()
        last_sync = broadcaster.get_state().last_sync

        fake_gateway.responses[BULK_SYNC_ACTION] = ProtocolError("Relay returned an HTML page instead of JSON")
        assert engine.refresh() is False

        assert cache.export().to_dict() == before
        assert broadcaster.get_state().status is SyncStatus.ERROR
        assert broadcaster.get_state().last_sync == last_sync

    def test_failure_midway_through_fallback_keeps_previous_snapshot(
        self, engine_parts, fake_gateway, fallback_lists
    ):
        engine, cache, broadcaster = engine_parts
        with cache.mutate() as snapshot:
            snapshot.students.append({"id": "cached"})

        fake_gateway.responses[BULK_SYNC_ACTION] = UNSUPPORTED
        fake_gateway.responses.update(fallback_lists)
        fake_gateway.responses["attendance.list"] = RemoteError("Quota exceeded", action="attendance.list")

        assert engine.refresh() is False

        assert "behavior.list" not in fake_gateway.actions()
        with cache.read() as snapshot:
            assert snapshot.students == [{"id": "cached"}]
        assert broadcaster.status is SyncStatus.ERROR

    def test_bulk_result_without_collection_map_is_error(self, engine_parts, fake_gateway):
        engine, _, broadcaster = engine_parts
        fake_gateway.responses[BULK_SYNC_ACTION] = "ok"

        assert engine.refresh() is False
        assert broadcaster.status is SyncStatus.ERROR

    def test_fallback_list_that_is_not_a_list_is_error(self, engine_parts, fake_gateway, fallback_lists):
        engine, _, broadcaster = engine_parts
        fake_gateway.responses[BULK_SYNC_ACTION] = UNSUPPORTED
        fake_gateway.responses.update(fallback_lists)
        fake_gateway.responses["classes.list"] = {"id": "c1"}

        assert engine.refresh() is False
        assert broadcaster.status is SyncStatus.ERROR

    def test_unconfigured_gateway_never_hits_the_network(self, unconfigured_gateway, make_cache):
        broadcaster = StatusBroadcaster()
        engine = SyncEngine(unconfigured_gateway, make_cache(), broadcaster)

        assert engine.refresh() is False

        assert unconfigured_gateway.calls == []
        assert broadcaster.status is SyncStatus.NOT_CONFIGURED

    def test_configuration_error_midway_is_not_configured(self, engine_parts, fake_gateway):
        engine, _, broadcaster = engine_parts
        fake_gateway.responses[BULK_SYNC_ACTION] = ConfigurationError("API key revoked", config_key="api_key")

        assert engine.refresh() is False
        assert broadcaster.status is SyncStatus.NOT_CONFIGURED

    def test_refresh_while_syncing_is_a_no_op(self, engine_parts, fake_gateway, bulk_payload):
        engine, cache, broadcaster = engine_parts
        entered = threading.Event()
        release = threading.Event()

        def slow_bulk(data):
            entered.set()
            release.wait(timeout=5)
            return bulk_payload

        fake_gateway.responses[BULK_SYNC_ACTION] = slow_bulk
        results = []
        first = threading.Thread(target=lambda: results.append(engine.refresh()))
        first.start()
        assert entered.wait(timeout=5)

        assert engine.is_syncing
        assert engine.refresh() is False

        release.set()
        first.join(timeout=5)

        assert results == [True]
        assert fake_gateway.actions() == [BULK_SYNC_ACTION]
        assert broadcaster.status is SyncStatus.IDLE
        assert len(cache.export().students) == 3

    def test_initialize_during_refresh_keeps_single_refresh(self, engine_parts, fake_gateway, bulk_payload):
        engine, _, broadcaster = engine_parts
        entered = threading.Event()
        release = threading.Event()

        def slow_bulk(data):
            entered.set()
            release.wait(timeout=5)
            return bulk_payload

        fake_gateway.responses[BULK_SYNC_ACTION] = slow_bulk
        first = threading.Thread(target=engine.refresh)
        first.start()
        assert entered.wait(timeout=5)

        assert engine.initialize() is SyncStatus.SYNCING
        assert broadcaster.status is SyncStatus.SYNCING
        assert engine.refresh() is False

        release.set()
        first.join(timeout=5)

        assert fake_gateway.actions() == [BULK_SYNC_ACTION]
        assert broadcaster.status is SyncStatus.IDLE


class TestInitializeAndBackground:
    """Test start-up status and the periodic refresh thread"""

    def test_initialize_reports_configuration(self, engine_parts, unconfigured_gateway, make_cache):
        engine, _, broadcaster = engine_parts
        assert engine.initialize() is SyncStatus.IDLE

        other = SyncEngine(unconfigured_gateway, make_cache(), StatusBroadcaster())
        assert other.initialize() is SyncStatus.NOT_CONFIGURED

    def test_initialize_restores_last_sync(self, fake_gateway, make_cache):
        stamp = datetime(2024, 3, 1, tzinfo=timezone.utc)
        cache = make_cache()
        with cache.mutate() as snapshot:
            snapshot.last_sync = stamp

        broadcaster = StatusBroadcaster()
        SyncEngine(fake_gateway, make_cache(), broadcaster).initialize()

        assert broadcaster.get_state().last_sync == stamp

    def test_background_refresh_runs_until_stopped(self, engine_parts, fake_gateway, bulk_payload):
        engine, _, _ = engine_parts
        refreshed = threading.Event()

        def bulk(data):
            refreshed.set()
            return bulk_payload

        fake_gateway.responses[BULK_SYNC_ACTION] = bulk
        engine.start(interval=0.01)
        try:
            assert refreshed.wait(timeout=5)
        finally:
            engine.stop()

    def test_non_positive_interval_rejected(self, engine_parts):
        engine, _, _ = engine_parts
        with pytest.raises(ValueError):
            engine.start(interval=0)
