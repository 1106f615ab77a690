# =============================================================================
# tests/unit/test_dispatcher.py
# Unit Tests for RemoteDispatcher
# =============================================================================

import threading

from homeroom_core.errors import RemoteError
from homeroom_core.offline.dispatcher import RemoteDispatcher


class TestRemoteDispatcher:
    """Test best-effort delivery of remote mutations"""

    def test_tasks_are_sent_in_submission_order(self, fake_gateway):
        dispatcher = RemoteDispatcher(fake_gateway)
        for i in range(5):
            dispatcher.submit("students.update", {"id": f"s{i}"})

        assert dispatcher.flush(timeout=5)
        assert [data["id"] for _, data in fake_gateway.calls] == ["s0", "s1", "s2", "s3", "s4"]
        assert dispatcher.stats() == {"pending": 0, "sent": 5, "failed": 0}
        dispatcher.close()

    def test_submit_does_not_wait_for_the_network(self, fake_gateway):
        release = threading.Event()
        fake_gateway.responses["students.update"] = lambda data: release.wait(timeout=5)
        dispatcher = RemoteDispatcher(fake_gateway)

        dispatcher.submit("students.update", {"id": "s1"})
        assert dispatcher.pending_count == 1

        release.set()
        assert dispatcher.flush(timeout=5)
        dispatcher.close()

    def test_failures_are_counted_not_raised(self, fake_gateway):
        fake_gateway.responses["students.delete"] = RemoteError("Row not found", action="students.delete")
        dispatcher = RemoteDispatcher(fake_gateway)

        dispatcher.submit("students.delete", {"id": "s1"})
        dispatcher.submit("students.create", {"id": "s2"})

        assert dispatcher.flush(timeout=5)
        assert dispatcher.failed_count == 1
        assert dispatcher.sent_count == 1
        dispatcher.close()

    def test_submitted_data_is_copied(self, fake_gateway):
        release = threading.Event()
        fake_gateway.responses["students.update"] = lambda data: release.wait(timeout=5)
        dispatcher = RemoteDispatcher(fake_gateway)
        record = {"id": "s1", "xp": 1}

        dispatcher.submit("students.update", record)
        record["xp"] = 999
        release.set()

        assert dispatcher.flush(timeout=5)
        assert fake_gateway.calls_for("students.update") == [{"id": "s1", "xp": 1}]
        dispatcher.close()

    def test_closed_dispatcher_drops_new_tasks(self, fake_gateway):
        dispatcher = RemoteDispatcher(fake_gateway)
        dispatcher.close()

        dispatcher.submit("students.update", {"id": "s1"})

        assert dispatcher.pending_count == 0
        assert fake_gateway.calls == []

    def test_flush_times_out_on_a_stuck_call(self, fake_gateway):
        release = threading.Event()
        fake_gateway.responses["students.update"] = lambda data: release.wait(timeout=5)
        dispatcher = RemoteDispatcher(fake_gateway)

        dispatcher.submit("students.update", {"id": "s1"})
        assert dispatcher.flush(timeout=0.05) is False

        release.set()
        assert dispatcher.flush(timeout=5)
        dispatcher.close()
