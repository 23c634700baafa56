# =============================================================================
# tests/unit/test_sync_engine.py
# Unit Tests for Replication and Connection Tracking
# =============================================================================

import time
import pytest

from planner_core.models.collections import CollectionKey
from planner_core.offline.connection_manager import ConnectionManager, ConnectionStatus
from planner_core.offline.sync_engine import SyncEngine, SyncStatus

from conftest import CLASS_ID, FakeRemote


HALF_TERMS = CollectionKey.HALF_TERMS
STANDARDS = CollectionKey.STANDARDS


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def sync_engine(local_store, remote, settings):
    engine = SyncEngine(local_store, remote, settings=settings)
    yield engine
    engine.stop()


class TestQueue:
    """Test queueing and status reporting"""

    def test_enqueue_reports_pending(self, sync_engine):
        state = sync_engine.enqueue(HALF_TERMS, CLASS_ID, [{"id": "A1", "lessons": []}])

        assert state.status == SyncStatus.PENDING
        assert sync_engine.pending_count == 1

    def test_nothing_queued_is_synced(self, sync_engine):
        assert sync_engine.collection_status(HALF_TERMS, CLASS_ID).status == SyncStatus.SYNCED
        assert not sync_engine.has_unsynced(HALF_TERMS, CLASS_ID)

    def test_units_are_local_only(self, sync_engine):
        state = sync_engine.enqueue(CollectionKey.UNITS, CLASS_ID, [])

        assert state.status == SyncStatus.LOCAL_ONLY
        assert sync_engine.pending_count == 0

    def test_no_remote_is_local_only(self, local_store, settings):
        engine = SyncEngine(local_store, None, settings=settings)

        assert engine.enqueue(HALF_TERMS, CLASS_ID, []).status == SyncStatus.LOCAL_ONLY
        assert engine.sync_now()
        assert engine.connection_manager.is_local_only

    def test_callbacks_receive_status_changes(self, sync_engine):
        seen = []
        sync_engine.register_callback(lambda state: seen.append(state.status))

        sync_engine.enqueue(HALF_TERMS, CLASS_ID, [])
        sync_engine.sync_now()

        assert seen == [SyncStatus.PENDING, SyncStatus.SYNCED]

    def test_failing_callback_does_not_break_enqueue(self, sync_engine):
        def broken(state):
            raise RuntimeError("widget gone")

        sync_engine.register_callback(broken)

        assert sync_engine.enqueue(HALF_TERMS, CLASS_ID, []).status == SyncStatus.PENDING


class TestDrain:
    """Test draining the queue into the remote store"""

    def test_only_newest_snapshot_replicated(self, sync_engine, remote):
        sync_engine.enqueue(HALF_TERMS, CLASS_ID, [{"id": "A1", "lessons": ["1"]}])
        sync_engine.enqueue(HALF_TERMS, CLASS_ID, [{"id": "A1", "lessons": ["1", "2"]}])

        assert sync_engine.sync_now()

        assert remote.pushes == [(HALF_TERMS, CLASS_ID)]
        assert remote.collections[(HALF_TERMS, CLASS_ID)] == [{"id": "A1", "lessons": ["1", "2"]}]
        assert sync_engine.state.total_synced == 1

    def test_failure_marks_failed_and_stops(self, sync_engine, remote):
        sync_engine.enqueue(HALF_TERMS, CLASS_ID, [])
        sync_engine.enqueue(STANDARDS, CLASS_ID, {})
        remote.fail = True

        assert not sync_engine.sync_now()

        state = sync_engine.collection_status(HALF_TERMS, CLASS_ID)
        assert state.status == SyncStatus.FAILED
        assert state.attempts == 1
        # The second operation was not attempted
        assert sync_engine.collection_status(STANDARDS, CLASS_ID).attempts == 0
        assert sync_engine.pending_count == 2

    def test_failed_operation_retried(self, sync_engine, remote):
        sync_engine.enqueue(HALF_TERMS, CLASS_ID, [])
        remote.fail = True
        sync_engine.sync_now()

        remote.fail = False

        assert sync_engine.sync_now()
        assert sync_engine.collection_status(HALF_TERMS, CLASS_ID).status == SyncStatus.SYNCED
        assert sync_engine.pending_count == 0

    def test_retries_are_bounded(self, local_store, remote, settings):
        engine = SyncEngine(local_store, remote, settings=settings.with_overrides(max_retry_attempts=2))
        engine.enqueue(HALF_TERMS, CLASS_ID, [])
        remote.fail = True
        engine.sync_now()
        engine.sync_now()

        remote.fail = False
        engine.sync_now()

        assert remote.pushes == []
        assert engine.collection_status(HALF_TERMS, CLASS_ID).status == SyncStatus.FAILED

    def test_forced_offline_blocks_then_resume_drains(self, sync_engine, remote):
        sync_engine.connection_manager.force_offline()
        sync_engine.enqueue(HALF_TERMS, CLASS_ID, [])

        assert not sync_engine.sync_now()
        assert remote.pushes == []

        sync_engine.connection_manager.resume()

        assert remote.pushes == [(HALF_TERMS, CLASS_ID)]
        assert sync_engine.pending_count == 0

    def test_background_thread_drains(self, local_store, remote, settings):
        engine = SyncEngine(local_store, remote, settings=settings.with_overrides(sync_interval=0.05))
        engine.enqueue(HALF_TERMS, CLASS_ID, [])

        engine.start()
        assert engine.is_running
        deadline = time.time() + 2
        while engine.pending_count and time.time() < deadline:
            time.sleep(0.02)
        engine.stop()

        assert not engine.is_running
        assert remote.pushes == [(HALF_TERMS, CLASS_ID)]

    def test_status_display(self, sync_engine):
        sync_engine.enqueue(HALF_TERMS, CLASS_ID, [])

        display = sync_engine.get_status_display()

        assert display["pending_count"] == 1
        assert display["connection"] == "unknown"


class TestConnectionManager:
    """Test remote health tracking"""

    def test_failures_degrade_then_go_offline(self):
        manager = ConnectionManager(FakeRemote(), offline_after_failures=3)

        manager.record_failure("timeout")
        assert manager.status == ConnectionStatus.DEGRADED
        manager.record_failure("timeout")
        manager.record_failure("timeout")
        assert manager.status == ConnectionStatus.OFFLINE
        assert manager.state.consecutive_failures == 3

    def test_success_resets_failures(self):
        manager = ConnectionManager(FakeRemote())
        manager.record_failure("timeout")

        manager.record_success()

        assert manager.is_online
        assert manager.state.consecutive_failures == 0
        assert manager.state.last_online is not None

    def test_check_connection_pings(self):
        remote = FakeRemote()
        manager = ConnectionManager(remote)

        remote.fail = True
        assert manager.check_connection().status == ConnectionStatus.DEGRADED

        remote.fail = False
        assert manager.check_connection().status == ConnectionStatus.ONLINE

    def test_unconfigured_remote_is_local_only(self):
        remote = FakeRemote()
        remote.is_configured = False
        manager = ConnectionManager(remote)

        manager.record_failure("ignored")

        assert manager.is_local_only
        assert not manager.should_attempt_remote

    def test_callbacks_only_on_change(self):
        manager = ConnectionManager(FakeRemote())
        seen = []
        manager.register_callback(lambda state: seen.append(state.status))

        manager.record_success()
        manager.record_success()
        manager.record_failure("timeout")

        assert seen == [ConnectionStatus.ONLINE, ConnectionStatus.DEGRADED]


class TestOfflineBackoff:
    """Test spacing of remote attempts while offline"""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def manager(self, clock):
        return ConnectionManager(FakeRemote(), offline_after_failures=2, retry_delay=5.0, clock=clock)

    def test_degraded_still_attempts(self, manager):
        manager.record_failure("timeout")

        assert manager.should_attempt_remote
        assert manager.retry_in is None

    def test_offline_waits_for_retry_delay(self, manager, clock):
        manager.record_failure("timeout")
        manager.record_failure("timeout")

        assert manager.status == ConnectionStatus.OFFLINE
        assert not manager.should_attempt_remote
        assert manager.retry_in == 5.0

        clock.now += 5.0
        assert manager.should_attempt_remote

    def test_delay_doubles_and_is_capped(self, manager, clock):
        for _ in range(3):
            manager.record_failure("timeout")

        assert manager.retry_in == 10.0
        assert manager.backoff_delay(40) == ConnectionManager.MAX_RETRY_DELAY

    def test_success_clears_backoff(self, manager):
        manager.record_failure("timeout")
        manager.record_failure("timeout")

        manager.record_success()

        assert manager.should_attempt_remote
        assert manager.get_status_display()["retry_in"] is None

    def test_explicit_check_ignores_backoff(self, manager):
        manager.record_failure("timeout")
        manager.record_failure("timeout")

        assert manager.check_connection().status == ConnectionStatus.ONLINE

    def test_offline_saves_skip_remote(self, local_store, remote, settings, clock):
        manager = ConnectionManager(remote, offline_after_failures=2, retry_delay=5.0, clock=clock)
        engine = SyncEngine(local_store, remote, connection_manager=manager, settings=settings)
        engine.enqueue(HALF_TERMS, CLASS_ID, [])
        remote.fail = True
        engine.sync_now()
        engine.sync_now()

        assert not engine.sync_now()
        assert engine.collection_status(HALF_TERMS, CLASS_ID).attempts == 2

        remote.fail = False
        clock.now += 5.0

        assert engine.sync_now()
        assert remote.pushes == [(HALF_TERMS, CLASS_ID)]
