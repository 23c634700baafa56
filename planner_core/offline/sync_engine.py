# =============================================================================
# planner_core/offline/sync_engine.py
# Replication of Local Snapshots to Supabase
# =============================================================================
"""
SyncEngine - replicates queued collection snapshots to the remote store.

Features:
- Inline drain after each save, or a background sync thread
- Only the newest snapshot per collection is replicated
- Bounded retries for failed operations
- Observable per-collection sync status (synced / pending / failed / local only)
- Event callbacks
"""

from __future__ import annotations
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import logging

from planner_core.config import PlannerSettings, get_settings
from planner_core.errors import ErrorContext, RemoteStoreError
from planner_core.models.collections import CollectionKey
from planner_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
)
from planner_core.offline.local_cache import LocalCacheStore

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Replication status of one collection of one class."""
    SYNCED = "synced"
    PENDING = "pending"
    FAILED = "failed"
    LOCAL_ONLY = "local_only"


@dataclass
class SyncOperation:
    """A queued replication step."""
    id: int
    operation: str  # SNAPSHOT
    collection: CollectionKey
    class_id: str
    data: Any
    attempts: int = 0
    error_message: Optional[str] = None

    @classmethod
    def from_queue_row(cls, row: Dict[str, Any]) -> SyncOperation:
        return cls(
            id=row["id"],
            operation=row["operation"],
            collection=CollectionKey(row["collection"]),
            class_id=row["class_id"],
            data=row["data"],
            attempts=row["attempts"],
            error_message=row["error_message"],
        )


@dataclass
class CollectionSyncState:
    """Sync status of one collection, as reported to callers."""
    class_id: str
    collection: CollectionKey
    status: SyncStatus
    attempts: int = 0
    last_error: Optional[str] = None
    updated_at: datetime = field(default_factory=datetime.now)


@dataclass
class SyncState:
    """Engine-wide sync state."""
    is_syncing: bool = False
    last_sync: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None
    pending_count: int = 0
    failed_count: int = 0
    total_synced: int = 0


class SyncEngine:
    """
    Drains the local sync queue into Supabase.

    Usage:
        engine = SyncEngine(local_store, remote, connection_manager)
        engine.enqueue(CollectionKey.HALF_TERMS, "year-1", payload)
        engine.sync_now()   # or engine.start() for background replication
    """

    OPERATION_SNAPSHOT = "SNAPSHOT"

    # Configuration defaults
    SYNC_INTERVAL = 30          # Seconds between background drains
    MAX_RETRY_ATTEMPTS = 5      # Attempts before an operation stays failed
    BATCH_SIZE = 50             # Operations per drain

    def __init__(
        self,
        local_store: LocalCacheStore,
        remote: Any = None,
        connection_manager: Optional[ConnectionManager] = None,
        settings: Optional[PlannerSettings] = None,
    ):
        settings = settings or get_settings()
        self.local_store = local_store
        self.remote = remote
        self.connection_manager = connection_manager or ConnectionManager(
            remote, settings.offline_after_failures, settings.offline_retry_delay
        )
        self.sync_interval = settings.sync_interval or self.SYNC_INTERVAL
        self.max_retry_attempts = settings.max_retry_attempts or self.MAX_RETRY_ATTEMPTS

        self._state = SyncState()
        self._sync_lock = threading.Lock()
        self._sync_thread: Optional[threading.Thread] = None
        self._stop_sync = threading.Event()
        self._callbacks: List[Callable[[CollectionSyncState], None]] = []

        self.connection_manager.register_callback(self._on_connection_change)

    @property
    def state(self) -> SyncState:
        """Get current sync state."""
        return self._state

    @property
    def remote_enabled(self) -> bool:
        return self.remote is not None and self.remote.is_configured

    @property
    def pending_count(self) -> int:
        return self.local_store.get_pending_count()

    # =========================================================================
    # QUEUE AND STATUS
    # =========================================================================

    def enqueue(self, key: CollectionKey, class_id: str, payload: Any) -> CollectionSyncState:
        """Queue a snapshot for replication."""
        if key.local_only or not self.remote_enabled:
            return CollectionSyncState(class_id, key, SyncStatus.LOCAL_ONLY)

        self.local_store.enqueue_sync(self.OPERATION_SNAPSHOT, key.value, class_id, payload)
        state = self.collection_status(key, class_id)
        self._notify_callbacks(state)
        return state

    def collection_status(self, key: CollectionKey, class_id: str) -> CollectionSyncState:
        """Current replication status of a collection."""
        if key.local_only or not self.remote_enabled:
            return CollectionSyncState(class_id, key, SyncStatus.LOCAL_ONLY)

        latest = self.local_store.latest_sync(key.value, class_id)
        if latest is None or latest["status"] == "synced":
            status = SyncStatus.SYNCED
        elif latest["status"] == "failed":
            status = SyncStatus.FAILED
        else:
            status = SyncStatus.PENDING

        return CollectionSyncState(
            class_id=class_id,
            collection=key,
            status=status,
            attempts=latest["attempts"] if latest else 0,
            last_error=latest["error_message"] if latest else None,
        )

    def has_unsynced(self, key: CollectionKey, class_id: str) -> bool:
        """True when the local copy holds changes the remote store has not seen."""
        return self.collection_status(key, class_id).status in (SyncStatus.PENDING, SyncStatus.FAILED)

    # =========================================================================
    # DRAINING
    # =========================================================================

    def sync_now(self) -> bool:
        """
        Drain the queue immediately.

        Returns:
            True if every attempted operation replicated
        """
        if not self.remote_enabled:
            return True
        if not self.connection_manager.should_attempt_remote:
            logger.debug("Cannot sync: remote disabled or forced offline")
            return False
        return self._perform_sync()

    def _perform_sync(self) -> bool:
        # One drain at a time; a concurrent request simply returns
        if not self._sync_lock.acquire(blocking=False):
            return False

        self._state.is_syncing = True
        self._state.last_sync = datetime.now()
        success_count = 0
        fail_count = 0

        try:
            pending = self.local_store.get_pending_sync(
                limit=self.BATCH_SIZE,
                max_attempts=self.max_retry_attempts,
            )
            if not pending:
                return True

            logger.info(f"Syncing {len(pending)} operations")

            for row in pending:
                op = SyncOperation.from_queue_row(row)
                try:
                    self._sync_operation(op)
                except RemoteStoreError as e:
                    logger.warning(
                        f"Replication of {op.collection.value} for class {op.class_id} "
                        f"failed (attempt {op.attempts + 1}/{self.max_retry_attempts}): {e.message}"
                    )
                    self.local_store.mark_sync_failed(op.id, e.message)
                    fail_count += 1
                    self.connection_manager.record_failure(e)
                    self._notify_callbacks(self.collection_status(op.collection, op.class_id))
                    # Remaining operations stay queued for the next drain
                    break

                self.local_store.mark_synced(op.id)
                success_count += 1
                self.connection_manager.record_success()
                self._notify_callbacks(self.collection_status(op.collection, op.class_id))

            self._state.total_synced += success_count
            self._state.failed_count = fail_count
            self._state.pending_count = self.local_store.get_pending_count()

            if fail_count == 0:
                self._state.last_sync_success = datetime.now()

            logger.info(f"Sync complete: {success_count} success, {fail_count} failed")
            return fail_count == 0

        finally:
            self._state.is_syncing = False
            self._sync_lock.release()

    def _sync_operation(self, op: SyncOperation) -> None:
        """Replicate a single operation to Supabase."""
        if op.operation != self.OPERATION_SNAPSHOT:
            raise RemoteStoreError(f"Unknown sync operation: {op.operation}", operation=op.operation)
        self.remote.push_collection(op.collection, op.class_id, op.data)

    def _on_connection_change(self, state: ConnectionState) -> None:
        """Drain the queue when the remote store comes back."""
        if state.status == ConnectionStatus.ONLINE and self.local_store.get_pending_count() > 0:
            logger.info("Connection restored, triggering sync")
            self.sync_now()

    # =========================================================================
    # BACKGROUND THREAD
    # =========================================================================

    def start(self) -> None:
        """Start background sync thread."""
        if self._sync_thread is not None and self._sync_thread.is_alive():
            return

        self._stop_sync.clear()
        self._sync_thread = threading.Thread(
            target=self._sync_loop,
            daemon=True,
            name="PlannerSyncEngine"
        )
        self._sync_thread.start()
        logger.info("Sync engine started")

    def stop(self) -> None:
        """Stop background sync thread."""
        self._stop_sync.set()
        if self._sync_thread:
            self._sync_thread.join(timeout=10)
            self._sync_thread = None
        logger.info("Sync engine stopped")

    @property
    def is_running(self) -> bool:
        return self._sync_thread is not None and self._sync_thread.is_alive()

    def _sync_loop(self) -> None:
        """Background sync loop."""
        while not self._stop_sync.is_set():
            # Wait for interval or stop signal
            if self._stop_sync.wait(timeout=self.sync_interval):
                break

            if self.local_store.get_pending_count() == 0:
                continue
            with ErrorContext("Background sync", recoverable=True):
                self.sync_now()

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[CollectionSyncState], None]) -> None:
        """Register a callback for per-collection sync status changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[CollectionSyncState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self, state: CollectionSyncState) -> None:
        for callback in list(self._callbacks):
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Error in sync callback: {e}")

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        return {
            "is_syncing": self._state.is_syncing,
            "last_sync": self._state.last_sync.isoformat() if self._state.last_sync else None,
            "last_success": self._state.last_sync_success.isoformat() if self._state.last_sync_success else None,
            "pending_count": self.pending_count,
            "failed_count": self._state.failed_count,
            "total_synced": self._state.total_synced,
            "connection": self.connection_manager.status.value,
        }
