# =============================================================================
# planner_core/offline/persistence.py
# Persistence Coordinator - local-first storage of collection snapshots
# =============================================================================
"""
PersistenceCoordinator - the single API the engine uses to load and save.

Load precedence:
    remote (non-empty) -> local cache -> documented default
    Remote data is written into the local cache on the way (migration-on-read).
    Local data the remote store has not seen yet is queued for upload.

Save policy:
    1. Local cache write, synchronous and atomic across the saved
       collections. Failure raises LocalStoreError.
    2. Snapshot queued for replication; drained inline or in the background.
       Remote failure is logged as a warning and never undoes the local write.

Usage:
------
coordinator = PersistenceCoordinator(local_store, remote)
lessons = coordinator.load(CollectionKey.LESSONS, "year-1")
status = coordinator.save(CollectionKey.LESSONS, "year-1", lessons)
"""

from __future__ import annotations
import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple
import logging

from planner_core.config import PlannerSettings, get_settings
from planner_core.errors import LocalStoreError, RemoteStoreError
from planner_core.models.collections import CollectionKey
from planner_core.offline.connection_manager import ConnectionManager
from planner_core.offline.local_cache import LocalCacheStore
from planner_core.offline.sync_engine import CollectionSyncState, SyncEngine, SyncStatus

logger = logging.getLogger(__name__)


class LoadSource(Enum):
    """Where a loaded collection came from."""
    REMOTE = "remote"
    LOCAL = "local"
    DEFAULT = "default"


@dataclass
class LoadResult:
    """A loaded collection and its provenance."""
    key: CollectionKey
    class_id: str
    payload: Any
    source: LoadSource
    warning: Optional[str] = None


class PersistenceCoordinator:
    """
    Decides where each collection snapshot is read from and written to.
    """

    def __init__(
        self,
        local_store: LocalCacheStore,
        remote: Any = None,
        sync_engine: Optional[SyncEngine] = None,
        settings: Optional[PlannerSettings] = None,
    ):
        """
        Args:
            local_store: Local cache (durability guarantee)
            remote: RemoteStoreClient, or None for local-only mode
            sync_engine: Replication engine (built when omitted)
            settings: Planner settings (default: resolved settings)
        """
        self.settings = settings or get_settings()
        self.local_store = local_store
        self.remote = remote
        self.sync_engine = sync_engine or SyncEngine(
            local_store,
            remote,
            ConnectionManager(
                remote, self.settings.offline_after_failures, self.settings.offline_retry_delay
            ),
            self.settings,
        )

    @property
    def connection_manager(self) -> ConnectionManager:
        return self.sync_engine.connection_manager

    def _remote_available_for(self, key: CollectionKey) -> bool:
        return (
            not key.local_only
            and self.remote is not None
            and self.remote.is_configured
            and self.connection_manager.should_attempt_remote
        )

    # =========================================================================
    # LOAD
    # =========================================================================

    def load(self, key: CollectionKey, class_id: str) -> Any:
        """Load a collection snapshot for a class."""
        return self.load_result(key, class_id).payload

    def load_result(self, key: CollectionKey, class_id: str) -> LoadResult:
        """Load a collection snapshot and report where it came from."""
        local_key = key.local_key(class_id)

        if not self._remote_available_for(key):
            return self._from_local_or_default(key, class_id)

        # The remote copy is stale while local changes wait for replication
        if self.sync_engine.has_unsynced(key, class_id):
            local_payload = self.local_store.get(local_key)
            if local_payload is not None:
                logger.info(f"{local_key}: unsynced local changes take precedence over remote")
                self.sync_engine.sync_now()
                return LoadResult(key, class_id, local_payload, LoadSource.LOCAL)

        try:
            remote_payload = self.remote.fetch_collection(key, class_id)
            self.connection_manager.record_success()
        except RemoteStoreError as e:
            self.connection_manager.record_failure(e)
            warning = f"Remote load of {local_key} failed, using local cache: {e.message}"
            logger.warning(warning)
            result = self._from_local_or_default(key, class_id)
            result.warning = warning
            return result

        if not key.is_empty(remote_payload):
            try:
                self.local_store.set(local_key, remote_payload)
            except LocalStoreError as e:
                logger.warning(f"Could not cache remote {local_key} locally: {e.message}")
            return LoadResult(key, class_id, remote_payload, LoadSource.REMOTE)

        result = self._from_local_or_default(key, class_id)
        if result.source == LoadSource.LOCAL:
            # Local data the remote store never received
            logger.info(f"{local_key}: remote empty, uploading local copy")
            self.sync_engine.enqueue(key, class_id, result.payload)
            if self.settings.replicate_inline:
                self.sync_engine.sync_now()
        return result

    def _from_local_or_default(self, key: CollectionKey, class_id: str) -> LoadResult:
        local_payload = self.local_store.get(key.local_key(class_id))
        if not key.is_empty(local_payload):
            return LoadResult(key, class_id, local_payload, LoadSource.LOCAL)
        return LoadResult(key, class_id, key.default_payload(), LoadSource.DEFAULT)

    # =========================================================================
    # SAVE
    # =========================================================================

    def save(self, key: CollectionKey, class_id: str, payload: Any) -> SyncStatus:
        """
        Save a collection snapshot.

        Returns:
            Sync status of the collection after the save

        Raises:
            LocalStoreError: the local write failed; nothing was queued
        """
        return self.save_all(class_id, [(key, payload)])[key]

    def save_all(
        self,
        class_id: str,
        items: Iterable[Tuple[CollectionKey, Any]],
    ) -> Dict[CollectionKey, SyncStatus]:
        """
        Save several collections of one class, draining the queue once.

        The local writes are one transaction, so the cache never holds half
        of a multi-collection change.

        Raises:
            LocalStoreError: nothing was written or queued
        """
        snapshots = [(key, copy.deepcopy(payload)) for key, payload in items]
        self.local_store.set_many({key.local_key(class_id): snapshot for key, snapshot in snapshots})
        for key, snapshot in snapshots:
            self.sync_engine.enqueue(key, class_id, snapshot)

        if self.settings.replicate_inline and self.sync_engine.remote_enabled:
            self.sync_engine.sync_now()

        return {key: self.sync_engine.collection_status(key, class_id).status for key, _ in snapshots}

    def sync_status(self, key: CollectionKey, class_id: str) -> CollectionSyncState:
        return self.sync_engine.collection_status(key, class_id)
