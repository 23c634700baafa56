# =============================================================================
# planner_core/offline/__init__.py
# Local-First Persistence for the Lesson Planner
# =============================================================================
"""
Local-First Persistence Module

Every save lands in the local SQLite cache first; the Supabase copy is
brought up to date by the sync engine, inline or in the background. The
planner keeps working with no network at all.

Architecture:
------------
    PersistenceCoordinator   (single load/save API used by the engine)
        │
        ├── LocalCacheStore  (SQLite snapshots + sync queue)
        └── SyncEngine ──► RemoteStoreClient (Supabase)
                │
                └── ConnectionManager (online/degraded/offline)

Usage:
------
from planner_core.offline import PersistenceCoordinator, get_local_cache

coordinator = PersistenceCoordinator(get_local_cache(), remote)
lessons = coordinator.load(CollectionKey.LESSONS, "year-1")
"""

from planner_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
)

from planner_core.offline.local_cache import (
    LocalCacheStore,
    get_local_cache,
)

from planner_core.offline.sync_engine import (
    CollectionSyncState,
    SyncEngine,
    SyncOperation,
    SyncStatus,
)

from planner_core.offline.persistence import (
    LoadResult,
    LoadSource,
    PersistenceCoordinator,
)

__all__ = [
    # Connection Management
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    # Local Cache
    "LocalCacheStore",
    "get_local_cache",
    # Sync Engine
    "CollectionSyncState",
    "SyncEngine",
    "SyncOperation",
    "SyncStatus",
    # Coordinator (Main API)
    "LoadResult",
    "LoadSource",
    "PersistenceCoordinator",
]
