# =============================================================================
# planner_core/offline/local_cache.py
# Local SQLite Cache for Collection Snapshots
# =============================================================================
"""
LocalCacheStore - SQLite-backed key/value store for collection snapshots.

Features:
- One JSON blob per collection per class (e.g. `lesson-data-<class>`)
- Per-entry size quota
- Sync queue of snapshots awaiting replication to Supabase
- Transaction support
- Thread-safe operations (one connection per thread)

Write failures raise LocalStoreError: the local write is the durability
guarantee, so callers must learn when it did not happen.
"""

from __future__ import annotations
import sqlite3
import threading
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from contextlib import contextmanager
import logging

from planner_core.errors import LocalStoreError

logger = logging.getLogger(__name__)


class LocalCacheStore:
    """
    Local SQLite store holding the last-known-good snapshot of every collection.
    """

    # Default database location
    DEFAULT_DB_PATH = Path(__file__).parent.parent.parent / "local_data" / "planner.db"

    # Default per-entry quota, in bytes of UTF-8 JSON
    DEFAULT_MAX_ENTRY_BYTES = 5 * 1024 * 1024

    SCHEMA = {
        "cache_entries": """
            CREATE TABLE IF NOT EXISTS cache_entries (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                size_bytes INTEGER NOT NULL,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
        "sync_queue": """
            CREATE TABLE IF NOT EXISTS sync_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                operation TEXT NOT NULL,
                collection TEXT NOT NULL,
                class_id TEXT NOT NULL,
                data_json TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                attempts INTEGER DEFAULT 0,
                last_attempt TEXT,
                status TEXT DEFAULT 'pending',
                error_message TEXT
            )
        """,
    }

    INDEXES = [
        "CREATE INDEX IF NOT EXISTS idx_sync_queue_key ON sync_queue (collection, class_id, status)",
    ]

    _instance: Optional[LocalCacheStore] = None
    _lock = threading.Lock()

    def __init__(self, db_path: Optional[Path] = None, max_entry_bytes: Optional[int] = None):
        """
        Initialize local cache store.

        Args:
            db_path: Path to SQLite database file
            max_entry_bytes: Largest JSON value a single key may hold
        """
        self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        self.max_entry_bytes = max_entry_bytes or self.DEFAULT_MAX_ENTRY_BYTES
        self._ensure_directory()
        self._local = threading.local()
        self._write_lock = threading.RLock()
        self._initialized = False

    @classmethod
    def get_instance(cls, db_path: Optional[Path] = None, max_entry_bytes: Optional[int] = None) -> LocalCacheStore:
        """Get or create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = LocalCacheStore(db_path, max_entry_bytes)
        return cls._instance

    def _ensure_directory(self) -> None:
        """Ensure database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, 'connection') or self._local.connection is None:
            self._local.connection = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                timeout=10,
            )
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def transaction(self):
        """Context manager for database transactions."""
        conn = self._get_connection()
        with self._write_lock:
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        try:
            with self.transaction() as conn:
                for schema in self.SCHEMA.values():
                    conn.execute(schema)
                for index in self.INDEXES:
                    conn.execute(index)
        except sqlite3.Error as e:
            raise LocalStoreError(f"Cannot initialize local cache at {self.db_path}: {e}")

        self._initialized = True
        logger.info(f"Local cache initialized at {self.db_path}")

    def query(self, sql: str, params: Optional[List] = None) -> List[sqlite3.Row]:
        """Execute a read query."""
        self.initialize()
        try:
            return self._get_connection().execute(sql, params or []).fetchall()
        except sqlite3.Error as e:
            raise LocalStoreError(f"Local cache query failed: {e}")

    def execute(self, sql: str, params: Optional[List] = None) -> int:
        """Execute a write statement and return affected rows."""
        self.initialize()
        try:
            with self.transaction() as conn:
                return conn.execute(sql, params or []).rowcount
        except sqlite3.Error as e:
            raise LocalStoreError(f"Local cache write failed: {e}")

    # =========================================================================
    # KEY/VALUE SNAPSHOTS
    # =========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        """
        Read a snapshot.

        An unreadable value is logged and treated as absent.
        """
        rows = self.query("SELECT value FROM cache_entries WHERE key = ?", [key])
        if not rows:
            return default
        try:
            return json.loads(rows[0]["value"])
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring corrupted local entry '{key}': {e}")
            return default

    def _encode(self, key: str, value: Any) -> str:
        try:
            encoded = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise LocalStoreError(f"Cannot serialize '{key}': {e}", key=key)

        size = len(encoded.encode("utf-8"))
        if size > self.max_entry_bytes:
            raise LocalStoreError(
                f"Local storage quota exceeded for '{key}' "
                f"({size} bytes > {self.max_entry_bytes})",
                key=key,
                quota_exceeded=True,
            )
        return encoded

    def set(self, key: str, value: Any) -> int:
        """
        Write a snapshot.

        Returns:
            Size of the stored value in bytes

        Raises:
            LocalStoreError: on serialization failure, quota overrun or SQLite error
        """
        return self.set_many({key: value})[key]

    def set_many(self, entries: Dict[str, Any]) -> Dict[str, int]:
        """
        Write several snapshots in one transaction: all of them or none.

        Returns:
            {key: size in bytes}

        Raises:
            LocalStoreError: nothing was written
        """
        encoded = {key: self._encode(key, value) for key, value in entries.items()}
        sizes = {key: len(text.encode("utf-8")) for key, text in encoded.items()}
        now = datetime.now().isoformat()

        self.initialize()
        try:
            with self.transaction() as conn:
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO cache_entries (key, value, size_bytes, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    [[key, text, sizes[key], now] for key, text in encoded.items()]
                )
        except sqlite3.Error as e:
            keys = ", ".join(encoded)
            raise LocalStoreError(f"Cannot write {keys} to local cache: {e}", key=keys)

        logger.debug(f"Stored {sizes} locally")
        return sizes

    def delete(self, key: str) -> bool:
        return self.execute("DELETE FROM cache_entries WHERE key = ?", [key]) > 0

    def keys(self, prefix: str = "") -> List[str]:
        rows = self.query(
            "SELECT key FROM cache_entries WHERE key LIKE ? ORDER BY key",
            [f"{prefix}%"]
        )
        return [row["key"] for row in rows]

    # =========================================================================
    # SYNC QUEUE
    # =========================================================================

    def enqueue_sync(
        self,
        operation: str,
        collection: str,
        class_id: str,
        data: Any,
    ) -> int:
        """
        Queue an operation for replication.

        Older unsynced operations for the same collection and class are
        superseded: only the newest snapshot needs to reach the remote store.
        """
        try:
            data_json = json.dumps(data, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise LocalStoreError(f"Cannot serialize sync payload for '{collection}': {e}")

        self.initialize()
        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    UPDATE sync_queue SET status = 'superseded'
                    WHERE collection = ? AND class_id = ? AND status IN ('pending', 'failed')
                    """,
                    [collection, class_id]
                )
                cursor = conn.execute(
                    """
                    INSERT INTO sync_queue (operation, collection, class_id, data_json, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [operation, collection, class_id, data_json, datetime.now().isoformat()]
                )
                return cursor.lastrowid
        except sqlite3.Error as e:
            raise LocalStoreError(f"Cannot queue sync for '{collection}': {e}")

    def get_pending_sync(self, limit: int = 100, max_attempts: Optional[int] = None) -> List[Dict]:
        """Pending operations plus failed ones that still have attempts left, oldest first."""
        sql = """
            SELECT * FROM sync_queue
            WHERE status = 'pending' OR (status = 'failed' AND attempts < ?)
            ORDER BY id ASC
            LIMIT ?
        """
        rows = self.query(sql, [max_attempts if max_attempts is not None else 2 ** 31, limit])
        return [self._sync_row_to_dict(row) for row in rows]

    def latest_sync(self, collection: str, class_id: str) -> Optional[Dict]:
        """Newest non-superseded operation for a collection, if any."""
        rows = self.query(
            """
            SELECT * FROM sync_queue
            WHERE collection = ? AND class_id = ? AND status != 'superseded'
            ORDER BY id DESC
            LIMIT 1
            """,
            [collection, class_id]
        )
        return self._sync_row_to_dict(rows[0]) if rows else None

    def mark_synced(self, sync_id: int) -> None:
        """Mark a sync operation as completed."""
        self.execute(
            "UPDATE sync_queue SET status = 'synced', last_attempt = ?, error_message = NULL WHERE id = ?",
            [datetime.now().isoformat(), sync_id]
        )

    def mark_sync_failed(self, sync_id: int, error: str) -> None:
        """Mark a sync operation as failed."""
        self.execute(
            """
            UPDATE sync_queue
            SET status = 'failed', attempts = attempts + 1,
                last_attempt = ?, error_message = ?
            WHERE id = ? AND status != 'superseded'
            """,
            [datetime.now().isoformat(), error, sync_id]
        )

    def get_pending_count(self, class_id: Optional[str] = None) -> int:
        """Count of operations not yet replicated."""
        sql = "SELECT COUNT(*) AS count FROM sync_queue WHERE status IN ('pending', 'failed')"
        params: List[Any] = []
        if class_id is not None:
            sql += " AND class_id = ?"
            params.append(class_id)
        result = self.query(sql, params)
        return result[0]["count"] if result else 0

    def purge_synced(self) -> int:
        """Drop replicated and superseded operations."""
        return self.execute("DELETE FROM sync_queue WHERE status IN ('synced', 'superseded')")

    @staticmethod
    def _sync_row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "operation": row["operation"],
            "collection": row["collection"],
            "class_id": row["class_id"],
            "data": json.loads(row["data_json"]) if row["data_json"] else None,
            "created_at": row["created_at"],
            "attempts": row["attempts"],
            "status": row["status"],
            "error_message": row["error_message"],
        }

    def close(self) -> None:
        """Close this thread's database connection."""
        if hasattr(self._local, 'connection') and self._local.connection:
            self._local.connection.close()
            self._local.connection = None


# Singleton accessor
_local_cache: Optional[LocalCacheStore] = None


def get_local_cache(db_path: Optional[Path] = None, max_entry_bytes: Optional[int] = None) -> LocalCacheStore:
    """Get the global LocalCacheStore instance."""
    global _local_cache
    if _local_cache is None:
        _local_cache = LocalCacheStore.get_instance(db_path, max_entry_bytes)
        _local_cache.initialize()
    return _local_cache
