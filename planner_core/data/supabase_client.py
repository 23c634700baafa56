# =============================================================================
# planner_core/data/supabase_client.py
# Supabase Client for the Lesson Planner
# Remote reads and writes of collection snapshots
# =============================================================================

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from typing import Any, Callable, Dict, List, Optional
import logging

import streamlit as st

from planner_core.config import PlannerSettings, get_settings
from planner_core.data.row_mapping import payload_to_rows, rows_to_payload
from planner_core.errors import RemoteStoreError
from planner_core.models.collections import CollectionKey

logger = logging.getLogger(__name__)


def get_supabase_client(url: Optional[str] = None, key: Optional[str] = None):
    """
    Create a Supabase client.

    Credentials default to the resolved settings (Streamlit secrets, then
    SUPABASE_URL / SUPABASE_KEY).

    Returns:
        Supabase client instance or None if not configured
    """
    if not (url and key):
        settings = get_settings()
        url, key = settings.supabase_url, settings.supabase_key
    if not (url and key):
        logger.info("Supabase credentials not found; remote store disabled")
        return None

    try:
        from supabase import create_client, Client

        client: Client = create_client(url, key)
        return client
    except Exception as e:
        logger.warning(f"Failed to initialize Supabase client: {e}")
        return None


@st.cache_resource(ttl=3600)  # Cache for 1 hour, then refresh
def get_cached_supabase_client(url: str, key: str):
    """Supabase client reused across sessions for the same credentials."""
    return get_supabase_client(url, key)


class RemoteStoreClient:
    """
    Collection-level adapter over the Supabase tables.

    Every call runs under a timeout and every failure surfaces as
    RemoteStoreError, which callers treat as non-fatal.
    """

    BATCH_SIZE = 1000   # Supabase returns at most 1000 rows per request

    def __init__(
        self,
        client: Any = None,
        settings: Optional[PlannerSettings] = None,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            client: Supabase client; built from settings when omitted
            settings: Planner settings (default: resolved settings)
            timeout: Seconds allowed per remote call (default: settings.remote_timeout)
        """
        self.settings = settings or get_settings()
        if client is None and self.settings.remote_configured:
            client = get_cached_supabase_client(self.settings.supabase_url, self.settings.supabase_key)
        self.client = client
        self.timeout = timeout or self.settings.remote_timeout
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="remote-store")

    @property
    def is_configured(self) -> bool:
        """Check if a Supabase client is available."""
        return self.client is not None

    def _run(self, operation: str, table: str, func: Callable[[], Any]) -> Any:
        """Run a remote call under the timeout, translating failures."""
        if not self.is_configured:
            raise RemoteStoreError("Supabase is not configured", table=table, operation=operation)

        future = self._executor.submit(func)
        try:
            return future.result(timeout=self.timeout)
        except FuturesTimeout:
            future.cancel()
            raise RemoteStoreError(
                f"{operation} on {table} timed out after {self.timeout}s",
                table=table,
                operation=operation,
            )
        except RemoteStoreError:
            raise
        except Exception as e:
            raise RemoteStoreError(
                f"{operation} on {table} failed: {e}",
                table=table,
                operation=operation,
            ) from e

    # =========================================================================
    # ROW OPERATIONS
    # =========================================================================

    def _select_all(self, table: str, class_id: str) -> List[Dict[str, Any]]:
        """Fetch every row of a class, paging past the 1000 row limit."""
        all_rows: List[Dict[str, Any]] = []
        offset = 0

        while True:
            response = (
                self.client.table(table)
                .select("*")
                .eq("class_id", class_id)
                .range(offset, offset + self.BATCH_SIZE - 1)
                .execute()
            )

            if response.data:
                all_rows.extend(response.data)
                # Fewer than a full batch means we've reached the end
                if len(response.data) < self.BATCH_SIZE:
                    break
                offset += self.BATCH_SIZE
            else:
                break

        return all_rows

    def _replace_rows(
        self,
        table: str,
        class_id: str,
        rows: List[Dict[str, Any]],
        on_conflict: str,
    ) -> int:
        """Upsert a snapshot, then delete the class's rows it no longer contains."""
        if rows:
            self.client.table(table).upsert(rows, on_conflict=on_conflict).execute()

        keep_ids = [str(r["id"]) for r in rows if r.get("id") is not None]
        query = self.client.table(table).delete().eq("class_id", class_id)
        if keep_ids:
            query = query.not_.in_("id", keep_ids)
        query.execute()
        return len(rows)

    def fetch_rows(self, table: str, class_id: str) -> List[Dict[str, Any]]:
        return self._run("fetch", table, lambda: self._select_all(table, class_id))

    # =========================================================================
    # COLLECTION OPERATIONS
    # =========================================================================

    def fetch_collection(self, key: CollectionKey, class_id: str) -> Optional[Any]:
        """
        Fetch a collection snapshot.

        Returns:
            The payload, or None when the remote store has no rows for it
        """
        if key.local_only:
            return None
        rows = self.fetch_rows(key.table, class_id)
        logger.debug(f"Fetched {len(rows)} rows from {key.table} for class {class_id}")
        return rows_to_payload(key, rows)

    def push_collection(self, key: CollectionKey, class_id: str, payload: Any) -> int:
        """
        Replace the remote copy of a collection with a snapshot.

        Returns:
            Number of rows written
        """
        if key.local_only:
            raise RemoteStoreError(f"{key.value} is stored locally only", operation="push")
        rows = payload_to_rows(key, class_id, payload)
        written = self._run(
            "push",
            key.table,
            lambda: self._replace_rows(key.table, class_id, rows, key.on_conflict),
        )
        logger.info(f"Pushed {written} rows to {key.table} for class {class_id}")
        return written

    def ping(self) -> bool:
        """Cheap round-trip used for health checks."""
        table = CollectionKey.LESSONS.table
        self._run(
            "ping",
            table,
            lambda: self.client.table(table).select("id").limit(1).execute(),
        )
        return True

    def close(self) -> None:
        self._executor.shutdown(wait=False)
