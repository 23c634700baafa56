# =============================================================================
# planner_core/offline/connection_manager.py
# Remote Store Health Tracking
# =============================================================================
"""
ConnectionManager - tracks whether the Supabase store is reachable.

Features:
- Status derived from the outcome of real remote calls
- Explicit health check via a cheap ping
- Exponential backoff between remote attempts while offline
- Local-only mode when no credentials are configured
- Event callbacks for status changes
"""

from __future__ import annotations
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional
import logging

from planner_core.errors import RemoteStoreError

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"           # Last remote call succeeded
    DEGRADED = "degraded"       # Recent remote failures
    OFFLINE = "offline"         # Repeated failures or forced offline
    LOCAL_ONLY = "local_only"   # No remote store configured
    UNKNOWN = "unknown"         # No remote call made yet


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None
    forced_offline: bool = False
    retry_at: Optional[float] = None    # Clock time of the next attempt while offline


class ConnectionManager:
    """
    Tracks remote store health for one RemoteStoreClient.

    Usage:
        manager = ConnectionManager(remote)
        if manager.should_attempt_remote:
            ...
        manager.record_success()  # or record_failure(error)
    """

    OFFLINE_AFTER_FAILURES = 3
    RETRY_DELAY = 5.0           # Seconds before the first attempt once offline
    MAX_RETRY_DELAY = 300.0
    BACKOFF_BASE = 2            # Exponential backoff base

    def __init__(
        self,
        remote: Any = None,
        offline_after_failures: Optional[int] = None,
        retry_delay: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            remote: Object with `is_configured` and `ping()` (a RemoteStoreClient)
            offline_after_failures: Consecutive failures before OFFLINE
            retry_delay: Seconds before the first attempt once OFFLINE
            clock: Monotonic time source
        """
        self.remote = remote
        self.offline_after_failures = offline_after_failures or self.OFFLINE_AFTER_FAILURES
        self.retry_delay = self.RETRY_DELAY if retry_delay is None else retry_delay
        self._clock = clock
        self._state = ConnectionState()
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._lock = threading.Lock()

        if remote is None or not remote.is_configured:
            self._state.status = ConnectionStatus.LOCAL_ONLY

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_online(self) -> bool:
        return self._state.status == ConnectionStatus.ONLINE

    @property
    def is_local_only(self) -> bool:
        return self._state.status == ConnectionStatus.LOCAL_ONLY

    @property
    def should_attempt_remote(self) -> bool:
        """
        False when local-only, forced offline, or offline and still backing off.
        """
        if self.is_local_only or self._state.forced_offline:
            return False
        return self._state.retry_at is None or self._clock() >= self._state.retry_at

    def backoff_delay(self, failures: int) -> float:
        """Seconds to wait after `failures` consecutive failures (0 while not offline)."""
        excess = failures - self.offline_after_failures
        if excess < 0:
            return 0.0
        return min(self.retry_delay * self.BACKOFF_BASE ** excess, self.MAX_RETRY_DELAY)

    def record_success(self) -> None:
        """Note a successful remote round-trip."""
        self._transition(ConnectionStatus.ONLINE, error=None)

    def record_failure(self, error: Any) -> None:
        """Note a failed remote call."""
        failures = self._state.consecutive_failures + 1
        status = (
            ConnectionStatus.OFFLINE
            if failures >= self.offline_after_failures
            else ConnectionStatus.DEGRADED
        )
        self._transition(status, error=str(error), failures=failures)

    def _transition(self, status: ConnectionStatus, error: Optional[str], failures: int = 0) -> None:
        if self.is_local_only:
            return

        with self._lock:
            old_status = self._state.status
            self._state.status = status
            self._state.last_check = datetime.now()
            self._state.consecutive_failures = failures
            self._state.error_message = error
            if status == ConnectionStatus.OFFLINE and not self._state.forced_offline:
                self._state.retry_at = self._clock() + self.backoff_delay(failures)
            else:
                self._state.retry_at = None
            if status == ConnectionStatus.ONLINE:
                self._state.last_online = self._state.last_check

        if old_status != status:
            logger.info(f"Connection status changed: {old_status.value} -> {status.value}")
            self._notify_callbacks()

    def check_connection(self) -> ConnectionState:
        """
        Ping the remote store and update state.

        Returns:
            Updated ConnectionState
        """
        if self.is_local_only or self._state.forced_offline:
            return self._state

        try:
            self.remote.ping()
            self.record_success()
        except RemoteStoreError as e:
            logger.debug(f"Remote health check failed: {e}")
            self.record_failure(e)

        return self._state

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """
        Register a callback for connection status changes.

        Args:
            callback: Function called with ConnectionState when status changes
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        """Notify all registered callbacks of status change."""
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def force_offline(self) -> None:
        """Stop attempting remote calls (for testing or user preference)."""
        self._state.forced_offline = True
        self._transition(ConnectionStatus.OFFLINE, error="forced offline",
                         failures=self._state.consecutive_failures)
        logger.info("Forced offline mode")

    def resume(self) -> ConnectionState:
        """Leave forced offline mode and re-check the remote store."""
        self._state.forced_offline = False
        return self.check_connection()

    @property
    def retry_in(self) -> Optional[float]:
        """Seconds until the next remote attempt while backing off."""
        if self._state.retry_at is None:
            return None
        return max(0.0, self._state.retry_at - self._clock())

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_online": self.is_online,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
            "error": self._state.error_message,
            "retry_in": self.retry_in,
        }
