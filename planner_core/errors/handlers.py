# =============================================================================
# planner_core/errors/handlers.py
# Error Reporting for the Lesson Planner
# =============================================================================

from __future__ import annotations
import logging
import traceback
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import streamlit as st

from planner_core.logging import get_logger
from .exceptions import PlannerError, ValidationError, RemoteStoreError

logger = get_logger(__name__)

REMOTE_FALLBACK_NOTE = "Your changes are kept on this device and will sync when the connection returns."


@dataclass
class ErrorReport:
    """How one failure is logged and shown in the page."""
    message: str
    code: str
    severity: str  # "warning", "error" or "critical"
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def log_level(self) -> int:
        return logging.WARNING if self.severity == "warning" else logging.ERROR

    @property
    def display_message(self) -> str:
        if self.severity == "critical":
            return f"Critical Error: {self.message}. Your changes may not have been saved."
        if self.severity == "error":
            return f"Error: {self.message}"
        if self.code == "REMOTE_001":
            return f"{self.message}. {REMOTE_FALLBACK_NOTE}"
        return self.message


def describe_error(error: Exception, user_message: Optional[str] = None) -> ErrorReport:
    """
    Classify an exception.

    Rejected intents and remote outages are warnings: the class state is
    unchanged or safely cached. Unrecoverable planner errors (local cache,
    renumbering, configuration) are critical.
    """
    if not isinstance(error, PlannerError):
        return ErrorReport(
            message=user_message or str(error),
            code="UNKNOWN",
            severity="error",
            details={"traceback": traceback.format_exc()},
        )

    if isinstance(error, (ValidationError, RemoteStoreError)):
        severity = "warning"
    elif error.recoverable:
        severity = "error"
    else:
        severity = "critical"

    return ErrorReport(
        message=user_message or error.message,
        code=error.code,
        severity=severity,
        details=dict(error.details),
    )


def handle_error(
    error: Exception,
    show_user_message: bool = False,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> str:
    """
    Log an exception and optionally surface it in the Streamlit page.

    Args:
        error: The exception to handle
        show_user_message: Display via st.warning/st.error
        log_error: Whether to log the error
        user_message: Replaces the exception's own message

    Returns:
        The user-facing message (without display prefixes)
    """
    report = describe_error(error, user_message)

    if log_error:
        logger.log(
            report.log_level,
            f"[{report.code}] {report.message}",
            extra={"details": report.details},
            exc_info=report.severity != "warning",
        )

    if show_user_message:
        if report.severity == "warning":
            st.warning(report.display_message)
        else:
            st.error(report.display_message)

    return report.message


class ErrorContext:
    """
    Report anything raised inside the block; recoverable blocks swallow it.

    Usage:
        with ErrorContext("Background sync", recoverable=True) as ctx:
            engine.sync_now()
        if ctx.error: ...
    """

    def __init__(self, operation: str, recoverable: bool = True):
        self.operation = operation
        self.recoverable = recoverable
        self.error: Optional[BaseException] = None

    def __enter__(self) -> ErrorContext:
        logger.debug(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            logger.debug(f"Completed: {self.operation}")
            return False

        self.error = exc_val
        override = None if isinstance(exc_val, PlannerError) else f"Error during: {self.operation}"
        handle_error(exc_val, user_message=override)
        return self.recoverable
