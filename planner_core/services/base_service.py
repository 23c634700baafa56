# =============================================================================
# planner_core/services/base_service.py
# Base Service Class and the Operation Result Envelope
# =============================================================================
"""
ServiceResult - what every engine operation returns instead of raising.

Mutation results report through metadata:
    committed   the change replaced the live class state
    changed     collections written by the operation
    sync        {collection: sync status} after the save

A failed result keeps the exception that caused it, so callers that prefer
exceptions can call `raise_for_error()`.
"""

from __future__ import annotations
from abc import ABC
import logging
from typing import Optional, Dict, Any, Callable, List
from dataclasses import dataclass, field

from planner_core.logging import get_logger, LogContext
from planner_core.errors import handle_error, PlannerError, ValidationError


@dataclass
class ServiceResult:
    """Outcome of one service operation."""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[Exception] = field(default=None, repr=False, compare=False)

    def __bool__(self) -> bool:
        return self.success

    @property
    def committed(self) -> bool:
        return bool(self.metadata.get("committed"))

    @property
    def changed(self) -> List[str]:
        return list(self.metadata.get("changed", []))

    @property
    def sync(self) -> Dict[str, str]:
        return dict(self.metadata.get("sync", {}))

    def with_metadata(self, **values: Any) -> ServiceResult:
        """Merge values into the metadata, overwriting existing keys."""
        self.metadata = {**self.metadata, **values}
        return self

    def raise_for_error(self) -> ServiceResult:
        """Re-raise the failure, or return self when the operation succeeded."""
        if self.success:
            return self
        if self.exception is not None:
            raise self.exception
        raise PlannerError(self.error or "Operation failed", code=self.error_code)

    @classmethod
    def ok(cls, data: Any = None, metadata: Optional[Dict[str, Any]] = None) -> ServiceResult:
        return cls(success=True, data=data, metadata=dict(metadata or {}))

    @classmethod
    def fail(
        cls,
        error: str,
        error_code: str = "UNKNOWN",
        metadata: Optional[Dict[str, Any]] = None,
        exception: Optional[Exception] = None,
    ) -> ServiceResult:
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            metadata=dict(metadata or {}),
            exception=exception,
        )

    @classmethod
    def from_exception(cls, e: Exception) -> ServiceResult:
        """Failed result carrying a planner error's code and details."""
        if isinstance(e, PlannerError):
            return cls.fail(e.message, e.code, metadata=e.details, exception=e)
        return cls.fail(str(e), "EXCEPTION", exception=e)


class BaseService(ABC):
    """
    Base for services whose public operations never raise.

    Usage:
        class LessonService(BaseService):
            def rename(self, number, title) -> ServiceResult:
                return self.safe_execute(f"Renaming lesson {number}", self._rename, number, title)
    """

    def __init__(self, show_user_messages: bool = False):
        """
        Args:
            show_user_messages: Surface failures in the Streamlit page as well
        """
        self.logger = get_logger(f"planner_core.services.{self.__class__.__name__}")
        self.show_user_messages = show_user_messages

    def log_operation(self, operation: str, level: int = logging.INFO) -> LogContext:
        """Timing/outcome log for an operation; rejected intents log as warnings."""
        return LogContext(self.logger, operation, level=level, expected=(ValidationError,))

    def safe_execute(
        self,
        operation: str,
        func: Callable[..., Any],
        *args,
        **kwargs
    ) -> ServiceResult:
        """
        Run `func(*args, **kwargs)` and wrap its return value or failure.

        Returns:
            ServiceResult with success/failure status
        """
        try:
            with self.log_operation(operation):
                result = func(*args, **kwargs)
            return ServiceResult.ok(result)
        except PlannerError as e:
            # Already logged by the operation context
            handle_error(e, show_user_message=self.show_user_messages, log_error=False)
            return ServiceResult.from_exception(e)
        except Exception as e:
            handle_error(
                e,
                show_user_message=self.show_user_messages,
                log_error=False,
                user_message=f"{operation} failed: {e}",
            )
            return ServiceResult.from_exception(e)
