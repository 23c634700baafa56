# =============================================================================
# planner_core/errors/__init__.py
# Centralized Error Handling for the Lesson Planner
# =============================================================================

from .exceptions import (
    PlannerError,
    ValidationError,
    LessonNotFoundError,
    AlreadyAssignedError,
    LocalStoreError,
    RemoteStoreError,
    RenumberingError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    describe_error,
    ErrorReport,
    ErrorContext,
)

__all__ = [
    # Exceptions
    "PlannerError",
    "ValidationError",
    "LessonNotFoundError",
    "AlreadyAssignedError",
    "LocalStoreError",
    "RemoteStoreError",
    "RenumberingError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "describe_error",
    "ErrorReport",
    "ErrorContext",
]
