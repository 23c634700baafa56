# =============================================================================
# planner_core/errors/exceptions.py
# Custom Exception Hierarchy for the Lesson Planner
# =============================================================================

from typing import Optional, Dict, Any


class PlannerError(Exception):
    """
    Base exception for all lesson planner errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "VALID_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "LP_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# VALIDATION EXCEPTIONS
# =============================================================================

class ValidationError(PlannerError):
    """Raised when an intent carries invalid or missing data"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = value

        super().__init__(
            message=message,
            code=kwargs.pop("code", "VALID_001"),
            details=details,
            **kwargs,
        )


class LessonNotFoundError(ValidationError):
    """Raised when an operation names a lesson number the class does not have"""

    def __init__(self, lesson_number: str, class_id: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if class_id:
            details["class_id"] = class_id

        super().__init__(
            message=f"Lesson {lesson_number} does not exist",
            field="lesson_number",
            value=lesson_number,
            code="VALID_002",
            details=details,
            **kwargs,
        )


class AlreadyAssignedError(ValidationError):
    """Raised when a lesson is assigned to a second half-term"""

    def __init__(
        self,
        lesson_number: str,
        half_term_id: str,
        half_term_name: str,
        position: int,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details.update({
            "half_term_id": half_term_id,
            "half_term_name": half_term_name,
            "position": position,
        })
        self.lesson_number = lesson_number
        self.half_term_id = half_term_id
        self.half_term_name = half_term_name
        self.position = position

        super().__init__(
            message=(
                f"Lesson {lesson_number} is already assigned to {half_term_name} "
                f"({half_term_id}) as lesson {position} of that half-term"
            ),
            field="lesson_number",
            value=lesson_number,
            code="HALFTERM_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# PERSISTENCE EXCEPTIONS
# =============================================================================

class LocalStoreError(PlannerError):
    """Raised when the local cache cannot read or write a collection"""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        quota_exceeded: bool = False,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if key:
            details["key"] = key
        if quota_exceeded:
            details["quota_exceeded"] = True

        super().__init__(
            message=message,
            code="STORE_001",
            details=details,
            recoverable=False,
            **kwargs,
        )


class RemoteStoreError(PlannerError):
    """Raised when the hosted store rejects or cannot serve a request"""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            code="REMOTE_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# ENGINE EXCEPTIONS
# =============================================================================

class RenumberingError(PlannerError):
    """Raised when a mutation would commit collections that break lesson invariants"""

    def __init__(self, message: str, violations: Optional[list] = None, **kwargs):
        details = kwargs.pop("details", {})
        if violations:
            details["violations"] = violations

        super().__init__(
            message=message,
            code="RENUMBER_001",
            details=details,
            recoverable=False,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(PlannerError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
