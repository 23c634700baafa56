# =============================================================================
# tests/unit/test_errors.py
# Unit Tests for the Exception Hierarchy and Error Handlers
# =============================================================================

import logging
import pytest

from planner_core.errors import (
    AlreadyAssignedError,
    ConfigurationError,
    ErrorContext,
    LessonNotFoundError,
    LocalStoreError,
    PlannerError,
    RemoteStoreError,
    ValidationError,
    describe_error,
    handle_error,
)


class TestExceptions:
    """Test exception attributes and serialization"""

    def test_to_dict(self):
        error = RemoteStoreError("timed out", table="lessons", operation="fetch")

        assert error.to_dict() == {
            "error_type": "RemoteStoreError",
            "code": "REMOTE_001",
            "message": "timed out",
            "details": {"table": "lessons", "operation": "fetch"},
            "recoverable": True,
        }
        assert str(error).startswith("[REMOTE_001] timed out")

    def test_already_assigned_carries_holder(self):
        error = AlreadyAssignedError("7", "A1", "Autumn 1", 2)

        assert isinstance(error, ValidationError)
        assert error.code == "HALFTERM_001"
        assert (error.half_term_id, error.half_term_name, error.position) == ("A1", "Autumn 1", 2)
        assert error.details["position"] == 2
        assert "lesson 2 of that half-term" in error.message

    def test_lesson_not_found(self):
        error = LessonNotFoundError("9", class_id="year-1")

        assert isinstance(error, ValidationError)
        assert error.code == "VALID_002"
        assert error.details == {"class_id": "year-1", "field": "lesson_number", "value": "9"}

    @pytest.mark.parametrize("error", [
        LocalStoreError("disk full"),
        ConfigurationError("bad value"),
    ])
    def test_unrecoverable_errors(self, error):
        assert isinstance(error, PlannerError)
        assert not error.recoverable


class TestHandleError:
    """Test centralized error handling"""

    def test_validation_error_is_a_warning(self, mock_streamlit, caplog):
        with caplog.at_level(logging.WARNING):
            message = handle_error(ValidationError("Lesson title is empty"), show_user_message=True)

        assert message == "Lesson title is empty"
        mock_streamlit.warning.assert_called_once_with("Lesson title is empty")
        mock_streamlit.error.assert_not_called()
        assert any(r.levelno == logging.WARNING for r in caplog.records)

    def test_unrecoverable_error_is_critical(self, mock_streamlit):
        handle_error(LocalStoreError("disk full"), show_user_message=True)

        shown = mock_streamlit.error.call_args[0][0]
        assert shown.startswith("Critical Error: disk full")

    def test_unknown_exception(self, mock_streamlit, caplog):
        with caplog.at_level(logging.ERROR):
            message = handle_error(KeyError("lessons"), user_message="Could not open class")

        assert message == "Could not open class"
        mock_streamlit.error.assert_not_called()
        assert any(r.levelno == logging.ERROR for r in caplog.records)

    def test_remote_outage_mentions_local_copy(self, mock_streamlit):
        handle_error(RemoteStoreError("Supabase unreachable"), show_user_message=True)

        shown = mock_streamlit.warning.call_args[0][0]
        assert shown.startswith("Supabase unreachable. ")
        assert "kept on this device" in shown

    @pytest.mark.parametrize("error, severity", [
        (AlreadyAssignedError("3", "A1", "Autumn 1", 1), "warning"),
        (RemoteStoreError("timeout"), "warning"),
        (PlannerError("odd state"), "error"),
        (LocalStoreError("disk full"), "critical"),
        (ValueError("bad"), "error"),
    ])
    def test_severity(self, error, severity):
        assert describe_error(error).severity == severity

    def test_report_copies_details(self):
        error = AlreadyAssignedError("3", "A1", "Autumn 1", 1)

        report = describe_error(error)
        report.details["position"] = 99

        assert error.details["position"] == 1


class TestErrorContext:
    """Test the error-handling context manager"""

    def test_recoverable_context_suppresses(self, mock_streamlit):
        with ErrorContext("Background sync", recoverable=True) as ctx:
            raise RemoteStoreError("offline")

        assert isinstance(ctx.error, RemoteStoreError)

    def test_unrecoverable_context_reraises(self, mock_streamlit):
        with pytest.raises(LocalStoreError):
            with ErrorContext("Saving lessons", recoverable=False):
                raise LocalStoreError("disk full")

    def test_clean_exit(self):
        with ErrorContext("Opening class") as ctx:
            pass

        assert ctx.error is None
