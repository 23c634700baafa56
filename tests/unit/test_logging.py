# =============================================================================
# tests/unit/test_logging.py
# Unit Tests for Logging Configuration
# =============================================================================

import logging
import pytest

from planner_core.logging import LogContext, get_logger, setup_logging
from planner_core.logging.config import DetailsFormatter, resolve_level


@pytest.fixture
def restore_root_logger():
    """Put the root logger back the way pytest configured it"""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


@pytest.mark.usefixtures("restore_root_logger")
class TestSetupLogging:
    """Test application-wide logging setup"""

    def test_file_handler_created(self, tmp_path):
        setup_logging(log_dir=tmp_path, log_filename="planner.log")

        assert (tmp_path / "planner.log").exists()
        assert logging.getLogger("supabase").level == logging.WARNING

    def test_stdout_only(self, tmp_path):
        setup_logging(level=logging.DEBUG, log_to_file=False, log_dir=tmp_path)

        assert logging.getLogger().level == logging.DEBUG
        assert list(tmp_path.iterdir()) == []

    def test_level_by_name(self):
        setup_logging(level="warning", log_to_file=False)

        assert logging.getLogger().level == logging.WARNING


class TestResolveLevel:
    """Test level-name handling"""

    @pytest.mark.parametrize("level, expected", [
        (logging.DEBUG, logging.DEBUG),
        ("info", logging.INFO),
        (" ERROR ", logging.ERROR),
    ])
    def test_known_levels(self, level, expected):
        assert resolve_level(level) == expected

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            resolve_level("chatty")


class TestDetailsFormatter:
    """Test that error details reach the log line"""

    def make_record(self, details=None):
        record = logging.LogRecord(
            "planner_core.tests", logging.WARNING, __file__, 1,
            "[HALFTERM_001] Lesson 3 is already assigned", None, None,
        )
        if details is not None:
            record.details = details
        return record

    def test_details_appended(self):
        text = DetailsFormatter("%(message)s").format(
            self.make_record({"half_term_id": "A1", "position": 2})
        )

        assert text == "[HALFTERM_001] Lesson 3 is already assigned | half_term_id=A1 position=2"

    def test_traceback_detail_hidden(self):
        text = DetailsFormatter("%(message)s").format(
            self.make_record({"traceback": "Traceback ..."})
        )

        assert text == "[HALFTERM_001] Lesson 3 is already assigned"

    def test_plain_record_unchanged(self):
        assert DetailsFormatter("%(message)s").format(self.make_record()) == (
            "[HALFTERM_001] Lesson 3 is already assigned"
        )


class TestLogContext:
    """Test operation timing logs"""

    def test_completed(self, caplog):
        logger = get_logger("planner_core.tests")

        with caplog.at_level(logging.INFO, logger="planner_core.tests"):
            with LogContext(logger, "Deleting lesson 3"):
                pass

        messages = [r.getMessage() for r in caplog.records]
        assert messages[0] == "Deleting lesson 3... started"
        assert messages[1].startswith("Deleting lesson 3... completed")

    def test_elapsed_recorded(self):
        with LogContext(get_logger("planner_core.tests"), "Loading class") as ctx:
            assert ctx.elapsed is None

        assert ctx.elapsed >= 0

    def test_expected_error_logged_as_warning(self, caplog):
        logger = get_logger("planner_core.tests")

        with caplog.at_level(logging.INFO, logger="planner_core.tests"):
            with pytest.raises(ValueError):
                with LogContext(logger, "Assigning lesson", expected=(ValueError,)):
                    raise ValueError("already assigned")

        last = caplog.records[-1]
        assert last.levelno == logging.WARNING
        assert "rejected" in last.getMessage()

    def test_unexpected_error_logged_with_traceback(self, caplog):
        logger = get_logger("planner_core.tests")

        with caplog.at_level(logging.INFO, logger="planner_core.tests"):
            with pytest.raises(KeyError):
                with LogContext(logger, "Saving plan"):
                    raise KeyError("plan")

        last = caplog.records[-1]
        assert last.levelno == logging.ERROR
        assert last.exc_info is not None
