# =============================================================================
# planner_core/logging/config.py
# Logging Configuration for the Lesson Planner
# =============================================================================

import logging
import sys
import time
from pathlib import Path
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Type, Union


LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_DIR = Path("logs")

# Chatty client libraries used by the remote store
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "hpack", "supabase", "postgrest")

# Detail keys too long for a log line
HIDDEN_DETAILS = ("traceback",)


class DetailsFormatter(logging.Formatter):
    """
    Appends the `details` passed via `extra=` to the message.

        logger.warning("[HALFTERM_001] Lesson 3 ...", extra={"details": {"position": 2}})
        # ... | WARNING | [HALFTERM_001] Lesson 3 ... | position=2
    """

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        details: Optional[Dict[str, Any]] = getattr(record, "details", None)
        if not details:
            return text

        shown = [f"{k}={v}" for k, v in details.items() if k not in HIDDEN_DETAILS]
        if not shown:
            return text

        # Keep any traceback after the details
        head, sep, tail = text.partition("\n")
        return f"{head} | {' '.join(shown)}{sep}{tail}"


def resolve_level(level: Union[int, str]) -> int:
    """Accept logging levels as ints or names ("debug", "WARNING")."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_to_file: bool = True,
    log_filename: Optional[str] = None,
    log_dir: Optional[Path] = None,
) -> None:
    """
    Configure application-wide logging.

    Args:
        level: Logging level or level name (default: INFO)
        log_to_file: Whether to also log to a file
        log_filename: Custom log filename (default: planner_YYYY-MM-DD.log)
        log_dir: Directory for the log file (default: ./logs)
    """
    formatter = DetailsFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_to_file:
        directory = Path(log_dir or LOG_DIR)
        directory.mkdir(parents=True, exist_ok=True)
        log_filename = log_filename or f"planner_{datetime.now():%Y-%m-%d}.log"
        handlers.append(logging.FileHandler(directory / log_filename))

    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=resolve_level(level), handlers=handlers, force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("planner_core").info("Logging initialized")


def get_logger(name: str) -> logging.Logger:
    """
    Usage:
        from planner_core.logging import get_logger
        logger = get_logger(__name__)
    """
    return logging.getLogger(name)


class LogContext:
    """
    Logs the start and outcome of an operation with its duration.

    Exceptions listed in `expected` are rejections, not faults: they are
    logged as warnings without a traceback. Nothing is suppressed.

    Usage:
        with LogContext(logger, "Deleting lesson 3"):
            engine.delete_lesson("year-1", "3")
        # Deleting lesson 3... started
        # Deleting lesson 3... completed (0.01s)
    """

    def __init__(
        self,
        logger: logging.Logger,
        operation: str,
        level: int = logging.INFO,
        expected: Tuple[Type[BaseException], ...] = (),
    ):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.expected = expected
        self.elapsed: Optional[float] = None
        self._started = 0.0

    def __enter__(self):
        self._started = time.perf_counter()
        self.logger.log(self.level, f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - self._started
        took = f"({self.elapsed:.2f}s)"

        if exc_type is None:
            self.logger.log(self.level, f"{self.operation}... completed {took}")
        elif self.expected and issubclass(exc_type, self.expected):
            self.logger.warning(f"{self.operation}... rejected {took}: {exc_val}")
        else:
            self.logger.error(f"{self.operation}... failed {took}: {exc_val}", exc_info=True)
        return False
