"""
Logging configuration for nanobot.

Two destinations:

  - Console (stderr): DEBUG if verbose, WARNING+ otherwise.
    Config ``console_format`` options:
    - "simple" - (default) bare messages for DEBUG/INFO, [LEVEL] prefix for WARNING+
    - "full"   - same structured format as the file handler
    - "clean"  - no console output at all (file logging still active)
  - Per-session file: always DEBUG level, attached by ``attach_log_file()``.
    Format: "timestamp | level | name | session_id | tag | message"

Components never share a logger object: each one asks ``get_logger()``
for its own child of the ``nanobot`` logger (``nanobot.loop``,
``nanobot.subagent``...) or is handed one explicitly by its owner.

Log files are stored in <data_dir>/logs/ with one file per session.
"""

import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional

from nanobot.config import get_data_dir


ROOT_LOGGER_NAME = "nanobot"

_FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(session_id)s | %(log_tag)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def log_dir() -> Path:
    return get_data_dir() / "logs"


def tagged(tag: str) -> dict:
    """Return ``extra`` dict for logger calls: ``logger.info("...", extra=tagged("x"))``."""
    return {"log_tag": tag}


# Module-level state (shared across re-inits)
_session_filter: Optional["_SessionFilter"] = None
_current_log_file: Optional[Path] = None


class _SessionFilter(logging.Filter):
    """Injects session_id (and a default log_tag) into every log record.

    Installed on handlers rather than on the logger so that records
    propagated up from child loggers are covered too.
    """

    def __init__(self) -> None:
        super().__init__()
        self.session_id = ""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = self.session_id or "-"
        if not hasattr(record, "log_tag"):
            record.log_tag = ""
        return True


class _ConsoleFormatter(logging.Formatter):
    """Console formatter: shows [LEVEL] prefix only for WARNING and above."""

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            return f"  [{record.levelname}] {record.getMessage()}"
        return f"  {record.getMessage()}"


def _get_session_filter() -> "_SessionFilter":
    global _session_filter
    if _session_filter is None:
        _session_filter = _SessionFilter()
    return _session_filter


def attach_log_file(session_id: str) -> Path:
    """Attach a per-session file handler.

    Creates or appends to agent_{session_id}.log and returns its path.
    """
    global _current_log_file
    directory = log_dir()
    directory.mkdir(parents=True, exist_ok=True)

    log_file = directory / f"agent_{session_id}.log"
    _current_log_file = log_file

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    # Remove any existing file handler (e.g. after a session switch)
    for handler in [h for h in logger.handlers if isinstance(h, logging.FileHandler)]:
        logger.removeHandler(handler)
        handler.close()

    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.addFilter(_get_session_filter())
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(file_handler)

    set_session_id(session_id)
    logger.info("=" * 60)
    logger.info(f"Session started at {datetime.now().isoformat()}")
    logger.info(f"Log file: {log_file}")
    return log_file


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Configure console-only logging for nanobot.

    File handlers are attached later by ``attach_log_file()`` once a
    session ID is known.

    Args:
        verbose: If True, show DEBUG level on console; otherwise WARNING+.

    Returns:
        The configured ``nanobot`` logger.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # Capture everything, filter at handler level

    # Clear existing handlers (in case of re-init)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    from nanobot import config as _config
    console_format = _config.get("console_format", "simple")

    if console_format != "clean":
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
        console_handler.addFilter(_get_session_filter())
        if console_format == "full":
            console_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
        else:
            console_handler.setFormatter(_ConsoleFormatter())
        logger.addHandler(console_handler)
    # "clean" - no console handler at all

    return logger


def get_logger(component: str | None = None) -> logging.Logger:
    """Return the logger for *component* (``nanobot.<component>``).

    Handlers live on the ``nanobot`` root logger only; they are installed
    with defaults the first time anything asks for a logger.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        setup_logging(verbose=False)
    if component:
        return root.getChild(component)
    return root


def set_session_id(session_id: str) -> None:
    """Set the session ID that will be included in all subsequent log lines."""
    _get_session_filter().session_id = session_id


def get_current_log_path() -> Optional[Path]:
    """Return the path of the attached session log file, if any."""
    return _current_log_file


def log_error(
    logger: logging.Logger,
    message: str,
    exc: Optional[BaseException] = None,
    context: Optional[dict] = None,
) -> None:
    """Log an error with full details including stack trace.

    Args:
        logger: Component logger to write to.
        message: Error description
        exc: Optional exception to include stack trace from
        context: Optional dict of additional context (tool name, task id, etc.)
    """
    lines = [message]

    if context:
        lines.append("Context:")
        for key, value in context.items():
            lines.append(f"  {key}: {value}")

    if exc is not None:
        lines.append(f"Exception type: {type(exc).__name__}")
        lines.append(f"Exception message: {exc}")
        lines.append("Stack trace:")
        lines.append("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))

    logger.error("\n".join(lines), extra=tagged("error"))
