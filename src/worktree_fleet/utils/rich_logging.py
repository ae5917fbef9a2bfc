"""Log formatting with worktree context (session and task)."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

PACKAGE_LOGGER = "worktree_fleet"


class WorktreeLogFormatter(logging.Formatter):
    """Custom formatter with session/task context."""

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with context."""
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        # Context is attached via `extra=` by the lifecycle/sync/cleanup modules
        session_context = ""
        if hasattr(record, "session_id"):
            session_context = f"[{record.session_id}] "

        task_context = ""
        if hasattr(record, "task_id"):
            task_context = f"[{record.task_id}] "

        # Color codes (only if enabled)
        if self.use_colors:
            level_colors = {
                "DEBUG": "\033[36m",      # Cyan
                "INFO": "\033[32m",       # Green
                "WARNING": "\033[33m",    # Yellow
                "ERROR": "\033[31m",      # Red
                "CRITICAL": "\033[35m",   # Magenta
            }
            reset = "\033[0m"
            level_color = level_colors.get(record.levelname, "")
        else:
            level_color = ""
            reset = ""

        message = (
            f"{timestamp} {level_color}{record.levelname:8s}{reset} "
            f"[{record.name}] {session_context}{task_context}{record.getMessage()}"
        )
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    use_colors: Optional[bool] = None,
) -> logging.Logger:
    """
    Attach console (and optional file) handlers to the package logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Also write plain-text logs to this file
        use_colors: Force ANSI colors on/off; defaults to whether stderr is a TTY

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(getattr(logging, log_level.upper()))

    # Close existing handlers before clearing (prevents file descriptor leak)
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    if use_colors is None:
        use_colors = sys.stderr.isatty() if hasattr(sys.stderr, "isatty") else False

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(WorktreeLogFormatter(use_colors=use_colors))
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        # Use plain formatter for files (no ANSI codes)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(WorktreeLogFormatter(use_colors=False))
        logger.addHandler(file_handler)

    return logger
