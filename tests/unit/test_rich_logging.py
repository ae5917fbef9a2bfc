"""Tests for log formatting and setup."""

import logging

import pytest

from worktree_fleet.utils.rich_logging import PACKAGE_LOGGER, WorktreeLogFormatter, setup_logging


@pytest.fixture
def package_logger():
    logger = logging.getLogger(PACKAGE_LOGGER)
    saved_level = logger.level
    yield logger
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)
    logger.setLevel(saved_level)


def make_record(**extra):
    record = logging.LogRecord(
        name="worktree_fleet.workspace.lifecycle",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Created worktree",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_includes_context():
    """Test session and task ids are rendered when present."""
    line = WorktreeLogFormatter(use_colors=False).format(
        make_record(session_id="sess-A", task_id="task-1")
    )

    assert "[sess-A] [task-1] Created worktree" in line
    assert "INFO" in line
    assert "\033[" not in line


def test_formatter_without_context():
    """Test records without ids format cleanly."""
    line = WorktreeLogFormatter(use_colors=False).format(make_record())

    assert "[worktree_fleet.workspace.lifecycle] Created worktree" in line


def test_formatter_colors():
    """Test ANSI colors are applied when enabled."""
    line = WorktreeLogFormatter(use_colors=True).format(make_record())
    assert "\033[32m" in line


def test_setup_logging_writes_file(tmp_path, package_logger):
    """Test setup_logging attaches a plain-text file handler."""
    log_file = tmp_path / "logs" / "fleet.log"

    logger = setup_logging("DEBUG", log_file=log_file, use_colors=False)
    logging.getLogger("worktree_fleet.workspace.sync").info(
        "Synced", extra={"task_id": "task-1", "session_id": "sess-A"}
    )
    for handler in logger.handlers:
        handler.flush()

    assert logger is package_logger
    assert logger.level == logging.DEBUG
    assert "[sess-A] [task-1] Synced" in log_file.read_text()


def test_setup_logging_replaces_handlers(package_logger):
    """Test repeated setup does not stack handlers."""
    setup_logging("INFO", use_colors=False)
    setup_logging("INFO", use_colors=False)

    assert len(package_logger.handlers) == 1
