"""Shared utility functions for worktree management."""

from .error_handling import ErrorContext, log_and_ignore
from .locks import TaskLock, TaskLockRegistry
from .rich_logging import WorktreeLogFormatter, setup_logging
from .subprocess_utils import (
    CompletedCommand,
    SubprocessError,
    check_command_exists,
    run_command,
)
from .validators import validate_branch_name, validate_identifier

__all__ = [
    # Error handling
    "ErrorContext",
    "log_and_ignore",
    # Locks
    "TaskLock",
    "TaskLockRegistry",
    # Logging
    "WorktreeLogFormatter",
    "setup_logging",
    # Subprocess utilities
    "CompletedCommand",
    "SubprocessError",
    "check_command_exists",
    "run_command",
    # Validators
    "validate_branch_name",
    "validate_identifier",
]
