"""Typed errors raised by the worktree subsystem."""

from typing import TYPE_CHECKING, Optional

from ..utils.subprocess_utils import SubprocessError

if TYPE_CHECKING:
    from ..core.models import SyncResult, WorktreeStatus

# Non-zero git/tar exit or timeout; carries command, stderr and exit code
GatewayFailure = SubprocessError


class WorktreeError(Exception):
    """Base class for worktree subsystem errors."""


class NotFoundError(WorktreeError):
    """No worktree is registered for the task id."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Worktree not found for task: {task_id}")


class DuplicateTaskError(WorktreeError):
    """A task id was reused within the lifetime of the process."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task id already used for a worktree: {task_id}")


class PathConflictError(WorktreeError):
    """A new worktree path overlaps a tracked worktree's path."""

    def __init__(self, path, conflicting_path, conflicting_task_id: str):
        self.path = path
        self.conflicting_path = conflicting_path
        self.conflicting_task_id = conflicting_task_id
        super().__init__(
            f"Worktree path {path} overlaps {conflicting_path} "
            f"(task {conflicting_task_id})"
        )


class InvalidTransitionError(WorktreeError):
    """The lifecycle state machine forbids the requested status change."""

    def __init__(self, task_id: str, current: "WorktreeStatus", target: "WorktreeStatus"):
        self.task_id = task_id
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid status transition for {task_id}: {current.value} -> {target.value}"
        )


class InvalidScheduleOrStrategyError(WorktreeError):
    """Misconfiguration detected before any external call."""


class SyncError(WorktreeError):
    """A sync pass failed; the failed SyncResult is attached."""

    def __init__(self, result: "SyncResult", message: Optional[str] = None):
        self.result = result
        super().__init__(message or result.error_message or "Sync failed")
