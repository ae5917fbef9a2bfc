"""Worktree lifecycle manager.

Owns the in-memory registry of worktrees and is the only component that
mutates a record's status. Every status change goes through the state
machine in ``core.models`` and is serialized per task id, while different
task ids proceed independently.
"""

import asyncio
import logging
import shutil
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Set, Tuple

from ..core.config import WorktreeConfig
from ..core.events import ErrorEvent, EventBus, EventType, WorktreeEvent
from ..core.models import (
    CleanupOptions,
    DestroyOutcome,
    WorktreeRecord,
    WorktreeStatus,
    can_transition,
    utcnow,
)
from ..errors.exceptions import (
    DuplicateTaskError,
    InvalidTransitionError,
    NotFoundError,
    PathConflictError,
)
from ..errors.translator import ErrorTranslator
from ..utils.error_handling import log_and_ignore
from ..utils.locks import TaskLockRegistry
from ..utils.subprocess_utils import SubprocessError
from ..utils.validators import validate_branch_name, validate_identifier
from ..vcs.gateway import VersionControlGateway
from .archive import Archiver, TarArchiver

logger = logging.getLogger(__name__)

# Statuses update_status never sets
_RESERVED_STATUSES = (WorktreeStatus.CREATING, WorktreeStatus.DESTROYED)


def paths_overlap(a: Path, b: Path) -> bool:
    """True when the paths are equal or one contains the other."""
    return a == b or a in b.parents or b in a.parents


class WorktreeLifecycleManager:
    """Creates, tracks, transitions and destroys task worktrees."""

    def __init__(
        self,
        config: WorktreeConfig,
        gateway: VersionControlGateway,
        event_bus: Optional[EventBus] = None,
        archiver: Optional[Archiver] = None,
    ):
        """
        Initialize lifecycle manager.

        Args:
            config: Worktree configuration (repo root, path strategies, timeout)
            gateway: Gateway used for every git invocation
            event_bus: Bus receiving lifecycle and error events
            archiver: Archiver used when destroy is asked to archive
        """
        self.config = config
        self.gateway = gateway
        self.event_bus = event_bus or EventBus()
        self.archiver = archiver or TarArchiver(timeout=config.operation_timeout)
        self._registry: Dict[str, WorktreeRecord] = {}
        # Task ids ever issued in this process; ids are never reused
        self._issued_task_ids: Set[str] = set()
        self._locks = TaskLockRegistry()
        self._translator = ErrorTranslator()

    @property
    def repo_root(self) -> Path:
        return self.config.repo_root

    def _get_worktree_path(
        self,
        session_id: str,
        task_id: str,
        nested: bool,
    ) -> Path:
        """Generate worktree path from the session or sub-agent strategy."""
        strategy = self.config.hierarchical_strategy
        path_strategy = strategy.sub_agent_worktrees if nested else strategy.session_worktrees
        path = Path(path_strategy.render(session_id=session_id, task_id=task_id)).expanduser()
        if not path.is_absolute():
            path = self.repo_root / path
        return path.resolve()

    def _check_path_conflict(self, worktree_path: Path) -> None:
        for record in self._registry.values():
            if paths_overlap(worktree_path, record.worktree_path):
                raise PathConflictError(worktree_path, record.worktree_path, record.task_id)

    def _require(self, task_id: str) -> WorktreeRecord:
        record = self._registry.get(task_id)
        if record is None:
            raise NotFoundError(task_id)
        return record

    @staticmethod
    def _log_extra(record: WorktreeRecord) -> Dict[str, str]:
        return {"task_id": record.task_id, "session_id": record.session_id}

    def _publish(self, event) -> None:
        self.event_bus.publish(event)

    def _transition(
        self,
        record: WorktreeRecord,
        status: WorktreeStatus,
        error_message: Optional[str] = None,
        emit: bool = True,
    ) -> WorktreeStatus:
        """Apply a checked status change to a registry record."""
        previous = record.status
        if not can_transition(previous, status):
            raise InvalidTransitionError(record.task_id, previous, status)

        record.status = status
        record.last_accessed_at = utcnow()
        if status == WorktreeStatus.ERROR:
            record.error_message = error_message or record.error_message or "unknown error"
        else:
            record.error_message = None

        if previous != status:
            logger.debug(
                f"Status {previous.value} -> {status.value}",
                extra=self._log_extra(record),
            )
            if emit:
                self._publish(WorktreeEvent(
                    type=EventType.WORKTREE_STATUS_CHANGED,
                    record=record.copy(),
                    previous_status=previous,
                ))
        return previous

    def report_error(
        self,
        operation: str,
        error: Exception,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Publish an error event with a translated hint."""
        self._publish(ErrorEvent(
            operation=operation,
            error=error,
            context=dict(context or {}),
            hint=self._translator.hint(error),
        ))

    async def create_worktree(
        self,
        task_id: str,
        branch_name: str,
        session_id: str,
        parent_worktree_path: Optional[Path] = None,
        metadata: Optional[Dict[str, Any]] = None,
        start_point: Optional[str] = None,
    ) -> WorktreeRecord:
        """
        Create an isolated worktree on a new branch.

        The record is registered as ``creating`` before git runs, so a failed
        creation stays visible as ``error`` until cleanup removes it. Partial
        directories are not rolled back.

        Args:
            task_id: Unique task identifier
            branch_name: New branch to create for the worktree
            session_id: Session owning the worktree
            parent_worktree_path: Parent worktree for sub-agent worktrees
            metadata: Free-form caller data stored on the record
            start_point: Commit-ish the branch starts from (default: HEAD)

        Returns:
            Copy of the registered record

        Raises:
            ValueError: Invalid identifier or branch name
            DuplicateTaskError: Task id already used in this process
            PathConflictError: Path overlaps a tracked worktree
            GatewayFailure: git worktree add failed
        """
        task_id = validate_identifier(task_id, "task_id")
        session_id = validate_identifier(session_id, "session_id")
        branch_name = validate_branch_name(branch_name)

        if task_id in self._issued_task_ids:
            raise DuplicateTaskError(task_id)

        parent = Path(parent_worktree_path).resolve() if parent_worktree_path else None
        worktree_path = self._get_worktree_path(session_id, task_id, nested=parent is not None)
        self._check_path_conflict(worktree_path)

        # Registered before the first await: concurrent creations see this path
        now = utcnow()
        record = WorktreeRecord(
            task_id=task_id,
            branch_name=branch_name,
            worktree_path=worktree_path,
            session_id=session_id,
            created_at=now,
            last_accessed_at=now,
            parent_worktree_path=parent,
            metadata=dict(metadata or {}),
        )
        self._registry[task_id] = record
        self._issued_task_ids.add(task_id)
        extra = self._log_extra(record)

        async with self._locks.for_key(task_id):
            logger.info(f"Creating worktree at {worktree_path} on {branch_name}", extra=extra)
            args = ["worktree", "add", "-b", branch_name, str(worktree_path)]
            if start_point:
                args.append(start_point)
            try:
                await asyncio.to_thread(worktree_path.parent.mkdir, parents=True, exist_ok=True)
                await self.gateway.run(self.repo_root, args)
            except (SubprocessError, OSError) as e:
                logger.error(f"Failed to create worktree: {e}", extra=extra)
                self._transition(record, WorktreeStatus.ERROR, error_message=str(e))
                self.report_error("create_worktree", e, {
                    "task_id": task_id,
                    "session_id": session_id,
                    "branch_name": branch_name,
                    "worktree_path": str(worktree_path),
                })
                raise
            except asyncio.CancelledError:
                self._transition(record, WorktreeStatus.ERROR, error_message="creation cancelled")
                raise

            self._transition(record, WorktreeStatus.ACTIVE, emit=False)

        logger.info(f"Created worktree at {worktree_path}", extra=extra)
        self._publish(WorktreeEvent(type=EventType.WORKTREE_CREATED, record=record.copy()))
        return record.copy()

    def get_worktree(self, task_id: str) -> Optional[WorktreeRecord]:
        record = self._registry.get(task_id)
        return record.copy() if record else None

    def get_session_worktrees(self, session_id: str) -> List[WorktreeRecord]:
        return [r.copy() for r in self._registry.values() if r.session_id == session_id]

    def get_active_worktrees(self) -> List[WorktreeRecord]:
        return self.list_worktrees(WorktreeStatus.ACTIVE)

    def list_worktrees(self, status: Optional[WorktreeStatus] = None) -> List[WorktreeRecord]:
        """List tracked worktrees, optionally filtered by status."""
        return [
            r.copy() for r in self._registry.values()
            if status is None or r.status == status
        ]

    @property
    def worktree_count(self) -> int:
        return len(self._registry)

    def touch(self, task_id: str) -> None:
        """Refresh last access time without a status change."""
        self._require(task_id).last_accessed_at = utcnow()

    async def update_status(
        self,
        task_id: str,
        status: WorktreeStatus,
        error_message: Optional[str] = None,
    ) -> WorktreeRecord:
        """
        Change a worktree's status.

        ``creating`` and ``destroyed`` are entered only by create_worktree
        and destroy_worktree.

        Raises:
            NotFoundError: Unknown task id
            InvalidTransitionError: The state machine forbids the change
        """
        self._require(task_id)
        async with self._locks.for_key(task_id):
            # The record may have been destroyed while waiting for the lock
            record = self._require(task_id)
            if status in _RESERVED_STATUSES:
                raise InvalidTransitionError(task_id, record.status, status)
            self._transition(record, status, error_message=error_message)
            return record.copy()

    @asynccontextmanager
    async def exclusive(self, task_id: str) -> AsyncIterator[WorktreeRecord]:
        """Hold the task's lock for multi-step work; yields a record copy."""
        self._require(task_id)
        try:
            async with self._locks.for_key(task_id):
                yield self._require(task_id).copy()
        finally:
            # Destroyed while held: destroy_worktree could not drop the lock
            if task_id not in self._registry:
                self._locks.discard(task_id)

    def _planned_transitions(
        self,
        record: WorktreeRecord,
    ) -> Tuple[Tuple[WorktreeStatus, WorktreeStatus], ...]:
        if record.status == WorktreeStatus.CLEANUP:
            return ((WorktreeStatus.CLEANUP, WorktreeStatus.DESTROYED),)
        if not can_transition(record.status, WorktreeStatus.CLEANUP):
            raise InvalidTransitionError(record.task_id, record.status, WorktreeStatus.CLEANUP)
        return (
            (record.status, WorktreeStatus.CLEANUP),
            (WorktreeStatus.CLEANUP, WorktreeStatus.DESTROYED),
        )

    async def destroy_worktree(
        self,
        task_id: str,
        options: Optional[CleanupOptions] = None,
    ) -> DestroyOutcome:
        """
        Remove a worktree and drop it from the registry.

        With ``dry_run`` nothing is touched and the outcome lists the
        transitions that would occur.

        Raises:
            NotFoundError: Unknown task id
            InvalidTransitionError: Worktree is mid-creation or mid-sync
            GatewayFailure: Archiving or git worktree remove failed
        """
        options = options or CleanupOptions()
        self._require(task_id)
        lock = self._locks.for_key(task_id)

        async with lock:
            record = self._require(task_id)
            extra = self._log_extra(record)
            transitions = self._planned_transitions(record)

            if options.dry_run:
                logger.info(f"[dry run] Would destroy worktree {record.worktree_path}", extra=extra)
                return DestroyOutcome(
                    task_id=task_id,
                    worktree_path=record.worktree_path,
                    dry_run=True,
                    transitions=transitions,
                )

            self._transition(record, WorktreeStatus.CLEANUP)
            archive_file = None
            try:
                if options.archive and options.archive_path:
                    if await asyncio.to_thread(record.worktree_path.exists):
                        archive_file = await self.archiver.archive(
                            record.worktree_path, Path(options.archive_path), task_id
                        )
                await self._remove_worktree_directory(record, force=options.force)
            except (SubprocessError, OSError) as e:
                logger.error(f"Failed to destroy worktree: {e}", extra=extra)
                self._transition(record, WorktreeStatus.ERROR, error_message=str(e))
                self.report_error("destroy_worktree", e, {
                    "task_id": task_id,
                    "worktree_path": str(record.worktree_path),
                })
                raise
            except asyncio.CancelledError:
                self._transition(record, WorktreeStatus.ERROR, error_message="destroy cancelled")
                raise

            branch_deleted = False
            if options.delete_branch:
                branch_deleted = await self._delete_branch(record)

            self._transition(record, WorktreeStatus.DESTROYED, emit=False)
            del self._registry[task_id]
            logger.info(f"Destroyed worktree {record.worktree_path}", extra=extra)
            self._publish(WorktreeEvent(
                type=EventType.WORKTREE_DESTROYED,
                record=record.copy(),
                previous_status=WorktreeStatus.CLEANUP,
            ))

        self._locks.discard(task_id)
        return DestroyOutcome(
            task_id=task_id,
            worktree_path=record.worktree_path,
            dry_run=False,
            transitions=transitions,
            archive_file=archive_file,
            branch_deleted=branch_deleted,
        )

    async def _remove_worktree_directory(self, record: WorktreeRecord, force: bool) -> None:
        path = record.worktree_path
        extra = self._log_extra(record)

        # Path already gone: drop git's tracking for it if any is left
        if not await asyncio.to_thread(path.exists):
            result = await self.gateway.run(
                self.repo_root, ["worktree", "remove", "--force", str(path)], check=False
            )
            if result.returncode != 0:
                logger.debug(f"Worktree already removed: {path}", extra=extra)
            return

        if await asyncio.to_thread((path / ".git").exists):
            args = ["worktree", "remove"]
            if force:
                args.append("--force")
            args.append(str(path))
            await self.gateway.run(self.repo_root, args)
        elif force:
            # Leftover from a creation that failed before git registered it
            logger.warning(f"Deleting leftover non-worktree directory {path}", extra=extra)
            await asyncio.to_thread(shutil.rmtree, path)
        else:
            logger.warning(
                f"Leaving non-worktree directory {path} in place (use force to delete)",
                extra=extra,
            )

    async def _delete_branch(self, record: WorktreeRecord) -> bool:
        try:
            await self.gateway.run(self.repo_root, ["branch", "-D", record.branch_name])
            return True
        except SubprocessError as e:
            # Branch may be checked out elsewhere; the worktree is still gone
            log_and_ignore(
                e,
                f"Could not delete branch {record.branch_name}",
                logger_instance=logger,
            )
            return False

    def get_stats(self) -> Dict[str, Any]:
        """Get worktree statistics."""
        by_status = {status.value: 0 for status in WorktreeStatus}
        for record in self._registry.values():
            by_status[record.status.value] += 1

        return {
            "total_registered": len(self._registry),
            "by_status": by_status,
            "nested": sum(1 for r in self._registry.values() if r.is_nested),
            "sessions": len({r.session_id for r in self._registry.values()}),
            "task_ids_issued": len(self._issued_task_ids),
        }
