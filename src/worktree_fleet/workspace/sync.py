"""Reconcile worktree branches with their upstream branches."""

import asyncio
import logging
import time
from contextlib import suppress
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from ..core.config import SyncConfig
from ..core.models import SyncResult, SyncStatus, SyncStrategy, WorktreeRecord, WorktreeStatus
from ..errors.exceptions import (
    InvalidScheduleOrStrategyError,
    NotFoundError,
    SyncError,
    WorktreeError,
)
from ..utils.error_handling import log_and_ignore
from ..utils.subprocess_utils import SubprocessError
from ..vcs.gateway import GitResult, VersionControlGateway
from .lifecycle import WorktreeLifecycleManager

logger = logging.getLogger(__name__)

AUTO_STASH_MESSAGE = "worktree-fleet: auto-stash before sync"


class WorktreeSync:
    """
    Fetches from origin and applies merge, rebase or hard reset.

    Conflicts are never resolved here: a failed sync leaves the worktree in
    ``error`` and the caller resolves it before moving it back to ``active``.
    """

    def __init__(
        self,
        config: SyncConfig,
        lifecycle: WorktreeLifecycleManager,
        gateway: Optional[VersionControlGateway] = None,
    ):
        try:
            self.strategy = SyncStrategy(config.strategy)
        except ValueError:
            raise InvalidScheduleOrStrategyError(f"Unknown sync strategy: {config.strategy}")
        if config.sync_interval <= 0:
            raise InvalidScheduleOrStrategyError(
                f"sync_interval must be > 0, got {config.sync_interval}"
            )
        if not config.sync_from_branches:
            raise InvalidScheduleOrStrategyError("sync_from_branches cannot be empty")
        if config.retry_delay < 0:
            raise InvalidScheduleOrStrategyError(
                f"retry_delay must be >= 0, got {config.retry_delay}"
            )

        self.config = config
        self.lifecycle = lifecycle
        self.gateway = gateway or lifecycle.gateway
        self._auto_sync_task: Optional[asyncio.Task] = None

    async def _git(self, path: Path, args: Sequence[str], check: bool = True) -> GitResult:
        return await self.gateway.run(path, args, check=check)

    async def _fetch(self, path: Path) -> None:
        """Fetch from origin, retrying transient failures."""
        attempts = self.config.max_retries
        for attempt in range(1, attempts + 1):
            try:
                await self._git(path, ["fetch", "origin"])
                return
            except SubprocessError as e:
                if attempt == attempts:
                    raise
                logger.warning(
                    f"Fetch attempt {attempt}/{attempts} failed in {path}: {e}. "
                    f"Retrying in {self.config.retry_delay}s"
                )
                await asyncio.sleep(self.config.retry_delay)

    async def _find_sync_branch(self, path: Path) -> Optional[str]:
        """First branch of sync_from_branches that exists on origin."""
        for branch in self.config.sync_from_branches:
            result = await self._git(
                path, ["rev-parse", "--verify", "--quiet", f"origin/{branch}"], check=False
            )
            if result.ok:
                return branch
        return None

    def _strategy_args(self, sync_branch: str) -> List[str]:
        upstream = f"origin/{sync_branch}"
        if self.strategy == SyncStrategy.MERGE:
            return ["merge", "--no-edit", upstream]
        if self.strategy == SyncStrategy.REBASE:
            return ["rebase", upstream]
        return ["reset", "--hard", upstream]

    async def _conflicted_files(self, path: Path) -> Tuple[str, ...]:
        try:
            result = await self._git(path, ["diff", "--name-only", "--diff-filter=U"], check=False)
        except SubprocessError as e:
            log_and_ignore(e, f"Could not list conflicts in {path}", logger_instance=logger)
            return ()
        return tuple(line for line in result.stdout.splitlines() if line.strip())

    async def _has_uncommitted_changes(self, path: Path) -> bool:
        status = await self._git(path, ["status", "--porcelain"])
        return bool(status.stdout.strip())

    async def _stash_changes(self, path: Path, extra: Dict[str, str]) -> bool:
        """Stash local changes before syncing; returns True when a stash was made."""
        if not await self._has_uncommitted_changes(path):
            return False
        if not self.config.auto_stash:
            raise WorktreeError(
                f"Uncommitted changes in {path} would be overwritten and auto_stash is disabled"
            )
        await self._git(path, ["stash", "push", "--include-untracked", "-m", AUTO_STASH_MESSAGE])
        logger.info("Stashed uncommitted changes before sync", extra=extra)
        return True

    async def _restore_stash(self, path: Path) -> None:
        try:
            await self._git(path, ["stash", "pop"])
        except SubprocessError as e:
            log_and_ignore(
                e,
                f"Could not restore stashed changes in {path}; they remain in git stash",
                logger_instance=logger,
            )

    async def sync_worktree(self, task_id: str) -> SyncResult:
        """
        Sync one worktree with the first available upstream branch.

        Uncommitted changes are stashed first and popped afterwards when
        ``auto_stash`` is on; otherwise a dirty worktree fails the sync.

        Returns:
            Successful SyncResult

        Raises:
            NotFoundError: Unknown task id
            InvalidTransitionError: Worktree is not active
            SyncError: A git step failed; ``.result`` holds the failed SyncResult
        """
        start = time.monotonic()

        async with self.lifecycle.exclusive(task_id) as record:
            extra = {"task_id": task_id, "session_id": record.session_id}
            path = record.worktree_path
            await self.lifecycle.update_status(task_id, WorktreeStatus.SYNCING)
            logger.info(f"Syncing worktree ({self.strategy.value})", extra=extra)

            sync_branch = None
            stashed = pending_stash = False
            try:
                old_head = (await self._git(path, ["rev-parse", "HEAD"])).stdout.strip()
                stashed = pending_stash = await self._stash_changes(path, extra)
                await self._fetch(path)

                sync_branch = await self._find_sync_branch(path)
                if sync_branch is None:
                    raise WorktreeError(
                        "No sync branch found on origin: "
                        + ", ".join(self.config.sync_from_branches)
                    )

                await self._git(path, self._strategy_args(sync_branch))

                if self.config.push_after_sync:
                    await self._git(path, ["push", "-u", "origin", record.branch_name])

                applied = await self._git(path, ["rev-list", f"{old_head}..HEAD"])

                if pending_stash:
                    pending_stash = False
                    await self._git(path, ["stash", "pop"])
            except (SubprocessError, OSError, WorktreeError) as e:
                conflicted = await self._conflicted_files(path)
                if pending_stash:
                    await self._restore_stash(path)
                result = SyncResult(
                    task_id=task_id,
                    success=False,
                    worktree_path=path,
                    strategy=self.strategy,
                    sync_branch=sync_branch,
                    conflicted_files=conflicted,
                    stashed_changes=stashed,
                    error_message=str(e),
                    duration_seconds=time.monotonic() - start,
                )
                logger.error(f"Sync failed: {e}", extra=extra)
                await self.lifecycle.update_status(
                    task_id, WorktreeStatus.ERROR, error_message=str(e)
                )
                self.lifecycle.report_error("sync_worktree", e, {
                    "task_id": task_id,
                    "worktree_path": str(path),
                    "sync_branch": sync_branch,
                    "conflicted_files": list(conflicted),
                })
                raise SyncError(result) from e
            except asyncio.CancelledError:
                await self.lifecycle.update_status(
                    task_id, WorktreeStatus.ERROR, error_message="sync cancelled"
                )
                raise

            await self.lifecycle.update_status(task_id, WorktreeStatus.ACTIVE)

        commits = tuple(line.strip() for line in applied.stdout.splitlines() if line.strip())
        logger.info(
            f"Synced with origin/{sync_branch}: {len(commits)} new commit(s)",
            extra=extra,
        )
        return SyncResult(
            task_id=task_id,
            success=True,
            worktree_path=path,
            strategy=self.strategy,
            sync_branch=sync_branch,
            applied_commits=commits,
            stashed_changes=stashed,
            duration_seconds=time.monotonic() - start,
        )

    def _failed_result(self, record: WorktreeRecord, message: str) -> SyncResult:
        return SyncResult(
            task_id=record.task_id,
            success=False,
            worktree_path=record.worktree_path,
            strategy=self.strategy,
            error_message=message,
        )

    async def _sync_one(self, record: WorktreeRecord, semaphore: asyncio.Semaphore) -> SyncResult:
        async with semaphore:
            try:
                return await self.sync_worktree(record.task_id)
            except SyncError as e:
                return e.result
            except (WorktreeError, SubprocessError) as e:
                # Destroyed or moved out of active since the batch was planned
                logger.error(f"Failed to sync worktree {record.task_id}: {e}")
                return self._failed_result(record, str(e))

    async def sync_all(self, timeout: Optional[float] = None) -> List[SyncResult]:
        """
        Sync every active worktree concurrently.

        Per-worktree failures become failed results. When ``timeout`` expires,
        unfinished syncs are cancelled and reported as failed.
        """
        records = self.lifecycle.get_active_worktrees()
        if not records:
            return []

        semaphore = asyncio.Semaphore(self.config.max_concurrent)
        tasks = [
            (asyncio.create_task(self._sync_one(record, semaphore)), record)
            for record in records
        ]
        try:
            _, pending = await asyncio.wait([t for t, _ in tasks], timeout=timeout)
        finally:
            unfinished = [t for t, _ in tasks if not t.done()]
            for task in unfinished:
                task.cancel()
            if unfinished:
                await asyncio.gather(*unfinished, return_exceptions=True)

        if pending:
            logger.warning(f"Sync deadline of {timeout}s hit; cancelled {len(pending)} sync(s)")

        results = []
        for task, record in tasks:
            if task in pending or task.cancelled():
                results.append(self._failed_result(record, "sync deadline exceeded"))
            elif task.exception() is not None:
                results.append(self._failed_result(record, str(task.exception())))
            else:
                results.append(task.result())

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Synced {succeeded}/{len(results)} worktrees")
        return results

    async def check_sync_status(self, task_id: str) -> SyncStatus:
        """Report ahead/behind counts and local changes without modifying anything."""
        record = self.lifecycle.get_worktree(task_id)
        if record is None:
            raise NotFoundError(task_id)
        path = record.worktree_path

        tracked = None
        upstream = await self._git(
            path, ["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}"], check=False
        )
        if upstream.ok and upstream.stdout.strip():
            tracked = upstream.stdout.strip()
        else:
            sync_branch = await self._find_sync_branch(path)
            if sync_branch is not None:
                tracked = f"origin/{sync_branch}"

        ahead = behind = 0
        if tracked is not None:
            counts = await self._git(path, ["rev-list", "--left-right", "--count", f"{tracked}...HEAD"])
            parts = counts.stdout.split()
            if len(parts) >= 2:
                behind, ahead = int(parts[0]), int(parts[1])

        status = await self._git(path, ["status", "--porcelain"])
        return SyncStatus(
            task_id=task_id,
            branch_name=record.branch_name,
            tracked_branch=tracked,
            ahead=ahead,
            behind=behind,
            has_uncommitted_changes=bool(status.stdout.strip()),
        )

    @property
    def auto_sync_running(self) -> bool:
        return self._auto_sync_task is not None and not self._auto_sync_task.done()

    def start_auto_sync(self) -> bool:
        """Schedule periodic sync_all; returns False when disabled or already running."""
        if not self.config.auto_sync or self.auto_sync_running:
            return False
        self._auto_sync_task = asyncio.get_running_loop().create_task(self._auto_sync_loop())
        return True

    async def stop_auto_sync(self) -> None:
        task, self._auto_sync_task = self._auto_sync_task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        logger.info("Auto-sync stopped")

    async def _auto_sync_loop(self) -> None:
        logger.info(f"Starting auto-sync every {self.config.sync_interval}s")
        while True:
            await asyncio.sleep(self.config.sync_interval)
            try:
                # A pass never overlaps the next one
                await self.sync_all(timeout=self.config.sync_interval)
            except Exception as e:
                logger.exception(f"Error in auto-sync loop: {e}")
