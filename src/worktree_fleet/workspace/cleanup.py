"""Batch cleanup of tracked worktrees."""

import asyncio
import logging
import os
import time
from dataclasses import replace
from pathlib import Path
from typing import Optional, Tuple

from ..core.config import CleanupConfig
from ..core.models import (
    CleanupItem,
    CleanupOptions,
    CleanupResult,
    WorktreeRecord,
    WorktreeStatus,
)
from ..errors.exceptions import WorktreeError
from ..utils.subprocess_utils import SubprocessError
from .lifecycle import WorktreeLifecycleManager

logger = logging.getLogger(__name__)

# Statuses that mean someone is still working in the worktree
_IN_USE = (WorktreeStatus.ACTIVE, WorktreeStatus.SYNCING)


def directory_size(path: Path) -> int:
    """Total size in bytes of regular files under path (symlinks not followed)."""
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return total


class WorktreeCleanup:
    """Classifies worktrees as cleaned, failed or skipped and destroys the eligible ones."""

    def __init__(
        self,
        lifecycle: WorktreeLifecycleManager,
        defaults: Optional[CleanupConfig] = None,
    ):
        self.lifecycle = lifecycle
        self.defaults = defaults or CleanupConfig()

    def default_options(self, **overrides) -> CleanupOptions:
        """CleanupOptions seeded from the configured defaults."""
        options = CleanupOptions(
            force=self.defaults.force,
            delete_branch=self.defaults.delete_branch,
            archive=self.defaults.archive,
            archive_path=self.defaults.archive_path,
            stale_threshold=self.defaults.stale_threshold,
        )
        return replace(options, **overrides)

    def _skip_reason(self, record: WorktreeRecord, options: CleanupOptions) -> Optional[str]:
        if options.status_filter is not None and record.status not in options.status_filter:
            return f"status {record.status.value} not in filter"
        if options.stale_threshold is not None and record.age_seconds() < options.stale_threshold:
            return "not stale"
        if record.status in _IN_USE and not options.force:
            return f"{record.status.value} worktree (use force to clean up)"
        return None

    async def _clean_one(
        self,
        task_id: str,
        options: CleanupOptions,
    ) -> Tuple[WorktreeRecord, Optional[str], int]:
        """Destroy one worktree under its lock; returns (record, skip reason, bytes reclaimed)."""
        async with self.lifecycle.exclusive(task_id) as record:
            # Status may have moved since the pass was planned
            reason = self._skip_reason(record, options)
            if reason is not None:
                return record, reason, 0
            reclaimable = 0
            if not options.dry_run:
                reclaimable = await asyncio.to_thread(directory_size, record.worktree_path)
            await self.lifecycle.destroy_worktree(task_id, options)
        return record, None, reclaimable

    async def cleanup(
        self,
        options: Optional[CleanupOptions] = None,
        timeout: Optional[float] = None,
    ) -> CleanupResult:
        """
        Run one cleanup pass over every tracked worktree.

        Args:
            options: Filters and destroy options (defaults from configuration)
            timeout: Seconds after which remaining worktrees are skipped

        Returns:
            CleanupResult with per-worktree outcomes
        """
        options = options or self.default_options()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        start = time.monotonic()
        result = CleanupResult(dry_run=options.dry_run)

        for record in self.lifecycle.list_worktrees():
            reason = self._skip_reason(record, options)
            if reason is not None:
                result.skipped.append(CleanupItem(record, reason))
                continue

            remaining = deadline - loop.time() if deadline is not None else None
            if remaining is not None and remaining <= 0:
                result.skipped.append(CleanupItem(record, "deadline exceeded"))
                continue

            try:
                record, reason, reclaimable = await asyncio.wait_for(
                    self._clean_one(record.task_id, options),
                    timeout=remaining,
                )
            except asyncio.TimeoutError:
                result.failed.append(CleanupItem(record, "deadline exceeded"))
                continue
            except (WorktreeError, SubprocessError, OSError) as e:
                logger.error(
                    f"Failed to clean up worktree: {e}",
                    extra={"task_id": record.task_id, "session_id": record.session_id},
                )
                result.failed.append(CleanupItem(record, str(e)))
                continue

            if reason is not None:
                result.skipped.append(CleanupItem(record, reason))
                continue

            result.cleaned.append(record)
            result.disk_reclaimed_bytes += reclaimable
            logger.info(
                f"{'[dry run] Would clean' if options.dry_run else 'Cleaned'} "
                f"up worktree: {record.worktree_path}"
            )

        result.duration_seconds = time.monotonic() - start
        logger.info(
            f"Cleanup ({options.trigger}) complete: {len(result.cleaned)} cleaned, "
            f"{len(result.failed)} failed, {len(result.skipped)} skipped"
        )
        return result

    async def cleanup_stale(
        self,
        stale_threshold: float,
        timeout: Optional[float] = None,
    ) -> CleanupResult:
        """Clean up worktrees not accessed for ``stale_threshold`` seconds."""
        return await self.cleanup(
            self.default_options(stale_threshold=stale_threshold, trigger="stale"),
            timeout=timeout,
        )

    async def cleanup_errors(self, timeout: Optional[float] = None) -> CleanupResult:
        """Force cleanup of every worktree in error status."""
        return await self.cleanup(
            self.default_options(
                status_filter=[WorktreeStatus.ERROR],
                stale_threshold=None,
                force=True,
                trigger="error",
            ),
            timeout=timeout,
        )
