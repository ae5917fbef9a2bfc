"""Unit tests for WorktreeSync."""

import asyncio

import pytest

from worktree_fleet.core.config import SyncConfig
from worktree_fleet.core.events import EventType
from worktree_fleet.core.models import SyncStrategy, WorktreeStatus
from worktree_fleet.errors import (
    InvalidScheduleOrStrategyError,
    InvalidTransitionError,
    NotFoundError,
    SyncError,
)
from worktree_fleet.workspace.sync import WorktreeSync


def make_sync(manager, **overrides):
    params = {"retry_delay": 0.0}
    params.update(overrides)
    return WorktreeSync(SyncConfig(**params), manager)


class TestConstruction:
    """Tests for configuration validation."""

    def test_non_positive_interval_rejected(self, manager):
        """Test a zero sync interval is refused before any git call."""
        with pytest.raises(InvalidScheduleOrStrategyError):
            make_sync(manager, sync_interval=0)

    def test_unknown_strategy_rejected(self, manager):
        """Test an unknown strategy is refused."""
        config = SyncConfig.model_construct(**{**SyncConfig().model_dump(), "strategy": "squash"})
        with pytest.raises(InvalidScheduleOrStrategyError):
            WorktreeSync(config, manager)

    def test_empty_branch_list_rejected(self, manager):
        """Test at least one upstream branch is required."""
        with pytest.raises(InvalidScheduleOrStrategyError):
            make_sync(manager, sync_from_branches=[])


class TestSyncWorktree:
    """Tests for sync_worktree."""

    @pytest.mark.asyncio
    async def test_rebase_success_returns_to_active(self, manager, gateway):
        """Test a clean rebase against origin/main leaves the worktree active."""
        record = await manager.create_worktree("task-1", "feat/x", "sess-A")
        gateway.respond("rev-list abc123..HEAD", "def456\n789abc\n")
        sync = make_sync(manager, strategy=SyncStrategy.REBASE)

        result = await sync.sync_worktree("task-1")

        assert result.success is True
        assert result.sync_branch == "main"
        assert result.strategy == SyncStrategy.REBASE
        assert result.applied_commits == ("def456", "789abc")
        assert manager.get_worktree("task-1").status == WorktreeStatus.ACTIVE

        commands = [args for path, args in gateway.calls if path == record.worktree_path]
        assert ("fetch", "origin") in commands
        assert ("rebase", "origin/main") in commands

    @pytest.mark.asyncio
    async def test_rebase_conflict_ends_in_error(self, manager, gateway, recorded_events):
        """Test a rebase conflict leaves the worktree in error with a message."""
        await manager.create_worktree("task-1", "feat/x", "sess-A")
        gateway.fail("rebase", stderr="CONFLICT (content): Merge conflict in app.py")
        gateway.respond("diff --name-only --diff-filter=U", "app.py\n")
        sync = make_sync(manager)

        with pytest.raises(SyncError) as exc_info:
            await sync.sync_worktree("task-1")

        result = exc_info.value.result
        assert result.success is False
        assert result.conflicted_files == ("app.py",)
        assert "CONFLICT" in result.error_message

        record = manager.get_worktree("task-1")
        assert record.status == WorktreeStatus.ERROR
        assert record.error_message

        errors = [e for e in recorded_events if e.type == EventType.ERROR]
        assert errors[-1].operation == "sync_worktree"
        assert errors[-1].hint == "Merge conflict"

    @pytest.mark.parametrize("strategy,expected", [
        (SyncStrategy.MERGE, ("merge", "--no-edit", "origin/main")),
        (SyncStrategy.RESET, ("reset", "--hard", "origin/main")),
    ])
    @pytest.mark.asyncio
    async def test_strategies(self, manager, gateway, strategy, expected):
        """Test merge and reset issue the matching git command."""
        await manager.create_worktree("task-1", "feat/x", "sess-A")
        sync = make_sync(manager, strategy=strategy)

        await sync.sync_worktree("task-1")

        assert expected in [args for _, args in gateway.calls]

    @pytest.mark.asyncio
    async def test_falls_back_to_next_branch(self, manager, gateway):
        """Test branches are tried in priority order."""
        await manager.create_worktree("task-1", "feat/x", "sess-A")
        gateway.fail("rev-parse --verify --quiet origin/main")
        sync = make_sync(manager)

        result = await sync.sync_worktree("task-1")

        assert result.sync_branch == "master"
        assert gateway.ran("rebase origin/master")

    @pytest.mark.asyncio
    async def test_no_sync_branch_is_an_error(self, manager, gateway):
        """Test a missing upstream branch fails the sync."""
        await manager.create_worktree("task-1", "feat/x", "sess-A")
        gateway.fail("rev-parse --verify")
        sync = make_sync(manager)

        with pytest.raises(SyncError, match="No sync branch"):
            await sync.sync_worktree("task-1")
        assert manager.get_worktree("task-1").status == WorktreeStatus.ERROR

    @pytest.mark.asyncio
    async def test_fetch_is_retried(self, manager, gateway):
        """Test transient fetch failures are retried up to max_retries."""
        await manager.create_worktree("task-1", "feat/x", "sess-A")
        gateway.fail("fetch", stderr="fatal: unable to access", times=2)
        sync = make_sync(manager, max_retries=3)

        result = await sync.sync_worktree("task-1")

        assert result.success is True
        assert gateway.commands().count("fetch origin") == 3

    @pytest.mark.asyncio
    async def test_fetch_gives_up_after_max_retries(self, manager, gateway):
        """Test fetch failures beyond max_retries fail the sync."""
        await manager.create_worktree("task-1", "feat/x", "sess-A")
        gateway.fail("fetch", stderr="fatal: unable to access")
        sync = make_sync(manager, max_retries=2)

        with pytest.raises(SyncError):
            await sync.sync_worktree("task-1")
        assert gateway.commands().count("fetch origin") == 2

    @pytest.mark.asyncio
    async def test_clean_worktree_is_not_stashed(self, manager, gateway):
        """Test no stash is made when the worktree has no local changes."""
        await manager.create_worktree("task-1", "feat/x", "sess-A")

        result = await make_sync(manager).sync_worktree("task-1")

        assert result.stashed_changes is False
        assert not gateway.ran("stash")

    @pytest.mark.asyncio
    async def test_auto_stash_wraps_sync(self, manager, gateway):
        """Test local changes are stashed before fetch and popped after the reset."""
        record = await manager.create_worktree("task-1", "feat/x", "sess-A")
        gateway.respond("status --porcelain", " M app.py\n?? notes.txt\n")

        result = await make_sync(manager, strategy=SyncStrategy.RESET).sync_worktree("task-1")

        assert result.success is True
        assert result.stashed_changes is True
        commands = [" ".join(args) for path, args in gateway.calls if path == record.worktree_path]
        stash = next(i for i, c in enumerate(commands) if c.startswith("stash push"))
        assert "--include-untracked" in commands[stash]
        assert stash < commands.index("fetch origin")
        assert commands.index("reset --hard origin/main") < commands.index("stash pop")
        assert manager.get_worktree("task-1").status == WorktreeStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_stash_restored_when_sync_fails(self, manager, gateway):
        """Test a failed rebase still pops the stash it made."""
        await manager.create_worktree("task-1", "feat/x", "sess-A")
        gateway.respond("status --porcelain", " M app.py\n")
        gateway.fail("rebase", stderr="CONFLICT (content): Merge conflict in app.py")

        with pytest.raises(SyncError) as exc_info:
            await make_sync(manager).sync_worktree("task-1")

        assert exc_info.value.result.stashed_changes is True
        assert gateway.commands().count("stash pop") == 1
        assert manager.get_worktree("task-1").status == WorktreeStatus.ERROR

    @pytest.mark.asyncio
    async def test_failed_stash_pop_fails_sync(self, manager, gateway):
        """Test a stash that cannot be reapplied is reported and not popped twice."""
        await manager.create_worktree("task-1", "feat/x", "sess-A")
        gateway.respond("status --porcelain", " M app.py\n")
        gateway.fail("stash pop", stderr="CONFLICT (content): Merge conflict in app.py")

        with pytest.raises(SyncError):
            await make_sync(manager).sync_worktree("task-1")

        assert gateway.commands().count("stash pop") == 1
        assert manager.get_worktree("task-1").status == WorktreeStatus.ERROR

    @pytest.mark.asyncio
    async def test_uncommitted_changes_without_auto_stash(self, manager, gateway):
        """Test a dirty worktree fails before anything is fetched when auto_stash is off."""
        await manager.create_worktree("task-1", "feat/x", "sess-A")
        gateway.respond("status --porcelain", " M app.py\n")

        with pytest.raises(SyncError, match="Uncommitted changes") as exc_info:
            await make_sync(manager, auto_stash=False).sync_worktree("task-1")

        assert exc_info.value.result.stashed_changes is False
        assert not gateway.ran("stash")
        assert not gateway.ran("fetch")
        assert not gateway.ran("rebase")
        record = manager.get_worktree("task-1")
        assert record.status == WorktreeStatus.ERROR
        assert "auto_stash is disabled" in record.error_message

    @pytest.mark.asyncio
    async def test_push_after_sync(self, manager, gateway):
        """Test push_after_sync pushes the worktree branch."""
        await manager.create_worktree("task-1", "feat/x", "sess-A")
        sync = make_sync(manager, push_after_sync=True)

        await sync.sync_worktree("task-1")

        assert gateway.ran("push -u origin feat/x")

    @pytest.mark.asyncio
    async def test_status_sequence(self, manager, recorded_events):
        """Test sync moves active -> syncing -> active."""
        await manager.create_worktree("task-1", "feat/x", "sess-A")
        sync = make_sync(manager)

        await sync.sync_worktree("task-1")

        transitions = [
            (e.previous_status, e.record.status)
            for e in recorded_events if e.type == EventType.WORKTREE_STATUS_CHANGED
        ]
        assert transitions == [
            (WorktreeStatus.ACTIVE, WorktreeStatus.SYNCING),
            (WorktreeStatus.SYNCING, WorktreeStatus.ACTIVE),
        ]

    @pytest.mark.asyncio
    async def test_errored_worktree_is_not_synced(self, manager, gateway):
        """Test a worktree in error must be recovered before syncing."""
        await manager.create_worktree("task-1", "feat/x", "sess-A")
        await manager.update_status("task-1", WorktreeStatus.ERROR, "conflict")
        sync = make_sync(manager)

        with pytest.raises(InvalidTransitionError):
            await sync.sync_worktree("task-1")
        assert not gateway.ran("fetch")

    @pytest.mark.asyncio
    async def test_unknown_task(self, manager):
        """Test syncing an unknown id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await make_sync(manager).sync_worktree("missing")

    @pytest.mark.asyncio
    async def test_cancelled_sync_ends_in_error(self, manager, gateway):
        """Test cancelling a sync mid-flight never leaves the worktree syncing."""
        await manager.create_worktree("task-1", "feat/x", "sess-A")
        gateway.delay("fetch", 1.0)
        sync = make_sync(manager)

        task = asyncio.create_task(sync.sync_worktree("task-1"))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        record = manager.get_worktree("task-1")
        assert record.status == WorktreeStatus.ERROR
        assert record.error_message == "sync cancelled"


class TestSyncAll:
    """Tests for sync_all."""

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, manager, gateway):
        """Test one failing worktree does not stop the others."""
        bad = await manager.create_worktree("task-bad", "feat/bad", "sess-A")
        await manager.create_worktree("task-ok", "feat/ok", "sess-A")
        gateway.fail("rebase", stderr="CONFLICT", cwd=bad.worktree_path)
        sync = make_sync(manager)

        results = {r.task_id: r for r in await sync.sync_all()}

        assert results["task-bad"].success is False
        assert results["task-ok"].success is True
        assert manager.get_worktree("task-bad").status == WorktreeStatus.ERROR
        assert manager.get_worktree("task-ok").status == WorktreeStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_only_active_worktrees_synced(self, manager):
        """Test worktrees outside active are left alone."""
        await manager.create_worktree("task-1", "feat/1", "sess-A")
        await manager.create_worktree("task-2", "feat/2", "sess-A")
        await manager.update_status("task-2", WorktreeStatus.ERROR, "broken")
        sync = make_sync(manager)

        results = await sync.sync_all()

        assert [r.task_id for r in results] == ["task-1"]

    @pytest.mark.asyncio
    async def test_empty_registry(self, manager):
        """Test sync_all with nothing to do."""
        assert await make_sync(manager).sync_all() == []

    @pytest.mark.asyncio
    async def test_deadline_cancels_unfinished(self, manager, gateway):
        """Test syncs still running at the deadline are failed and not left syncing."""
        await manager.create_worktree("task-1", "feat/1", "sess-A")
        await manager.create_worktree("task-2", "feat/2", "sess-A")
        gateway.delay("fetch", 5.0)
        sync = make_sync(manager)

        results = await sync.sync_all(timeout=0.1)

        assert len(results) == 2
        assert all(not r.success for r in results)
        assert all(r.error_message == "sync deadline exceeded" for r in results)
        for task_id in ("task-1", "task-2"):
            assert manager.get_worktree(task_id).status != WorktreeStatus.SYNCING

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, manager, gateway):
        """Test at most max_concurrent syncs run at once."""
        for i in range(5):
            await manager.create_worktree(f"task-{i}", f"feat/{i}", "sess-A")
        gateway.delay("fetch", 0.02)
        sync = make_sync(manager, max_concurrent=2)
        peak = 0
        in_flight = 0
        original_fetch = sync._fetch

        async def tracking_fetch(path):
            nonlocal peak, in_flight
            in_flight += 1
            peak = max(peak, in_flight)
            try:
                await original_fetch(path)
            finally:
                in_flight -= 1

        sync._fetch = tracking_fetch

        results = await sync.sync_all()

        assert all(r.success for r in results)
        assert peak == 2


class TestCheckSyncStatus:
    """Tests for check_sync_status."""

    @pytest.mark.asyncio
    async def test_tracked_upstream(self, manager, gateway):
        """Test ahead/behind counts against the tracked upstream."""
        await manager.create_worktree("task-1", "feat/x", "sess-A")
        gateway.respond("rev-parse --abbrev-ref", "origin/feat/x\n")
        gateway.respond("rev-list --left-right --count", "3\t1\n")
        gateway.respond("status --porcelain", " M app.py\n")

        status = await make_sync(manager).check_sync_status("task-1")

        assert status.tracked_branch == "origin/feat/x"
        assert status.behind == 3
        assert status.ahead == 1
        assert status.has_uncommitted_changes is True

    @pytest.mark.asyncio
    async def test_falls_back_to_sync_branch(self, manager, gateway):
        """Test a branch without upstream is compared with the first sync branch."""
        await manager.create_worktree("task-1", "feat/x", "sess-A")
        gateway.fail("rev-parse --abbrev-ref", stderr="fatal: no upstream configured")
        gateway.respond("rev-list --left-right --count", "0\t2\n")

        status = await make_sync(manager).check_sync_status("task-1")

        assert status.tracked_branch == "origin/main"
        assert status.ahead == 2
        assert status.has_uncommitted_changes is False
        assert manager.get_worktree("task-1").status == WorktreeStatus.ACTIVE


class TestAutoSync:
    """Tests for the auto-sync timer."""

    @pytest.mark.asyncio
    async def test_disabled_does_not_start(self, manager):
        """Test start_auto_sync is a no-op when auto_sync is off."""
        sync = make_sync(manager)
        assert sync.start_auto_sync() is False
        assert not sync.auto_sync_running

    @pytest.mark.asyncio
    async def test_runs_periodically_and_stops(self, manager, gateway):
        """Test the timer syncs every interval until stopped."""
        await manager.create_worktree("task-1", "feat/x", "sess-A")
        sync = make_sync(manager, auto_sync=True, sync_interval=0.02)

        assert sync.start_auto_sync() is True
        assert sync.start_auto_sync() is False
        await asyncio.sleep(0.15)
        await sync.stop_auto_sync()

        fetches = gateway.commands().count("fetch origin")
        assert fetches >= 2
        assert not sync.auto_sync_running

        await asyncio.sleep(0.05)
        assert gateway.commands().count("fetch origin") == fetches
