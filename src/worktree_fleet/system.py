"""Wire every component onto one gateway and event bus."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import psutil

from .core.config import FleetConfig
from .core.events import EventBus
from .safeguards.resource_monitor import ResourceMonitor
from .utils.rich_logging import setup_logging
from .vcs.gateway import GitGateway, VersionControlGateway
from .workspace.access import AccessPolicy, FractionalAccessController
from .workspace.archive import Archiver
from .workspace.cleanup import WorktreeCleanup
from .workspace.lifecycle import WorktreeLifecycleManager
from .workspace.sync import WorktreeSync

logger = logging.getLogger(__name__)


@dataclass
class WorktreeSystem:
    """All worktree components sharing one gateway and event bus."""
    config: FleetConfig
    gateway: VersionControlGateway
    events: EventBus
    lifecycle: WorktreeLifecycleManager
    access: FractionalAccessController
    monitor: ResourceMonitor
    sync: WorktreeSync
    cleanup: WorktreeCleanup

    async def start(self) -> None:
        """Start the resource monitor and, when enabled, auto-sync."""
        self.monitor.start()
        self.sync.start_auto_sync()
        logger.info("Worktree system started")

    async def stop(self) -> None:
        await self.sync.stop_auto_sync()
        await self.monitor.stop()
        logger.info("Worktree system stopped")

    async def __aenter__(self) -> "WorktreeSystem":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.stop()
        return False


def _worktree_base(config: FleetConfig) -> Path:
    base = Path(config.worktree.hierarchical_strategy.session_worktrees.base_path).expanduser()
    return base if base.is_absolute() else config.worktree.repo_root / base


def create_worktree_system(
    config: Optional[FleetConfig] = None,
    gateway: Optional[VersionControlGateway] = None,
    event_bus: Optional[EventBus] = None,
    archiver: Optional[Archiver] = None,
    process: Optional[psutil.Process] = None,
    configure_logging: bool = False,
) -> WorktreeSystem:
    """
    Build a worktree system from configuration.

    Args:
        config: Configuration (defaults for everything when omitted)
        gateway: VCS gateway (a GitGateway on the configured timeout by default)
        event_bus: Shared event bus
        archiver: Archiver used by destroy (tar by default)
        process: Process measured by the resource monitor
        configure_logging: Install the package log handlers from config.logging

    Returns:
        Wired WorktreeSystem; call ``start()`` to begin monitoring
    """
    config = config or FleetConfig()
    if configure_logging:
        setup_logging(config.logging.level, config.logging.file, config.logging.use_colors)

    gateway = gateway or GitGateway(
        timeout=config.worktree.operation_timeout,
        github_token=config.worktree.github_token,
    )
    events = event_bus or EventBus()

    lifecycle = WorktreeLifecycleManager(config.worktree, gateway, events, archiver)
    access = FractionalAccessController(AccessPolicy.from_config(config.access))
    monitor = ResourceMonitor(
        config.resources,
        repo_root=config.worktree.repo_root,
        worktree_base=_worktree_base(config),
        gateway=gateway,
        event_bus=events,
        process=process,
    )
    sync = WorktreeSync(config.sync, lifecycle, gateway)
    cleanup = WorktreeCleanup(lifecycle, config.cleanup)

    return WorktreeSystem(
        config=config,
        gateway=gateway,
        events=events,
        lifecycle=lifecycle,
        access=access,
        monitor=monitor,
        sync=sync,
        cleanup=cleanup,
    )
