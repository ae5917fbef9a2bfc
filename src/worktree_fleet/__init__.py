"""Isolated git worktrees for concurrent agent sessions."""

__version__ = "0.1.0"

from .core.config import FleetConfig, load_config
from .core.events import EventBus, EventType
from .core.models import (
    AccessLevel,
    AgentIdentifier,
    CleanupOptions,
    SyncStrategy,
    WorktreeRecord,
    WorktreeStatus,
)
from .safeguards.resource_monitor import ResourceMonitor
from .system import WorktreeSystem, create_worktree_system
from .vcs.gateway import GitGateway, VersionControlGateway
from .workspace.access import AccessPolicy, FractionalAccessController
from .workspace.cleanup import WorktreeCleanup
from .workspace.lifecycle import WorktreeLifecycleManager
from .workspace.sync import WorktreeSync

__all__ = [
    "FleetConfig",
    "load_config",
    "EventBus",
    "EventType",
    "AccessLevel",
    "AgentIdentifier",
    "CleanupOptions",
    "SyncStrategy",
    "WorktreeRecord",
    "WorktreeStatus",
    "ResourceMonitor",
    "WorktreeSystem",
    "create_worktree_system",
    "GitGateway",
    "VersionControlGateway",
    "AccessPolicy",
    "FractionalAccessController",
    "WorktreeCleanup",
    "WorktreeLifecycleManager",
    "WorktreeSync",
]
