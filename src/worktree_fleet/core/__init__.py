"""Core data model, configuration and events."""

from .config import FleetConfig, clear_config_cache, load_config
from .events import (
    ErrorEvent,
    EventBus,
    EventChannel,
    EventType,
    ResourceAlertEvent,
    WorktreeEvent,
)
from .models import (
    AccessLevel,
    AgentIdentifier,
    AlertSeverity,
    CleanupItem,
    CleanupOptions,
    CleanupResult,
    DestroyOutcome,
    ResourceAlert,
    ResourceSnapshot,
    ResourceType,
    SyncResult,
    SyncStatus,
    SyncStrategy,
    WorktreeRecord,
    WorktreeStatus,
    can_transition,
)

__all__ = [
    "FleetConfig",
    "clear_config_cache",
    "load_config",
    "ErrorEvent",
    "EventBus",
    "EventChannel",
    "EventType",
    "ResourceAlertEvent",
    "WorktreeEvent",
    "AccessLevel",
    "AgentIdentifier",
    "AlertSeverity",
    "CleanupItem",
    "CleanupOptions",
    "CleanupResult",
    "DestroyOutcome",
    "ResourceAlert",
    "ResourceSnapshot",
    "ResourceType",
    "SyncResult",
    "SyncStatus",
    "SyncStrategy",
    "WorktreeRecord",
    "WorktreeStatus",
    "can_transition",
]
