"""Data model for tracked worktrees, access identities, resources and results."""

import copy
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorktreeStatus(str, Enum):
    """Lifecycle status of a tracked worktree."""
    CREATING = "creating"
    ACTIVE = "active"
    SYNCING = "syncing"
    CLEANUP = "cleanup"
    DESTROYED = "destroyed"
    ERROR = "error"


# Allowed status transitions; re-asserting the current status is always allowed
ALLOWED_TRANSITIONS: Dict[WorktreeStatus, frozenset] = {
    WorktreeStatus.CREATING: frozenset({WorktreeStatus.ACTIVE, WorktreeStatus.ERROR}),
    WorktreeStatus.ACTIVE: frozenset({
        WorktreeStatus.SYNCING, WorktreeStatus.CLEANUP, WorktreeStatus.ERROR,
    }),
    WorktreeStatus.SYNCING: frozenset({WorktreeStatus.ACTIVE, WorktreeStatus.ERROR}),
    WorktreeStatus.CLEANUP: frozenset({
        WorktreeStatus.DESTROYED, WorktreeStatus.ACTIVE, WorktreeStatus.ERROR,
    }),
    WorktreeStatus.ERROR: frozenset({WorktreeStatus.CLEANUP, WorktreeStatus.ACTIVE}),
    WorktreeStatus.DESTROYED: frozenset(),
}


def can_transition(current: WorktreeStatus, target: WorktreeStatus) -> bool:
    """Check a status change against the lifecycle state machine."""
    if current == WorktreeStatus.DESTROYED:
        return False
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS[current]


class AccessLevel(str, Enum):
    """Privilege level of an agent over the shared worktree file set."""
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


class SyncStrategy(str, Enum):
    """How a worktree branch is reconciled with its upstream."""
    MERGE = "merge"
    REBASE = "rebase"
    RESET = "reset"


class ResourceType(str, Enum):
    DISK = "disk"
    MEMORY = "memory"
    CPU = "cpu"
    FILE_DESCRIPTORS = "file_descriptors"
    WORKTREE_COUNT = "worktree_count"


class AlertSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class WorktreeRecord:
    """A worktree tracked by the lifecycle manager."""
    task_id: str
    branch_name: str
    worktree_path: Path
    session_id: str
    created_at: datetime
    last_accessed_at: datetime
    status: WorktreeStatus = WorktreeStatus.CREATING
    parent_worktree_path: Optional[Path] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_nested(self) -> bool:
        """True for sub-agent worktrees spawned from within another worktree."""
        return self.parent_worktree_path is not None

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds since last access (creation if never accessed)."""
        now = now or utcnow()
        reference = self.last_accessed_at or self.created_at
        return max(0.0, (now - reference).total_seconds())

    def copy(self) -> "WorktreeRecord":
        """Detached copy; callers may not mutate registry state through it."""
        return replace(self, metadata=copy.deepcopy(self.metadata))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        data = asdict(self)
        data["worktree_path"] = str(self.worktree_path)
        data["parent_worktree_path"] = (
            str(self.parent_worktree_path) if self.parent_worktree_path else None
        )
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat()
        data["last_accessed_at"] = self.last_accessed_at.isoformat()
        return data


@dataclass(frozen=True)
class AgentIdentifier:
    """Identity used for access decisions; owns no resources."""
    agent_id: str
    session_id: str

    def __str__(self) -> str:
        return f"{self.agent_id}@{self.session_id}"


@dataclass(frozen=True)
class ResourceSnapshot:
    """Point-in-time host resource usage."""
    file_descriptors_used: int
    disk_space_available_gb: float
    active_worktrees: int
    memory_used_mb: float
    cpu_usage_percent: float
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ResourceAlert:
    """Threshold crossing for one resource during one monitor tick."""
    resource_type: ResourceType
    severity: AlertSeverity
    current_value: float
    limit_value: float
    message: str
    timestamp: datetime = field(default_factory=utcnow)
    reclaim_recommended: bool = False


@dataclass(frozen=True)
class SyncResult:
    """Outcome of reconciling one worktree with upstream."""
    task_id: str
    success: bool
    worktree_path: Path
    strategy: SyncStrategy
    sync_branch: Optional[str] = None
    applied_commits: Tuple[str, ...] = ()
    conflicted_files: Tuple[str, ...] = ()
    stashed_changes: bool = False
    error_message: Optional[str] = None
    duration_seconds: float = 0.0
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class SyncStatus:
    """Divergence of a worktree branch from its tracked upstream."""
    task_id: str
    branch_name: str
    tracked_branch: Optional[str]
    ahead: int
    behind: int
    has_uncommitted_changes: bool


@dataclass
class CleanupOptions:
    """Options shared by destroy_worktree and cleanup passes."""
    force: bool = False
    delete_branch: bool = False
    archive: bool = False
    archive_path: Optional[Path] = None
    stale_threshold: Optional[float] = None
    status_filter: Optional[List[WorktreeStatus]] = None
    trigger: str = "manual"
    dry_run: bool = False


@dataclass(frozen=True)
class DestroyOutcome:
    """What destroy_worktree did (or, for dry runs, would do)."""
    task_id: str
    worktree_path: Path
    dry_run: bool
    transitions: Tuple[Tuple[WorktreeStatus, WorktreeStatus], ...]
    archive_file: Optional[Path] = None
    branch_deleted: bool = False


@dataclass(frozen=True)
class CleanupItem:
    """A worktree that a cleanup pass skipped or failed to destroy."""
    record: WorktreeRecord
    reason: str


@dataclass
class CleanupResult:
    """Outcome of one cleanup pass."""
    cleaned: List[WorktreeRecord] = field(default_factory=list)
    failed: List[CleanupItem] = field(default_factory=list)
    skipped: List[CleanupItem] = field(default_factory=list)
    disk_reclaimed_bytes: int = 0
    duration_seconds: float = 0.0
    timestamp: datetime = field(default_factory=utcnow)
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return not self.failed

    @property
    def cleaned_paths(self) -> List[Path]:
        return [record.worktree_path for record in self.cleaned]
