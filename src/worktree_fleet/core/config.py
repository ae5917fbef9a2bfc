"""Configuration loading and validation."""

import logging
import os
import string
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from .models import AccessLevel, AgentIdentifier, SyncStrategy

logger = logging.getLogger(__name__)

# Placeholders a worktree path template may reference
TEMPLATE_PLACEHOLDERS = frozenset({"base_path", "session_id", "task_id", "agent_id"})


class PathStrategyConfig(BaseModel):
    """Where one class of worktree (session or sub-agent) is placed."""
    base_path: str
    path_template: str = "{base_path}/{session_id}/{task_id}"

    @field_validator('path_template')
    @classmethod
    def validate_template(cls, v: str) -> str:
        fields = {name for _, name, _, _ in string.Formatter().parse(v) if name}
        unknown = fields - TEMPLATE_PLACEHOLDERS
        if unknown:
            raise ValueError(
                f"Unknown placeholder(s) in path_template: {', '.join(sorted(unknown))}"
            )
        if "task_id" not in fields and "agent_id" not in fields:
            raise ValueError("path_template must include {task_id} or {agent_id}")
        return v

    def render(self, session_id: str, task_id: str) -> str:
        return self.path_template.format(
            base_path=self.base_path,
            session_id=session_id,
            task_id=task_id,
            agent_id=task_id,
        )


class HierarchicalStrategyConfig(BaseModel):
    """Path strategies for root (session) and nested (sub-agent) worktrees."""
    session_worktrees: PathStrategyConfig = Field(
        default_factory=lambda: PathStrategyConfig(base_path=".worktrees/sessions")
    )
    sub_agent_worktrees: PathStrategyConfig = Field(
        default_factory=lambda: PathStrategyConfig(base_path=".worktrees/agents")
    )


class WorktreeConfig(BaseModel):
    """Worktree lifecycle configuration."""
    repo_root: Path = Field(default_factory=Path.cwd)
    operation_timeout: float = 60.0  # Hard timeout per git/tar invocation (seconds)
    hierarchical_strategy: HierarchicalStrategyConfig = Field(
        default_factory=HierarchicalStrategyConfig
    )
    github_token: Optional[str] = None

    @field_validator('repo_root')
    @classmethod
    def expand_repo_root(cls, v: Path) -> Path:
        return Path(v).expanduser().resolve()

    @field_validator('operation_timeout')
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"operation_timeout must be > 0, got {v}")
        return v


class ResourceLimitsConfig(BaseModel):
    """Resource limits; None disables the check for that resource."""
    file_descriptors: Optional[int] = 1024
    disk_space_min_gb: Optional[float] = 5.0
    max_worktrees_per_machine: Optional[int] = 20
    max_memory_mb: Optional[float] = 2048.0
    max_cpu_percent: Optional[float] = 50.0


class ResourceMonitorConfig(BaseModel):
    """Resource monitor polling and alerting configuration."""
    poll_interval: float = 30.0
    limits: ResourceLimitsConfig = Field(default_factory=ResourceLimitsConfig)
    warning_threshold: float = 0.8
    critical_threshold: float = 0.95
    # Advisory only: flags alerts for an external reclaim policy
    auto_reclaim: bool = False

    @model_validator(mode='after')
    def validate_thresholds(self) -> 'ResourceMonitorConfig':
        if not 0 < self.warning_threshold < self.critical_threshold:
            raise ValueError(
                "Thresholds must satisfy 0 < warning_threshold < critical_threshold, "
                f"got {self.warning_threshold} / {self.critical_threshold}"
            )
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {self.poll_interval}")
        return self


class SyncConfig(BaseModel):
    """Upstream reconciliation configuration."""
    auto_sync: bool = False
    sync_interval: float = 300.0
    strategy: SyncStrategy = SyncStrategy.REBASE
    # Reserved; conflicts are surfaced, never resolved automatically
    conflict_resolution: Literal["manual", "ours", "theirs"] = "manual"
    sync_from_branches: List[str] = Field(default_factory=lambda: ["main", "master"])
    push_after_sync: bool = False
    # Stash uncommitted changes around a sync; when off a dirty worktree fails the sync
    auto_stash: bool = True
    max_retries: int = 3
    retry_delay: float = 5.0
    max_concurrent: int = 4

    @field_validator('max_retries', 'max_concurrent')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be >= 1, got {v}")
        return v


class CleanupConfig(BaseModel):
    """Defaults for cleanup passes."""
    force: bool = False
    delete_branch: bool = False
    archive: bool = False
    archive_path: Optional[Path] = None
    stale_threshold: Optional[float] = None  # seconds since last access


class AgentIdentifierConfig(BaseModel):
    agent_id: str
    session_id: str

    def to_identifier(self) -> AgentIdentifier:
        return AgentIdentifier(agent_id=self.agent_id, session_id=self.session_id)


class AccessPatternConfig(BaseModel):
    """Initial fractional access pattern."""
    enabled: bool = True
    read_only_agents: List[AgentIdentifierConfig] = Field(default_factory=list)
    write_access_agents: List[AgentIdentifierConfig] = Field(default_factory=list)
    default_access_level: AccessLevel = AccessLevel.READ
    enforce_access: bool = True
    global_read_only_patterns: List[str] = Field(default_factory=lambda: [
        "*.lock",
        "package-lock.json",
        "yarn.lock",
        "pnpm-lock.yaml",
    ])
    admin_only_patterns: List[str] = Field(default_factory=lambda: [
        ".env*",
        "*.key",
        "*.pem",
        "secrets/*",
    ])

    @model_validator(mode='after')
    def validate_disjoint(self) -> 'AccessPatternConfig':
        read_only = {(a.agent_id, a.session_id) for a in self.read_only_agents}
        writers = {(a.agent_id, a.session_id) for a in self.write_access_agents}
        overlap = read_only & writers
        if overlap:
            names = ", ".join(f"{agent}@{session}" for agent, session in sorted(overlap))
            raise ValueError(f"Agents listed as both read-only and write-access: {names}")
        return self


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[Path] = None
    use_colors: Optional[bool] = None


class FleetConfig(BaseSettings):
    """Root configuration for the worktree subsystem."""
    worktree: WorktreeConfig = Field(default_factory=WorktreeConfig)
    resources: ResourceMonitorConfig = Field(default_factory=ResourceMonitorConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    cleanup: CleanupConfig = Field(default_factory=CleanupConfig)
    access: AccessPatternConfig = Field(default_factory=AccessPatternConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    class Config:
        env_prefix = "WORKTREE_FLEET_"
        env_nested_delimiter = "__"


# mtime-keyed cache: resolved path -> (mtime, config)
_config_cache: Dict[Path, Tuple[float, Any]] = {}


def _get_cached_or_load(resolved_path: Path, loader: Callable[[Path], Any]) -> Any:
    """Return the cached value unless the file changed since it was loaded."""
    try:
        mtime = resolved_path.stat().st_mtime
    except OSError:
        return None

    cached = _config_cache.get(resolved_path)
    if cached is not None and cached[0] == mtime:
        return cached[1]

    result = loader(resolved_path)
    _config_cache[resolved_path] = (mtime, result)
    return result


def clear_config_cache() -> None:
    """Clear the module-level config cache. Useful for tests."""
    _config_cache.clear()


def _load_config_from_file(config_path: Path) -> FleetConfig:
    """Internal loader for fleet config (no caching)."""
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    data = _expand_env_vars(data)
    return FleetConfig(**data)


def load_config(config_path: Path = Path("worktree-fleet.yaml")) -> FleetConfig:
    """Load configuration from a YAML file.

    Uses mtime-based caching: the cached config is returned while the file is unchanged.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        logger.warning(
            f"Config file not found: {config_path}. Using default configuration."
        )
        return FleetConfig()

    result = _get_cached_or_load(config_path.resolve(), _load_config_from_file)
    return result if result is not None else FleetConfig()


def _expand_env_vars(data: Any, _path: str = "") -> Any:
    """Recursively expand ${VAR} environment references in config data.

    Args:
        data: Config data to process
        _path: Internal tracking for error messages (e.g., "worktree.github_token")
    """
    if isinstance(data, dict):
        return {k: _expand_env_vars(v, f"{_path}.{k}" if _path else k) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item, f"{_path}[{i}]") for i, item in enumerate(data)]
    elif isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        env_var = data[2:-1]
        value = os.environ.get(env_var)
        if value is None:
            logger.warning(
                f"Environment variable '{env_var}' not set (referenced at config path: {_path or 'root'}). "
                f"The literal string '{data}' will be used, which may cause errors."
            )
            return data
        return value
    return data
