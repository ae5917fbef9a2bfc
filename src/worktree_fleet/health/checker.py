"""Health checks over a resource snapshot."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, NamedTuple, Optional

from ..core.config import ResourceLimitsConfig
from ..core.models import AlertSeverity, ResourceSnapshot, ResourceType, utcnow

logger = logging.getLogger(__name__)

# Disk is a floor: dropping below it is critical regardless of thresholds
DISK_CRITICAL_RATIO = 1.0


class CheckStatus(Enum):
    """Health check status."""
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"
    SKIPPED = "skipped"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class CheckResult:
    """Result of a health check."""
    name: str
    status: CheckStatus
    message: str
    fix_action: Optional[str] = None


@dataclass
class HealthReport:
    status: HealthStatus
    checks: List[CheckResult]
    recommendations: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)


class Usage(NamedTuple):
    """Current value, configured limit and usage ratio for one resource."""
    current: float
    limit: float
    ratio: float


def resource_usage(
    snapshot: ResourceSnapshot,
    limits: ResourceLimitsConfig,
) -> Dict[ResourceType, Usage]:
    """Usage ratio per resource; resources without a limit are omitted."""
    usage: Dict[ResourceType, Usage] = {}

    if limits.file_descriptors:
        usage[ResourceType.FILE_DESCRIPTORS] = Usage(
            snapshot.file_descriptors_used,
            limits.file_descriptors,
            snapshot.file_descriptors_used / limits.file_descriptors,
        )
    if limits.disk_space_min_gb:
        free = snapshot.disk_space_available_gb
        ratio = limits.disk_space_min_gb / free if free > 0 else float("inf")
        usage[ResourceType.DISK] = Usage(free, limits.disk_space_min_gb, ratio)
    if limits.max_worktrees_per_machine:
        usage[ResourceType.WORKTREE_COUNT] = Usage(
            snapshot.active_worktrees,
            limits.max_worktrees_per_machine,
            snapshot.active_worktrees / limits.max_worktrees_per_machine,
        )
    if limits.max_memory_mb:
        usage[ResourceType.MEMORY] = Usage(
            snapshot.memory_used_mb,
            limits.max_memory_mb,
            snapshot.memory_used_mb / limits.max_memory_mb,
        )
    if limits.max_cpu_percent:
        usage[ResourceType.CPU] = Usage(
            snapshot.cpu_usage_percent,
            limits.max_cpu_percent,
            snapshot.cpu_usage_percent / limits.max_cpu_percent,
        )
    return usage


def classify(
    resource_type: ResourceType,
    ratio: float,
    warning_threshold: float,
    critical_threshold: float,
) -> Optional[AlertSeverity]:
    """Highest severity reached by a usage ratio, or None."""
    critical_at = DISK_CRITICAL_RATIO if resource_type == ResourceType.DISK else critical_threshold
    if ratio >= critical_at:
        return AlertSeverity.CRITICAL
    if ratio >= warning_threshold:
        return AlertSeverity.WARNING
    return None


class ResourceHealthChecker:
    """Turn a resource snapshot into a health report with recommendations."""

    def __init__(
        self,
        limits: ResourceLimitsConfig,
        warning_threshold: float = 0.8,
        critical_threshold: float = 0.95,
    ):
        self.limits = limits
        self.warning_threshold = warning_threshold
        self.critical_threshold = critical_threshold

    def _evaluate(
        self,
        name: str,
        resource_type: ResourceType,
        usage: Dict[ResourceType, Usage],
        unit: str,
        fix_warning: str,
        fix_critical: str,
    ) -> CheckResult:
        entry = usage.get(resource_type)
        if entry is None:
            return CheckResult(name=name, status=CheckStatus.SKIPPED, message="No limit configured")

        if resource_type == ResourceType.DISK:
            message = f"{entry.current:.1f}{unit} free (minimum {entry.limit:g}{unit})"
        else:
            message = f"{entry.current:g}{unit} of {entry.limit:g}{unit} ({entry.ratio:.0%})"

        severity = classify(resource_type, entry.ratio, self.warning_threshold, self.critical_threshold)
        if severity == AlertSeverity.CRITICAL:
            return CheckResult(name=name, status=CheckStatus.FAILED, message=message, fix_action=fix_critical)
        if severity == AlertSeverity.WARNING:
            return CheckResult(name=name, status=CheckStatus.WARNING, message=message, fix_action=fix_warning)
        return CheckResult(name=name, status=CheckStatus.PASSED, message=message)

    def check_file_descriptors(self, usage: Dict[ResourceType, Usage]) -> CheckResult:
        return self._evaluate(
            "File Descriptors", ResourceType.FILE_DESCRIPTORS, usage, "",
            fix_warning="Consider closing unused file handles or increasing ulimit",
            fix_critical=f"Increase file descriptor limit with: ulimit -n {self.limits.file_descriptors}",
        )

    def check_disk_space(self, usage: Dict[ResourceType, Usage]) -> CheckResult:
        return self._evaluate(
            "Disk Space", ResourceType.DISK, usage, "GB",
            fix_warning="Disk space running low. Consider cleanup.",
            fix_critical=f"Free up disk space. Minimum required: {self.limits.disk_space_min_gb}GB",
        )

    def check_worktree_count(self, usage: Dict[ResourceType, Usage]) -> CheckResult:
        return self._evaluate(
            "Worktree Count", ResourceType.WORKTREE_COUNT, usage, "",
            fix_warning="Approaching worktree limit. Consider cleanup.",
            fix_critical="Maximum worktree limit reached. Clean up unused worktrees.",
        )

    def check_memory(self, usage: Dict[ResourceType, Usage]) -> CheckResult:
        return self._evaluate(
            "Memory Usage", ResourceType.MEMORY, usage, "MB",
            fix_warning="High memory usage detected. Consider reducing concurrent operations.",
            fix_critical="High memory usage detected. Consider reducing concurrent operations.",
        )

    def check_cpu(self, usage: Dict[ResourceType, Usage]) -> CheckResult:
        return self._evaluate(
            "CPU Usage", ResourceType.CPU, usage, "%",
            fix_warning="High CPU usage. Consider lowering sync concurrency.",
            fix_critical="High CPU usage. Consider lowering sync concurrency.",
        )

    def run_all_checks(self, snapshot: ResourceSnapshot) -> List[CheckResult]:
        """Run every resource check against one snapshot."""
        usage = resource_usage(snapshot, self.limits)
        return [
            self.check_file_descriptors(usage),
            self.check_disk_space(usage),
            self.check_worktree_count(usage),
            self.check_memory(usage),
            self.check_cpu(usage),
        ]

    def build_report(self, snapshot: ResourceSnapshot) -> HealthReport:
        """
        Build a health report.

        File descriptors, disk and worktree count can make the host critical;
        memory and CPU pressure only ever degrade it to a warning.
        """
        checks = self.run_all_checks(snapshot)
        capped = {"Memory Usage", "CPU Usage"}
        status = HealthStatus.HEALTHY
        recommendations: List[str] = []

        for check in checks:
            if check.status == CheckStatus.FAILED and check.name not in capped:
                status = HealthStatus.CRITICAL
            elif check.status in (CheckStatus.FAILED, CheckStatus.WARNING):
                if status == HealthStatus.HEALTHY:
                    status = HealthStatus.WARNING
            if check.fix_action and check.fix_action not in recommendations:
                recommendations.append(check.fix_action)

        if status != HealthStatus.HEALTHY:
            logger.warning(f"Resource health is {status.value}: {'; '.join(recommendations)}")
        return HealthReport(status=status, checks=checks, recommendations=recommendations)
