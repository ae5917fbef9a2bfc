"""Polling monitor for host resources consumed by worktrees.

Each tick samples file descriptors, free disk on the worktree base path, the
number of worktrees git itself knows about, process memory and CPU. At most
one alert per resource per tick is emitted: critical outranks warning. The
monitor never destroys anything; ``auto_reclaim`` only flags alerts for an
external reclaim policy.
"""

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import psutil

from ..core.config import ResourceLimitsConfig, ResourceMonitorConfig
from ..core.events import ErrorEvent, EventBus, ResourceAlertEvent
from ..core.models import AlertSeverity, ResourceAlert, ResourceSnapshot, ResourceType
from ..errors.exceptions import InvalidScheduleOrStrategyError
from ..errors.translator import ErrorTranslator
from ..health.checker import HealthReport, ResourceHealthChecker, classify, resource_usage
from ..utils.error_handling import ErrorContext
from ..vcs.gateway import VersionControlGateway

logger = logging.getLogger(__name__)

# Creation is refused above this share of the descriptor limit
FD_CREATION_CEILING = 0.9

# Alerts an external policy can act on by removing worktrees
_RECLAIMABLE = (ResourceType.WORKTREE_COUNT, ResourceType.DISK)


@dataclass(frozen=True)
class CreationCheck:
    """Whether a new worktree fits within the resource limits."""
    allowed: bool
    reason: Optional[str] = None
    checks: Dict[str, bool] = field(default_factory=dict)


class ResourceMonitor:
    """Samples resources on a timer and emits threshold alerts."""

    def __init__(
        self,
        config: ResourceMonitorConfig,
        repo_root: Path,
        worktree_base: Path,
        gateway: VersionControlGateway,
        event_bus: Optional[EventBus] = None,
        process: Optional[psutil.Process] = None,
    ):
        """
        Initialize resource monitor.

        Args:
            config: Poll interval, limits and thresholds
            repo_root: Repository whose worktrees are counted
            worktree_base: Directory whose filesystem is checked for free space
            gateway: Gateway used for ``git worktree list``
            event_bus: Bus receiving resource alerts and sampling errors
            process: Process to measure (defaults to the current one)
        """
        if config.poll_interval <= 0:
            raise InvalidScheduleOrStrategyError(
                f"poll_interval must be > 0, got {config.poll_interval}"
            )
        if not 0 < config.warning_threshold < config.critical_threshold:
            raise InvalidScheduleOrStrategyError(
                f"Invalid thresholds: warning={config.warning_threshold}, "
                f"critical={config.critical_threshold}"
            )

        self.config = config
        self.repo_root = Path(repo_root)
        self.worktree_base = Path(worktree_base)
        self.gateway = gateway
        self.event_bus = event_bus or EventBus()
        self._process = process or psutil.Process()
        self._health_checker = ResourceHealthChecker(
            config.limits, config.warning_threshold, config.critical_threshold
        )
        self._translator = ErrorTranslator()
        self._last_snapshot: Optional[ResourceSnapshot] = None
        self._task: Optional[asyncio.Task] = None

        # First cpu_percent(None) call only primes the measurement
        self._process.cpu_percent(None)

    @property
    def limits(self) -> ResourceLimitsConfig:
        return self.config.limits

    @property
    def last_snapshot(self) -> Optional[ResourceSnapshot]:
        return self._last_snapshot

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _count_fds(self) -> int:
        if hasattr(self._process, "num_fds"):
            return self._process.num_fds()
        return self._process.num_handles()

    def _free_disk_gb(self) -> float:
        # The base path may not exist until the first worktree is created
        path = self.worktree_base
        while not path.exists() and path != path.parent:
            path = path.parent
        return psutil.disk_usage(str(path)).free / (1024 ** 3)

    async def _count_git_worktrees(self) -> int:
        """Linked worktrees registered with git (main worktree excluded)."""
        result = await self.gateway.run(self.repo_root, ["worktree", "list", "--porcelain"])
        count = sum(1 for line in result.stdout.splitlines() if line.startswith("worktree "))
        return max(0, count - 1)

    async def sample(self) -> ResourceSnapshot:
        """Take a fresh snapshot and remember it as the latest."""
        file_descriptors = await asyncio.to_thread(self._count_fds)
        disk_gb = await asyncio.to_thread(self._free_disk_gb)
        worktrees = await self._count_git_worktrees()
        memory_mb = self._process.memory_info().rss / 1024 / 1024
        cpu = self._process.cpu_percent(None)

        snapshot = ResourceSnapshot(
            file_descriptors_used=file_descriptors,
            disk_space_available_gb=disk_gb,
            active_worktrees=worktrees,
            memory_used_mb=memory_mb,
            cpu_usage_percent=cpu,
        )
        self._last_snapshot = snapshot
        return snapshot

    def evaluate(self, snapshot: ResourceSnapshot) -> List[ResourceAlert]:
        """Alerts for one snapshot; pure, at most one per resource."""
        alerts = []
        for resource_type, usage in resource_usage(snapshot, self.limits).items():
            severity = classify(
                resource_type,
                usage.ratio,
                self.config.warning_threshold,
                self.config.critical_threshold,
            )
            if severity is None:
                continue

            if resource_type == ResourceType.DISK:
                message = (
                    f"Free disk space {usage.current:.2f}GB "
                    f"{'below' if severity == AlertSeverity.CRITICAL else 'approaching'} "
                    f"minimum {usage.limit:g}GB"
                )
            else:
                message = (
                    f"{resource_type.value} at {usage.ratio:.0%} of limit "
                    f"({usage.current:g}/{usage.limit:g})"
                )

            alerts.append(ResourceAlert(
                resource_type=resource_type,
                severity=severity,
                current_value=usage.current,
                limit_value=usage.limit,
                message=message,
                reclaim_recommended=self.config.auto_reclaim and resource_type in _RECLAIMABLE,
            ))
        return alerts

    async def check_resources(self) -> List[ResourceAlert]:
        """Sample, evaluate and publish alerts."""
        snapshot = await self.sample()
        alerts = self.evaluate(snapshot)
        for alert in alerts:
            level = logging.ERROR if alert.severity == AlertSeverity.CRITICAL else logging.WARNING
            logger.log(level, f"Resource alert ({alert.severity.value}): {alert.message}")
            self.event_bus.publish(ResourceAlertEvent(alert=alert))
        return alerts

    async def _tick(self) -> None:
        with ErrorContext("resource sampling", raise_on_error=False, logger_instance=logger) as ctx:
            await self.check_resources()
        if ctx.error is not None:
            self.event_bus.publish(ErrorEvent(
                operation="resource_monitor",
                error=ctx.error,
                context={"repo_root": str(self.repo_root)},
                hint=self._translator.hint(ctx.error),
            ))

    async def run(self) -> None:
        """Main monitoring loop; the first tick runs immediately."""
        logger.info(f"Resource monitor starting (every {self.config.poll_interval}s)")
        while True:
            await self._tick()
            await asyncio.sleep(self.config.poll_interval)

    def start(self) -> bool:
        """Schedule the loop on the running event loop; False if already running."""
        if self.running:
            return False
        self._task = asyncio.get_running_loop().create_task(self.run())
        return True

    async def stop(self) -> None:
        """Stop the monitoring loop."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        logger.info("Resource monitor stopped")

    async def can_create_worktree(self) -> CreationCheck:
        """Check whether one more worktree fits within the limits."""
        snapshot = await self.sample()
        limits = self.limits
        checks = {"file_descriptors": True, "disk_space": True, "worktree_count": True}
        reasons = []

        if limits.file_descriptors and (
            snapshot.file_descriptors_used > limits.file_descriptors * FD_CREATION_CEILING
        ):
            checks["file_descriptors"] = False
            reasons.append(
                f"File descriptor usage too high: {snapshot.file_descriptors_used}/"
                f"{limits.file_descriptors}"
            )
        if limits.disk_space_min_gb and snapshot.disk_space_available_gb < limits.disk_space_min_gb:
            checks["disk_space"] = False
            reasons.append(
                f"Insufficient disk space: {snapshot.disk_space_available_gb:.2f}GB free, "
                f"{limits.disk_space_min_gb}GB required"
            )
        if limits.max_worktrees_per_machine and (
            snapshot.active_worktrees >= limits.max_worktrees_per_machine
        ):
            checks["worktree_count"] = False
            reasons.append(
                f"Worktree limit reached: {snapshot.active_worktrees}/"
                f"{limits.max_worktrees_per_machine}"
            )

        return CreationCheck(
            allowed=not reasons,
            reason="; ".join(reasons) if reasons else None,
            checks=checks,
        )

    async def check_health(self) -> HealthReport:
        snapshot = await self.sample()
        return self._health_checker.build_report(snapshot)
