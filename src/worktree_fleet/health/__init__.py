"""Resource health checks."""

from .checker import (
    CheckResult,
    CheckStatus,
    HealthReport,
    HealthStatus,
    ResourceHealthChecker,
    Usage,
    classify,
    resource_usage,
)

__all__ = [
    "CheckResult",
    "CheckStatus",
    "HealthReport",
    "HealthStatus",
    "ResourceHealthChecker",
    "Usage",
    "classify",
    "resource_usage",
]
