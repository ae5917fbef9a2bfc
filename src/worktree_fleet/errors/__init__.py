"""Error types and user-facing error translation."""

from .exceptions import (
    DuplicateTaskError,
    GatewayFailure,
    InvalidScheduleOrStrategyError,
    InvalidTransitionError,
    NotFoundError,
    PathConflictError,
    SyncError,
    WorktreeError,
)
from .translator import ErrorTranslator, UserFriendlyError

__all__ = [
    "DuplicateTaskError",
    "GatewayFailure",
    "InvalidScheduleOrStrategyError",
    "InvalidTransitionError",
    "NotFoundError",
    "PathConflictError",
    "SyncError",
    "WorktreeError",
    "ErrorTranslator",
    "UserFriendlyError",
]
