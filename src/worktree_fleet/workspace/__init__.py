"""Worktree lifecycle, access control, sync and cleanup."""

from .access import AccessPolicy, AccessPolicySnapshot, FractionalAccessController, match_glob
from .archive import Archiver, TarArchiver
from .cleanup import WorktreeCleanup
from .lifecycle import WorktreeLifecycleManager
from .sync import WorktreeSync

__all__ = [
    "AccessPolicy",
    "AccessPolicySnapshot",
    "FractionalAccessController",
    "match_glob",
    "Archiver",
    "TarArchiver",
    "WorktreeCleanup",
    "WorktreeLifecycleManager",
    "WorktreeSync",
]
