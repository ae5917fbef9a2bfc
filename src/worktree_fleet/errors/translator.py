"""Translate git/tar failures into short, actionable hints."""

import re
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class UserFriendlyError:
    """User-friendly error representation."""
    original_error: Exception
    title: str
    explanation: str
    actions: List[str]


class ErrorTranslator:
    """Translate technical errors to user-friendly messages."""

    ERROR_PATTERNS = {
        r"timed out": {
            "title": "Git operation timed out",
            "explanation": "The command exceeded the configured operation timeout and was killed.",
            "actions": [
                "Raise worktree.operation_timeout for large repositories",
                "Check for a stuck credential prompt or a slow remote",
            ],
        },
        r"already exists": {
            "title": "Branch or path already exists",
            "explanation": "git refused to create a branch or directory that is already present.",
            "actions": [
                "Pick a new branch name for the task",
                "Destroy the old worktree with delete_branch=True",
            ],
        },
        r"already checked out|is already used by worktree": {
            "title": "Branch checked out in another worktree",
            "explanation": "A branch can only be checked out in one worktree at a time.",
            "actions": [
                "Reuse the worktree that already has the branch",
                "Remove the other worktree first",
            ],
        },
        r"not a git repository": {
            "title": "Repository root is not a git repository",
            "explanation": "The configured repo_root does not contain a git repository.",
            "actions": ["Point worktree.repo_root at the shared clone"],
        },
        r"is not a working tree|is a missing linked working tree": {
            "title": "Worktree is not registered with git",
            "explanation": "git has no record of this worktree; it may have been removed externally.",
            "actions": ["Destroy the record with force=True to drop it"],
        },
        r"No space left on device": {
            "title": "Disk full",
            "explanation": "The filesystem holding the worktrees ran out of space.",
            "actions": [
                "Run cleanup_stale() or cleanup_errors() to reclaim space",
                "Lower resources.limits.max_worktrees_per_machine",
            ],
        },
        r"Permission denied": {
            "title": "Permission denied",
            "explanation": "The process cannot write to the worktree or repository directory.",
            "actions": ["Check ownership of the worktree base path"],
        },
        r"CONFLICT|could not apply|Merge conflict": {
            "title": "Merge conflict",
            "explanation": "Upstream changes conflict with the worktree branch; resolve them before retrying.",
            "actions": [
                "Resolve the conflicted files and continue the merge/rebase",
                "Set the status back to active once resolved",
            ],
        },
        r"Could not resolve host|unable to access|Connection refused": {
            "title": "Remote unreachable",
            "explanation": "git could not reach the remote.",
            "actions": ["Check network connectivity and remote credentials"],
        },
    }

    def translate(self, error: Exception) -> Optional[UserFriendlyError]:
        """Return a friendly description, or None when nothing matches."""
        error_text = str(error)
        stderr = getattr(error, "stderr", None)
        if stderr:
            error_text = f"{error_text}\n{stderr}"

        for pattern, info in self.ERROR_PATTERNS.items():
            if re.search(pattern, error_text, re.IGNORECASE):
                return UserFriendlyError(
                    original_error=error,
                    title=info["title"],
                    explanation=info["explanation"],
                    actions=list(info["actions"]),
                )
        return None

    def hint(self, error: Exception) -> Optional[str]:
        """Short one-line hint for event payloads."""
        translated = self.translate(error)
        return translated.title if translated else None
