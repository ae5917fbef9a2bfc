"""Fractional access control over the shared worktree file set.

Some agents get read-only access while others may write. Pattern state lives
in an ``AccessPolicy`` that owns its lock; the controller only reads it, so
``check_access`` is a pure function of (agent, operation, path, policy).
"""

import logging
import re
import threading
from dataclasses import dataclass
from functools import lru_cache
from typing import FrozenSet, Iterable, Literal, Optional, Tuple

from ..core.config import AccessPatternConfig
from ..core.models import AccessLevel, AgentIdentifier

logger = logging.getLogger(__name__)

Operation = Literal["read", "write"]


@lru_cache(maxsize=256)
def _compile_glob(pattern: str) -> "Tuple[re.Pattern, re.Pattern]":
    # '*' matches any run (including '/'), '?' one character, the rest literally
    body = "".join(
        ".*" if ch == "*" else "." if ch == "?" else re.escape(ch)
        for ch in pattern
    )
    return re.compile(f"^{body}$"), re.compile(f"/{body}$")


def match_glob(file_path: str, pattern: str) -> bool:
    """Match the whole path, or any suffix that follows a '/'."""
    full, suffix = _compile_glob(pattern)
    return bool(full.search(file_path) or suffix.search(file_path))


@dataclass(frozen=True)
class AccessPolicySnapshot:
    """Immutable view of the policy at one instant."""
    enabled: bool
    read_only_agents: FrozenSet[AgentIdentifier]
    write_access_agents: FrozenSet[AgentIdentifier]
    default_access_level: AccessLevel
    enforce_access: bool
    global_read_only_patterns: Tuple[str, ...]
    admin_only_patterns: Tuple[str, ...]

    def level_of(self, agent: AgentIdentifier) -> AccessLevel:
        if agent in self.write_access_agents:
            return AccessLevel.WRITE
        if agent in self.read_only_agents:
            return AccessLevel.READ
        return self.default_access_level


class AccessPolicy:
    """Owned, lock-guarded access pattern state.

    An agent is in at most one of the read-only and write-access sets.
    """

    def __init__(
        self,
        enabled: bool = True,
        read_only_agents: Iterable[AgentIdentifier] = (),
        write_access_agents: Iterable[AgentIdentifier] = (),
        default_access_level: AccessLevel = AccessLevel.READ,
        enforce_access: bool = True,
        global_read_only_patterns: Iterable[str] = (),
        admin_only_patterns: Iterable[str] = (),
    ):
        self._lock = threading.RLock()
        self._write_access = set(write_access_agents)
        self._read_only = set(read_only_agents) - self._write_access
        self.enabled = enabled
        self.default_access_level = AccessLevel(default_access_level)
        self.enforce_access = enforce_access
        self.global_read_only_patterns = tuple(global_read_only_patterns)
        self.admin_only_patterns = tuple(admin_only_patterns)

    @classmethod
    def from_config(cls, config: AccessPatternConfig) -> "AccessPolicy":
        return cls(
            enabled=config.enabled,
            read_only_agents=[a.to_identifier() for a in config.read_only_agents],
            write_access_agents=[a.to_identifier() for a in config.write_access_agents],
            default_access_level=config.default_access_level,
            enforce_access=config.enforce_access,
            global_read_only_patterns=config.global_read_only_patterns,
            admin_only_patterns=config.admin_only_patterns,
        )

    def level_of(self, agent: AgentIdentifier) -> AccessLevel:
        with self._lock:
            if agent in self._write_access:
                return AccessLevel.WRITE
            if agent in self._read_only:
                return AccessLevel.READ
            return self.default_access_level

    def grant_write(self, agent: AgentIdentifier) -> None:
        with self._lock:
            self._read_only.discard(agent)
            self._write_access.add(agent)

    def revoke_write(self, agent: AgentIdentifier) -> None:
        with self._lock:
            self._write_access.discard(agent)
            self._read_only.add(agent)

    def snapshot(self) -> AccessPolicySnapshot:
        with self._lock:
            return AccessPolicySnapshot(
                enabled=self.enabled,
                read_only_agents=frozenset(self._read_only),
                write_access_agents=frozenset(self._write_access),
                default_access_level=self.default_access_level,
                enforce_access=self.enforce_access,
                global_read_only_patterns=self.global_read_only_patterns,
                admin_only_patterns=self.admin_only_patterns,
            )


class FractionalAccessController:
    """Decides whether an agent may read or write a path."""

    def __init__(self, policy: Optional[AccessPolicy] = None):
        self.policy = policy or AccessPolicy.from_config(AccessPatternConfig())

    def get_access_level(self, agent: AgentIdentifier) -> AccessLevel:
        return self.policy.level_of(agent)

    def check_access(
        self,
        agent: AgentIdentifier,
        operation: Operation,
        file_path: Optional[str] = None,
    ) -> bool:
        """
        Check whether an agent may perform an operation.

        Args:
            agent: Agent identity
            operation: "read" or "write"
            file_path: Path relative to the worktree root, if any

        Returns:
            True if the operation is permitted
        """
        if operation not in ("read", "write"):
            raise ValueError(f"Unknown operation: {operation}")

        policy = self.policy.snapshot()
        if not policy.enabled:
            return True

        if file_path:
            # Lockfiles and the like stay read-only whoever asks
            if operation == "write" and any(
                match_glob(file_path, p) for p in policy.global_read_only_patterns
            ):
                logger.debug(f"{file_path} is globally read-only")
                return False

            if any(match_glob(file_path, p) for p in policy.admin_only_patterns):
                if policy.level_of(agent) != AccessLevel.ADMIN:
                    logger.warning(f"Agent {agent} denied admin-only access to {file_path}")
                    return False

        if operation == "read":
            return True

        level = policy.level_of(agent)
        if level in (AccessLevel.WRITE, AccessLevel.ADMIN):
            return True

        if policy.enforce_access:
            logger.warning(f"Agent {agent} denied write access (read-only)")
            return False

        logger.info(f"Agent {agent} write access would be denied (enforcement disabled)")
        return True

    def grant_write_access(self, agent: AgentIdentifier) -> None:
        self.policy.grant_write(agent)
        logger.info(f"Granted write access to agent: {agent}")

    def revoke_write_access(self, agent: AgentIdentifier) -> None:
        self.policy.revoke_write(agent)
        logger.info(f"Revoked write access from agent: {agent}")
