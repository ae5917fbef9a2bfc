"""Version-control gateway: the only place git is executed."""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence

from ..utils.subprocess_utils import run_command

logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "WORKTREE_FLEET_GIT_TOKEN"

# Shell credential helper; git appends the action (get/store/erase) as $1
CREDENTIAL_HELPER = (
    '!f() { test "$1" = get || exit 0; echo username=x-access-token; '
    f'echo "password=${TOKEN_ENV_VAR}"; }}; f'
)


@dataclass(frozen=True)
class GitResult:
    """Output of one git invocation."""
    stdout: str
    stderr: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class VersionControlGateway(ABC):
    """Run a VCS command in a working directory.

    Implementations hold no shared mutable state, so concurrent calls against
    different directories are independent. A non-zero exit raises
    ``GatewayFailure`` unless ``check=False``; callers decide whether a
    failure is fatal.
    """

    @abstractmethod
    async def run(
        self,
        working_dir: Path,
        args: Sequence[str],
        *,
        timeout: Optional[float] = None,
        check: bool = True,
    ) -> GitResult:
        ...


class GitGateway(VersionControlGateway):
    """Subprocess-backed gateway for the ``git`` binary."""

    def __init__(
        self,
        timeout: float = 60.0,
        github_token: Optional[str] = None,
        git_binary: str = "git",
    ):
        self.timeout = timeout
        self.token = github_token
        self.git_binary = git_binary

    def _build_env(self) -> Optional[Dict[str, str]]:
        if not self.token:
            return None
        env = os.environ.copy()
        # Credentials for authenticated fetch/push: an empty helper resets any
        # configured ones, then an inline helper answers "get" from the env
        env['GIT_CONFIG_COUNT'] = '2'
        env['GIT_CONFIG_KEY_0'] = 'credential.helper'
        env['GIT_CONFIG_VALUE_0'] = ''
        env['GIT_CONFIG_KEY_1'] = 'credential.helper'
        env['GIT_CONFIG_VALUE_1'] = CREDENTIAL_HELPER
        env[TOKEN_ENV_VAR] = self.token
        # Never block on an interactive credential prompt
        env['GIT_TERMINAL_PROMPT'] = '0'
        return env

    async def run(
        self,
        working_dir: Path,
        args: Sequence[str],
        *,
        timeout: Optional[float] = None,
        check: bool = True,
    ) -> GitResult:
        cmd = [self.git_binary, "-C", str(working_dir), *[str(a) for a in args]]
        logger.debug(f"Running: {' '.join(cmd)}")

        result = await run_command(
            cmd,
            check=check,
            timeout=timeout if timeout is not None else self.timeout,
            env=self._build_env(),
        )
        return GitResult(
            stdout=result.stdout,
            stderr=result.stderr,
            returncode=result.returncode,
        )
