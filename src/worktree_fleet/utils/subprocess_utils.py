"""Standardized async subprocess utilities for command execution."""

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


class SubprocessError(Exception):
    """Exception raised when a subprocess command fails or times out."""

    def __init__(
        self,
        cmd: str,
        returncode: int,
        stderr: str,
        stdout: str = "",
        cwd: Optional[Path] = None,
        timed_out: bool = False,
    ):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        self.cwd = cwd
        self.timed_out = timed_out

        if timed_out:
            headline = f"Command timed out: {cmd}"
        else:
            headline = f"Command failed with exit code {returncode}: {cmd}"
        if cwd is not None:
            headline += f" (cwd: {cwd})"
        super().__init__(f"{headline}\nstderr: {stderr.strip()}")


@dataclass(frozen=True)
class CompletedCommand:
    """Captured output of a finished command."""
    args: List[str]
    returncode: int
    stdout: str
    stderr: str


async def run_command(
    cmd: Sequence[str],
    *,
    cwd: Optional[Path] = None,
    check: bool = True,
    timeout: Optional[float] = None,
    env: Optional[Dict[str, str]] = None,
) -> CompletedCommand:
    """
    Run a command without blocking the event loop.

    Args:
        cmd: Command and arguments
        cwd: Working directory
        check: Raise SubprocessError on non-zero exit
        timeout: Hard timeout in seconds; the child is killed on expiry
        env: Environment variables

    Returns:
        CompletedCommand with stdout, stderr, returncode

    Raises:
        SubprocessError: If check=True and the command fails, or on timeout
    """
    args = [str(part) for part in cmd]
    cmd_str = " ".join(args)

    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            cwd=str(cwd) if cwd is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
    except OSError as e:
        # Missing binary or unusable cwd surface the same way as a failed run
        raise SubprocessError(cmd=cmd_str, returncode=-1, stderr=str(e), cwd=cwd) from e

    try:
        stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _kill(proc)
        logger.error(f"Command timed out after {timeout}s: {cmd_str}")
        raise SubprocessError(
            cmd=cmd_str,
            returncode=-1,
            stderr=f"timed out after {timeout}s",
            cwd=cwd,
            timed_out=True,
        )
    except asyncio.CancelledError:
        await _kill(proc)
        raise

    result = CompletedCommand(
        args=args,
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout_b.decode(errors="replace"),
        stderr=stderr_b.decode(errors="replace"),
    )

    if check and result.returncode != 0:
        raise SubprocessError(
            cmd=cmd_str,
            returncode=result.returncode,
            stderr=result.stderr,
            stdout=result.stdout,
            cwd=cwd,
        )

    return result


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """Kill a child process and reap it."""
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    await proc.wait()


def check_command_exists(command: str) -> bool:
    """
    Check if a command exists in PATH.

    Args:
        command: Command name to check

    Returns:
        True if command exists, False otherwise
    """
    return shutil.which(command) is not None
