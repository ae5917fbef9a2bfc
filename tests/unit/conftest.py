"""Shared fakes and fixtures for unit tests."""

import asyncio
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from worktree_fleet.core.config import WorktreeConfig
from worktree_fleet.core.events import EventBus
from worktree_fleet.utils.subprocess_utils import SubprocessError
from worktree_fleet.vcs.gateway import GitResult, VersionControlGateway
from worktree_fleet.workspace.archive import Archiver
from worktree_fleet.workspace.lifecycle import WorktreeLifecycleManager


class FakeGateway(VersionControlGateway):
    """In-memory git stand-in scripted per subcommand prefix.

    ``worktree add`` creates the directory with a ``.git`` file and
    ``worktree remove`` deletes it, so on-disk effects can be asserted.
    """

    def __init__(self):
        self.calls: List[Tuple[Path, Tuple[str, ...]]] = []
        self.outputs: Dict[str, str] = {"rev-parse HEAD": "abc123\n"}
        self._failures: Dict[str, dict] = {}
        self._delays: Dict[str, float] = {}
        self.worktrees: List[Path] = []

    def fail(self, prefix: str, stderr: str = "fatal: boom", returncode: int = 1,
             times: Optional[int] = None, cwd: Optional[Path] = None) -> None:
        """Make commands starting with ``prefix`` fail (``times`` times, or always).

        With ``cwd`` only commands run in that directory fail.
        """
        self._failures[prefix] = {
            "stderr": stderr, "returncode": returncode, "times": times, "cwd": cwd,
        }

    def respond(self, prefix: str, stdout: str) -> None:
        self.outputs[prefix] = stdout

    def delay(self, prefix: str, seconds: float) -> None:
        self._delays[prefix] = seconds

    def commands(self) -> List[str]:
        return [" ".join(args) for _, args in self.calls]

    def ran(self, prefix: str) -> bool:
        return any(cmd.startswith(prefix) for cmd in self.commands())

    @staticmethod
    def _match(mapping: Dict, key: str):
        for prefix in sorted(mapping, key=len, reverse=True):
            if key.startswith(prefix):
                return prefix
        return None

    async def run(
        self,
        working_dir: Path,
        args: Sequence[str],
        *,
        timeout: Optional[float] = None,
        check: bool = True,
    ) -> GitResult:
        args = tuple(str(a) for a in args)
        self.calls.append((Path(working_dir), args))
        key = " ".join(args)

        delay_prefix = self._match(self._delays, key)
        if delay_prefix is not None:
            await asyncio.sleep(self._delays[delay_prefix])

        fail_prefix = self._match(self._failures, key)
        if fail_prefix is not None and self._failures[fail_prefix]["cwd"] not in (None, Path(working_dir)):
            fail_prefix = None
        if fail_prefix is not None:
            failure = self._failures[fail_prefix]
            if failure["times"] is not None:
                failure["times"] -= 1
                if failure["times"] <= 0:
                    del self._failures[fail_prefix]
            if check:
                raise SubprocessError(
                    cmd=f"git -C {working_dir} {key}",
                    returncode=failure["returncode"],
                    stderr=failure["stderr"],
                    cwd=Path(working_dir),
                )
            return GitResult(stdout="", stderr=failure["stderr"], returncode=failure["returncode"])

        if args[:2] == ("worktree", "add"):
            path = Path(args[4])
            path.mkdir(parents=True, exist_ok=True)
            (path / ".git").write_text("gitdir: /fake/.git/worktrees/x\n")
            self.worktrees.append(path)
        elif args[:2] == ("worktree", "remove"):
            path = Path(args[-1])
            if path.exists():
                shutil.rmtree(path)
            if path in self.worktrees:
                self.worktrees.remove(path)
        elif args[:3] == ("worktree", "list", "--porcelain"):
            lines = [f"worktree {working_dir}\nHEAD abc123\nbranch refs/heads/main\n"]
            lines += [f"worktree {p}\nHEAD abc123\n" for p in self.worktrees]
            return GitResult(stdout="\n".join(lines), stderr="", returncode=0)

        output_prefix = self._match(self.outputs, key)
        stdout = self.outputs[output_prefix] if output_prefix is not None else ""
        return GitResult(stdout=stdout, stderr="", returncode=0)


class FakeArchiver(Archiver):
    """Records archive requests and writes an empty archive file."""

    def __init__(self):
        self.calls: List[Tuple[Path, Path, str]] = []

    async def archive(self, source: Path, destination_dir: Path, label: str) -> Path:
        self.calls.append((source, destination_dir, label))
        destination_dir.mkdir(parents=True, exist_ok=True)
        archive_file = destination_dir / f"{label}-0.tar.gz"
        archive_file.write_bytes(b"")
        return archive_file


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def archiver():
    return FakeArchiver()


@pytest.fixture
def repo_root(tmp_path):
    root = tmp_path / "repo"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def worktree_config(repo_root):
    return WorktreeConfig(repo_root=repo_root)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def recorded_events(event_bus):
    """Every event published on the shared bus, in order."""
    events = []
    event_bus.subscribe(events.append)
    return events


@pytest.fixture
def manager(worktree_config, gateway, event_bus, archiver):
    return WorktreeLifecycleManager(worktree_config, gateway, event_bus, archiver)
