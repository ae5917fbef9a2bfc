"""Archive a worktree directory before it is removed."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from ..utils.subprocess_utils import run_command

logger = logging.getLogger(__name__)


class Archiver(ABC):
    @abstractmethod
    async def archive(self, source: Path, destination_dir: Path, label: str) -> Path:
        """Archive ``source`` into ``destination_dir`` and return the archive path."""


class TarArchiver(Archiver):
    """Write ``<label>-<epoch-ms>.tar.gz`` using the ``tar`` binary."""

    def __init__(self, timeout: Optional[float] = 60.0, tar_binary: str = "tar"):
        self.timeout = timeout
        self.tar_binary = tar_binary

    async def archive(self, source: Path, destination_dir: Path, label: str) -> Path:
        source = Path(source)
        destination_dir = Path(destination_dir)
        await asyncio.to_thread(destination_dir.mkdir, parents=True, exist_ok=True)

        archive_file = destination_dir / f"{label}-{int(time.time() * 1000)}.tar.gz"
        await run_command(
            [
                self.tar_binary, "-czf", str(archive_file),
                "-C", str(source.parent), source.name,
            ],
            timeout=self.timeout,
        )
        logger.info(f"Archived {source} to {archive_file}")
        return archive_file
