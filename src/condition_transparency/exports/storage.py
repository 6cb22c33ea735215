"""
Export file storage.

ExportStorage is the seam to the host's file or object store. The local
adapter writes under a root directory from a worker thread and gives up
after a timeout.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger("condition-transparency.exports")


class ExportStorage(Protocol):
    async def write(self, relative_path: str, content: bytes) -> str:
        """Persist content and return a reference to it."""
        ...


class LocalExportStorage:
    """Writes export files under ``root``.

    Attributes:
        root: Base directory for export files
        timeout: Seconds allowed per write
    """

    def __init__(self, root: Path, timeout: float = 10.0) -> None:
        self.root = root
        self.timeout = timeout

    async def write(self, relative_path: str, content: bytes) -> str:
        """
        Raises:
            asyncio.TimeoutError: If the write does not finish in time
            OSError: If the file cannot be written
        """
        target = self.root / relative_path
        await asyncio.wait_for(asyncio.to_thread(self._write, target, content), timeout=self.timeout)
        logger.debug(f"Wrote export file {target} ({len(content)} bytes)")
        return str(target)

    @staticmethod
    def _write(target: Path, content: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)


__all__ = ["ExportStorage", "LocalExportStorage"]
