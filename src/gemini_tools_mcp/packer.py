"""
Repository packing for codebase questions.

RepomixPacker runs the repomix CLI against a directory and yields the
path of the packed XML document, removing it afterwards.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import tempfile
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from pathlib import Path
from typing import Protocol

from gemini_tools_mcp.config import DEFAULT_REPOMIX_COMMAND, LOGGER_NAME, PACKER_TIMEOUT
from gemini_tools_mcp.types import ErrorCategory, GeminiToolError

logger = logging.getLogger(LOGGER_NAME)

TEMP_PREFIX = "repomix-"


class RepositoryPacker(Protocol):
    def pack(self, directory: str, options: str | None = None) -> AbstractAsyncContextManager[Path]: ...


def _is_own_temp_file(path: Path) -> bool:
    return path.parent == Path(tempfile.gettempdir()) and path.name.startswith(TEMP_PREFIX)


class RepomixPacker:
    """Packs a directory into one XML document with the repomix CLI."""

    def __init__(self, command: str = DEFAULT_REPOMIX_COMMAND, timeout: float = PACKER_TIMEOUT):
        self._command = shlex.split(command)
        self._timeout = timeout

    @asynccontextmanager
    async def pack(self, directory: str, options: str | None = None) -> AsyncIterator[Path]:
        root = Path(directory).expanduser()
        if not root.is_dir():
            raise GeminiToolError(
                ErrorCategory.FILE_ERROR,
                f"Directory not found: {directory}",
                {"path": directory},
            )

        fd, tmp_path = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=".xml")
        os.close(fd)
        output = Path(tmp_path)
        try:
            await self._run(root, output, options)
            yield output
        finally:
            if _is_own_temp_file(output):
                output.unlink(missing_ok=True)

    async def _run(self, root: Path, output: Path, options: str | None) -> None:
        command = [*self._command, str(root), "--output", str(output)]
        if options:
            command.extend(shlex.split(options))
        logger.info("📦 Packing repository: %s", root)
        logger.debug("Executing: %s", " ".join(command))

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise GeminiToolError(
                ErrorCategory.FILE_ERROR,
                f"Repository packer not available ({self._command[0]}): {e}",
            ) from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.communicate()
            raise GeminiToolError(
                ErrorCategory.SERVER_ERROR,
                f"Repository packing timed out after {self._timeout:.0f} seconds",
            ) from e

        if process.returncode != 0:
            raise GeminiToolError(
                ErrorCategory.FILE_ERROR,
                f"Repository packing failed with status {process.returncode}: "
                f"{stderr.decode('utf-8', errors='replace').strip()[:500]}",
            )
        if not output.exists() or output.stat().st_size == 0:
            raise GeminiToolError(ErrorCategory.FILE_ERROR, "Repository packing produced no output")
