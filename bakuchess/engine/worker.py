"""
Engine worker interface and the subprocess implementation.

A worker is a dumb line pipe to a UCI engine: it knows nothing about the
protocol. EngineSession owns the only worker handle and is the only thing
that writes to it.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from abc import ABC, abstractmethod

from bakuchess.errors import EngineLoadError

logger = logging.getLogger("bakuchess.engine")


class EngineWorker(ABC):
    """Abstract base class for all engine workers."""

    @abstractmethod
    async def start(self) -> None:
        """
        Bring the engine up.

        Raises:
            EngineLoadError: the engine could not be started at all.
        """
        ...

    @abstractmethod
    def send(self, line: str) -> None:
        """Queue one command line for the engine. Must not block."""
        ...

    @abstractmethod
    async def readline(self) -> str | None:
        """Next line of engine output without its newline, or None once the engine is gone."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class ProcessWorker(EngineWorker):
    """
    Runs a UCI engine binary (e.g. stockfish) as a child process.

    Args:
        path: Executable name or path; extra arguments may follow, shell-style.
        cwd:  Working directory for the engine process.
    """

    def __init__(self, path: str = "stockfish", cwd: str | None = None) -> None:
        self._argv = shlex.split(path)
        self._cwd = cwd
        self._proc: asyncio.subprocess.Process | None = None

    async def start(self) -> None:
        if not self._argv:
            raise EngineLoadError("empty engine path")
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self._argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                cwd=self._cwd,
            )
        except OSError as exc:
            raise EngineLoadError(f"cannot start {self._argv[0]!r}: {exc}") from exc
        logger.info("Started engine %s (pid %s)", self._argv[0], self._proc.pid)

    def send(self, line: str) -> None:
        if self._proc is None or self._proc.stdin is None or self._proc.stdin.is_closing():
            logger.debug("Dropping %r: engine stdin is closed", line)
            return
        self._proc.stdin.write((line + "\n").encode("utf-8"))

    async def readline(self) -> str | None:
        if self._proc is None or self._proc.stdout is None:
            return None
        raw = await self._proc.stdout.readline()
        if not raw:
            return None
        return raw.decode("utf-8", errors="replace").rstrip("\r\n")

    async def close(self) -> None:
        proc = self._proc
        if proc is None:
            return
        self._proc = None
        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()
        try:
            async with asyncio.timeout(2):
                await proc.wait()
        except TimeoutError:
            logger.warning("Engine did not exit; killing pid %s", proc.pid)
            proc.kill()
            await proc.wait()

    def __repr__(self) -> str:
        return f"ProcessWorker({' '.join(self._argv)!r})"
