"""
Engine session factory.

create_session() is the single entry point for building an EngineSession
from configuration. It does not start the session; callers await start().

To add a new worker type (e.g. a remote engine over a socket):
  1. Create bakuchess/engine/<name>.py implementing EngineWorker
  2. Pass it to EngineSession here
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from bakuchess.engine.session import EngineSession, LogSink, SearchLimits, SessionState
from bakuchess.engine.worker import EngineWorker, ProcessWorker
from bakuchess.engine_log import EngineTranscript

if TYPE_CHECKING:
    from bakuchess.config import EngineConfig

__all__ = [
    "EngineSession",
    "EngineWorker",
    "ProcessWorker",
    "SearchLimits",
    "SessionState",
    "create_session",
]


def create_session(
    engine_cfg: EngineConfig,
    sink: LogSink | None = None,
    worker: EngineWorker | None = None,
) -> EngineSession:
    """
    Build a fresh, unstarted session.

    When no sink is given and engine_cfg.transcript_dir is set, a transcript
    file is opened for this session.
    """
    if sink is None and engine_cfg.transcript_dir:
        sink = EngineTranscript(
            Path(engine_cfg.transcript_dir),
            engine_name=os.path.basename(engine_cfg.path.split()[0]) if engine_cfg.path.strip() else "engine",
        )
    return EngineSession(
        worker or ProcessWorker(engine_cfg.path),
        handshake_timeout=engine_cfg.handshake_timeout,
        options=engine_cfg.options,
        sink=sink,
        limits=engine_cfg.limits,
    )
