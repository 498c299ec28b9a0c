"""
Engine transcript — writes the full UCI back-and-forth with the engine to a text file.

One log file is created per engine session, named by timestamp. Each line
is prefixed with the time and the direction (">>" command sent, "<<" engine
output). Plug an instance in as EngineSession's `sink`.

Log files land in ./logs/ by default (created automatically).
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

_SEP = "=" * 80


class EngineTranscript:
    def __init__(self, log_dir: Path, engine_name: str = "engine") -> None:
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self._path = log_dir / f"uci_{timestamp}_{_safe(engine_name)}.log"
        self._write(
            f"{_SEP}\n"
            f"  BakuChess — UCI transcript ({engine_name})\n"
            f"  Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n"
            f"{_SEP}\n"
        )

    def __call__(self, direction: str, line: str) -> None:
        self._write(f"{datetime.now().strftime('%H:%M:%S.%f')[:-3]} {direction} {line}\n")

    def _write(self, text: str) -> None:
        with self._path.open("a", encoding="utf-8") as f:
            f.write(text)

    @property
    def path(self) -> Path:
        return self._path


def _safe(name: str) -> str:
    """Strip characters that are problematic in filenames."""
    return "".join(c if c.isalnum() or c in "_-" else "_" for c in name).strip() or "engine"
