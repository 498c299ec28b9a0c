"""
Error taxonomy shared by the controller, engine session and mode arbiter.

None of these are fatal: each one either rejects a single operation or
degrades a mode (solo play without an engine, multiplayer back to solo).
"""

from __future__ import annotations

from typing import Literal

RejectReason = Literal["illegal", "out-of-turn", "game-already-over"]
UnavailableReason = Literal["load-failure", "handshake-timeout", "worker-exited"]


class MoveRejected(Exception):
    """A move was refused. The position and history are unchanged."""

    def __init__(self, reason: RejectReason, move: str = "", detail: str = "") -> None:
        self.reason = reason
        self.move = move
        self.detail = detail
        message = f"{move or 'move'} rejected: {reason}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class EngineUnavailable(Exception):
    """The engine session is offline; solo play is disabled until a new session is built."""

    def __init__(self, reason: UnavailableReason, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"engine unavailable: {reason}" + (f" ({detail})" if detail else ""))


class EngineLoadError(Exception):
    """Raised by a worker that cannot start its engine."""


class MalformedEngineOutput(Exception):
    """A line of engine output that could not be understood. Logged, never surfaced."""


class TransportDesync(Exception):
    """A remote move arrived with an unexpected sequence number."""

    def __init__(self, expected: int, got: int) -> None:
        self.expected = expected
        self.got = got
        super().__init__(f"expected move #{expected}, got #{got}")


class ConnectionLost(Exception):
    """The real-time transport went away."""
