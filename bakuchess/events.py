"""
Typed value objects and event dataclasses — the shared language between the
controller, the engine session, the mode arbiter and every consumer.

The arbiter emits these. The CLI, the WebSocket handler and the tests consume
them. All events are frozen (immutable) so they're safe to pass across async
boundaries and can be serialised to JSON via dataclasses.asdict().
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal

Color = Literal["white", "black"]
Source = Literal["local", "engine", "remote"]
ScoreKind = Literal["cp", "mate"]
StatusKind = Literal["in_progress", "check", "checkmate", "stalemate", "draw"]
ModeKind = Literal["solo", "multiplayer"]

STARTING_FEN = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"
PROMOTION_PIECES = ("q", "r", "b", "n")


def opposite(color: Color) -> Color:
    return "black" if color == "white" else "white"


# --------------------------------------------------------------------------- #
# Value objects                                                                #
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class Position:
    """Immutable FEN snapshot. Side to move is always derived, never stored twice."""

    fen: str = STARTING_FEN

    @property
    def side_to_move(self) -> Color:
        fields = self.fen.split()
        return "black" if len(fields) > 1 and fields[1] == "b" else "white"

    @property
    def fullmove_number(self) -> int:
        fields = self.fen.split()
        return int(fields[5]) if len(fields) > 5 and fields[5].isdigit() else 1


@dataclass(frozen=True)
class Move:
    origin: str
    destination: str
    promotion: str | None = None
    san: str | None = None
    source: Source = "local"

    @classmethod
    def from_uci(cls, text: str, source: Source = "local") -> Move:
        """Parse coordinate notation (e2e4, e7e8q). Raises ValueError on malformed input."""
        s = text.strip().lower()
        if len(s) not in (4, 5):
            raise ValueError(f"not a coordinate move: {text!r}")
        origin, destination = s[:2], s[2:4]
        for sq in (origin, destination):
            if sq[0] not in "abcdefgh" or sq[1] not in "12345678":
                raise ValueError(f"not a coordinate move: {text!r}")
        promotion = s[4] if len(s) == 5 else None
        if promotion is not None and promotion not in PROMOTION_PIECES:
            raise ValueError(f"bad promotion piece in {text!r}")
        return cls(origin=origin, destination=destination, promotion=promotion, source=source)

    def uci(self) -> str:
        return f"{self.origin}{self.destination}{self.promotion or ''}"


@dataclass(frozen=True)
class HistoryEntry:
    move: Move
    position: Position  # position after the move


@dataclass(frozen=True)
class TerminalStatus:
    kind: StatusKind = "in_progress"
    side: Color | None = None   # side in check, or the winner on checkmate
    reason: str | None = None   # draw flavour: insufficient_material, fifty_move, …

    @property
    def is_over(self) -> bool:
        return self.kind in ("checkmate", "stalemate", "draw")


@dataclass(frozen=True)
class EngineEvaluation:
    """One engine "info" report, canonical (white-positive). Replaced, never merged."""

    depth: int | None = None
    score: int | None = None
    score_kind: ScoreKind | None = None
    pv: tuple[str, ...] = ()
    best_move: str | None = None
    nodes: int | None = None
    nps: int | None = None


@dataclass(frozen=True)
class Mode:
    kind: ModeKind = "solo"
    peer_present: bool = False


SOLO = Mode()


@dataclass(frozen=True)
class ChatMessage:
    identity: str
    text: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class RoomSnapshot:
    """The room's authoritative view, as delivered on join or resync."""

    room_id: str
    participants: tuple[str, ...]
    seq: int
    fen: str
    history: tuple[str, ...]   # UCI moves from the starting position
    chat: tuple[ChatMessage, ...] = ()
    start_fen: str = STARTING_FEN
    seats: dict[str, Color] = field(default_factory=dict)   # identity -> colour


# --------------------------------------------------------------------------- #
# Notifications                                                                #
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class StateChangedEvent:
    position: Position
    last_move: Move | None
    status: TerminalStatus
    seq: int


@dataclass(frozen=True)
class MoveRejectedEvent:
    move: str
    reason: str
    source: Source
    detail: str = ""


@dataclass(frozen=True)
class EngineReadyEvent:
    name: str | None = None


@dataclass(frozen=True)
class EvaluationEvent:
    token: int
    evaluation: EngineEvaluation


@dataclass(frozen=True)
class EngineBestMoveEvent:
    token: int
    move: str | None   # None: the engine had no legal move
    fen: str           # position the search was started from


@dataclass(frozen=True)
class EngineNoMoveEvent:
    status: TerminalStatus


@dataclass(frozen=True)
class EngineErrorEvent:
    reason: str
    detail: str = ""
    token: int | None = None   # set when a search was in flight


@dataclass(frozen=True)
class ModeChangedEvent:
    mode: Mode
    reason: str


@dataclass(frozen=True)
class ChatEvent:
    message: ChatMessage


@dataclass(frozen=True)
class DesyncEvent:
    expected: int
    got: int


EngineEvent = EngineReadyEvent | EvaluationEvent | EngineBestMoveEvent | EngineErrorEvent

# Union type for type-safe pattern matching in consumers
GameEvent = (
    StateChangedEvent
    | MoveRejectedEvent
    | EngineReadyEvent
    | EvaluationEvent
    | EngineBestMoveEvent
    | EngineNoMoveEvent
    | EngineErrorEvent
    | ModeChangedEvent
    | ChatEvent
    | DesyncEvent
)


def to_json_dict(event: Any) -> dict:
    """Event → JSON-ready dict with a "type" discriminator and ISO timestamps."""
    data = dataclasses.asdict(event)

    def _fix(value: Any) -> Any:
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        if isinstance(value, dict):
            return {k: _fix(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [_fix(v) for v in value]
        return value

    return {"type": type(event).__name__, **_fix(data)}
