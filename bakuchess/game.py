"""
Game state controller — the sole owner of the current position and history.

Moves from every source (local input, engine, remote peer) come through
apply_move(). Legality is delegated to the rules facade; a rejected move
leaves the position and history exactly as they were.

Listeners receive StateChangedEvent after each mutation. Notifications are
queued and flushed in order, so a listener that calls back into the
controller is processed after the current mutation has fully completed.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Iterable

from bakuchess.board import ChessBoard
from bakuchess.errors import MoveRejected
from bakuchess.events import (
    HistoryEntry,
    Move,
    Position,
    STARTING_FEN,
    StateChangedEvent,
    TerminalStatus,
)

logger = logging.getLogger("bakuchess.game")

StateListener = Callable[[StateChangedEvent], None]


class GameController:
    def __init__(self, rules: ChessBoard | None = None, start_fen: str | None = None) -> None:
        self._start_fen = start_fen or STARTING_FEN
        self._rules = rules or ChessBoard()
        self._rules.load_position(self._start_fen)
        self._position = Position(self._rules.fen)
        self._status = self._rules.terminal_status()
        self._history: list[HistoryEntry] = []
        self._listeners: list[StateListener] = []
        self._outbox: deque[StateChangedEvent] = deque()
        self._flushing = False

    # ------------------------------------------------------------------ #
    # Read-only snapshot                                                   #
    # ------------------------------------------------------------------ #

    @property
    def position(self) -> Position:
        return self._position

    @property
    def history(self) -> tuple[HistoryEntry, ...]:
        return tuple(self._history)

    @property
    def seq(self) -> int:
        """Number of moves applied since the start position."""
        return len(self._history)

    @property
    def status(self) -> TerminalStatus:
        return self._status

    @property
    def is_over(self) -> bool:
        return self._status.is_over

    @property
    def start_fen(self) -> str:
        return self._start_fen

    @property
    def last_move(self) -> Move | None:
        return self._history[-1].move if self._history else None

    def legal_targets(self, square: str) -> set[str]:
        return self._rules.legal_targets(square)

    def moves_uci(self) -> list[str]:
        return [entry.move.uci() for entry in self._history]

    def to_pgn(self, white_name: str = "White", black_name: str = "Black") -> str:
        return self._rules.to_pgn(white_name, black_name)

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------ #
    # Mutation                                                            #
    # ------------------------------------------------------------------ #

    def apply_move(self, move: Move) -> Position:
        """
        Apply `move` and return the new position.

        Raises:
            MoveRejected: game-already-over, out-of-turn or illegal. Nothing changes.
        """
        uci = move.uci()
        if self._status.is_over:
            raise MoveRejected("game-already-over", uci)

        mover = self._rules.piece_color_at(move.origin)
        if mover is None:
            raise MoveRejected("illegal", uci, f"no piece on {move.origin}")
        if mover != self._position.side_to_move:
            raise MoveRejected("out-of-turn", uci, f"{self._position.side_to_move} to move")

        result = self._rules.attempt_move(move)
        if not result.accepted:
            raise MoveRejected("illegal", uci)

        applied = Move(
            origin=move.origin,
            destination=move.destination,
            promotion=move.promotion or self._rules.last_promotion(),
            san=result.san,
            source=move.source,
        )
        self._position = Position(result.resulting_fen)
        self._status = result.terminal_status
        self._history.append(HistoryEntry(applied, self._position))
        logger.debug("Applied %s (%s) from %s", applied.uci(), applied.san, applied.source)
        self._notify(applied)
        return self._position

    def reset(self, start_fen: str | None = None) -> None:
        """Clear history and restore the start position (new game / side switch)."""
        if start_fen is not None:
            self._rules.load_position(start_fen)
            self._start_fen = start_fen
        else:
            self._rules.load_position(self._start_fen)
        self._history.clear()
        self._position = Position(self._rules.fen)
        self._status = self._rules.terminal_status()
        self._notify(None)

    def undo(self, plies: int = 1) -> int:
        """
        Roll back up to `plies` moves. Returns how many were removed.

        The position is rebuilt by replaying what remains from the start
        position; no reverse diffs are kept.
        """
        count = min(max(plies, 0), len(self._history))
        if count == 0:
            return 0
        remaining = [entry.move for entry in self._history[:-count]]
        self._replay(remaining, self._start_fen)
        logger.debug("Undid %d ply(ies); %d remain", count, len(self._history))
        self._notify(self.last_move)
        return count

    def load_history(self, moves: Iterable[str | Move], start_fen: str | None = None) -> None:
        """
        Replace the game with `moves` played from `start_fen` (resync).

        Raises:
            MoveRejected: a move could not be replayed; the current game is kept.
        """
        fen = start_fen or self._start_fen
        parsed: list[Move] = []
        for m in moves:
            if isinstance(m, Move):
                parsed.append(m)
                continue
            try:
                parsed.append(Move.from_uci(m, source="remote"))
            except ValueError as exc:
                raise MoveRejected("illegal", str(m), str(exc)) from exc

        # Validate on a scratch board before touching the real one.
        scratch = ChessBoard(fen)
        for m in parsed:
            if not scratch.attempt_move(m).accepted:
                raise MoveRejected("illegal", m.uci(), "history does not replay")

        self._start_fen = fen
        self._replay(parsed, fen)
        self._notify(self.last_move)

    def _replay(self, moves: list[Move], start_fen: str) -> None:
        self._rules.load_position(start_fen)
        history: list[HistoryEntry] = []
        for m in moves:
            result = self._rules.attempt_move(m)
            if not result.accepted:
                raise RuntimeError(f"replay diverged at {m.uci()}")
            history.append(HistoryEntry(
                Move(m.origin, m.destination, m.promotion, result.san, m.source),
                Position(result.resulting_fen),
            ))
        self._history = history
        self._position = Position(self._rules.fen)
        self._status = self._rules.terminal_status()

    # ------------------------------------------------------------------ #
    # Notification                                                        #
    # ------------------------------------------------------------------ #

    def _notify(self, last_move: Move | None) -> None:
        self._outbox.append(StateChangedEvent(
            position=self._position,
            last_move=last_move,
            status=self._status,
            seq=self.seq,
        ))
        if self._flushing:
            return
        self._flushing = True
        try:
            while self._outbox:
                event = self._outbox.popleft()
                for listener in list(self._listeners):
                    try:
                        listener(event)
                    except Exception:
                        logger.exception("State listener %r failed", listener)
        finally:
            self._flushing = False
