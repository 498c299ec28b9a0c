"""
Thin facade over python-chess — the rules collaborator.

Provides the exact interface the game controller needs (load a position,
attempt a move, whose turn it is, legal targets of a square) without leaking
python-chess internals into the rest of the codebase (easier to unit-test
and swap out).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import chess
import chess.pgn

from bakuchess.events import Color, Move, STARTING_FEN, TerminalStatus


@dataclass(frozen=True)
class MoveResult:
    accepted: bool
    resulting_fen: str
    san: str | None = None
    terminal_status: TerminalStatus = TerminalStatus()
    error: str = ""   # "", "illegal" or "format"


class ChessBoard:
    """Facade over chess.Board. Mutable: the controller owns the only instance."""

    def __init__(self, fen: str | None = None) -> None:
        self._start_fen = fen or STARTING_FEN
        self._board = chess.Board(self._start_fen)

    # ------------------------------------------------------------------ #
    # State queries                                                        #
    # ------------------------------------------------------------------ #

    @property
    def fen(self) -> str:
        return self._board.fen()

    def current_turn(self) -> Color:
        return "white" if self._board.turn == chess.WHITE else "black"

    def piece_color_at(self, square: str) -> Color | None:
        try:
            piece = self._board.piece_at(chess.parse_square(square))
        except ValueError:
            return None
        if piece is None:
            return None
        return "white" if piece.color == chess.WHITE else "black"

    def legal_targets(self, square: str) -> set[str]:
        try:
            origin = chess.parse_square(square)
        except ValueError:
            return set()
        return {
            chess.square_name(m.to_square)
            for m in self._board.legal_moves
            if m.from_square == origin
        }

    def terminal_status(self) -> TerminalStatus:
        # Claimable draws (threefold repetition, fifty-move) are treated as
        # terminal since no one is around to claim them.
        outcome = self._board.outcome(claim_draw=True)
        if outcome is not None:
            match outcome.termination:
                case chess.Termination.CHECKMATE:
                    winner: Color = "white" if outcome.winner == chess.WHITE else "black"
                    return TerminalStatus("checkmate", side=winner)
                case chess.Termination.STALEMATE:
                    return TerminalStatus("stalemate")
                case chess.Termination.INSUFFICIENT_MATERIAL:
                    return TerminalStatus("draw", reason="insufficient_material")
                case chess.Termination.THREEFOLD_REPETITION | chess.Termination.FIVEFOLD_REPETITION:
                    return TerminalStatus("draw", reason="threefold_repetition")
                case chess.Termination.FIFTY_MOVES | chess.Termination.SEVENTYFIVE_MOVES:
                    return TerminalStatus("draw", reason="fifty_move")
                case _:
                    return TerminalStatus("draw", reason="draw")
        if self._board.is_check():
            return TerminalStatus("check", side=self.current_turn())
        return TerminalStatus()

    # ------------------------------------------------------------------ #
    # Mutation                                                            #
    # ------------------------------------------------------------------ #

    def load_position(self, fen: str) -> None:
        """Reset to `fen` with an empty move stack. Raises ValueError on a bad FEN."""
        board = chess.Board(fen)
        self._start_fen = fen
        self._board = board

    def attempt_move(self, move: Move) -> MoveResult:
        """
        Try to play `move`. On success the board advances; on failure nothing changes.

        A pawn reaching the last rank without a promotion piece becomes a queen.
        """
        try:
            parsed = chess.Move.from_uci(move.uci())
        except (ValueError, chess.InvalidMoveError):
            return MoveResult(accepted=False, resulting_fen=self.fen, error="format")

        if parsed.promotion is None and parsed not in self._board.legal_moves:
            queened = chess.Move(parsed.from_square, parsed.to_square, promotion=chess.QUEEN)
            if queened in self._board.legal_moves:
                parsed = queened

        if parsed not in self._board.legal_moves:
            return MoveResult(accepted=False, resulting_fen=self.fen, error="illegal")

        san = self._board.san(parsed)
        self._board.push(parsed)
        return MoveResult(
            accepted=True,
            resulting_fen=self.fen,
            san=san,
            terminal_status=self.terminal_status(),
        )

    def last_promotion(self) -> str | None:
        if not self._board.move_stack:
            return None
        promo = self._board.peek().promotion
        return chess.piece_symbol(promo) if promo else None

    # ------------------------------------------------------------------ #
    # PGN                                                                 #
    # ------------------------------------------------------------------ #

    def to_pgn(self, white_name: str = "White", black_name: str = "Black") -> str:
        game = chess.pgn.Game.from_board(self._board)
        game.headers["Event"] = "BakuChess"
        game.headers["Date"] = datetime.now().strftime("%Y.%m.%d")
        game.headers["White"] = white_name
        game.headers["Black"] = black_name
        outcome = self._board.outcome(claim_draw=True)
        game.headers["Result"] = outcome.result() if outcome else "*"
        exporter = chess.pgn.StringExporter(headers=True, variations=False, comments=False)
        return game.accept(exporter)
