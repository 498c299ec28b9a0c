"""
Board rendering for the terminal and the browser.

The renderer only consumes a position and a set of highlighted squares;
it never touches the controller. SVG and ASCII both come from python-chess.
"""

from __future__ import annotations

from typing import Iterable

import chess
import chess.svg

from bakuchess.events import Move, Position

LAST_MOVE_COLOR = "#cdaa3daa"    # gold
TARGET_COLOR = "#2f6f4f88"


def render_ascii(position: Position, flipped: bool = False) -> str:
    """Standard ASCII board via python-chess, from Black's side when flipped."""
    board = chess.Board(position.fen)
    text = str(board)
    if flipped:
        text = "\n".join(line[::-1] for line in reversed(text.splitlines()))
    return text


def render_svg(
    position: Position,
    last_move: Move | None = None,
    highlights: Iterable[str] = (),
    flipped: bool = False,
    size: int = 400,
) -> str:
    """SVG string of the board with the last move and any target squares highlighted."""
    board = chess.Board(position.fen)
    fill: dict[chess.Square, str] = {}
    for name in highlights:
        fill[chess.parse_square(name)] = TARGET_COLOR
    if last_move is not None:
        fill[chess.parse_square(last_move.origin)] = LAST_MOVE_COLOR
        fill[chess.parse_square(last_move.destination)] = LAST_MOVE_COLOR
    check = board.king(board.turn) if board.is_check() else None
    return chess.svg.board(
        board=board,
        fill=fill,
        check=check,
        orientation=chess.BLACK if flipped else chess.WHITE,
        size=size,
    )
