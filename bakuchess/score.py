"""
Score normalisation.

UCI engines report scores from the side to move's point of view. Everything
past this module sees a single white-positive perspective, so an evaluation
shown after White's move and one shown after Black's move can be compared
directly.
"""

from __future__ import annotations

from bakuchess.events import Color, EngineEvaluation
from bakuchess.uci import InfoEvent


def normalize_score(raw: int, kind: str, side_to_move: Color) -> int | None:
    """
    Return the white-positive score, or None if the input is invalid.

    cp:   centipawns, sign flipped when Black is to move.
    mate: plies to mate; the sign says which side mates. "mate 0" is not a
          valid report and is ignored.
    """
    if kind not in ("cp", "mate"):
        return None
    if kind == "mate" and raw == 0:
        return None
    return -raw if side_to_move == "black" else raw


def evaluation_from_info(info: InfoEvent, side_to_move: Color) -> EngineEvaluation | None:
    """Build the canonical EngineEvaluation for one info event (None if its score is invalid)."""
    score: int | None = None
    if info.score is not None and info.score_kind is not None:
        score = normalize_score(info.score, info.score_kind, side_to_move)
        if score is None:
            return None
    return EngineEvaluation(
        depth=info.depth,
        score=score,
        score_kind=info.score_kind if score is not None else None,
        pv=info.pv,
        best_move=info.pv[0] if info.pv else None,
        nodes=info.nodes,
        nps=info.nps,
    )


# --------------------------------------------------------------------------- #
# Presentation helpers                                                         #
# --------------------------------------------------------------------------- #

def clamp_pawns(score_cp: int, bound: float = 5.0) -> float:
    """Centipawns → pawns, clamped to ±bound (the evaluation bar's range)."""
    return max(-bound, min(bound, score_cp / 100))


def format_evaluation(evaluation: EngineEvaluation | None) -> str:
    if evaluation is None or evaluation.score is None:
        return "–"
    if evaluation.score_kind == "mate":
        return f"#{evaluation.score}"
    return f"{evaluation.score / 100:+.2f}"


def white_share(evaluation: EngineEvaluation | None, bound: float = 5.0) -> float:
    """Fraction of the evaluation bar that belongs to White, 0.0–1.0."""
    if evaluation is None or evaluation.score is None:
        return 0.5
    if evaluation.score_kind == "mate":
        return 1.0 if evaluation.score > 0 else 0.0
    return 0.5 + clamp_pawns(evaluation.score, bound) / (2 * bound)
