import unittest

from bakuchess.events import EngineEvaluation
from bakuchess.score import (
    clamp_pawns,
    evaluation_from_info,
    format_evaluation,
    normalize_score,
    white_share,
)
from bakuchess.uci import InfoEvent


class NormalizeScoreTests(unittest.TestCase):
    def test_white_to_move_is_unchanged(self) -> None:
        self.assertEqual(normalize_score(35, "cp", "white"), 35)
        self.assertEqual(normalize_score(-4, "mate", "white"), -4)

    def test_black_to_move_flips_sign(self) -> None:
        for raw in (-250, -1, 0, 1, 35, 900):
            self.assertEqual(normalize_score(raw, "cp", "black"), -normalize_score(raw, "cp", "white"))
        self.assertEqual(normalize_score(3, "mate", "black"), -3)

    def test_repeated_calls_agree(self) -> None:
        first = normalize_score(120, "cp", "black")
        for _ in range(5):
            self.assertEqual(normalize_score(120, "cp", "black"), first)

    def test_mate_zero_is_invalid(self) -> None:
        self.assertIsNone(normalize_score(0, "mate", "white"))
        self.assertIsNone(normalize_score(0, "mate", "black"))

    def test_unknown_kind_is_invalid(self) -> None:
        self.assertIsNone(normalize_score(10, "wdl", "white"))


class EvaluationTests(unittest.TestCase):
    def test_evaluation_is_canonical_and_carries_pv(self) -> None:
        info = InfoEvent(depth=12, score=50, score_kind="cp", pv=("e7e5", "g1f3"))
        ev = evaluation_from_info(info, "black")
        self.assertEqual(ev.score, -50)
        self.assertEqual(ev.best_move, "e7e5")
        self.assertEqual(ev.depth, 12)

    def test_missing_score_stays_missing(self) -> None:
        ev = evaluation_from_info(InfoEvent(depth=3), "white")
        self.assertIsNotNone(ev)
        self.assertIsNone(ev.score)
        self.assertIsNone(ev.best_move)

    def test_mate_zero_drops_the_whole_report(self) -> None:
        self.assertIsNone(evaluation_from_info(InfoEvent(depth=0, score=0, score_kind="mate"), "white"))

    def test_presentation_helpers(self) -> None:
        self.assertEqual(clamp_pawns(1234), 5.0)
        self.assertEqual(clamp_pawns(-80), -0.8)
        self.assertEqual(format_evaluation(EngineEvaluation(score=35, score_kind="cp")), "+0.35")
        self.assertEqual(format_evaluation(EngineEvaluation(score=-2, score_kind="mate")), "#-2")
        self.assertEqual(format_evaluation(None), "–")
        self.assertEqual(white_share(None), 0.5)
        self.assertEqual(white_share(EngineEvaluation(score=500, score_kind="cp")), 1.0)
        self.assertEqual(white_share(EngineEvaluation(score=-1, score_kind="mate")), 0.0)


if __name__ == "__main__":
    unittest.main()
