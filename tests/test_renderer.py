import unittest

from bakuchess.events import Move, Position, STARTING_FEN
from bakuchess.renderer import LAST_MOVE_COLOR, render_ascii, render_svg

AFTER_E4 = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"
IN_CHECK = "rnbqkbnr/ppppp2p/5p2/6pQ/4P3/8/PPPP1PPP/RNB1KBNR b KQkq - 1 3"


class RendererTests(unittest.TestCase):
    def test_ascii_from_either_side(self) -> None:
        white = render_ascii(Position(STARTING_FEN))
        black = render_ascii(Position(STARTING_FEN), flipped=True)

        self.assertEqual(white.splitlines()[0], "r n b q k b n r")
        self.assertEqual(white.splitlines()[-1], "R N B Q K B N R")
        self.assertEqual(black.splitlines()[0], "R N B K Q B N R")

    def test_svg_highlights_last_move(self) -> None:
        svg = render_svg(Position(AFTER_E4), last_move=Move.from_uci("e2e4"), highlights=["e5"])
        self.assertTrue(svg.startswith("<svg"))
        self.assertIn(LAST_MOVE_COLOR[:7], svg)

    def test_svg_marks_king_in_check(self) -> None:
        self.assertIn("check_gradient", render_svg(Position(IN_CHECK)))
        self.assertNotIn("check_gradient", render_svg(Position(STARTING_FEN)))


if __name__ == "__main__":
    unittest.main()
