"""
Tests for ModeArbiter routing: solo play against a scripted engine,
multiplayer through a recording transport, and the fallbacks between them.
"""

from __future__ import annotations

import unittest

from bakuchess.arbiter import ModeArbiter
from bakuchess.engine.session import EngineSession, SearchLimits
from bakuchess.errors import MoveRejected
from bakuchess.events import (
    ChatEvent,
    DesyncEvent,
    EngineBestMoveEvent,
    EngineErrorEvent,
    EngineNoMoveEvent,
    EvaluationEvent,
    Mode,
    ModeChangedEvent,
    Move,
    MoveRejectedEvent,
    RoomSnapshot,
    STARTING_FEN,
    StateChangedEvent,
    TerminalStatus,
)
from bakuchess.game import GameController
from tests.fakes import MANUAL, RecordingTransport, ScriptedWorker, first_legal_move, settle

AFTER_E4 = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"
BACK_RANK = "6k1/5ppp/8/8/8/8/8/R5K1 w - - 0 1"


def snapshot(*participants: str, history: tuple[str, ...] = ()) -> RoomSnapshot:
    return RoomSnapshot(
        room_id="room-1",
        participants=participants,
        seq=len(history),
        fen=STARTING_FEN,
        history=history,
    )


class _ArbiterCase(unittest.IsolatedAsyncioTestCase):
    async def make(
        self,
        *,
        bestmove: object = MANUAL,
        human_color: str = "white",
        start_fen: str | None = None,
        fail_start: bool = False,
        transport: RecordingTransport | None = None,
    ) -> ModeArbiter:
        self.worker = ScriptedWorker(bestmove=bestmove, fail_start=fail_start)
        self.session = EngineSession(self.worker)
        self.controller = GameController(start_fen=start_fen)
        self.arbiter = ModeArbiter(
            self.controller,
            self.session,
            limits=SearchLimits(max_depth=12, max_time_ms=800),
            human_color=human_color,
            transport=transport,
        )
        self.events: list = []
        self.arbiter.subscribe(self.events.append)
        await self.session.start()
        self.addAsyncCleanup(self.session.close)
        return self.arbiter

    def of(self, cls) -> list:
        return [e for e in self.events if isinstance(e, cls)]


class SoloTests(_ArbiterCase):
    async def test_human_move_is_applied_then_engine_is_asked_once(self) -> None:
        arbiter = await self.make()
        go_at_notification: list[int] = []
        arbiter.subscribe(
            lambda e: isinstance(e, StateChangedEvent) and go_at_notification.append(len(self.worker.commands("go")))
        )

        arbiter.local_move("e2e4")

        changed = self.of(StateChangedEvent)
        self.assertEqual(len(changed), 1)
        self.assertEqual(changed[0].last_move.uci(), "e2e4")
        self.assertEqual(go_at_notification, [0])
        self.assertEqual(self.worker.commands("go"), ["go depth 12 movetime 800"])
        self.assertEqual(self.worker.sent[-2], f"position fen {AFTER_E4}")
        self.assertTrue(arbiter.engine_thinking)

    async def test_engine_reply_is_applied(self) -> None:
        arbiter = await self.make(bestmove=first_legal_move)
        arbiter.local_move("e2e4")
        await settle()

        self.assertEqual(self.controller.seq, 2)
        self.assertEqual(self.controller.last_move.source, "engine")
        self.assertEqual(self.controller.position.side_to_move, "white")
        self.assertFalse(arbiter.engine_thinking)
        self.assertEqual(len(self.of(EvaluationEvent)), 1)
        self.assertIsNotNone(arbiter.evaluation)

    async def test_engine_with_no_move_reports_game_status(self) -> None:
        arbiter = await self.make(bestmove=first_legal_move, start_fen=BACK_RANK)
        arbiter.local_move("a1a8")
        await settle()

        self.assertEqual(self.controller.status, TerminalStatus("checkmate", side="white"))
        best = self.of(EngineBestMoveEvent)
        self.assertEqual(len(best), 1)
        self.assertIsNone(best[0].move)
        self.assertEqual(self.of(EngineNoMoveEvent), [EngineNoMoveEvent(TerminalStatus("checkmate", side="white"))])
        self.assertEqual(self.controller.seq, 1)

    async def test_illegal_engine_move_is_reported_not_applied(self) -> None:
        arbiter = await self.make(bestmove="a8a6")
        arbiter.local_move("e2e4")
        await settle()

        rejected = self.of(MoveRejectedEvent)
        self.assertEqual(len(rejected), 1)
        self.assertEqual((rejected[0].move, rejected[0].reason, rejected[0].source), ("a8a6", "illegal", "engine"))
        self.assertEqual(self.controller.seq, 1)

    async def test_local_move_on_engine_turn_is_rejected(self) -> None:
        arbiter = await self.make()
        arbiter.local_move("e2e4")

        with self.assertRaises(MoveRejected) as ctx:
            arbiter.local_move("e7e5")
        self.assertEqual(ctx.exception.reason, "out-of-turn")
        self.assertEqual(self.of(MoveRejectedEvent)[0].reason, "out-of-turn")
        self.assertEqual(self.controller.seq, 1)

    async def test_malformed_local_move_is_rejected(self) -> None:
        arbiter = await self.make()
        with self.assertRaises(MoveRejected):
            arbiter.local_move("hello")
        with self.assertRaises(MoveRejected) as ctx:
            arbiter.local_move(Move("z9", "e4"))
        self.assertEqual(ctx.exception.reason, "illegal")
        self.assertEqual([e.source for e in self.of(MoveRejectedEvent)], ["local", "local"])
        self.assertEqual(self.controller.seq, 0)

    async def test_new_game_as_black_lets_the_engine_open(self) -> None:
        arbiter = await self.make(bestmove=first_legal_move, human_color="black")
        arbiter.new_game()
        await settle()

        self.assertEqual(self.controller.seq, 1)
        self.assertEqual(self.controller.last_move.source, "engine")

    async def test_switch_side_restarts_with_the_engine_as_white(self) -> None:
        arbiter = await self.make(bestmove=first_legal_move)
        arbiter.local_move("d2d4")
        await settle()

        arbiter.switch_side()
        await settle()

        self.assertEqual(arbiter.local_color, "black")
        self.assertEqual(self.controller.seq, 1)
        self.assertEqual(self.controller.last_move.source, "engine")

    async def test_undo_takes_back_move_and_reply(self) -> None:
        arbiter = await self.make(bestmove=first_legal_move)
        arbiter.local_move("e2e4")
        await settle()

        self.assertEqual(arbiter.undo(), 2)
        self.assertEqual(self.controller.position.fen, STARTING_FEN)
        self.assertEqual(arbiter.undo(), 0)

    async def test_undo_while_engine_thinks_cancels_the_search(self) -> None:
        arbiter = await self.make()
        arbiter.local_move("e2e4")

        self.assertEqual(arbiter.undo(), 1)
        await settle()   # the stopped search still answers with a move

        self.assertEqual(self.worker.commands("stop"), ["stop"])
        self.assertEqual(self.controller.position.fen, STARTING_FEN)
        self.assertEqual(self.of(EngineBestMoveEvent), [])

    async def test_offline_engine_keeps_the_game_playable(self) -> None:
        arbiter = await self.make(fail_start=True)

        self.assertFalse(arbiter.solo_available)
        self.assertEqual(self.of(EngineErrorEvent)[0].reason, "load-failure")

        arbiter.local_move("e2e4")
        self.assertEqual(self.controller.seq, 1)
        errors = self.of(EngineErrorEvent)
        self.assertEqual(len(errors), 2)
        self.assertEqual(errors[-1].reason, "load-failure")
        self.assertFalse(arbiter.engine_thinking)

    async def test_replacing_the_session_ignores_the_old_one(self) -> None:
        arbiter = await self.make()
        arbiter.local_move("e2e4")
        old_worker = self.worker

        replacement = EngineSession(ScriptedWorker(bestmove=first_legal_move))
        await replacement.start()
        self.addAsyncCleanup(replacement.close)
        arbiter.replace_session(replacement)
        old_worker.finish("bestmove e7e5")
        await settle()

        self.assertEqual(self.controller.seq, 1)
        self.assertEqual(arbiter.request_engine_move(), 1)
        await settle()
        self.assertEqual(self.controller.seq, 2)
        self.assertNotEqual(self.controller.moves_uci()[1], "e7e5")


class MultiplayerTests(_ArbiterCase):
    async def joined(self, *participants: str, **kwargs) -> ModeArbiter:
        self.transport = RecordingTransport(identity="alice")
        arbiter = await self.make(transport=self.transport, **kwargs)
        arbiter.on_room_joined(snapshot(*participants))
        return arbiter

    async def test_joining_switches_mode_and_fixes_colours(self) -> None:
        arbiter = await self.joined("bob", "alice")

        self.assertEqual(arbiter.mode, Mode("multiplayer", peer_present=True))
        self.assertEqual(arbiter.local_color, "black")
        self.assertEqual(self.of(ModeChangedEvent)[-1].reason, "room-joined")

    async def test_local_and_remote_moves_in_arrival_order(self) -> None:
        arbiter = await self.joined("alice", "bob")

        arbiter.local_move("g1f3")
        arbiter.on_remote_move("e7e5", None, 2)

        self.assertEqual(self.controller.moves_uci(), ["g1f3", "e7e5"])
        self.assertEqual([m.source for m in (h.move for h in self.controller.history)], ["local", "remote"])
        self.assertEqual(self.transport.of("move")[0][1], "g1f3")
        self.assertEqual(self.transport.of("move")[0][3], 1)
        self.assertEqual(self.worker.commands("go"), [])

    async def test_joining_adopts_room_history(self) -> None:
        self.transport = RecordingTransport(identity="alice")
        await self.make(transport=self.transport)
        self.arbiter.on_room_joined(snapshot("bob", "alice", history=("e2e4",)))

        self.assertEqual(self.controller.moves_uci(), ["e2e4"])
        self.assertEqual(self.arbiter.local_color, "black")

    async def test_out_of_sequence_move_requests_sync(self) -> None:
        await self.joined("alice", "bob")
        self.arbiter.on_remote_move("e7e5", None, 3)

        self.assertEqual(self.of(DesyncEvent), [DesyncEvent(expected=1, got=3)])
        self.assertEqual(self.transport.of("sync"), [("sync",)])
        self.assertEqual(self.controller.seq, 0)

    async def test_illegal_remote_move_requests_sync(self) -> None:
        arbiter = await self.joined("alice", "bob")
        arbiter.local_move("e2e4")
        arbiter.on_remote_move("e7e4", None, 2)

        rejected = self.of(MoveRejectedEvent)
        self.assertEqual((rejected[0].reason, rejected[0].source), ("illegal", "remote"))
        self.assertEqual(self.transport.of("sync"), [("sync",)])
        self.assertEqual(self.controller.seq, 1)

    async def test_remote_fen_disagreement_requests_sync(self) -> None:
        arbiter = await self.joined("alice", "bob")
        arbiter.local_move("e2e4")
        arbiter.on_remote_move("e7e5", STARTING_FEN, 2)

        self.assertEqual(self.controller.seq, 2)
        self.assertEqual(self.transport.of("sync"), [("sync",)])

    async def test_sync_replaces_local_history(self) -> None:
        arbiter = await self.joined("alice", "bob")
        arbiter.local_move("e2e4")
        arbiter.on_sync(snapshot("alice", "bob", history=("d2d4", "d7d5")))

        self.assertEqual(self.controller.moves_uci(), ["d2d4", "d7d5"])

    async def test_peer_leaving_falls_back_to_solo_and_engine_moves(self) -> None:
        arbiter = await self.joined("alice", "bob")
        arbiter.local_move("g1f3")
        self.assertEqual(self.worker.commands("go"), [])

        arbiter.on_peer_left()

        self.assertEqual(arbiter.mode.kind, "solo")
        self.assertEqual(self.of(ModeChangedEvent)[-1].reason, "peer-left")
        self.assertEqual(self.worker.commands("go"), ["go depth 12 movetime 800"])
        self.assertEqual(self.controller.moves_uci(), ["g1f3"])

    async def test_connection_loss_drops_the_transport(self) -> None:
        arbiter = await self.joined("alice", "bob")
        arbiter.on_connection_lost()
        arbiter.local_move("e2e4")

        self.assertEqual(arbiter.mode.kind, "solo")
        self.assertEqual(self.transport.of("move"), [])
        self.assertEqual(len(self.worker.commands("go")), 1)

    async def test_undo_only_takes_back_own_move(self) -> None:
        arbiter = await self.joined("alice", "bob")
        arbiter.local_move("g1f3")

        self.assertEqual(arbiter.undo(), 1)
        self.assertEqual(self.transport.of("undo"), [("undo", 1)])

        arbiter.local_move("g1f3")
        arbiter.on_remote_move("e7e5", None, 2)
        self.assertEqual(arbiter.undo(), 0)
        self.assertEqual(self.controller.seq, 2)

    async def test_remote_undo_and_reset(self) -> None:
        arbiter = await self.joined("alice", "bob")
        arbiter.local_move("g1f3")
        arbiter.on_remote_move("e7e5", None, 2)

        arbiter.on_remote_undo(1)
        self.assertEqual(self.controller.moves_uci(), ["g1f3"])

        arbiter.on_remote_undo(0)   # last move is ours: out of sync
        self.assertEqual(len(self.of(DesyncEvent)), 1)

        arbiter.on_remote_reset()
        self.assertEqual(self.controller.seq, 0)

    async def test_new_game_and_side_switch(self) -> None:
        arbiter = await self.joined("alice", "bob")
        arbiter.local_move("e2e4")
        arbiter.new_game()
        arbiter.switch_side()

        self.assertEqual(self.transport.of("reset"), [("reset",)])
        self.assertEqual(arbiter.local_color, "white")
        self.assertEqual(self.controller.seq, 0)

    async def test_engine_move_is_ignored_in_multiplayer(self) -> None:
        arbiter = await self.make()
        arbiter.local_move("e2e4")
        self.transport = RecordingTransport(identity="alice")
        arbiter.attach_transport(self.transport)
        arbiter.on_room_joined(snapshot("alice", "bob", history=("e2e4",)))
        self.worker.finish("bestmove e7e5")
        await settle()

        self.assertEqual(self.controller.moves_uci(), ["e2e4"])

    async def test_room_seat_decides_the_colour(self) -> None:
        self.transport = RecordingTransport(identity="alice")
        arbiter = await self.make(transport=self.transport)
        arbiter.on_room_joined(RoomSnapshot(
            room_id="room-1",
            participants=("bob", "alice"),
            seq=0,
            fen=STARTING_FEN,
            history=(),
            seats={"alice": "white", "bob": "black"},
        ))
        self.assertEqual(arbiter.local_color, "white")

    async def test_returning_peer_replaces_solo_moves_with_the_room_game(self) -> None:
        arbiter = await self.joined("alice", "bob")
        arbiter.on_peer_left()
        arbiter.local_move("e2e4")
        self.assertEqual(self.transport.of("move"), [])

        arbiter.on_peer_joined()
        self.assertEqual(arbiter.mode, Mode("multiplayer", peer_present=True))
        self.assertEqual(self.transport.of("sync"), [("sync",)])

        arbiter.on_sync(snapshot("alice", "bob"))
        self.assertEqual(self.controller.moves_uci(), [])
        arbiter.local_move("d2d4")
        self.assertEqual(self.transport.of("move")[0][3], 1)

    async def test_chat(self) -> None:
        arbiter = await self.joined("alice", "bob")
        arbiter.send_chat("good luck")

        self.assertEqual(self.transport.of("chat"), [("chat", "good luck")])
        self.assertEqual(self.of(ChatEvent)[0].message.identity, "alice")
        self.assertEqual(len(arbiter.chat_log), 1)

    async def test_remote_move_in_solo_is_ignored(self) -> None:
        arbiter = await self.make()
        arbiter.on_remote_move("e2e4", None, 1)
        self.assertEqual(self.controller.seq, 0)


if __name__ == "__main__":
    unittest.main()
