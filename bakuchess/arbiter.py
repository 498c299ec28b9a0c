"""
Mode arbiter — decides where each move comes from and where it goes.

Modes:
    solo         the engine plays the other side
    multiplayer  a remote peer plays the other side (peer_present tells
                 whether anyone is actually connected)

Routing:

    event                  solo                          multiplayer
    ---------------------  ----------------------------  ---------------------------
    local move applied     engine start_search(new FEN)  transport.send_move(seq)
    engine best move       apply as engine move          ignored
    remote move            ignored                       apply as remote move
    new game               reset; engine moves if human  reset; transport.send_reset()
                           plays Black

Mode changes are driven by the transport only (room joined, peer joined,
peer left, connection lost). Switching mode never resets the game: the
position and history carry over.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable

from bakuchess.engine.session import EngineSession, SearchLimits
from bakuchess.errors import ConnectionLost, MoveRejected, TransportDesync
from bakuchess.events import (
    SOLO,
    ChatEvent,
    ChatMessage,
    Color,
    DesyncEvent,
    EngineBestMoveEvent,
    EngineErrorEvent,
    EngineEvaluation,
    EngineEvent,
    EngineNoMoveEvent,
    EngineReadyEvent,
    EvaluationEvent,
    GameEvent,
    Mode,
    ModeChangedEvent,
    Move,
    MoveRejectedEvent,
    Position,
    RoomSnapshot,
    Source,
    StateChangedEvent,
    opposite,
)
from bakuchess.game import GameController
from bakuchess.transport import Transport

logger = logging.getLogger("bakuchess.arbiter")

GameListener = Callable[[GameEvent], None]


class ModeArbiter:
    def __init__(
        self,
        controller: GameController,
        session: EngineSession | None = None,
        *,
        limits: SearchLimits | None = None,
        human_color: Color = "white",
        transport: Transport | None = None,
    ) -> None:
        self._controller = controller
        self._session: EngineSession | None = None
        self._limits = limits
        self._local_color: Color = human_color
        self._transport = transport
        self._mode: Mode = SOLO
        self._awaiting: int | None = None
        self._evaluation: EngineEvaluation | None = None
        self._chat: list[ChatMessage] = []
        self._listeners: list[GameListener] = []

        controller.subscribe(self._on_state_changed)
        if session is not None:
            self.replace_session(session)

    # ------------------------------------------------------------------ #
    # Introspection                                                        #
    # ------------------------------------------------------------------ #

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def controller(self) -> GameController:
        return self._controller

    @property
    def session(self) -> EngineSession | None:
        return self._session

    @property
    def transport(self) -> Transport | None:
        return self._transport

    @property
    def local_color(self) -> Color:
        return self._local_color

    @property
    def engine_color(self) -> Color:
        return opposite(self._local_color)

    @property
    def evaluation(self) -> EngineEvaluation | None:
        return self._evaluation

    @property
    def chat_log(self) -> tuple[ChatMessage, ...]:
        return tuple(self._chat)

    @property
    def solo_available(self) -> bool:
        return self._session is not None and self._session.available

    @property
    def engine_thinking(self) -> bool:
        return self._awaiting is not None

    def subscribe(self, listener: GameListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------ #
    # Wiring                                                               #
    # ------------------------------------------------------------------ #

    def replace_session(self, session: EngineSession) -> None:
        """Install a (new) engine session. Events from the previous one are ignored from now on."""
        if self._session is not None:
            self._session.cancel()
        self._session = session
        self._awaiting = None
        session.subscribe(lambda event, s=session: self._on_engine_event(s, event))

    def attach_transport(self, transport: Transport) -> None:
        self._transport = transport

    # ------------------------------------------------------------------ #
    # Local input                                                          #
    # ------------------------------------------------------------------ #

    def local_move(self, move: str | Move) -> Position:
        """
        Apply a move made on this side of the board and route it onward.

        Raises:
            MoveRejected: out-of-turn, illegal or game-already-over.
        """
        if isinstance(move, str):
            try:
                move = Move.from_uci(move, source="local")
            except ValueError as exc:
                raise self._rejected(MoveRejected("illegal", str(move), str(exc)), "local")
        else:
            move = replace(move, source="local")

        if self._controller.is_over:
            raise self._rejected(MoveRejected("game-already-over", move.uci()), "local")
        if self._controller.position.side_to_move != self._local_color:
            raise self._rejected(
                MoveRejected("out-of-turn", move.uci(), f"{self.engine_color} to move"), "local"
            )
        try:
            position = self._controller.apply_move(move)
        except MoveRejected as exc:
            raise self._rejected(exc, "local")

        if self._mode.kind == "solo":
            self._request_engine_move()
        elif self._transport is not None:
            self._transport.send_move(self._controller.last_move, position.fen, self._controller.seq)
        return position

    def new_game(self) -> None:
        self._cancel_search()
        self._evaluation = None
        self._controller.reset()
        if self._mode.kind == "solo":
            self._request_engine_move()
        elif self._transport is not None:
            self._transport.send_reset()

    def switch_side(self) -> None:
        """Solo only: play the other colour and start over."""
        if self._mode.kind != "solo":
            logger.info("Side switch ignored in multiplayer; colours are fixed by the room")
            return
        self._local_color = opposite(self._local_color)
        self.new_game()

    def undo(self) -> int:
        """
        Take back moves. Returns the number of plies removed.

        Solo: the human move and the engine's reply go together (one ply if
        the engine has not answered yet). Multiplayer: only a local last move
        can be taken back.
        """
        history = self._controller.history
        if self._mode.kind == "solo":
            self._cancel_search()
            plies = 1 if self._controller.position.side_to_move == self.engine_color else 2
            if len(history) < plies:
                return 0
            return self._controller.undo(plies)

        if not history or history[-1].move.source != "local":
            return 0
        seq = self._controller.seq
        removed = self._controller.undo(1)
        if self._transport is not None:
            self._transport.send_undo(seq)
        return removed

    def send_chat(self, text: str) -> None:
        identity = self._transport.identity if self._transport else "local"
        message = ChatMessage(identity=identity, text=text)
        self._chat.append(message)
        self._emit(ChatEvent(message))
        if self._transport is not None:
            self._transport.send_chat(text)

    # ------------------------------------------------------------------ #
    # Engine                                                               #
    # ------------------------------------------------------------------ #

    def request_engine_move(self) -> int | None:
        """Ask the engine to move if it is its turn in solo mode. Returns the search token."""
        self._request_engine_move()
        return self._awaiting

    def _request_engine_move(self) -> None:
        if self._mode.kind != "solo":
            return
        if self._controller.position.side_to_move != self.engine_color:
            return
        if self._session is None:
            self._emit(EngineErrorEvent(reason="load-failure", detail="no engine session"))
            return
        # A finished game is still searched: the engine answers "bestmove (none)".
        self._awaiting = self._session.start_search(self._controller.position.fen, self._limits)

    def _cancel_search(self) -> None:
        self._awaiting = None
        if self._session is not None:
            self._session.cancel()

    def _on_engine_event(self, session: EngineSession, event: EngineEvent) -> None:
        if session is not self._session:
            return
        match event:
            case EvaluationEvent():
                if event.token == self._awaiting:
                    self._evaluation = event.evaluation
                    self._emit(event)
            case EngineBestMoveEvent():
                self._on_best_move(event)
            case EngineErrorEvent():
                if event.token is not None and event.token == self._awaiting:
                    self._awaiting = None   # session lost mid-search: implicit abort
                self._emit(event)
            case EngineReadyEvent():
                self._emit(event)

    def _on_best_move(self, event: EngineBestMoveEvent) -> None:
        if self._mode.kind != "solo":
            logger.debug("Engine move %s ignored in multiplayer", event.move)
            return
        if event.token != self._awaiting:
            logger.warning("Dropping engine move %s from stale search #%d", event.move, event.token)
            return
        self._awaiting = None
        if event.fen != self._controller.position.fen:
            logger.warning("Dropping engine move %s: position changed during search", event.move)
            return

        self._emit(event)
        if event.move is None:
            self._emit(EngineNoMoveEvent(self._controller.status))
            return
        try:
            self._controller.apply_move(Move.from_uci(event.move, source="engine"))
        except ValueError as exc:
            logger.error("Engine sent unparseable move %r", event.move)
            self._emit(MoveRejectedEvent(event.move, "illegal", "engine", str(exc)))
        except MoveRejected as exc:
            logger.error("Engine sent illegal move %s: %s", event.move, exc)
            self._emit(MoveRejectedEvent(event.move, exc.reason, "engine", exc.detail))

    # ------------------------------------------------------------------ #
    # Transport                                                            #
    # ------------------------------------------------------------------ #

    def on_room_joined(self, snapshot: RoomSnapshot) -> None:
        self._take_seat(snapshot)
        self._cancel_search()
        self._chat = list(snapshot.chat)
        self._resync(snapshot)
        self._set_mode(Mode("multiplayer", peer_present=len(snapshot.participants) > 1), "room-joined")

    def on_sync(self, snapshot: RoomSnapshot) -> None:
        self._take_seat(snapshot)
        self._resync(snapshot)

    def on_peer_joined(self) -> None:
        self._cancel_search()
        self._set_mode(Mode("multiplayer", peer_present=True), "peer-joined")
        # moves made in solo while the peer was away never reached the room
        self._request_sync()

    def on_peer_left(self) -> None:
        self._fall_back_to_solo("peer-left")

    def on_connection_lost(self, exc: ConnectionLost | None = None) -> None:
        logger.warning("Connection lost: %s", exc or "transport closed")
        self._transport = None
        self._fall_back_to_solo("connection-lost")

    def on_remote_move(self, uci: str, fen: str | None, seq: int | None) -> None:
        if self._mode.kind != "multiplayer":
            logger.debug("Remote move %s ignored in solo mode", uci)
            return
        expected = self._controller.seq + 1
        if seq != expected:
            self._desync(TransportDesync(expected, seq if isinstance(seq, int) else -1))
            return
        try:
            self._controller.apply_move(Move.from_uci(uci, source="remote"))
        except (ValueError, MoveRejected) as exc:
            reason = exc.reason if isinstance(exc, MoveRejected) else "illegal"
            logger.warning("Remote move %s rejected (%s); requesting resync", uci, reason)
            self._emit(MoveRejectedEvent(uci, reason, "remote", str(exc)))
            self._request_sync()
            return
        if fen and fen.split()[:2] != self._controller.position.fen.split()[:2]:
            logger.warning("Remote FEN disagrees after %s; requesting resync", uci)
            self._request_sync()

    def on_remote_reset(self) -> None:
        if self._mode.kind != "multiplayer":
            return
        self._evaluation = None
        self._controller.reset()

    def on_remote_undo(self, seq: int | None) -> None:
        if self._mode.kind != "multiplayer":
            return
        last = self._controller.last_move
        if last is None or last.source != "remote" or seq != self._controller.seq - 1:
            self._desync(TransportDesync(self._controller.seq - 1, seq if isinstance(seq, int) else -1))
            return
        self._controller.undo(1)

    def on_chat(self, message: ChatMessage) -> None:
        self._chat.append(message)
        self._emit(ChatEvent(message))

    def _take_seat(self, snapshot: RoomSnapshot) -> None:
        identity = self._transport.identity if self._transport else None
        if identity in snapshot.seats:
            self._local_color = snapshot.seats[identity]
        elif identity in snapshot.participants:
            self._local_color = "white" if snapshot.participants.index(identity) == 0 else "black"

    def _resync(self, snapshot: RoomSnapshot) -> None:
        if (
            snapshot.start_fen == self._controller.start_fen
            and list(snapshot.history) == self._controller.moves_uci()
        ):
            return
        try:
            self._controller.load_history(snapshot.history, snapshot.start_fen)
        except MoveRejected as exc:
            logger.error("Room history for %s does not replay: %s", snapshot.room_id, exc)

    def _desync(self, exc: TransportDesync) -> None:
        logger.warning("Transport desync: %s; requesting resync", exc)
        self._emit(DesyncEvent(exc.expected, exc.got))
        self._request_sync()

    def _request_sync(self) -> None:
        if self._transport is not None:
            self._transport.request_sync()

    def _fall_back_to_solo(self, reason: str) -> None:
        if self._mode.kind == "solo":
            return
        self._set_mode(SOLO, reason)
        self._request_engine_move()

    def _set_mode(self, mode: Mode, reason: str) -> None:
        if mode == self._mode:
            return
        logger.info("Mode %s → %s (%s)", self._mode, mode, reason)
        self._mode = mode
        self._emit(ModeChangedEvent(mode, reason))

    # ------------------------------------------------------------------ #
    # Notification                                                        #
    # ------------------------------------------------------------------ #

    def _on_state_changed(self, event: StateChangedEvent) -> None:
        self._emit(event)

    def _rejected(self, exc: MoveRejected, source: Source) -> MoveRejected:
        logger.info("Rejected %s move: %s", source, exc)
        self._emit(MoveRejectedEvent(exc.move, exc.reason, source, exc.detail))
        return exc

    def _emit(self, event: GameEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Game listener %r failed", listener)
