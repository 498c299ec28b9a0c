"""
In-process room registry — the server half of the two-player transport.

A Room holds the authoritative move sequence for a two-player game. Every
incoming message is a JSON-ready dict with a "type" field; replies and
broadcasts are delivered through the per-participant callbacks registered
on join. Both the WebSocket endpoint (bakuchess/web/app.py) and the
in-process HubTransport sit on top of this.

Inbound:   join (via join()), make-move, reset, undo-move, chat-message, request-sync
Outbound:  room-joined, start-game, move, reset, move-undone, chat-message,
           sync, opponent-left, error
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from bakuchess.board import ChessBoard
from bakuchess.events import Move, STARTING_FEN

logger = logging.getLogger("bakuchess.rooms")

Deliver = Callable[[dict], None]

MAX_PLAYERS = 2
CHAT_LOG_SIZE = 100


@dataclass
class Room:
    room_id: str
    start_fen: str = STARTING_FEN
    participants: list[str] = field(default_factory=list)
    seats: dict[str, str] = field(default_factory=dict)   # identity -> colour, kept across leave/rejoin
    listeners: dict[str, Deliver] = field(default_factory=dict)
    history: list[str] = field(default_factory=list)
    movers: list[str] = field(default_factory=list)
    chat: deque = field(default_factory=lambda: deque(maxlen=CHAT_LOG_SIZE))

    def __post_init__(self) -> None:
        self.board = ChessBoard(self.start_fen)

    @property
    def seq(self) -> int:
        return len(self.history)

    def color_of(self, identity: str) -> str | None:
        return self.seats.get(identity)

    def take_seat(self, identity: str) -> str:
        """Give `identity` its old colour back, or the colour nobody present holds."""
        if identity in self.seats:
            return self.seats[identity]
        held = {self.seats.get(p) for p in self.participants}
        color = "white" if "white" not in held else "black"
        # a newcomer inherits the seat of whoever left it
        for other, seat in list(self.seats.items()):
            if seat == color:
                del self.seats[other]
        self.seats[identity] = color
        return color

    def snapshot(self, msg_type: str = "room-joined") -> dict:
        return {
            "type": msg_type,
            "roomId": self.room_id,
            "participants": list(self.participants),
            "seats": {p: self.seats[p] for p in self.participants if p in self.seats},
            "seq": self.seq,
            "fen": self.board.fen,
            "startFen": self.start_fen,
            "history": list(self.history),
            "chat": list(self.chat),
        }

    def rebuild(self, moves: list[str]) -> None:
        self.board = ChessBoard(self.start_fen)
        for uci in moves:
            self.board.attempt_move(Move.from_uci(uci))
        self.history = list(moves)
        self.movers = self.movers[: len(moves)]


class RoomHub:
    def __init__(self) -> None:
        self._rooms: dict[str, Room] = {}

    def get(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    # ------------------------------------------------------------------ #
    # Membership                                                           #
    # ------------------------------------------------------------------ #

    def join(self, room_id: str, identity: str, deliver: Deliver) -> bool:
        """
        Add `identity` to the room, creating it if needed.

        A known identity rejoining (reconnect) gets the authoritative snapshot
        again. Returns False if the room is already full.
        """
        room = self._rooms.get(room_id)
        if room is None:
            room = self._rooms[room_id] = Room(room_id)
            logger.info("Room %s created", room_id)

        rejoin = identity in room.participants
        if not rejoin and len(room.participants) >= MAX_PLAYERS:
            deliver({"type": "error", "reason": "room-full", "roomId": room_id})
            return False

        if not rejoin:
            room.participants.append(identity)
        room.listeners[identity] = deliver
        logger.info("%s %s room %s", identity, "rejoined" if rejoin else "joined", room_id)

        color = room.take_seat(identity)
        joined = room.snapshot()
        joined["color"] = color
        deliver(joined)

        if not rejoin and len(room.participants) == MAX_PLAYERS:
            self._broadcast(room, {
                "type": "start-game",
                "roomId": room_id,
                "participants": list(room.participants),
            })
        return True

    def leave(self, room_id: str, identity: str) -> None:
        room = self._rooms.get(room_id)
        if room is None or identity not in room.participants:
            return
        room.participants.remove(identity)
        room.listeners.pop(identity, None)
        logger.info("%s left room %s", identity, room_id)
        if not room.participants:
            del self._rooms[room_id]
            return
        self._broadcast(room, {"type": "opponent-left", "roomId": room_id, "identity": identity})

    # ------------------------------------------------------------------ #
    # Messages                                                             #
    # ------------------------------------------------------------------ #

    def handle(self, room_id: str, identity: str, message: dict) -> None:
        room = self._rooms.get(room_id)
        if room is None or identity not in room.participants:
            logger.warning("Message from %s for unknown room %s", identity, room_id)
            return
        match message.get("type"):
            case "make-move":
                self._make_move(room, identity, message)
            case "reset":
                room.rebuild([])
                self._broadcast(room, {"type": "reset", "roomId": room.room_id}, exclude=identity)
            case "undo-move":
                self._undo(room, identity, message)
            case "chat-message":
                self._chat(room, identity, message)
            case "request-sync":
                self._send(room, identity, room.snapshot("sync"))
            case other:
                self._send(room, identity, {"type": "error", "reason": f"unknown message type {other!r}"})

    def _make_move(self, room: Room, identity: str, message: dict) -> None:
        uci = str(message.get("move", ""))
        seq = message.get("seq")
        if seq != room.seq + 1:
            logger.warning("Room %s: %s sent move #%s, expected #%d", room.room_id, identity, seq, room.seq + 1)
            self._send(room, identity, room.snapshot("sync"))
            return
        if room.color_of(identity) != room.board.current_turn():
            self._send(room, identity, {"type": "error", "reason": "out-of-turn", "move": uci})
            self._send(room, identity, room.snapshot("sync"))
            return
        try:
            move = Move.from_uci(uci)
        except ValueError:
            move = None
        result = room.board.attempt_move(move) if move is not None else None
        if result is None or not result.accepted:
            self._send(room, identity, {"type": "error", "reason": "illegal", "move": uci})
            self._send(room, identity, room.snapshot("sync"))
            return

        # store what was actually played, auto-queen included
        played = Move(move.origin, move.destination, move.promotion or room.board.last_promotion()).uci()
        room.history.append(played)
        room.movers.append(identity)
        self._broadcast(room, {
            "type": "move",
            "roomId": room.room_id,
            "move": played,
            "fen": result.resulting_fen,
            "seq": room.seq,
        }, exclude=identity)

    def _undo(self, room: Room, identity: str, message: dict) -> None:
        if not room.history or room.movers[-1] != identity or message.get("seq") != room.seq:
            self._send(room, identity, room.snapshot("sync"))
            return
        room.rebuild(room.history[:-1])
        self._broadcast(room, {
            "type": "move-undone",
            "roomId": room.room_id,
            "seq": room.seq,
            "fen": room.board.fen,
        }, exclude=identity)

    def _chat(self, room: Room, identity: str, message: dict) -> None:
        text = str(message.get("text", "")).strip()
        if not text:
            return
        entry = {"identity": identity, "text": text, "timestamp": datetime.now().isoformat()}
        room.chat.append(entry)
        self._broadcast(room, {"type": "chat-message", "roomId": room.room_id, **entry}, exclude=identity)

    # ------------------------------------------------------------------ #
    # Delivery                                                             #
    # ------------------------------------------------------------------ #

    def _send(self, room: Room, identity: str, message: dict) -> None:
        deliver = room.listeners.get(identity)
        if deliver is None:
            return
        try:
            deliver(message)
        except Exception:
            logger.exception("Delivery to %s in room %s failed", identity, room.room_id)

    def _broadcast(self, room: Room, message: dict, exclude: str | None = None) -> None:
        for identity in list(room.listeners):
            if identity != exclude:
                self._send(room, identity, message)
