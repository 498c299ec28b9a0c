"""
Client half of the two-player transport.

Transport is what the mode arbiter emits through. dispatch_message() turns
an inbound wire message into the matching arbiter call. HubTransport wires
an arbiter straight to an in-process RoomHub; each inbound message is
scheduled with loop.call_soon so it is handled as its own callback, never
re-entrantly inside the send that triggered it.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING

from bakuchess.errors import ConnectionLost
from bakuchess.events import ChatMessage, Move, RoomSnapshot, STARTING_FEN
from bakuchess.rooms import RoomHub

if TYPE_CHECKING:
    from bakuchess.arbiter import ModeArbiter

logger = logging.getLogger("bakuchess.transport")


class Transport(ABC):
    """Outbound side of the real-time channel, as seen by the arbiter."""

    def __init__(self, room_id: str, identity: str) -> None:
        self.room_id = room_id
        self.identity = identity

    @abstractmethod
    def send_move(self, move: Move, fen: str, seq: int) -> None: ...

    @abstractmethod
    def send_reset(self) -> None: ...

    @abstractmethod
    def send_undo(self, seq: int) -> None: ...

    @abstractmethod
    def send_chat(self, text: str) -> None: ...

    @abstractmethod
    def request_sync(self) -> None: ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(room={self.room_id!r}, identity={self.identity!r})"


def snapshot_from_message(message: dict) -> RoomSnapshot:
    chat = tuple(
        ChatMessage(
            identity=str(c.get("identity", "")),
            text=str(c.get("text", "")),
            timestamp=_parse_time(c.get("timestamp")),
        )
        for c in message.get("chat") or []
    )
    return RoomSnapshot(
        room_id=str(message.get("roomId", "")),
        participants=tuple(message.get("participants") or ()),
        seq=int(message.get("seq", 0)),
        fen=str(message.get("fen", STARTING_FEN)),
        history=tuple(message.get("history") or ()),
        chat=chat,
        start_fen=str(message.get("startFen") or STARTING_FEN),
        seats={
            str(identity): color
            for identity, color in (message.get("seats") or {}).items()
            if color in ("white", "black")
        },
    )


def dispatch_message(arbiter: ModeArbiter, message: dict) -> None:
    """Route one inbound wire message to the arbiter."""
    match message.get("type"):
        case "room-joined":
            arbiter.on_room_joined(snapshot_from_message(message))
        case "sync":
            arbiter.on_sync(snapshot_from_message(message))
        case "start-game":
            arbiter.on_peer_joined()
        case "move":
            arbiter.on_remote_move(str(message.get("move", "")), message.get("fen"), message.get("seq"))
        case "reset":
            arbiter.on_remote_reset()
        case "move-undone":
            arbiter.on_remote_undo(message.get("seq"))
        case "chat-message":
            arbiter.on_chat(ChatMessage(
                identity=str(message.get("identity", "")),
                text=str(message.get("text", "")),
                timestamp=_parse_time(message.get("timestamp")),
            ))
        case "opponent-left":
            arbiter.on_peer_left()
        case "error":
            logger.warning("Transport error: %s", message.get("reason"))
        case other:
            logger.debug("Ignoring transport message of type %r", other)


def _parse_time(value: object) -> datetime:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return datetime.now()


def _notify_lost(arbiter: ModeArbiter, transport: Transport, exc: ConnectionLost) -> None:
    # a reconnect may already have attached a newer transport
    if arbiter.transport is transport:
        arbiter.on_connection_lost(exc)


class HubTransport(Transport):
    """Connects one arbiter to a RoomHub living in the same process."""

    def __init__(self, hub: RoomHub, room_id: str, identity: str) -> None:
        super().__init__(room_id, identity)
        self._hub = hub
        self._arbiter: ModeArbiter | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def connect(self, arbiter: ModeArbiter) -> bool:
        """Join the room on behalf of `arbiter`. Must be called from a running loop."""
        self._arbiter = arbiter
        self._loop = asyncio.get_running_loop()
        arbiter.attach_transport(self)
        return self._hub.join(self.room_id, self.identity, self._deliver)

    def leave(self) -> None:
        self._hub.leave(self.room_id, self.identity)
        self._lost(ConnectionLost(f"{self.identity} left room {self.room_id}"))

    def _deliver(self, message: dict) -> None:
        if self._arbiter is None or self._loop is None:
            return
        self._loop.call_soon(dispatch_message, self._arbiter, message)

    def _lost(self, exc: ConnectionLost) -> None:
        arbiter, self._arbiter = self._arbiter, None
        if arbiter is None or self._loop is None:
            return
        self._loop.call_soon(_notify_lost, arbiter, self, exc)

    def _send(self, message: dict) -> None:
        room = self._hub.get(self.room_id)
        if room is None or self.identity not in room.participants:
            logger.warning("%s is not in room %s; dropping %s", self.identity, self.room_id, message.get("type"))
            self._lost(ConnectionLost(f"{self.identity} is not in room {self.room_id}"))
            return
        self._hub.handle(self.room_id, self.identity, {"roomId": self.room_id, **message})

    def send_move(self, move: Move, fen: str, seq: int) -> None:
        self._send({"type": "make-move", "move": move.uci(), "fen": fen, "seq": seq})

    def send_reset(self) -> None:
        self._send({"type": "reset"})

    def send_undo(self, seq: int) -> None:
        self._send({"type": "undo-move", "seq": seq})

    def send_chat(self, text: str) -> None:
        self._send({"type": "chat-message", "text": text})

    def request_sync(self) -> None:
        self._send({"type": "request-sync"})
