"""
FastAPI application — the web backend.

Exposes:
  GET  /api/config            Engine limits and default side for the UI
  WS   /ws/play               Solo game against the engine, events streamed as JSON
  WS   /ws/room/{room_id}     Two-player room relay (join-room, make-move, chat-message, …)

A browser opens /ws/play for solo play. For two-player games each browser
joins the same /ws/room/{room_id}; the RoomHub keeps the authoritative move
sequence and relays moves and chat between them.
"""

from __future__ import annotations

import asyncio
import json
import logging
import logging.handlers
import os
from pathlib import Path

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from bakuchess.arbiter import ModeArbiter
from bakuchess.config import Config, load_config
from bakuchess.engine import create_session
from bakuchess.errors import MoveRejected
from bakuchess.events import GameEvent, to_json_dict
from bakuchess.game import GameController
from bakuchess.renderer import render_svg
from bakuchess.rooms import RoomHub

# --------------------------------------------------------------------------- #
# Logging                                                                      #
# --------------------------------------------------------------------------- #

_LOG_FILE = Path("./logs/bakuchess.log")
_LOG_FILE.parent.mkdir(parents=True, exist_ok=True)

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    handlers=[
        logging.StreamHandler(),                                   # server console
        logging.handlers.RotatingFileHandler(
            _LOG_FILE, maxBytes=2 * 1024 * 1024, backupCount=3,  # 2 MB × 3 files
            encoding="utf-8",
        ),
    ],
)
logger = logging.getLogger("bakuchess")


def _load_server_config() -> Config:
    path = Path(os.environ.get("BAKUCHESS_CONFIG", "config.yaml"))
    try:
        return load_config(path)
    except FileNotFoundError:
        logger.warning("No %s found; using built-in defaults", path)
        return Config()


config = _load_server_config()
hub = RoomHub()

app = FastAPI(title="BakuChess")


# --------------------------------------------------------------------------- #
# REST                                                                         #
# --------------------------------------------------------------------------- #

@app.get("/api/config")
def get_config():
    return {
        "max_depth": config.engine.max_depth,
        "max_time_ms": config.engine.max_time_ms,
        "human_color": config.game.human_color,
    }


# --------------------------------------------------------------------------- #
# WebSocket: solo vs engine                                                    #
# --------------------------------------------------------------------------- #

@app.websocket("/ws/play")
async def play_ws(ws: WebSocket) -> None:
    await ws.accept()

    outbox: asyncio.Queue[dict] = asyncio.Queue()
    controller = GameController()
    session = create_session(config.engine)
    arbiter = ModeArbiter(
        controller,
        session,
        limits=config.engine.limits,
        human_color=config.game.human_color,
    )

    def _enqueue(event: GameEvent) -> None:
        outbox.put_nowait(to_json_dict(event))

    arbiter.subscribe(_enqueue)

    async def _send_loop() -> None:
        while True:
            payload = await outbox.get()
            await ws.send_text(json.dumps(payload))

    async def _receive_loop() -> None:
        while True:
            msg = await _receive_object(
                ws, lambda reason: outbox.put_nowait({"type": "error", "message": reason})
            )
            if not _handle_play_message(msg, arbiter, outbox):
                break

    send_task = asyncio.create_task(_send_loop())
    try:
        if not await session.start():
            logger.warning("Engine unavailable for /ws/play: %s", session.last_error)
        outbox.put_nowait({
            "type": "Hello",
            "engine": session.name,
            "engine_available": arbiter.solo_available,
            "human_color": arbiter.local_color,
        })
        arbiter.new_game()
        await _receive_loop()
    except (WebSocketDisconnect, RuntimeError):
        pass
    finally:
        await session.close()
        # give queued events a chance to go out before the socket closes
        while not outbox.empty() and not send_task.done():
            await asyncio.sleep(0)
        send_task.cancel()
        try:
            await send_task
        except (asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
            pass


async def _receive_object(ws: WebSocket, reject) -> dict:
    """Next client message that is a JSON object. Anything else is answered via `reject` and skipped."""
    while True:
        text = await ws.receive_text()
        try:
            msg = json.loads(text)
        except ValueError:
            reject("invalid JSON")
            continue
        if isinstance(msg, dict):
            return msg
        reject("expected a JSON object")


def _handle_play_message(msg: dict, arbiter: ModeArbiter, outbox: asyncio.Queue) -> bool:
    """Apply one client message. Returns False when the client asked to stop."""
    match msg.get("type"):
        case "move":
            try:
                arbiter.local_move(str(msg.get("move", "")))
            except MoveRejected:
                pass  # MoveRejectedEvent already queued
        case "new-game":
            arbiter.new_game()
        case "switch-side":
            arbiter.switch_side()
        case "undo":
            arbiter.undo()
        case "legal-targets":
            square = str(msg.get("square", ""))
            outbox.put_nowait({
                "type": "LegalTargets",
                "square": square,
                "targets": sorted(arbiter.controller.legal_targets(square)),
            })
        case "board-svg":
            controller = arbiter.controller
            outbox.put_nowait({
                "type": "BoardSvg",
                "svg": render_svg(
                    controller.position,
                    controller.last_move,
                    flipped=arbiter.local_color == "black",
                ),
            })
        case "pgn":
            outbox.put_nowait({"type": "Pgn", "pgn": arbiter.controller.to_pgn()})
        case "stop":
            return False
        case other:
            outbox.put_nowait({"type": "error", "message": f"unknown message type {other!r}"})
    return True


# --------------------------------------------------------------------------- #
# WebSocket: two-player rooms                                                  #
# --------------------------------------------------------------------------- #

@app.websocket("/ws/room/{room_id}")
async def room_ws(ws: WebSocket, room_id: str) -> None:
    await ws.accept()

    outbox: asyncio.Queue[dict] = asyncio.Queue()
    identity: str | None = None

    async def _send_loop() -> None:
        while True:
            payload = await outbox.get()
            await ws.send_text(json.dumps(payload))

    def _reject(reason: str) -> None:
        outbox.put_nowait({"type": "error", "reason": reason})

    send_task = asyncio.create_task(_send_loop())
    try:
        # ── First message: { type: "join-room", identity: "..." } ── #
        first = await _receive_object(ws, _reject)
        if first.get("type") != "join-room" or not str(first.get("identity", "")).strip():
            await ws.send_text(json.dumps({"type": "error", "reason": "expected join-room"}))
            return
        identity = str(first["identity"]).strip()
        if not hub.join(room_id, identity, outbox.put_nowait):
            identity = None
            return

        while True:
            msg = await _receive_object(ws, _reject)
            hub.handle(room_id, identity, msg)

    except (WebSocketDisconnect, RuntimeError):
        pass
    finally:
        if identity is not None:
            hub.leave(room_id, identity)
        while not outbox.empty() and not send_task.done():
            await asyncio.sleep(0)
        send_task.cancel()
        try:
            await send_task
        except (asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
            pass
