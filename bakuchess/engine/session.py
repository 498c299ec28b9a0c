"""
EngineSession — owns one engine worker and speaks UCI to it.

State machine:

    UNINITIALIZED ──start()──▶ HANDSHAKING ──uciok/readyok──▶ READY
    READY ──start_search()──▶ SEARCHING ──bestmove──▶ READY
    any ──spawn failure / handshake timeout / worker exit──▶ OFFLINE (terminal)
    any ──close()──▶ STOPPED

At most one search is in flight. A start_search() that arrives while a
search is running sends `stop`, waits for that search's trailing bestmove,
drops it, and only then issues the new `position`/`go` pair. Every search
gets a monotonically increasing token; events carry it so consumers can
discard replies that belong to a search they no longer care about.

The session never retries. Restart policy belongs to the caller, who builds
a new session.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from bakuchess.engine.worker import EngineWorker
from bakuchess.errors import EngineLoadError, EngineUnavailable, UnavailableReason
from bakuchess.events import (
    Color,
    EngineBestMoveEvent,
    EngineErrorEvent,
    EngineEvent,
    EngineReadyEvent,
    EvaluationEvent,
    Position,
)
from bakuchess.score import evaluation_from_info
from bakuchess.uci import BestMoveEvent, HandshakeEvent, Ignored, InfoEvent, parse_line

logger = logging.getLogger("bakuchess.engine")

EngineListener = Callable[[EngineEvent], None]
# (direction, line) where direction is ">>" for commands and "<<" for engine output
LogSink = Callable[[str, str], None]


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    HANDSHAKING = "handshaking"
    READY = "ready"
    SEARCHING = "searching"
    STOPPED = "stopped"
    OFFLINE = "offline"


@dataclass(frozen=True)
class SearchLimits:
    """Search bounds. The engine stops at whichever limit it reaches first."""

    max_depth: int | None = 12
    max_time_ms: int | None = 800

    def __post_init__(self) -> None:
        if self.max_depth is None and self.max_time_ms is None:
            raise ValueError("SearchLimits needs max_depth, max_time_ms or both")
        if self.max_depth is not None and self.max_depth < 1:
            raise ValueError("max_depth must be >= 1")
        if self.max_time_ms is not None and self.max_time_ms < 1:
            raise ValueError("max_time_ms must be >= 1")

    def go_command(self) -> str:
        parts = ["go"]
        if self.max_depth is not None:
            parts += ["depth", str(self.max_depth)]
        if self.max_time_ms is not None:
            parts += ["movetime", str(self.max_time_ms)]
        return " ".join(parts)


@dataclass
class _Search:
    token: int
    fen: str
    limits: SearchLimits
    side_to_move: Color
    abandoned: bool = False


class EngineSession:
    """
    Args:
        worker:            The engine pipe. The session owns it from here on.
        handshake_timeout: Seconds allowed for uci/uciok + isready/readyok.
        options:           UCI options sent with `setoption` during the handshake.
        sink:              Optional observer of every command and output line.
        limits:            Default limits for start_search() calls that pass none.
    """

    def __init__(
        self,
        worker: EngineWorker,
        *,
        handshake_timeout: float = 5.0,
        options: dict[str, object] | None = None,
        sink: LogSink | None = None,
        limits: SearchLimits | None = None,
    ) -> None:
        self._worker = worker
        self._handshake_timeout = handshake_timeout
        self._options = dict(options or {})
        self._sink = sink
        self._default_limits = limits or SearchLimits()

        self._state = SessionState.UNINITIALIZED
        self._error: EngineUnavailable | None = None
        self._listeners: list[EngineListener] = []
        self._token = 0
        self._current: _Search | None = None
        self._pending: _Search | None = None
        self._stopping = False
        self._reader: asyncio.Task | None = None
        self._uciok = asyncio.Event()
        self._readyok = asyncio.Event()
        self.name: str | None = None

    # ------------------------------------------------------------------ #
    # Introspection                                                        #
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def offline_reason(self) -> UnavailableReason | None:
        return self._error.reason if self._error else None

    @property
    def last_error(self) -> EngineUnavailable | None:
        return self._error

    @property
    def available(self) -> bool:
        return self._state not in (SessionState.OFFLINE, SessionState.STOPPED)

    @property
    def active_token(self) -> int | None:
        """Token of the search whose result will be surfaced next, if any."""
        if self._pending is not None:
            return self._pending.token
        if self._current is not None and not self._current.abandoned:
            return self._current.token
        return None

    def subscribe(self, listener: EngineListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------ #
    # Lifecycle                                                            #
    # ------------------------------------------------------------------ #

    async def start(self) -> bool:
        """Spawn the worker and run the handshake. Returns True once READY."""
        if self._state is not SessionState.UNINITIALIZED:
            return self._state in (SessionState.READY, SessionState.SEARCHING)

        self._set_state(SessionState.HANDSHAKING)
        try:
            await self._worker.start()
        except EngineLoadError as exc:
            logger.error("Engine failed to load: %s", exc)
            self._go_offline("load-failure", str(exc))
            return False

        self._reader = asyncio.create_task(self._read_loop(), name="uci-reader")
        try:
            async with asyncio.timeout(self._handshake_timeout):
                self._send("uci")
                await self._uciok.wait()
                for name, value in self._options.items():
                    if self._state is SessionState.HANDSHAKING:
                        self._send(f"setoption name {name} value {value}")
                self._send("isready")
                await self._readyok.wait()
        except TimeoutError:
            logger.error("Engine handshake timed out after %.1fs", self._handshake_timeout)
            self._go_offline("handshake-timeout", f"no reply within {self._handshake_timeout}s")
            await self._teardown()
            return False

        if self._state is not SessionState.HANDSHAKING:
            # the worker went away mid-handshake
            return False

        self._set_state(SessionState.READY)
        self._emit(EngineReadyEvent(self.name))
        if self._pending is not None:
            queued, self._pending = self._pending, None
            self._launch(queued)
        return True

    async def close(self) -> None:
        """Ask the engine to quit and release the worker."""
        if self._state is SessionState.STOPPED:
            return
        if self._state in (SessionState.READY, SessionState.SEARCHING):
            if self._state is SessionState.SEARCHING:
                self._send("stop")
            self._send("quit")
        self._pending = None
        self._current = None
        if self._state is not SessionState.OFFLINE:
            self._set_state(SessionState.STOPPED)
        await self._teardown()

    async def _teardown(self) -> None:
        reader = self._reader
        if reader is not None and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        await self._worker.close()

    # ------------------------------------------------------------------ #
    # Searching                                                            #
    # ------------------------------------------------------------------ #

    def start_search(self, fen: str, limits: SearchLimits | None = None) -> int | None:
        """
        Request a search of `fen`. Returns the search token, or None when offline.

        Fire-and-forget: results arrive later as EvaluationEvent and
        EngineBestMoveEvent carrying the returned token.
        """
        if not self.available:
            error = self._error or EngineUnavailable("worker-exited", "session closed")
            logger.warning("Search request ignored: %s", error)
            self._emit(EngineErrorEvent(reason=error.reason, detail="search request ignored"))
            return None

        self._token += 1
        search = _Search(
            token=self._token,
            fen=fen,
            limits=limits or self._default_limits,
            side_to_move=Position(fen).side_to_move,
        )

        if self._state is SessionState.READY:
            self._launch(search)
            return search.token

        if self._pending is not None:
            logger.debug("Search #%d superseded by #%d", self._pending.token, search.token)
        self._pending = search
        if self._state is SessionState.SEARCHING and not self._stopping:
            self._stopping = True
            self._send("stop")
        return search.token

    def cancel(self) -> None:
        """Stop the running search, if any. Its trailing bestmove is discarded."""
        self._pending = None
        if self._state is not SessionState.SEARCHING or self._current is None:
            return
        self._current.abandoned = True
        if not self._stopping:
            self._stopping = True
            self._send("stop")

    def _launch(self, search: _Search) -> None:
        self._current = search
        self._stopping = False
        self._set_state(SessionState.SEARCHING)
        self._send(f"position fen {search.fen}")
        self._send(search.limits.go_command())

    # ------------------------------------------------------------------ #
    # Inbound                                                              #
    # ------------------------------------------------------------------ #

    async def _read_loop(self) -> None:
        detail = "engine closed its output"
        try:
            while True:
                line = await self._worker.readline()
                if line is None:
                    break
                self._on_line(line)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Reading from engine failed")
            detail = str(exc)

        if self._state is not SessionState.STOPPED:
            self._go_offline("worker-exited", detail)
            await self._worker.close()

    def _on_line(self, line: str) -> None:
        self._observe("<<", line)
        event = parse_line(line)
        match event:
            case HandshakeEvent(kind="uciok"):
                self._uciok.set()
            case HandshakeEvent(kind="readyok"):
                self._readyok.set()
            case InfoEvent():
                self._on_info(event)
            case BestMoveEvent():
                self._on_bestmove(event)
            case Ignored(raw=raw):
                if raw.startswith("id name "):
                    self.name = raw[len("id name "):].strip()

    def _on_info(self, info: InfoEvent) -> None:
        search = self._current
        if self._state is not SessionState.SEARCHING or search is None:
            return
        if search.abandoned or self._stopping:
            return
        evaluation = evaluation_from_info(info, search.side_to_move)
        if evaluation is None:
            logger.debug("Ignoring info with invalid score: %r", info)
            return
        self._emit(EvaluationEvent(token=search.token, evaluation=evaluation))

    def _on_bestmove(self, best: BestMoveEvent) -> None:
        finished = self._current
        if self._state is not SessionState.SEARCHING or finished is None:
            logger.warning("Stray bestmove %s with no search running", best.move)
            return

        self._current = None
        self._stopping = False
        self._set_state(SessionState.READY)

        if finished.abandoned or self._pending is not None:
            logger.warning("Dropping stale bestmove %s from search #%d", best.move, finished.token)
        else:
            self._emit(EngineBestMoveEvent(token=finished.token, move=best.move, fen=finished.fen))

        if self._pending is not None:
            queued, self._pending = self._pending, None
            self._launch(queued)

    # ------------------------------------------------------------------ #
    # Internal                                                             #
    # ------------------------------------------------------------------ #

    def _go_offline(self, reason: UnavailableReason, detail: str = "") -> None:
        if self._state is SessionState.OFFLINE:
            return
        lost = self._current.token if self._current and not self._current.abandoned else None
        if lost is None and self._pending is not None:
            lost = self._pending.token
        self._current = None
        self._pending = None
        self._error = EngineUnavailable(reason, detail)
        self._set_state(SessionState.OFFLINE)
        # unblock a handshake that is still waiting
        self._uciok.set()
        self._readyok.set()
        self._emit(EngineErrorEvent(reason=reason, detail=detail, token=lost))

    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            logger.info("Engine session %s → %s", self._state.value, state.value)
            self._state = state

    def _send(self, line: str) -> None:
        self._observe(">>", line)
        self._worker.send(line)

    def _observe(self, direction: str, line: str) -> None:
        logger.debug("%s %s", direction, line)
        if self._sink is None:
            return
        try:
            self._sink(direction, line)
        except Exception:
            logger.exception("Engine log sink failed")

    def _emit(self, event: EngineEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Engine listener %r failed", listener)
