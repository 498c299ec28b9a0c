"""
UCI output parser: one raw engine line in, one structured event out.

parse_line() is pure and total. Anything it does not understand becomes an
Ignored event instead of an exception, so a chatty or buggy engine can never
break the session that reads it.

Examples:
    info depth 14 seldepth 20 score cp 23 nodes 123456 nps 2500000 pv e2e4 e7e5
    bestmove e2e4 ponder e7e5
    bestmove (none)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from bakuchess.errors import MalformedEngineOutput
from bakuchess.events import ScoreKind

logger = logging.getLogger("bakuchess.uci")

HandshakeKind = Literal["uciok", "readyok"]

# info keys followed by exactly one value we don't keep
_SKIP_ONE = {"seldepth", "multipv", "time", "hashfull", "tbhits", "cpuload",
             "currmove", "currmovenumber", "sbhits"}
_INT_FIELDS = {"depth", "nodes", "nps"}
_NULL_MOVES = {"(none)", "0000"}


@dataclass(frozen=True)
class HandshakeEvent:
    kind: HandshakeKind


@dataclass(frozen=True)
class InfoEvent:
    depth: int | None = None
    score: int | None = None
    score_kind: ScoreKind | None = None
    nodes: int | None = None
    nps: int | None = None
    pv: tuple[str, ...] = ()


@dataclass(frozen=True)
class BestMoveEvent:
    move: str | None
    ponder: str | None = None


@dataclass(frozen=True)
class Ignored:
    raw: str


UciEvent = HandshakeEvent | InfoEvent | BestMoveEvent | Ignored


def parse_line(line: str) -> UciEvent:
    """Map one line of engine output to a UciEvent. Never raises."""
    tokens = line.split()
    if not tokens:
        return Ignored(line)

    match tokens[0]:
        case "uciok" | "readyok" if len(tokens) == 1:
            return HandshakeEvent(tokens[0])  # type: ignore[arg-type]
        case "bestmove":
            return _parse_bestmove(tokens, line)
        case "info":
            try:
                return _parse_info(tokens[1:])
            except MalformedEngineOutput as exc:
                logger.debug("Ignoring engine line %r: %s", line, exc)
                return Ignored(line)
        case _:
            return Ignored(line)


def _parse_bestmove(tokens: list[str], line: str) -> UciEvent:
    if len(tokens) < 2:
        return Ignored(line)
    move = None if tokens[1] in _NULL_MOVES else tokens[1]
    ponder = None
    if len(tokens) >= 4 and tokens[2] == "ponder" and tokens[3] not in _NULL_MOVES:
        ponder = tokens[3]
    return BestMoveEvent(move=move, ponder=ponder)


def _parse_info(tokens: list[str]) -> InfoEvent:
    """
    Walk the key/value pairs of an info line.

    Only fields actually present are set; a key with a missing or non-numeric
    value leaves its field unset rather than defaulting it to zero.
    """
    fields: dict = {}
    recognised = False
    i = 0
    while i < len(tokens):
        key = tokens[i]
        if key == "string":
            # free-form text runs to the end of the line
            raise MalformedEngineOutput("info string")
        if key == "pv":
            fields["pv"] = tuple(tokens[i + 1:])
            recognised = recognised or bool(fields["pv"])
            break
        if key in _INT_FIELDS:
            value = _int_or_none(tokens, i + 1)
            if value is not None:
                fields[key] = value
                recognised = True
                i += 2
            else:
                i += 1
            continue
        if key == "score":
            kind = tokens[i + 1] if i + 1 < len(tokens) else None
            value = _int_or_none(tokens, i + 2)
            if kind in ("cp", "mate") and value is not None:
                fields["score_kind"] = kind
                fields["score"] = value
                recognised = True
                i += 3
                # bound markers carry no value
                while i < len(tokens) and tokens[i] in ("lowerbound", "upperbound"):
                    i += 1
            else:
                i += 1
            continue
        if key in _SKIP_ONE:
            i += 2
            continue
        i += 1

    if not recognised:
        raise MalformedEngineOutput("no usable info fields")
    return InfoEvent(**fields)


def _int_or_none(tokens: list[str], index: int) -> int | None:
    if index >= len(tokens):
        return None
    try:
        return int(tokens[index])
    except ValueError:
        return None
