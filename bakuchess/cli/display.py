"""
Rich-based CLI event consumer.

This is the ONLY place where terminal output happens.
It translates GameEvent objects into formatted Rich output.

The WebSocket handler does the same job for the browser by serialising
events via events.to_json_dict(). The arbiter requires zero changes.
"""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from bakuchess.events import (
    ChatEvent,
    Color,
    DesyncEvent,
    EngineBestMoveEvent,
    EngineErrorEvent,
    EngineNoMoveEvent,
    EngineReadyEvent,
    EvaluationEvent,
    GameEvent,
    ModeChangedEvent,
    MoveRejectedEvent,
    StateChangedEvent,
    TerminalStatus,
)
from bakuchess.renderer import render_ascii
from bakuchess.score import format_evaluation, white_share

console = Console(legacy_windows=False)

_BAR_WIDTH = 30


class Display:
    """
    Terminal listener for the arbiter.

    Holds the little view state the terminal needs: which side is at the
    bottom, and the latest evaluation (printed once per engine move instead
    of once per info line).
    """

    def __init__(self, human_color: Color = "white") -> None:
        self.human_color = human_color
        self._latest: EvaluationEvent | None = None

    def __call__(self, event: GameEvent) -> None:
        match event:
            case EvaluationEvent():
                self._latest = event
            case EngineBestMoveEvent():
                if self._latest is not None:
                    _evaluation(self._latest)
                    self._latest = None
            case _:
                display_event(event, flipped=self.human_color == "black")


def display_event(event: GameEvent, flipped: bool = False) -> None:
    """Dispatch a GameEvent to the appropriate display function."""
    match event:
        case StateChangedEvent():
            _state_changed(event, flipped)
        case MoveRejectedEvent():
            _move_rejected(event)
        case EvaluationEvent():
            _evaluation(event)
        case EngineBestMoveEvent():
            pass  # the resulting StateChangedEvent is what gets shown
        case EngineNoMoveEvent():
            console.print(f"  [dim]Engine: no move.[/] {status_text(event.status)}")
        case EngineReadyEvent():
            console.print(f"[green]Engine ready[/] [dim]{event.name or ''}[/]")
        case EngineErrorEvent():
            console.print(
                f"[bold red]Engine offline[/] ({event.reason}) [dim]{event.detail}[/]\n"
                "[yellow]Solo play is disabled until the engine is restarted.[/]"
            )
        case ModeChangedEvent():
            label = "Multiplayer" if event.mode.kind == "multiplayer" else "Solo vs engine"
            console.print(f"[cyan]Mode:[/] {label} [dim]({event.reason})[/]")
        case ChatEvent():
            console.print(f"[magenta]{event.message.identity}:[/] {event.message.text}")
        case DesyncEvent():
            console.print(f"[yellow]Out of sync (#{event.got}, expected #{event.expected}); resyncing…[/]")


def status_text(status: TerminalStatus) -> str:
    match status.kind:
        case "checkmate":
            return f"Checkmate – {(status.side or '').title()} wins"
        case "stalemate":
            return "Stalemate"
        case "draw":
            return f"Draw ({(status.reason or 'draw').replace('_', ' ')})"
        case "check":
            return f"{(status.side or '').title()} is in check"
        case _:
            return "Game in progress."


# --------------------------------------------------------------------------- #
# Display functions                                                            #
# --------------------------------------------------------------------------- #

def _state_changed(event: StateChangedEvent, flipped: bool) -> None:
    console.print()
    if event.last_move is not None:
        who = {"local": "You", "engine": "Engine", "remote": "Opponent"}[event.last_move.source]
        console.print(
            f"  [green]✓[/] {who}: [bold]{event.last_move.san or event.last_move.uci()}[/]"
            f"  [dim]({event.last_move.uci()})[/]"
        )
    elif event.seq == 0:
        console.print("[bold]New game started.[/]")

    turn = event.position.side_to_move
    console.print(
        Panel(
            f"[green]{render_ascii(event.position, flipped=flipped)}[/]",
            subtitle=f"[dim]{event.position.fen}[/]",
            border_style="yellow" if event.status.is_over else "dim",
            padding=(0, 1),
            expand=False,
        )
    )
    style = "bold red" if event.status.kind != "in_progress" else "dim"
    console.print(f"[{style}]{status_text(event.status)}[/]  [dim]{turn.title()} to move[/]")


def _move_rejected(event: MoveRejectedEvent) -> None:
    reason = event.reason.replace("-", " ")
    console.print(f"  [red]✗[/] [yellow]{event.move!r}[/] rejected — {reason}")


def _evaluation(event: EvaluationEvent) -> None:
    ev = event.evaluation
    filled = round(white_share(ev) * _BAR_WIDTH)
    bar = f"[white on white]{' ' * filled}[/][on grey23]{' ' * (_BAR_WIDTH - filled)}[/]"
    pv = " ".join(ev.pv[:6])
    console.print(
        f"  {bar} [bold]{format_evaluation(ev)}[/]"
        f"  [dim]depth {ev.depth if ev.depth is not None else '?'}  {pv}[/]",
        highlight=False,
    )


def print_help() -> None:
    table = Table(show_header=False, border_style="dim", expand=False)
    table.add_column("Command", style="bold")
    table.add_column("Action", style="dim")
    table.add_row("e2e4, e7e8q", "make a move (coordinate notation)")
    table.add_row("moves <square>", "list legal targets of a square")
    table.add_row("new", "start a new game")
    table.add_row("switch", "play the other colour (starts over)")
    table.add_row("undo", "take back your last move")
    table.add_row("quit", "leave")
    console.print(table)
