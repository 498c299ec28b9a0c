"""
BakuChess — terminal entry point (solo play against a UCI engine).

Wires together:  config → engine session → controller → arbiter → CLI display
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from datetime import datetime
from pathlib import Path

from bakuchess.arbiter import ModeArbiter
from bakuchess.cli.display import Display, console, print_help
from bakuchess.config import load_config
from bakuchess.engine import create_session
from bakuchess.errors import MoveRejected
from bakuchess.events import GameEvent, StateChangedEvent
from bakuchess.game import GameController


async def _main(stop_event: asyncio.Event) -> None:
    config_path = Path(sys.argv[1] if len(sys.argv) > 1 else "config.yaml")
    try:
        config = load_config(config_path)
    except FileNotFoundError as exc:
        console.print(f"[red]Error:[/] {exc}")
        sys.exit(1)
    except ValueError as exc:
        console.print(f"[red]Config error:[/] {exc}")
        sys.exit(1)

    # Keep the terminal for the board; diagnostics go to a file.
    log_dir = Path("./logs")
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        filename=log_dir / "bakuchess-cli.log",
        encoding="utf-8",
    )

    controller = GameController()
    session = create_session(config.engine)
    arbiter = ModeArbiter(
        controller,
        session,
        limits=config.engine.limits,
        human_color=config.game.human_color,
    )
    display = Display(arbiter.local_color)
    arbiter.subscribe(display)

    pending_saves: set[asyncio.Task] = set()

    def _on_game_over(event: GameEvent) -> None:
        if config.game.save_pgn and isinstance(event, StateChangedEvent) and event.status.is_over:
            white, black = ("You", "Engine") if arbiter.local_color == "white" else ("Engine", "You")
            task = asyncio.create_task(_save_pgn(controller.to_pgn(white, black), config.pgn_dir_path))
            pending_saves.add(task)
            task.add_done_callback(pending_saves.discard)

    arbiter.subscribe(_on_game_over)

    console.print("[bold yellow]BakuChess[/] [dim]solo vs engine[/]")
    print_help()
    if not await session.start():
        console.print("[yellow]Continuing without an engine (moves are still checked).[/]")
    arbiter.new_game()

    try:
        while not stop_event.is_set():
            line = await _read_line(stop_event)
            if line is None:
                break
            if not _handle_command(line, arbiter, display):
                break
    finally:
        await session.close()
        if pending_saves:
            await asyncio.gather(*pending_saves, return_exceptions=True)


def _handle_command(line: str, arbiter: ModeArbiter, display: Display) -> bool:
    """Run one command. Returns False when the user wants to quit."""
    parts = line.strip().lower().split()
    if not parts:
        return True
    match parts:
        case ["quit" | "exit" | "q"]:
            return False
        case ["help" | "?"]:
            print_help()
        case ["new"]:
            arbiter.new_game()
        case ["switch"]:
            arbiter.switch_side()
            display.human_color = arbiter.local_color
        case ["undo"]:
            if arbiter.undo() == 0:
                console.print("[dim]Nothing to undo.[/]")
        case ["moves", square]:
            targets = sorted(arbiter.controller.legal_targets(square))
            console.print(f"  {square}: {', '.join(targets) if targets else '[dim]no legal moves[/]'}")
        case [move]:
            try:
                arbiter.local_move(move)
            except MoveRejected:
                pass  # already shown by the display
        case _:
            console.print("[dim]Unknown command. Type 'help'.[/]")
    return True


async def _read_line(stop_event: asyncio.Event) -> str | None:
    """input() in a thread so engine events keep flowing while we wait."""
    loop = asyncio.get_running_loop()
    read = loop.run_in_executor(None, input, "> ")
    stop = asyncio.ensure_future(stop_event.wait())
    done, _ = await asyncio.wait({read, stop}, return_when=asyncio.FIRST_COMPLETED)
    if read not in done:
        return None
    stop.cancel()
    try:
        return read.result()
    except EOFError:
        return None


async def _save_pgn(pgn: str, pgn_dir: Path) -> None:
    """Write PGN to a timestamped file, creating the directory if needed."""
    pgn_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    pgn_path = pgn_dir / f"game_{timestamp}.pgn"
    await asyncio.to_thread(pgn_path.write_text, pgn, encoding="utf-8")
    console.print(f"[dim]PGN saved to {pgn_path}[/]")


def main() -> None:
    async def _run() -> None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        original_sigint = signal.getsignal(signal.SIGINT)

        def _on_sigint(sig: int, frame: object) -> None:
            # Schedule the event set on the event loop thread (safe on Windows)
            loop.call_soon_threadsafe(stop_event.set)
            # Restore the original handler so a second Ctrl+C force-quits
            signal.signal(signal.SIGINT, original_sigint)

        signal.signal(signal.SIGINT, _on_sigint)
        await _main(stop_event)

    asyncio.run(_run())


if __name__ == "__main__":
    main()
