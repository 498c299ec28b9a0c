"""
Configuration loading from config.yaml.

Uses typed dataclasses throughout so the rest of the app gets IDE
completion and type-checker support without touching raw dicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from bakuchess.engine.session import SearchLimits
from bakuchess.events import Color


@dataclass
class EngineConfig:
    path: str = "stockfish"
    max_depth: int | None = 12
    max_time_ms: int | None = 800   # the engine stops at whichever limit comes first
    handshake_timeout: float = 5.0  # seconds for uci/uciok + isready/readyok
    options: dict[str, object] = field(default_factory=dict)
    transcript_dir: str | None = "./logs"

    @property
    def limits(self) -> SearchLimits:
        return SearchLimits(max_depth=self.max_depth, max_time_ms=self.max_time_ms)


@dataclass
class GameConfig:
    human_color: Color = "white"
    save_pgn: bool = True
    pgn_dir: str = "./games"


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000


@dataclass
class Config:
    engine: EngineConfig = field(default_factory=EngineConfig)
    game: GameConfig = field(default_factory=GameConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @property
    def pgn_dir_path(self) -> Path:
        return Path(self.game.pgn_dir)


def load_config(path: str | Path = "config.yaml") -> Config:
    """
    Load and validate config.yaml.

    Raises:
        FileNotFoundError: config.yaml is missing.
        ValueError: fields are malformed or out of range.
    """
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {cfg_path.resolve()}\n"
            "Copy config.example.yaml to config.yaml and point engine.path at your engine."
        )

    with cfg_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    return parse_config(raw)


def parse_config(raw: dict) -> Config:
    """Build a Config from an already-parsed YAML mapping."""
    if not isinstance(raw, dict):
        raise ValueError("Invalid config.yaml structure: top level must be a mapping")
    try:
        engine_raw = raw.get("engine") or {}
        engine_cfg = EngineConfig(
            path=str(engine_raw.get("path", "stockfish")),
            max_depth=_optional_int(engine_raw, "max_depth", 12),
            max_time_ms=_optional_int(engine_raw, "max_time_ms", 800),
            handshake_timeout=float(engine_raw.get("handshake_timeout", 5.0)),
            options=dict(engine_raw.get("options") or {}),
            transcript_dir=engine_raw.get("transcript_dir", "./logs"),
        )

        game_raw = raw.get("game") or {}
        game_cfg = GameConfig(
            human_color=game_raw.get("human_color", "white"),
            save_pgn=bool(game_raw.get("save_pgn", True)),
            pgn_dir=str(game_raw.get("pgn_dir", "./games")),
        )

        server_raw = raw.get("server") or {}
        server_cfg = ServerConfig(
            host=str(server_raw.get("host", "0.0.0.0")),
            port=int(server_raw.get("port", 8000)),
        )

        config = Config(engine=engine_cfg, game=game_cfg, server=server_cfg)
        _validate(config)
        return config

    except (KeyError, TypeError, AttributeError) as exc:
        raise ValueError(f"Invalid config.yaml structure: {exc}") from exc


def _optional_int(section: dict, key: str, default: int) -> int | None:
    # An explicit null disables that limit; anything non-numeric is an error,
    # never silently replaced by the default.
    if key not in section:
        return default
    value = section[key]
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"engine.{key} must be an integer or null, got {value!r}")
    return value


def _validate(config: Config) -> None:
    if config.game.human_color not in ("white", "black"):
        raise ValueError(
            f"game.human_color must be 'white' or 'black', got '{config.game.human_color}'"
        )
    if config.engine.handshake_timeout <= 0:
        raise ValueError("engine.handshake_timeout must be > 0")
    SearchLimits(max_depth=config.engine.max_depth, max_time_ms=config.engine.max_time_ms)
