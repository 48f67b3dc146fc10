"""
pictovoice/core/config.py — Typed configuration loader for PictoVoice.

Loads config/pictovoice.yaml and validates all values into typed dataclasses.
All downstream modules import from this module; never read YAML directly.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from pictovoice.core.constants import C

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Dataclass hierarchy — mirrors pictovoice.yaml
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class GazeConfig:
    """Gaze ingress, cursor smoothing and hit-testing parameters."""

    ws_url: str = C.GAZE_WS_URL
    smoothing_alpha: float = C.SMOOTHING_DEFAULT
    hit_tolerance_px: int = C.HIT_TOLERANCE_PX
    viewport_width: int = 1280
    viewport_height: int = 800
    frame_interval_ms: int = C.FRAME_INTERVAL_MS


@dataclass(frozen=True)
class DwellConfig:
    """Dwell selection timing."""

    dwell_ms: int = C.DWELL_DEFAULT_MS
    tick_ms: int = C.DWELL_TICK_MS


@dataclass(frozen=True)
class BoardConfig:
    """Pictogram board layout in viewport pixels and selection behaviour."""

    columns: int = 4
    rows: int = 3
    tile_gap_px: int = 16
    margin_px: int = 24
    clear_after_phrase: bool = True


@dataclass(frozen=True)
class ProxyConfig:
    """Phrase proxy endpoint and availability policy."""

    base_url: str = C.PROXY_BASE_URL
    probe_timeout_ms: int = C.PROBE_TIMEOUT_MS
    generation_timeout_ms: int = C.GENERATION_TIMEOUT_MS
    check_interval_ms: int = C.CHECK_INTERVAL_MS
    retry_delays_ms: tuple[int, ...] = C.RETRY_DELAYS_MS
    max_retries: int = C.MAX_RETRIES


@dataclass(frozen=True)
class ServerConfig:
    """Phrase proxy server and its local generation model."""

    host: str = "127.0.0.1"
    port: int = 3002
    model_id: str = "Qwen/Qwen2.5-0.5B-Instruct"
    cache_dir: str = "~/.cache/huggingface/hub"
    max_new_tokens: int = 40
    temperature: float = 0.7
    latency_budget_ms: int = 8000
    device_map: str = "auto"
    allowed_origins: tuple[str, ...] = (
        "http://localhost:8080",
        "http://127.0.0.1:8080",
        "http://localhost:3000",
    )

    @property
    def resolved_cache_dir(self) -> Path:
        """Return the cache directory as an absolute Path, expanding ~ if needed."""
        return Path(os.path.expanduser(self.cache_dir))


@dataclass(frozen=True)
class TTSConfig:
    """Text-to-speech output configuration."""

    enabled: bool = True
    rate: int = 150
    volume: float = 1.0
    voice_id: Optional[str] = None


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    log_dir: str = "logs"


@dataclass(frozen=True)
class PictoConfig:
    """Root configuration object — single source of truth for all settings."""

    gaze: GazeConfig = field(default_factory=GazeConfig)
    dwell: DwellConfig = field(default_factory=DwellConfig)
    board: BoardConfig = field(default_factory=BoardConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    tts: TTSConfig = field(default_factory=TTSConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# ──────────────────────────────────────────────
# Loader
# ──────────────────────────────────────────────


def _tupled(section: dict, *keys: str) -> dict:
    """Return a copy of *section* with YAML lists under *keys* turned into tuples."""
    out = dict(section)
    for key in keys:
        if key in out and isinstance(out[key], list):
            out[key] = tuple(out[key])
    return out


def load_config(config_path: Path | str | None = None) -> PictoConfig:
    """
    Load, validate, and return a PictoConfig from a YAML file.

    The search order for the config file is:
    1. *config_path* argument (if provided)
    2. PICTOVOICE_CONFIG environment variable
    3. ``config/pictovoice.yaml`` relative to the project root
    4. Built-in defaults (no file required)

    Args:
        config_path: Optional path to a ``pictovoice.yaml`` file.

    Returns:
        A fully populated and frozen :class:`PictoConfig` instance.

    Raises:
        ValueError: If a YAML field has an invalid type or value.
        FileNotFoundError: If *config_path* is explicitly given but does not exist.
    """
    resolved_path: Path | None = None

    if config_path is not None:
        resolved_path = Path(config_path)
        if not resolved_path.exists():
            raise FileNotFoundError(f"Config file not found: {resolved_path}")
    elif "PICTOVOICE_CONFIG" in os.environ:
        resolved_path = Path(os.environ["PICTOVOICE_CONFIG"])
        if not resolved_path.exists():
            raise FileNotFoundError(
                f"PICTOVOICE_CONFIG points to missing file: {resolved_path}"
            )
    else:
        here = Path(__file__).resolve()
        for parent in [here.parent.parent.parent, Path.cwd()]:
            candidate = parent / "config" / "pictovoice.yaml"
            if candidate.exists():
                resolved_path = candidate
                break

    raw: dict = {}
    if resolved_path is not None:
        logger.info("Loading config from: %s", resolved_path)
        with resolved_path.open("r", encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file must be a YAML mapping, got: {type(loaded)}")
        raw = loaded
    else:
        logger.info("No config file found — using built-in defaults")

    try:
        gaze_cfg = GazeConfig(**raw.get("gaze", {}))
        dwell_cfg = DwellConfig(**raw.get("dwell", {}))
        board_cfg = BoardConfig(**raw.get("board", {}))
        proxy_cfg = ProxyConfig(**_tupled(raw.get("proxy", {}), "retry_delays_ms"))
        server_cfg = ServerConfig(**_tupled(raw.get("server", {}), "allowed_origins"))
        tts_cfg = TTSConfig(**raw.get("tts", {}))
        log_cfg = LoggingConfig(**raw.get("logging", {}))
    except TypeError as exc:
        raise ValueError(f"Invalid config value: {exc}") from exc

    _validate_config(gaze_cfg, dwell_cfg, board_cfg, proxy_cfg, tts_cfg)

    config = PictoConfig(
        gaze=gaze_cfg,
        dwell=dwell_cfg,
        board=board_cfg,
        proxy=proxy_cfg,
        server=server_cfg,
        tts=tts_cfg,
        logging=log_cfg,
    )
    logger.debug("Config loaded: %s", config)
    return config


def _validate_config(
    gaze: GazeConfig,
    dwell: DwellConfig,
    board: BoardConfig,
    proxy: ProxyConfig,
    tts: TTSConfig,
) -> None:
    """
    Validate cross-field constraints on the loaded configuration.

    Raises:
        ValueError: If any configured value violates a hard constraint.
    """
    if not (0.0 < gaze.smoothing_alpha <= 1.0):
        raise ValueError(
            f"gaze.smoothing_alpha must be in (0, 1], got {gaze.smoothing_alpha}"
        )
    if gaze.hit_tolerance_px < 0:
        raise ValueError(
            f"gaze.hit_tolerance_px must be non-negative, got {gaze.hit_tolerance_px}"
        )
    if gaze.viewport_width <= 0 or gaze.viewport_height <= 0:
        raise ValueError(
            f"gaze viewport must be positive, got {gaze.viewport_width}x{gaze.viewport_height}"
        )
    if not (C.DWELL_MIN_MS <= dwell.dwell_ms <= C.DWELL_MAX_MS):
        raise ValueError(
            f"dwell.dwell_ms must be in [{C.DWELL_MIN_MS}, {C.DWELL_MAX_MS}], "
            f"got {dwell.dwell_ms}"
        )
    if board.columns <= 0 or board.rows <= 0:
        raise ValueError(f"board grid must be positive, got {board.columns}x{board.rows}")
    if not proxy.retry_delays_ms:
        raise ValueError("proxy.retry_delays_ms must list at least one delay")
    if proxy.max_retries < 0:
        raise ValueError(f"proxy.max_retries must be ≥0, got {proxy.max_retries}")
    if not (0.0 <= tts.volume <= 1.0):
        raise ValueError(f"tts.volume must be in [0, 1], got {tts.volume}")
