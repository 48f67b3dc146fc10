"""
pictovoice/main.py — PictoVoice command-line entry point.

Subcommands::

    pictovoice run        headless board session fed by the gaze bridge
    pictovoice serve      phrase proxy (FastAPI + local model)
    pictovoice simulate   scripted gaze bridge for demos without a tracker
    pictovoice check      probe the phrase proxy once and report
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import traceback
from typing import Optional, Sequence

from pictovoice import __version__

_BANNER = rf"""
  ____  _      _        __     __    _
 |  _ \(_) ___| |_ ___  \ \   / /__ (_) ___ ___
 | |_) | |/ __| __/ _ \  \ \ / / _ \| |/ __/ _ \
 |  __/| | (__| || (_) |  \ V / (_) | | (_|  __/
 |_|   |_|\___|\__\___/    \_/ \___/|_|\___\___|

        PictoVoice v{__version__}  gaze pictogram communication
"""


# ──────────────────────────────────────────────────────────────
# Argument parsing
# ──────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="pictovoice",
        description="PictoVoice — gaze-driven pictogram communication board",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--config", default=None, help="Path to pictovoice.yaml")
    p.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING"],
        default=None,
        help="Override the configured log level",
    )
    sub = p.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a headless board session")
    run.add_argument("--gaze-url", default=None, help="Gaze bridge WebSocket URL")
    run.add_argument("--dwell-ms", type=int, default=None, help="Dwell duration override")
    run.add_argument("--no-tts", action="store_true", help="Print phrases without speaking")

    serve = sub.add_parser("serve", help="Run the phrase proxy")
    serve.add_argument("--host", default=None, help="Bind address override")
    serve.add_argument("--port", type=int, default=None, help="Port override")
    serve.add_argument(
        "--no-model", action="store_true",
        help="Answer every request with the local fallback",
    )

    sim = sub.add_parser("simulate", help="Serve a scripted gaze bridge")
    sim.add_argument("--host", default="127.0.0.1")
    sim.add_argument("--port", type=int, default=8765)
    sim.add_argument(
        "--keys", default="self,water,help",
        help="Comma-separated pictogram keys to dwell on, in order",
    )
    sim.add_argument("--jitter-px", type=float, default=6.0)

    sub.add_parser("check", help="Probe the phrase proxy once")
    return p


# ──────────────────────────────────────────────────────────────
# Commands
# ──────────────────────────────────────────────────────────────

def _cmd_run(args: argparse.Namespace, config) -> int:
    """Headless session: events are printed, phrases spoken."""
    from pictovoice.core.session import (
        ON_AVAILABILITY,
        ON_GAZE_CONNECTION,
        ON_PHRASE,
        ON_SELECTION,
        BoardSession,
    )
    from pictovoice.output.tts import SpeechOutput

    speaker = None if args.no_tts else SpeechOutput(config.tts)
    session = BoardSession(config, speaker=speaker)
    if args.dwell_ms is not None:
        session.set_dwell_ms(args.dwell_ms)

    session.subscribe(ON_GAZE_CONNECTION, lambda d: print(
        f"[GAZE] {'connected' if d['connected'] else 'disconnected'}"))
    session.subscribe(ON_SELECTION, lambda d: print(f"[SELECTION] {d['labels']}"))
    session.subscribe(ON_AVAILABILITY, lambda d: print(f"[PROXY] {d['phase']}"))
    session.subscribe(ON_PHRASE, lambda d: print(f"[PHRASE] ({d['source']}) {d['phrase']}"))

    print(f"[INFO] Gaze bridge → {args.gaze_url or config.gaze.ws_url}")
    print(f"[INFO] Phrase proxy → {config.proxy.base_url}")
    print("       Press Ctrl-C to stop.")
    try:
        asyncio.run(session.run(session.gaze_stream(args.gaze_url)))
    except KeyboardInterrupt:
        pass
    finally:
        if speaker is not None:
            speaker.shutdown()
    return 0


def _cmd_serve(args: argparse.Namespace, config) -> int:
    from dataclasses import replace

    from pictovoice.server.app import create_app, start_server

    server_cfg = replace(
        config.server,
        host=args.host or config.server.host,
        port=args.port or config.server.port,
    )
    print(f"[INFO] Phrase proxy → http://{server_cfg.host}:{server_cfg.port}")
    if args.no_model:
        import uvicorn  # type: ignore

        uvicorn.run(create_app(server_cfg, None), host=server_cfg.host, port=server_cfg.port)
    else:
        start_server(server_cfg)
    return 0


def _cmd_simulate(args: argparse.Namespace, config) -> int:
    from pictovoice.gaze.simulator import Fixation, GazeScript, serve_script
    from pictovoice.intent.board import PictogramBoard

    board = PictogramBoard(
        config.board, (config.gaze.viewport_width, config.gaze.viewport_height)
    )
    hold_ms = config.dwell.dwell_ms + 1000
    glance_ms = config.dwell.dwell_ms // 2
    fixations = []
    previous: Optional[str] = None
    for key in [k.strip() for k in args.keys.split(",") if k.strip()]:
        tile = board.tile_for(key)
        if tile is None:
            print(f"[ERROR] Unknown pictogram key: {key!r}", file=sys.stderr)
            return 2
        if key == previous:
            # A committed tile only re-arms after the gaze leaves it.
            other = next(t for t in board.tiles if t.pictogram.key != key)
            fixations.append(Fixation(*other.centre, glance_ms))
        fixations.append(Fixation(*tile.centre, hold_ms))
        previous = key

    script = GazeScript(fixations, jitter_px=args.jitter_px)
    print(f"[INFO] Gaze simulator → ws://{args.host}:{args.port} ({script.duration_ms} ms loop)")
    try:
        asyncio.run(serve_script(script, args.host, args.port))
    except KeyboardInterrupt:
        pass
    return 0


def _cmd_check(args: argparse.Namespace, config) -> int:
    from pictovoice.llm.availability import AvailabilityMonitor, RetryPolicy
    from pictovoice.llm.client import ProxyClient

    async def _probe() -> bool:
        async with ProxyClient(config.proxy.base_url) as client:
            monitor = AvailabilityMonitor(
                client,
                RetryPolicy(config.proxy.retry_delays_ms, config.proxy.max_retries),
                probe_timeout_ms=config.proxy.probe_timeout_ms,
            )
            ok = await monitor.check_now()
            await monitor.stop()
            state = monitor.state
            print(f"[{'OK' if ok else 'FAIL'}] {config.proxy.base_url}: {state.phase.value}"
                  + (f" ({state.last_error})" if state.last_error else ""))
            return ok

    return 0 if asyncio.run(_probe()) else 1


_COMMANDS = {
    "run": _cmd_run,
    "serve": _cmd_serve,
    "simulate": _cmd_simulate,
    "check": _cmd_check,
}


# ──────────────────────────────────────────────────────────────
# Main
# ──────────────────────────────────────────────────────────────

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Application entry point. Returns process exit code."""
    args = _build_parser().parse_args(argv)
    print(_BANNER)

    from pictovoice.core.config import load_config
    from pictovoice.core.constants import C
    from pictovoice.core.logger import configure_logging

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 2

    log = configure_logging(args.log_level or config.logging.level, config.logging.log_dir)
    log.info("main", "args_parsed", {"command": args.command, "config": args.config})
    C.validate()

    try:
        return _COMMANDS[args.command](args, config)
    except Exception:  # noqa: BLE001
        tb = traceback.format_exc()
        print(tb, file=sys.stderr)
        log.error("main", "unhandled_exception", {"traceback": tb})
        return 1


if __name__ == "__main__":
    sys.exit(main())
