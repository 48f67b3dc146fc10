"""
pictovoice/gaze/simulator.py — Scripted gaze bridge for demos and tests.

Produces the same ``{x, y, ts, valid}`` frames a hardware bridge sends, from
a list of fixations, and can serve them over WebSocket so the board can be
exercised without an eye tracker.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence

import websockets

from pictovoice.core.constants import C

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Fixation:
    """Hold the gaze at pixel (x, y) for ``hold_ms``."""

    x: float
    y: float
    hold_ms: int


class GazeScript:
    """
    A sequence of fixations rendered as timed bridge frames.

    Args:
        fixations: Fixations to play in order.
        sample_interval_ms: Time between frames.
        jitter_px: Uniform noise added to each frame; 0 for exact points.
        seed: Seed for the jitter generator.
    """

    def __init__(
        self,
        fixations: Sequence[Fixation],
        sample_interval_ms: int = C.FRAME_INTERVAL_MS,
        jitter_px: float = 0.0,
        seed: Optional[int] = None,
    ) -> None:
        if sample_interval_ms <= 0:
            raise ValueError("sample_interval_ms must be positive")
        self._fixations = list(fixations)
        self._interval = sample_interval_ms
        self._jitter = jitter_px
        self._rng = random.Random(seed)

    @property
    def duration_ms(self) -> int:
        return sum(f.hold_ms for f in self._fixations)

    def frames(self, start_ms: int = 0) -> Iterator[tuple[int, dict]]:
        """Yield ``(timestamp_ms, frame)`` pairs; frames are JSON-ready dicts."""
        t = start_ms
        for fix in self._fixations:
            end = t + fix.hold_ms
            while t < end:
                yield t, {
                    "x": fix.x + self._noise(),
                    "y": fix.y + self._noise(),
                    "ts": t,
                    "valid": True,
                }
                t += self._interval

    def _noise(self) -> float:
        if self._jitter <= 0:
            return 0.0
        return self._rng.uniform(-self._jitter, self._jitter)


async def serve_script(
    script: GazeScript,
    host: str = "127.0.0.1",
    port: int = 8765,
    loop_forever: bool = True,
) -> None:
    """
    Serve *script* to every client that connects, in real time.

    Args:
        script: Frames to play.
        host: Bind address.
        port: Bind port.
        loop_forever: Replay the script until the client disconnects.
    """

    async def handler(websocket) -> None:
        logger.info("Gaze simulator client connected")
        try:
            while True:
                last_t: Optional[int] = None
                for t, frame in script.frames():
                    if last_t is not None:
                        await asyncio.sleep((t - last_t) / 1000.0)
                    last_t = t
                    await websocket.send(json.dumps(frame))
                if not loop_forever:
                    break
        except websockets.ConnectionClosed:
            logger.info("Gaze simulator client disconnected")

    async with websockets.serve(handler, host, port):
        logger.info("Gaze simulator listening on ws://%s:%d", host, port)
        await asyncio.Future()
