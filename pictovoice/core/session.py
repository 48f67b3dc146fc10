"""
pictovoice/core/session.py — BoardSession: orchestrator for one board.

Wires every subsystem together and drives the selection pipeline::

    GazeStream ─► GazeIngestor ─► CursorSmoother ─► DwellSelector
        ─► SelectionBuffer ─► PhraseComposer ─► SpeechOutput
                                    ▲
                          AvailabilityMonitor

The session owns all state; nothing is kept at module level. An internal
event bus lets a UI subscribe to pipeline events without holding references
to the components. Everything runs on one asyncio loop: the animation-frame
tick, the dwell tick, gaze frames, probes and generation requests.
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pictovoice.core.config import PictoConfig
from pictovoice.core.logger import get_logger
from pictovoice.gaze.dwell import DwellSelector
from pictovoice.gaze.ingestor import DecodeOutcome, GazeIngestor, Rejected
from pictovoice.gaze.smoothing import CursorSmoother, CursorSource
from pictovoice.gaze.stream import GazeStream
from pictovoice.intent.board import PictogramBoard
from pictovoice.intent.selection import AppendResult, SelectionBuffer
from pictovoice.llm.availability import AvailabilityMonitor, AvailabilityState, RetryPolicy
from pictovoice.llm.client import ProxyClient
from pictovoice.llm.composer import CompositionResult, PhraseComposer

# ── EventBus event-name constants ─────────────────────────────────────────────

ON_GAZE_CONNECTION = "ON_GAZE_CONNECTION"
"""Fired when the gaze bridge connects or disconnects."""

ON_DWELL_PROGRESS = "ON_DWELL_PROGRESS"
"""Fired on every dwell progress change (target may be None on reset)."""

ON_SELECTION = "ON_SELECTION"
"""Fired whenever the selection buffer changes."""

ON_COMPOSING = "ON_COMPOSING"
"""Fired when a full selection is sent for composition."""

ON_PHRASE = "ON_PHRASE"
"""Fired when a composed phrase is ready (and about to be spoken)."""

ON_AVAILABILITY = "ON_AVAILABILITY"
"""Fired whenever the remote availability state changes."""


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class BoardSession:
    """
    One user's board: gaze in, phrases out.

    Args:
        config: Loaded configuration.
        client: Proxy client; built from ``config.proxy.base_url`` if omitted.
        speaker: Object with ``speak(text)``; None disables speech.
        clock: Millisecond clock shared by the ingestor, dwell and monitor.
        sleep: Async sleep used by the availability monitor.
    """

    def __init__(
        self,
        config: PictoConfig,
        client: Optional[ProxyClient] = None,
        speaker: Optional[Any] = None,
        clock: Callable[[], int] = _monotonic_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._cfg = config
        self._clock = clock
        self._log = get_logger()
        width, height = config.gaze.viewport_width, config.gaze.viewport_height
        self._viewport = (float(width), float(height))

        self._ingestor = GazeIngestor(width, height, clock=clock)
        self._smoother = CursorSmoother(width, height, config.gaze.smoothing_alpha)
        self._board = PictogramBoard(config.board, self._viewport)
        self._dwell = DwellSelector(
            self._board,
            self._viewport,
            dwell_ms=config.dwell.dwell_ms,
            tolerance_px=config.gaze.hit_tolerance_px,
            on_commit=self._on_commit,
            on_progress=self._on_progress,
        )
        self._buffer = SelectionBuffer(on_full=self._on_full)

        self._client = client or ProxyClient(config.proxy.base_url)
        self._monitor = AvailabilityMonitor(
            self._client,
            RetryPolicy(config.proxy.retry_delays_ms, config.proxy.max_retries),
            probe_timeout_ms=config.proxy.probe_timeout_ms,
            check_interval_ms=config.proxy.check_interval_ms,
            clock=clock,
            sleep=sleep,
            on_change=self._on_availability,
        )
        self._composer = PhraseComposer(
            self._client, self._monitor, timeout_ms=config.proxy.generation_timeout_ms
        )
        self._speaker = speaker

        self._subscribers: Dict[str, List[Callable[[Dict[str, Any]], None]]] = (
            defaultdict(list)
        )
        self._selection_seq = 0
        self._composition: Optional[asyncio.Task] = None
        self.last_result: Optional[CompositionResult] = None

        self._log.info("session", "session_ready", {
            "viewport": list(self._viewport),
            "dwell_ms": config.dwell.dwell_ms,
            "proxy": config.proxy.base_url,
        })

    # ── Components ────────────────────────────────────────────────────────────

    @property
    def board(self) -> PictogramBoard:
        return self._board

    @property
    def cursor(self) -> CursorSmoother:
        return self._smoother

    @property
    def dwell(self) -> DwellSelector:
        return self._dwell

    @property
    def selection(self) -> SelectionBuffer:
        return self._buffer

    @property
    def monitor(self) -> AvailabilityMonitor:
        return self._monitor

    @property
    def ingestor(self) -> GazeIngestor:
        return self._ingestor

    @property
    def composition(self) -> Optional[asyncio.Task]:
        """The in-flight composition task, if any."""
        return self._composition

    # ── EventBus ──────────────────────────────────────────────────────────────

    def subscribe(self, event: str, callback: Callable[[Dict[str, Any]], None]) -> None:
        """
        Register *callback* to receive payloads whenever *event* is published.

        Callbacks run synchronously in registration order; a failing
        callback is logged and never disrupts the others.
        """
        self._subscribers[event].append(callback)

    def publish(self, event: str, data: Dict[str, Any]) -> None:
        """Dispatch *event* to all registered callbacks with payload *data*."""
        for cb in self._subscribers.get(event, []):
            try:
                cb(data)
            except Exception as exc:  # noqa: BLE001
                self._log.error("session", "event_callback_error", {
                    "event": event,
                    "error": str(exc),
                })

    # ── Inputs ────────────────────────────────────────────────────────────────

    def handle_gaze_message(self, message: Any) -> DecodeOutcome:
        """
        Decode one bridge frame and retarget the cursor.

        Frames the bridge flagged ``valid: false`` are decoded but not used.
        """
        outcome = self._ingestor.decode(message)
        if isinstance(outcome, Rejected):
            return outcome
        point = outcome.point
        if not point.valid:
            return outcome
        x, y = point.to_pixels(*self._viewport)
        self._smoother.feed(x, y, CursorSource.GAZE)
        return outcome

    def handle_pointer(self, x: float, y: float) -> bool:
        """Pointer move in viewport pixels; ignored while gaze is connected."""
        return self._smoother.feed(x, y, CursorSource.POINTER)

    def pointer_left(self) -> None:
        """Pointer left the board or the window lost focus."""
        self._dwell.cancel()

    def set_gaze_connected(self, connected: bool) -> None:
        """Switch the cursor source when the gaze bridge opens or closes."""
        self._smoother.set_source(CursorSource.GAZE if connected else CursorSource.POINTER)
        if not connected:
            self._dwell.cancel()
        self.publish(ON_GAZE_CONNECTION, {"connected": connected})

    def resize(self, width: float, height: float) -> None:
        """Propagate a viewport resize to every geometry-aware component."""
        self._viewport = (float(width), float(height))
        self._ingestor.resize(width, height)
        self._board.layout(width, height)
        self._dwell.set_viewport(width, height)

    def set_dwell_ms(self, dwell_ms: int) -> None:
        """Change the dwell duration; the active episode keeps its own."""
        self._dwell.dwell_ms = dwell_ms

    # ── Ticks ─────────────────────────────────────────────────────────────────

    def tick_frame(self, now_ms: Optional[int] = None) -> Optional[str]:
        """
        Animation-frame tick: advance the cursor and hit-test its new position.

        Returns:
            A committed target key, if this frame completed a dwell.
        """
        pos = self._smoother.tick()
        if not self._smoother.visible:
            return None
        return self._dwell.observe(pos.x, pos.y, self._now(now_ms))

    def tick_dwell(self, now_ms: Optional[int] = None) -> Optional[str]:
        """Dwell-progress tick."""
        return self._dwell.tick(self._now(now_ms))

    # ── Selection ─────────────────────────────────────────────────────────────

    def clear(self) -> None:
        """Empty the selection; a composition still in flight is ignored."""
        self._selection_seq += 1
        self._buffer.clear()
        self._publish_selection()

    def remove(self, index: int) -> str:
        """Remove one chip; raises IndexError if *index* is out of range."""
        key = self._buffer.remove(index)
        self._selection_seq += 1
        self._publish_selection()
        return key

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def gaze_stream(self, url: Optional[str] = None) -> GazeStream:
        """Build a gaze stream wired to this session's input handlers."""
        return GazeStream(
            url or self._cfg.gaze.ws_url,
            on_message=self.handle_gaze_message,
            on_open=lambda: self.set_gaze_connected(True),
            on_close=lambda: self.set_gaze_connected(False),
        )

    async def run(self, stream: Optional[GazeStream] = None) -> None:
        """
        Run the frame and dwell loops (and *stream*, if given) until cancelled.

        Starts availability monitoring first and tears everything down on
        exit, including the proxy client session.
        """
        self._monitor.start()
        tasks = [
            asyncio.ensure_future(self._loop(self._cfg.gaze.frame_interval_ms, self.tick_frame)),
            asyncio.ensure_future(self._loop(self._cfg.dwell.tick_ms, self.tick_dwell)),
        ]
        if stream is not None:
            tasks.append(asyncio.ensure_future(stream.run()))
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.shutdown()

    async def shutdown(self) -> None:
        """Stop monitoring, abandon any composition and release the client."""
        await self._monitor.stop()
        if self._composition is not None and not self._composition.done():
            self._composition.cancel()
            await asyncio.gather(self._composition, return_exceptions=True)
        await self._client.close()
        self._log.info("session", "shutdown", {})

    # ── Internal callbacks ────────────────────────────────────────────────────

    def _now(self, now_ms: Optional[int]) -> int:
        return self._clock() if now_ms is None else now_ms

    async def _loop(self, interval_ms: int, tick: Callable[[], Any]) -> None:
        interval_s = interval_ms / 1000.0
        while True:
            tick()
            await asyncio.sleep(interval_s)

    def _on_progress(self, target: Optional[str], pct: float) -> None:
        self.publish(ON_DWELL_PROGRESS, {"target": target, "progress": round(pct, 1)})

    def _on_commit(self, key: str) -> None:
        if self._buffer.append(key) is AppendResult.OK:
            self._log.info("session", "selected", {"key": key, "items": list(self._buffer.items)})
            # A full buffer was already published by _on_full.
            if not self._buffer.is_full:
                self._publish_selection()

    def _on_full(self, concepts: tuple[str, ...]) -> None:
        self._publish_selection()
        self._selection_seq += 1
        seq = self._selection_seq
        self.publish(ON_COMPOSING, {"concepts": list(concepts)})
        self._composition = asyncio.ensure_future(self._compose(seq, concepts))

    async def _compose(self, seq: int, concepts: tuple[str, ...]) -> Optional[CompositionResult]:
        result = await self._composer.compose(concepts)
        if seq != self._selection_seq:
            self._log.info("session", "stale_phrase_ignored", {"concepts": list(concepts)})
            return None

        self.last_result = result
        self.publish(ON_PHRASE, {
            "phrase": result.phrase,
            "source": result.source.value,
            "reason": result.reason,
            "concepts": list(concepts),
            "latency_ms": round(result.latency_ms, 1),
        })
        if self._speaker is not None:
            try:
                self._speaker.speak(result.phrase)
            except Exception as exc:  # noqa: BLE001
                self._log.error("session", "speech_failed", {"error": str(exc)})
        if self._cfg.board.clear_after_phrase:
            self.clear()
        return result

    def _on_availability(self, state: AvailabilityState) -> None:
        self.publish(ON_AVAILABILITY, {
            "phase": state.phase.value,
            "available": state.available,
            "last_error": state.last_error,
            "retry_count": state.retry_count,
        })

    def _publish_selection(self) -> None:
        items = list(self._buffer.items)
        self.publish(ON_SELECTION, {
            "items": items,
            "labels": [self._board.label_for(k) for k in items],
            "full": self._buffer.is_full,
        })
