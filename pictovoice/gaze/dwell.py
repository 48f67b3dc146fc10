"""
pictovoice/gaze/dwell.py — Dwell-based selection state machine.

Tracks how long the cursor stays over a single pictogram. A commit fires
once the cursor has stayed on the same target for ``dwell_ms``. Hit-testing
is tolerant: when the exact point misses, a small grid of offsets around it
is probed so jitter at tile edges still lands on a tile.

States::

    IDLE ──hit T──► DWELLING(T) ──elapsed ≥ dwell_ms──► COMMITTED(T) ──► IDLE
                         │
                         └── hit other / none / cancel ──► IDLE
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol, runtime_checkable

from pictovoice.core.constants import C

logger = logging.getLogger(__name__)


@runtime_checkable
class TargetResolver(Protocol):
    """Capability that maps a viewport point to an eligible target id."""

    def resolve_target_at(self, x: float, y: float) -> Optional[str]:
        """Return the selectable target under (x, y) or None."""
        ...


class DwellState(Enum):
    """States of the dwell selector."""

    IDLE = "IDLE"
    DWELLING = "DWELLING"
    COMMITTED = "COMMITTED"


@dataclass(frozen=True)
class DwellTarget:
    """
    The single active dwell episode.

    Attributes:
        target_id: Key of the pictogram being dwelt on.
        started_at_ms: Clock value when the episode began.
        dwell_ms: Duration required, captured at episode start.
    """

    target_id: str
    started_at_ms: int
    dwell_ms: int

    def progress(self, now_ms: int) -> float:
        """Percent complete in [0, 100]."""
        elapsed = max(0, now_ms - self.started_at_ms)
        return min(100.0, elapsed / self.dwell_ms * 100.0)


def probe_offsets(tolerance: float) -> list[tuple[float, float]]:
    """Offsets probed after the exact point misses, x outer loop, y inner."""
    steps = (-tolerance, 0.0, tolerance)
    return [(dx, dy) for dx in steps for dy in steps if (dx, dy) != (0.0, 0.0)]


class DwellSelector:
    """
    Per-target dwell timer with tolerant hit-testing.

    Call :meth:`observe` for every cursor sample and :meth:`tick` from the
    dwell-progress interval. Each dwell episode commits at most once; after
    a commit the target is spent until the cursor leaves it, so a fixed
    gaze does not re-select the same pictogram.

    Args:
        resolver: Hit-test capability (board geometry or a UI binding).
        viewport: ``(width, height)`` in pixels; probes outside are skipped.
        dwell_ms: Initial dwell duration.
        tolerance_px: Probe grid offset.
        on_commit: Called with the target id on commit.
        on_progress: Called with ``(target_id, percent)`` on every change;
            ``target_id`` is None when progress resets.
    """

    def __init__(
        self,
        resolver: TargetResolver,
        viewport: tuple[float, float],
        dwell_ms: int = C.DWELL_DEFAULT_MS,
        tolerance_px: float = C.HIT_TOLERANCE_PX,
        on_commit: Optional[Callable[[str], None]] = None,
        on_progress: Optional[Callable[[Optional[str], float], None]] = None,
    ) -> None:
        self._resolver = resolver
        self._viewport = viewport
        self._dwell_ms = self._checked(dwell_ms)
        self._offsets = probe_offsets(tolerance_px)
        self._on_commit = on_commit
        self._on_progress = on_progress

        self._state = DwellState.IDLE
        self._active: Optional[DwellTarget] = None
        self._spent: Optional[str] = None
        self.commits = 0

    # ──────────────────────────────────────────
    # Properties
    # ──────────────────────────────────────────

    @property
    def state(self) -> DwellState:
        return self._state

    @property
    def active(self) -> Optional[DwellTarget]:
        return self._active

    @property
    def dwell_ms(self) -> int:
        return self._dwell_ms

    @dwell_ms.setter
    def dwell_ms(self, value: int) -> None:
        # The active episode keeps the duration it started with.
        self._dwell_ms = self._checked(value)
        logger.info("Dwell duration set to %d ms", self._dwell_ms)

    def set_viewport(self, width: float, height: float) -> None:
        self._viewport = (width, height)

    @staticmethod
    def _checked(dwell_ms: int) -> int:
        if not (C.DWELL_MIN_MS <= dwell_ms <= C.DWELL_MAX_MS):
            raise ValueError(
                f"dwell_ms must be in [{C.DWELL_MIN_MS}, {C.DWELL_MAX_MS}], got {dwell_ms}"
            )
        return int(dwell_ms)

    # ──────────────────────────────────────────
    # Hit-testing
    # ──────────────────────────────────────────

    def hit_test(self, x: float, y: float) -> Optional[str]:
        """
        Resolve the target at (x, y), probing the tolerance grid on a miss.

        Returns:
            The first eligible target id found, or None.
        """
        target = self._resolver.resolve_target_at(x, y)
        if target is not None:
            return target

        width, height = self._viewport
        for dx, dy in self._offsets:
            px, py = x + dx, y + dy
            if 0 <= px < width and 0 <= py < height:
                target = self._resolver.resolve_target_at(px, py)
                if target is not None:
                    return target
        return None

    # ──────────────────────────────────────────
    # State machine
    # ──────────────────────────────────────────

    def observe(self, x: float, y: float, now_ms: int) -> Optional[str]:
        """
        Feed one cursor sample.

        Returns:
            The committed target id if this sample completed a dwell, else None.
        """
        return self.resolve(self.hit_test(x, y), now_ms)

    def resolve(self, target: Optional[str], now_ms: int) -> Optional[str]:
        """
        Apply an already-resolved hit-test result.

        UI bindings that get enter/leave events instead of coordinates call
        this directly with the entered target (or None on leave).
        """
        if target != self._spent:
            self._spent = None

        if target is None:
            self.cancel()
            return None

        if self._active is not None and self._active.target_id == target:
            return self.tick(now_ms)

        if self._active is not None:
            self._reset("moved")

        if target == self._spent:
            return None

        self._active = DwellTarget(target, now_ms, self._dwell_ms)
        self._state = DwellState.DWELLING
        logger.debug("Dwell start: %s", target)
        self._emit_progress(target, 0.0)
        return self.tick(now_ms)

    def tick(self, now_ms: int) -> Optional[str]:
        """
        Advance the active episode; commit when its duration is reached.

        Returns:
            The committed target id, or None.
        """
        if self._active is None:
            return None

        pct = self._active.progress(now_ms)
        self._emit_progress(self._active.target_id, pct)
        if pct < 100.0:
            return None

        target = self._active.target_id
        self._state = DwellState.COMMITTED
        self._active = None
        self._spent = target
        self.commits += 1
        logger.info("Dwell commit: %s", target)
        if self._on_commit is not None:
            try:
                self._on_commit(target)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Dwell commit callback raised: %s", exc)
        self._state = DwellState.IDLE
        self._emit_progress(None, 0.0)
        return target

    def cancel(self) -> None:
        """Discard the active episode (pointer left, focus lost, board hidden)."""
        if self._active is not None:
            self._reset("cancelled")

    def _reset(self, why: str) -> None:
        logger.debug("Dwell %s: %s", why, self._active.target_id if self._active else None)
        self._active = None
        self._state = DwellState.IDLE
        self._emit_progress(None, 0.0)

    def _emit_progress(self, target: Optional[str], pct: float) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(target, pct)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Dwell progress callback raised: %s", exc)
