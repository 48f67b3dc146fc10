"""
pictovoice/gaze/smoothing.py — Exponential low-pass cursor filter.

The cursor chases the latest gaze or pointer target by a fixed blend factor
on every animation tick. The same smoothed position drives both rendering
and dwell hit-testing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class CursorSource(Enum):
    """Which input currently feeds the cursor target."""

    POINTER = "pointer"
    GAZE = "gaze"


@dataclass
class SmoothedCursor:
    """Cursor position in viewport pixels."""

    x: float
    y: float


class CursorSmoother:
    """
    EMA cursor: ``c += (t - c) * alpha`` per tick.

    Exactly one source feeds the target at a time. The pointer drives it
    while no gaze stream is connected; once gaze is active, pointer input is
    ignored until the stream drops.

    Args:
        width: Viewport width in pixels (cursor starts at the centre).
        height: Viewport height in pixels.
        alpha: Blend factor in (0, 1]; smaller is smoother and slower.

    Raises:
        ValueError: If *alpha* is outside (0, 1].
    """

    def __init__(self, width: float, height: float, alpha: float) -> None:
        self._check_alpha(alpha)
        self._alpha = alpha
        self._cursor = SmoothedCursor(width / 2.0, height / 2.0)
        self._tx = self._cursor.x
        self._ty = self._cursor.y
        self._source = CursorSource.POINTER
        self.visible = False

    @staticmethod
    def _check_alpha(alpha: float) -> None:
        if not (0.0 < alpha <= 1.0):
            raise ValueError(f"smoothing alpha must be in (0, 1], got {alpha}")

    @property
    def alpha(self) -> float:
        return self._alpha

    @alpha.setter
    def alpha(self, value: float) -> None:
        self._check_alpha(value)
        self._alpha = value

    @property
    def source(self) -> CursorSource:
        return self._source

    @property
    def position(self) -> SmoothedCursor:
        """The shared smoothed position (read-only by convention)."""
        return self._cursor

    @property
    def target(self) -> tuple[float, float]:
        return self._tx, self._ty

    def set_source(self, source: CursorSource) -> None:
        """Switch the active input; called when the gaze stream opens or closes."""
        if source is not self._source:
            logger.info("Cursor source: %s → %s", self._source.value, source.value)
            self._source = source

    def feed(self, x: float, y: float, source: CursorSource) -> bool:
        """
        Set a new target from *source*.

        Returns:
            True if accepted, False if *source* is not the active input.
        """
        if source is not self._source:
            return False
        self._tx = x
        self._ty = y
        self.visible = True
        return True

    def tick(self) -> SmoothedCursor:
        """Advance one animation frame and return the new position."""
        self._cursor.x += (self._tx - self._cursor.x) * self._alpha
        self._cursor.y += (self._ty - self._cursor.y) * self._alpha
        return self._cursor
