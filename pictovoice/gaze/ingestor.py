"""
pictovoice/gaze/ingestor.py — Tagged decode of raw gaze messages.

Gaze bridges speak several dialects. Every message is decoded into a
definite outcome: :class:`Parsed` carrying a clamped :class:`GazePoint`, or
:class:`Rejected` carrying a short reason. Malformed telemetry is normal and
never raises.

Accepted shapes, tried in order:

1. ``{"x": px, "y": px}``             absolute viewport pixels
2. ``{"xNorm": n, "yNorm": n}``       pre-normalised
3. ``{"gaze": {"x": px, "y": px}}``   nested pixels
4. ``{"lx": px, "ly": px}``           legacy pixels
5. ``"px,py"``                        plain-text fallback (non-JSON text only)
"""

from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

logger = logging.getLogger(__name__)


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def clamp01(value: float) -> float:
    """Clamp *value* into [0, 1]. Idempotent; callers must reject NaN first."""
    if value < 0.0:
        return 0.0
    if value > 1.0:
        return 1.0
    return value


@dataclass(frozen=True)
class GazePoint:
    """
    A single normalised gaze observation.

    Attributes:
        x_norm: Horizontal position in [0=left, 1=right].
        y_norm: Vertical position in [0=top, 1=bottom].
        timestamp_ms: Bridge timestamp when supplied, else local monotonic ms.
        valid: False when the bridge flagged the sample as untracked.
    """

    x_norm: float
    y_norm: float
    timestamp_ms: int
    valid: bool = True

    def to_pixels(self, width: float, height: float) -> tuple[float, float]:
        """Return the point in viewport pixels."""
        return self.x_norm * width, self.y_norm * height


@dataclass(frozen=True)
class Parsed:
    """Successful decode."""

    point: GazePoint


@dataclass(frozen=True)
class Rejected:
    """Discarded message with the reason it was dropped."""

    reason: str


DecodeOutcome = Union[Parsed, Rejected]


def _number(value: Any) -> Optional[float]:
    """Return *value* as a float when it is a real, non-NaN number, else None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    if math.isnan(value):
        return None
    return value


def _pair(mapping: Any, kx: str, ky: str) -> Optional[tuple[float, float]]:
    if not isinstance(mapping, dict) or kx not in mapping or ky not in mapping:
        return None
    x = _number(mapping[kx])
    y = _number(mapping[ky])
    if x is None or y is None:
        return None
    return x, y


class GazeIngestor:
    """
    Decodes raw gaze payloads into :class:`GazePoint` outcomes.

    Pixel shapes are normalised against the current viewport size, which the
    session updates on resize.

    Args:
        viewport_width: Viewport width in pixels.
        viewport_height: Viewport height in pixels.
        clock: Millisecond clock used when the message carries no ``ts``.
    """

    def __init__(
        self,
        viewport_width: float,
        viewport_height: float,
        clock: Callable[[], int] = _monotonic_ms,
    ) -> None:
        self._width = float(viewport_width)
        self._height = float(viewport_height)
        self._clock = clock
        self.accepted = 0
        self.rejected = 0

    def resize(self, width: float, height: float) -> None:
        """Update the viewport used to normalise pixel shapes."""
        self._width = float(width)
        self._height = float(height)

    def decode(self, message: Any) -> DecodeOutcome:
        """
        Decode one message.

        Args:
            message: A decoded dict, JSON text, CSV text, or UTF-8 bytes.

        Returns:
            :class:`Parsed` or :class:`Rejected`; never raises.
        """
        outcome = self._decode(message)
        if isinstance(outcome, Parsed):
            self.accepted += 1
        else:
            self.rejected += 1
            logger.debug("Gaze message rejected: %s", outcome.reason)
        return outcome

    # ──────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────

    def _decode(self, message: Any) -> DecodeOutcome:
        if isinstance(message, (bytes, bytearray)):
            try:
                message = message.decode("utf-8")
            except UnicodeDecodeError:
                return Rejected("undecodable bytes")

        if isinstance(message, str):
            try:
                payload = json.loads(message)
            except ValueError:
                return self._decode_csv(message)
            if not isinstance(payload, dict):
                return Rejected("json payload is not an object")
            return self._decode_mapping(payload)

        if isinstance(message, dict):
            return self._decode_mapping(message)

        return Rejected(f"unsupported payload type {type(message).__name__}")

    def _decode_mapping(self, payload: dict) -> DecodeOutcome:
        pixels = _pair(payload, "x", "y")
        if pixels is not None:
            return self._from_pixels(pixels, payload)

        norm = _pair(payload, "xNorm", "yNorm")
        if norm is not None:
            return self._point(norm[0], norm[1], payload)

        pixels = _pair(payload.get("gaze"), "x", "y")
        if pixels is not None:
            return self._from_pixels(pixels, payload)

        pixels = _pair(payload, "lx", "ly")
        if pixels is not None:
            return self._from_pixels(pixels, payload)

        return Rejected("no recognised coordinate fields")

    def _decode_csv(self, text: str) -> DecodeOutcome:
        parts = text.split(",")
        if len(parts) < 2:
            return Rejected("not json and not csv")
        try:
            x = float(parts[0])
            y = float(parts[1])
        except ValueError:
            return Rejected("non-numeric csv fields")
        if math.isnan(x) or math.isnan(y):
            return Rejected("nan csv fields")
        return self._from_pixels((x, y), None)

    def _from_pixels(
        self, pixels: tuple[float, float], payload: Optional[dict]
    ) -> DecodeOutcome:
        if self._width <= 0 or self._height <= 0:
            return Rejected("viewport has no size")
        return self._point(pixels[0] / self._width, pixels[1] / self._height, payload)

    def _point(self, x: float, y: float, payload: Optional[dict]) -> DecodeOutcome:
        timestamp_ms: Optional[int] = None
        valid = True
        if payload is not None:
            ts = _number(payload.get("ts"))
            if ts is not None and math.isfinite(ts):
                timestamp_ms = int(ts)
            if isinstance(payload.get("valid"), bool):
                valid = payload["valid"]
        if timestamp_ms is None:
            timestamp_ms = self._clock()
        return Parsed(
            GazePoint(
                x_norm=clamp01(x),
                y_norm=clamp01(y),
                timestamp_ms=timestamp_ms,
                valid=valid,
            )
        )
