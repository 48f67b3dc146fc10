"""
pictovoice/core/constants.py — System constants for PictoVoice.

Single frozen dataclass with typed constant groups: dwell and smoothing
bounds, selection capacity, proxy timing budgets and the retry table.
Call ``PictoConstants.validate()`` on startup to log host resource info.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Availability phases
# ──────────────────────────────────────────────────────────────

class AvailabilityPhase(Enum):
    """Lifecycle phase of the remote phrase service as seen by the monitor."""

    UNKNOWN = "unknown"
    CHECKING = "checking"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"


class PhraseSource(Enum):
    """Where a composed phrase came from."""

    REMOTE = "remote"
    LOCAL = "local"


# ──────────────────────────────────────────────────────────────
# Frozen constants dataclass
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PictoConstants:
    """
    Frozen dataclass holding all PictoVoice system constants.

    Use the class attributes directly — do not instantiate this class.

    Example::

        from pictovoice.core.constants import C

        print(C.SELECTION_CAPACITY)   # 3
        print(C.RETRY_DELAYS_MS)      # (2000, 5000, 10000)
    """

    # ── Dwell (milliseconds) ──────────────────────────────────
    DWELL_DEFAULT_MS: ClassVar[int] = 2500
    """ms gaze must hold on a pictogram to commit it."""

    DWELL_MIN_MS: ClassVar[int] = 500
    """Lowest dwell duration the settings control accepts."""

    DWELL_MAX_MS: ClassVar[int] = 6000
    """Highest dwell duration the settings control accepts."""

    DWELL_TICK_MS: ClassVar[int] = 60
    """Interval of the dwell-progress tick."""

    # ── Cursor ────────────────────────────────────────────────
    SMOOTHING_DEFAULT: ClassVar[float] = 0.15
    """Default blend factor of the cursor low-pass filter."""

    FRAME_INTERVAL_MS: ClassVar[int] = 16
    """Animation tick interval (~60 fps)."""

    HIT_TOLERANCE_PX: ClassVar[int] = 30
    """Offset of the probe grid used when the exact point misses a tile."""

    # ── Selection ─────────────────────────────────────────────
    SELECTION_CAPACITY: ClassVar[int] = 3
    """Number of pictograms that triggers phrase composition."""

    # ── Proxy timing (milliseconds) ───────────────────────────
    PROBE_TIMEOUT_MS: ClassVar[int] = 5000
    """Timeout of a single availability probe."""

    GENERATION_TIMEOUT_MS: ClassVar[int] = 10_000
    """Timeout of a single phrase generation request."""

    CHECK_INTERVAL_MS: ClassVar[int] = 30_000
    """Period of the background availability re-check."""

    RETRY_DELAYS_MS: ClassVar[tuple[int, ...]] = (2000, 5000, 10_000)
    """Backoff delays indexed by retry attempt; the last one is reused."""

    MAX_RETRIES: ClassVar[int] = 3
    """Automatic retry attempts before the monitor gives up."""

    # ── Endpoints ─────────────────────────────────────────────
    GAZE_WS_URL: ClassVar[str] = "ws://127.0.0.1:8765"
    """Default gaze bridge WebSocket address."""

    PROXY_BASE_URL: ClassVar[str] = "http://localhost:3002"
    """Default phrase proxy address."""

    GENERATE_PATH: ClassVar[str] = "/api/generate-phrase"
    TEST_CONNECTION_PATH: ClassVar[str] = "/api/test-connection"
    HEALTH_PATH: ClassVar[str] = "/health"

    # ─────────────────────────────────────────────────────────
    @classmethod
    def validate(cls) -> None:
        """
        Log available system RAM on startup.

        Does not raise — the client runs in a few megabytes; the proxy's
        model engine is the only component with a real memory appetite.
        """
        try:
            import psutil  # type: ignore
            available_gb = psutil.virtual_memory().available / (1024 ** 3)
            logger.info("RAM available: %.1f GB", available_gb)
        except Exception as exc:  # noqa: BLE001
            logger.debug("RAM check failed: %s", exc)


#: Convenience alias — ``from pictovoice.core.constants import C``
C = PictoConstants
