"""
pictovoice/gaze/stream.py — WebSocket gaze ingress.

Connects to the gaze bridge and hands every text frame to a callback in
arrival order. Open and close are reported so the session can switch the
cursor between gaze and pointer input. The connection is re-established
after a fixed delay when the bridge goes away.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Union

import websockets

from pictovoice.core.constants import C
from pictovoice.core.logger import get_logger

logger = logging.getLogger(__name__)

GazeMessage = Union[str, bytes]


class GazeStream:
    """
    Reconnecting WebSocket reader for one gaze bridge.

    Args:
        url: Bridge address, e.g. ``ws://127.0.0.1:8765``.
        on_message: Called with each raw frame, in order.
        on_open: Called after each successful connect.
        on_close: Called after each disconnect.
        reconnect_delay_s: Pause before reconnecting.
        max_reconnects: Give up after this many consecutive failures;
            None retries forever.
    """

    def __init__(
        self,
        url: str = C.GAZE_WS_URL,
        on_message: Optional[Callable[[GazeMessage], None]] = None,
        on_open: Optional[Callable[[], None]] = None,
        on_close: Optional[Callable[[], None]] = None,
        reconnect_delay_s: float = 2.0,
        max_reconnects: Optional[int] = None,
    ) -> None:
        self._url = url
        self._on_message = on_message
        self._on_open = on_open
        self._on_close = on_close
        self._reconnect_delay_s = reconnect_delay_s
        self._max_reconnects = max_reconnects
        self._stopped = False
        self._connected = False
        self._log = get_logger()
        self.received = 0

    @property
    def url(self) -> str:
        return self._url

    @property
    def connected(self) -> bool:
        return self._connected

    def stop(self) -> None:
        """Stop after the current connection ends; cancel :meth:`run` to stop now."""
        self._stopped = True

    async def run(self) -> None:
        """
        Connect, deliver frames, and reconnect until stopped or out of attempts.

        A malformed URL is logged once and ends the stream without retrying.
        """
        failures = 0
        while not self._stopped:
            try:
                async with websockets.connect(self._url) as ws:
                    failures = 0
                    self._set_connected(True)
                    async for message in ws:
                        self._deliver(message)
                        if self._stopped:
                            break
            except websockets.InvalidURI as exc:
                self._log.error("gaze", "ws_invalid_url", {"url": self._url, "error": str(exc)})
                break
            except (
                websockets.ConnectionClosed,
                websockets.InvalidHandshake,
                asyncio.TimeoutError,
                OSError,
            ) as exc:
                failures += 1
                self._log.warn(
                    "gaze", "ws_disconnected",
                    {"url": self._url, "error": str(exc), "attempt": failures},
                )
            finally:
                self._set_connected(False)

            if self._stopped:
                break
            if self._max_reconnects is not None and failures > self._max_reconnects:
                self._log.error(
                    "gaze", "ws_reconnect_failed", {"url": self._url, "attempts": failures}
                )
                break
            await asyncio.sleep(self._reconnect_delay_s)

    def _deliver(self, message: GazeMessage) -> None:
        self.received += 1
        if self._on_message is None:
            return
        try:
            self._on_message(message)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Gaze message handler raised: %s", exc)

    def _set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        self._log.info("gaze", "ws_open" if connected else "ws_closed", {"url": self._url})
        callback = self._on_open if connected else self._on_close
        if callback is not None:
            try:
                callback()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Gaze connection callback raised: %s", exc)
