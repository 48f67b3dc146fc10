"""
pictovoice/output/tts.py — Speaks composed phrases through pyttsx3.

pyttsx3's ``runAndWait`` blocks, so utterances are handed to one daemon
thread through a single-slot mailbox. Only the newest phrase matters: a new
phrase overwrites one still waiting and interrupts the one being spoken.
Without a working speech driver the board keeps running silently.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Deque, Optional

import pyttsx3  # type: ignore[import]

from pictovoice.core.config import TTSConfig

logger = logging.getLogger(__name__)

_HISTORY = 20


class SpeechOutput:
    """
    Latest-wins speech output.

    Args:
        config: ``enabled``, ``rate``, ``volume`` and optional ``voice_id``.

    Attributes:
        spoken: The most recent phrases that finished speaking, oldest first.
    """

    def __init__(self, config: TTSConfig) -> None:
        self._cfg = config
        self._cond = threading.Condition()
        self._mailbox: Optional[str] = None
        self._busy = False
        self._stopping = False
        self._engine = None
        self._thread: Optional[threading.Thread] = None
        self.spoken: Deque[str] = deque(maxlen=_HISTORY)

        if not config.enabled:
            logger.info("Speech output disabled in config")
            return
        self._engine = self._open_driver()
        if self._engine is not None:
            self._thread = threading.Thread(target=self._run, name="tts-worker", daemon=True)
            self._thread.start()

    @property
    def available(self) -> bool:
        return self._engine is not None

    @property
    def is_speaking(self) -> bool:
        with self._cond:
            return self._busy

    def speak(self, text: str) -> None:
        """Speak *text* as soon as possible, dropping anything older."""
        text = text.strip()
        if not text:
            logger.warning("Ignoring empty phrase")
            return
        if self._engine is None:
            logger.info("No speech driver; phrase not spoken: %r", text[:80])
            return

        with self._cond:
            self._mailbox = text
            if self._busy:
                self._interrupt()
            self._cond.notify()
        logger.debug("Queued phrase for speech: %r", text[:80])

    def shutdown(self) -> None:
        """Stop the worker thread; repeated calls are harmless."""
        with self._cond:
            self._stopping = True
            self._mailbox = None
            if self._busy:
                self._interrupt()
            self._cond.notify()
        if self._thread is not None:
            self._thread.join(timeout=3.0)
            self._thread = None
        logger.info("Speech output stopped")

    # ── Worker ───────────────────────────────────────────────

    def _open_driver(self):
        try:
            engine = pyttsx3.init()
            engine.setProperty("rate", self._cfg.rate)
            engine.setProperty("volume", self._cfg.volume)
            if self._cfg.voice_id:
                engine.setProperty("voice", self._cfg.voice_id)
        except Exception as exc:  # noqa: BLE001
            logger.error("No usable speech driver (%s); phrases will not be spoken", exc)
            return None
        logger.info("Speech driver ready (rate=%d, volume=%.1f)", self._cfg.rate, self._cfg.volume)
        return engine

    def _interrupt(self) -> None:
        try:
            self._engine.stop()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Speech interrupt failed: %s", exc)

    def _run(self) -> None:
        while True:
            with self._cond:
                while self._mailbox is None and not self._stopping:
                    self._cond.wait()
                if self._stopping:
                    return
                text, self._mailbox = self._mailbox, None
                self._busy = True

            try:
                self._engine.say(text)
                self._engine.runAndWait()
                self.spoken.append(text)
            except Exception as exc:  # noqa: BLE001
                logger.error("Speech failed: %s", exc)
            finally:
                with self._cond:
                    self._busy = False
