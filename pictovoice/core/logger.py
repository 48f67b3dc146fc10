"""
pictovoice/core/logger.py — Structured JSONL event log for PictoVoice.

Every board and proxy event becomes one JSON line in
``<log_dir>/pictovoice_{YYYY-MM-DD}.jsonl``; the file rolls over at UTC
midnight. Entries below the configured level are dropped, and WARN/ERROR
entries are echoed to stderr through stdlib logging. Writes are serialised
with a lock because the proxy runs model inference in worker threads.

Usage::

    from pictovoice.core.logger import get_logger
    log = get_logger()
    log.info("dwell", "commit", {"key": "water"})
    log.perf("composer", "remote_done", latency_ms=840.2, data={"source": "remote"})
"""

from __future__ import annotations

import json
import logging
import os
import platform
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Dict, Optional

_echo = logging.getLogger("pictovoice.events")
if not _echo.handlers:
    _stderr = logging.StreamHandler(sys.stderr)
    _stderr.setFormatter(logging.Formatter("[%(levelname)s] %(name)s — %(message)s"))
    _echo.addHandler(_stderr)
_echo.setLevel(logging.WARNING)
_echo.propagate = False

# PERF ranks with INFO so latency entries survive the default level.
_RANK: Dict[str, int] = {"DEBUG": 10, "INFO": 20, "PERF": 20, "WARN": 30, "ERROR": 40}

_active: Optional["EventLogger"] = None
_active_lock = threading.Lock()


def _env_log_dir() -> Path:
    return Path(os.environ.get("PICTOVOICE_LOG_DIR", "logs"))


def _rank_of(level: str) -> int:
    name = level.upper()
    if name == "WARNING":
        name = "WARN"
    return _RANK.get(name, _RANK["INFO"])


class EventLogger:
    """
    JSONL event sink shared by the whole process.

    Each entry carries ``timestamp_iso``, ``level``, ``phase`` (the emitting
    subsystem), ``event``, a ``data`` dict and, for :meth:`perf` entries,
    ``latency_ms``. Obtain the shared instance with :func:`get_logger`.

    Args:
        log_dir: Target directory; ``$PICTOVOICE_LOG_DIR`` or ``logs`` when None.
        level: Lowest level written to the file.
    """

    def __init__(self, log_dir: Optional[Path] = None, level: str = "DEBUG") -> None:
        self._lock = threading.Lock()
        self._dir = log_dir if log_dir is not None else _env_log_dir()
        self._min_rank = _rank_of(level)
        self._fh: Optional[IO[str]] = None
        self._day = ""
        self._closed = False
        self.info("system", "startup", {
            "python_version": sys.version.split()[0],
            "platform": platform.platform(),
            "pid": os.getpid(),
        })

    @property
    def log_dir(self) -> Path:
        return self._dir

    def path_for(self, day: str) -> Path:
        """File that holds the entries of *day* (``YYYY-MM-DD``)."""
        return self._dir / f"pictovoice_{day}.jsonl"

    # ── Levels ───────────────────────────────────────────────

    def debug(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self._emit("DEBUG", phase, event, data)

    def info(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """
        Record a routine event.

        Args:
            phase: Emitting subsystem, e.g. ``'dwell'`` or ``'availability'``.
            event: Short identifier, e.g. ``'probe_ok'``.
            data: Extra context; must be JSON-serialisable or str()-able.
        """
        self._emit("INFO", phase, event, data)

    def warn(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self._emit("WARN", phase, event, data)
        _echo.warning("[%s] %s | %s", phase, event, data or {})

    def error(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self._emit("ERROR", phase, event, data)
        _echo.error("[%s] %s | %s", phase, event, data or {})

    def perf(
        self,
        phase: str,
        event: str,
        latency_ms: float,
        data: Optional[dict] = None,
    ) -> None:
        """Record a latency measurement in milliseconds."""
        self._emit("PERF", phase, event, data, latency_ms)

    def close(self) -> None:
        """Close the file; later entries are dropped."""
        with self._lock:
            self._closed = True
            if self._fh is not None and not self._fh.closed:
                self._fh.close()
            self._fh = None

    # ── Internals ────────────────────────────────────────────

    def _emit(
        self,
        level: str,
        phase: str,
        event: str,
        data: Optional[dict],
        latency_ms: Optional[float] = None,
    ) -> None:
        if _RANK[level] < self._min_rank:
            return
        now = datetime.now(tz=timezone.utc)
        entry: Dict[str, Any] = {
            "timestamp_iso": now.isoformat(),
            "level": level,
            "phase": phase,
            "event": event,
            "data": data or {},
        }
        if latency_ms is not None:
            entry["latency_ms"] = round(latency_ms, 3)
        line = json.dumps(entry, ensure_ascii=False, separators=(",", ":"), default=str)

        with self._lock:
            if self._closed:
                return
            fh = self._file_for(now.strftime("%Y-%m-%d"))
            fh.write(line + "\n")

    def _file_for(self, day: str) -> IO[str]:
        """Return the open handle for *day*, rolling over if needed. Caller holds the lock."""
        if self._fh is None or self._fh.closed or day != self._day:
            if self._fh is not None and not self._fh.closed:
                self._fh.close()
            self._dir.mkdir(parents=True, exist_ok=True)
            self._fh = open(self.path_for(day), "a", encoding="utf-8", buffering=1)
            self._day = day
        return self._fh


def get_logger() -> EventLogger:
    """Return the process-wide :class:`EventLogger`, creating it on first use."""
    global _active
    if _active is None:
        with _active_lock:
            if _active is None:
                _active = EventLogger()
    return _active


def configure_logging(level: str = "INFO", log_dir: Optional[str] = None) -> EventLogger:
    """
    Set up stdlib logging and replace the shared event logger.

    Called once by the CLI after the config is loaded so the configured
    level and ``log_dir`` apply to every later :func:`get_logger` call.
    Components that already hold the previous instance keep writing to it
    until it is closed here; after that their entries are dropped.

    Returns:
        The new active :class:`EventLogger`.
    """
    global _active
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    )
    with _active_lock:
        if _active is not None:
            _active.close()
        _active = EventLogger(Path(log_dir) if log_dir else None, level=level)
    return _active
