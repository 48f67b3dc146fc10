"""
pictovoice/llm/availability.py — Remote phrase service availability monitor.

Decides whether phrase composition should try the proxy at all. Probes
``/api/test-connection`` on demand and periodically, schedules a bounded
retry sequence after transient failures, and gives up (``EXHAUSTED``) once
the retry budget is spent until a manual check resets it.

Phases::

    UNKNOWN ──check──► CHECKING ──ok──► AVAILABLE
                          │
                          └─fail─► UNAVAILABLE ──transient──► RETRYING ─┐
                                                     ▲                 │
                                                     └── probe fails ◄─┘
                                    RETRYING ──budget spent──► EXHAUSTED

Clock and sleep are injectable so tests can drive the schedule on a
virtual clock.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional

from pictovoice.core.constants import AvailabilityPhase, C
from pictovoice.core.logger import get_logger
from pictovoice.llm.client import ProxyClient, ProxyError, ProxyTimeout

logger = logging.getLogger(__name__)

_TRANSIENT_PATTERN = re.compile(r"time[sd]?\s*-?\s*out", re.IGNORECASE)


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def is_transient(message: str) -> bool:
    """Return True if a failure *message* looks like a timeout."""
    return bool(_TRANSIENT_PATTERN.search(message or ""))


@dataclass(frozen=True)
class AvailabilityState:
    """
    Snapshot of the monitor's view of the remote service.

    Attributes:
        phase: Current lifecycle phase.
        last_check_ms: Clock value of the last completed probe, or None.
        last_error: Message of the most recent failure, cleared on success.
        retry_count: Automatic retries performed in the current sequence.
    """

    phase: AvailabilityPhase = AvailabilityPhase.UNKNOWN
    last_check_ms: Optional[int] = None
    last_error: Optional[str] = None
    retry_count: int = 0

    @property
    def available(self) -> bool:
        return self.phase is AvailabilityPhase.AVAILABLE


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff table plus attempt cap.

    Attributes:
        delays_ms: Delay before each retry, indexed by attempt; attempts past
            the end of the table reuse the last delay.
        max_retries: Number of automatic retries before giving up.
    """

    delays_ms: tuple[int, ...] = C.RETRY_DELAYS_MS
    max_retries: int = C.MAX_RETRIES

    def __post_init__(self) -> None:
        if not self.delays_ms:
            raise ValueError("delays_ms must contain at least one delay")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be ≥0, got {self.max_retries}")

    def delay_for(self, attempt: int) -> int:
        """Delay in ms before retry number *attempt* (0-based)."""
        return self.delays_ms[min(attempt, len(self.delays_ms) - 1)]

    def allows(self, attempt: int) -> bool:
        return attempt < self.max_retries


class AvailabilityMonitor:
    """
    Tracks whether the remote phrase service is usable.

    The monitor is the only writer of :class:`AvailabilityState`; other
    components report failures through :meth:`mark_unavailable`. Probe
    failures are recorded, never raised.

    Args:
        client: Proxy client used for probes.
        policy: Retry schedule after transient probe failures.
        probe_timeout_ms: Timeout of each probe request.
        check_interval_ms: Period of the background re-check.
        clock: Millisecond clock.
        sleep: Async sleep taking seconds (``asyncio.sleep`` by default).
        on_change: Called with the new state snapshot after every change.
    """

    def __init__(
        self,
        client: ProxyClient,
        policy: Optional[RetryPolicy] = None,
        probe_timeout_ms: int = C.PROBE_TIMEOUT_MS,
        check_interval_ms: int = C.CHECK_INTERVAL_MS,
        clock: Callable[[], int] = _monotonic_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_change: Optional[Callable[[AvailabilityState], None]] = None,
    ) -> None:
        self._client = client
        self._policy = policy or RetryPolicy()
        self._probe_timeout_s = probe_timeout_ms / 1000.0
        self._check_interval_ms = check_interval_ms
        self._clock = clock
        self._sleep = sleep
        self._on_change = on_change
        self._log = get_logger()

        self._state = AvailabilityState()
        self._retry_task: Optional[asyncio.Task] = None
        self._periodic_task: Optional[asyncio.Task] = None

    # ──────────────────────────────────────────
    # Queries
    # ──────────────────────────────────────────

    @property
    def state(self) -> AvailabilityState:
        return self._state

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def retry_task(self) -> Optional[asyncio.Task]:
        """The running retry sequence, if any."""
        return self._retry_task

    def is_available(self) -> bool:
        return self._state.available

    # ──────────────────────────────────────────
    # Checks
    # ──────────────────────────────────────────

    async def check_now(self, manual: bool = True) -> bool:
        """
        Probe the service once.

        A manual check cancels any running retry sequence and resets the
        retry counter, so it is also the way out of ``EXHAUSTED``. A
        transient failure starts a new retry sequence unless one is already
        running or the monitor is exhausted and the check was not manual.

        Returns:
            True if the service answered ``connected``.
        """
        if manual:
            self._cancel_retries()
            self._set(phase=AvailabilityPhase.CHECKING, retry_count=0)

        was_exhausted = self._state.phase is AvailabilityPhase.EXHAUSTED
        ok, transient = await self._probe()
        if ok:
            self._cancel_retries()
            return True

        if was_exhausted and not manual:
            self._set(phase=AvailabilityPhase.EXHAUSTED)
        elif self._retry_running():
            self._set(phase=AvailabilityPhase.RETRYING)
        elif transient:
            self._start_retries()
        return False

    def mark_unavailable(self, reason: str) -> None:
        """
        Record a failure observed outside the monitor (e.g. by the composer).

        Does not schedule retries; the next periodic or manual check decides
        when the service is usable again.
        """
        phase = self._state.phase
        if phase not in (AvailabilityPhase.RETRYING, AvailabilityPhase.EXHAUSTED):
            phase = AvailabilityPhase.UNAVAILABLE
        self._set(phase=phase, last_error=reason)
        self._log.warn("availability", "marked_unavailable", {"reason": reason})

    # ──────────────────────────────────────────
    # Background work
    # ──────────────────────────────────────────

    async def run_periodic(self) -> None:
        """Re-check whenever ``check_interval_ms`` has elapsed since the last check."""
        interval_s = self._check_interval_ms / 1000.0
        while True:
            await self._sleep(interval_s)
            last = self._state.last_check_ms
            if last is None or self._clock() - last >= self._check_interval_ms:
                await self.check_now(manual=False)

    def start(self) -> None:
        """Run the initial check and start the periodic re-check task."""
        if self._periodic_task is not None and not self._periodic_task.done():
            return

        async def _run() -> None:
            await self.check_now(manual=True)
            await self.run_periodic()

        self._periodic_task = asyncio.ensure_future(_run())

    async def stop(self) -> None:
        """Cancel periodic checks and any retry sequence."""
        tasks = [t for t in (self._periodic_task, self._retry_task) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._periodic_task = None
        self._retry_task = None

    # ──────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────

    async def _probe(self) -> tuple[bool, bool]:
        """Run one probe and record the outcome. Returns ``(ok, transient)``."""
        t0 = time.monotonic()
        try:
            reply = await self._client.test_connection(timeout_s=self._probe_timeout_s)
        except ProxyTimeout as exc:
            return self._record_failure(str(exc), transient=True)
        except ProxyError as exc:
            return self._record_failure(str(exc), transient=is_transient(str(exc)))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Availability probe raised unexpectedly")
            return self._record_failure(f"probe error: {exc}", transient=False)

        if reply.connected:
            self._set(
                phase=AvailabilityPhase.AVAILABLE,
                last_check_ms=self._clock(),
                last_error=None,
                retry_count=0,
            )
            self._log.perf(
                "availability", "probe_ok", (time.monotonic() - t0) * 1000.0
            )
            return True, False

        message = reply.message or f"status {reply.status or 'unknown'}"
        return self._record_failure(message, transient=is_transient(message))

    def _record_failure(self, message: str, transient: bool) -> tuple[bool, bool]:
        self._set(
            phase=AvailabilityPhase.UNAVAILABLE,
            last_check_ms=self._clock(),
            last_error=message,
        )
        self._log.warn(
            "availability",
            "probe_failed",
            {"error": message, "transient": transient, "retry_count": self._state.retry_count},
        )
        return False, transient

    def _retry_running(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    def _start_retries(self) -> None:
        self._set(phase=AvailabilityPhase.RETRYING)
        self._retry_task = asyncio.ensure_future(self._retry_sequence())

    def _cancel_retries(self) -> None:
        if self._retry_running():
            self._retry_task.cancel()  # type: ignore[union-attr]
        self._retry_task = None

    async def _retry_sequence(self) -> None:
        while True:
            attempt = self._state.retry_count
            if not self._policy.allows(attempt):
                self._set(phase=AvailabilityPhase.EXHAUSTED)
                self._log.warn(
                    "availability", "retries_exhausted", {"attempts": attempt}
                )
                return

            delay_ms = self._policy.delay_for(attempt)
            self._set(phase=AvailabilityPhase.RETRYING)
            self._log.info(
                "availability", "retry_scheduled", {"attempt": attempt + 1, "delay_ms": delay_ms}
            )
            await self._sleep(delay_ms / 1000.0)
            if self._state.available:
                return

            self._set(retry_count=attempt + 1)
            ok, _ = await self._probe()
            if ok:
                self._log.info("availability", "retry_ok", {"attempt": attempt + 1})
                return

    def _set(self, **changes: object) -> None:
        new_state = replace(self._state, **changes)
        if new_state == self._state:
            return
        previous = self._state
        self._state = new_state
        if new_state.phase is not previous.phase:
            logger.info(
                "Availability: %s → %s", previous.phase.value, new_state.phase.value
            )
        if self._on_change is not None:
            try:
                self._on_change(new_state)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Availability change callback raised: %s", exc)
