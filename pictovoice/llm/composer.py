"""
pictovoice/llm/composer.py — Remote-first phrase composition with local fallback.

Turns a full selection of concept keys into a sentence. The proxy is tried
only while the availability monitor reports it usable; every failure path
ends in the deterministic local fallback, so composition itself never
fails once the input is valid.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Awaitable, Optional, Sequence

from pictovoice.core.constants import C, PhraseSource
from pictovoice.core.logger import get_logger
from pictovoice.llm.availability import AvailabilityMonitor
from pictovoice.llm.client import ProxyClient, ProxyError, ProxyTimeout
from pictovoice.llm.fallback import compose_local


@dataclass(frozen=True)
class CompositionResult:
    """
    Result of one composition.

    Attributes:
        phrase: The sentence to show and speak.
        source: ``REMOTE`` if the proxy's model produced it, else ``LOCAL``.
        reason: Why the local path was taken; None for remote results.
        latency_ms: Wall-clock time spent composing.
    """

    phrase: str
    source: PhraseSource
    reason: Optional[str] = None
    latency_ms: float = 0.0


class PhraseComposer:
    """
    Composes phrases through the proxy, falling back to local rules.

    Args:
        client: Proxy client used for generation requests.
        monitor: Availability monitor consulted before each request and
            notified of failures.
        timeout_ms: Generation request timeout.
    """

    def __init__(
        self,
        client: ProxyClient,
        monitor: AvailabilityMonitor,
        timeout_ms: int = C.GENERATION_TIMEOUT_MS,
    ) -> None:
        self._client = client
        self._monitor = monitor
        self._timeout_s = timeout_ms / 1000.0
        self._log = get_logger()

    def compose(self, concepts: Sequence[str]) -> Awaitable[CompositionResult]:
        """
        Start composing a phrase for *concepts*.

        Input is validated before anything is awaited, so misuse raises at
        the call site.

        Args:
            concepts: Ordered, non-empty concept keys.

        Returns:
            An awaitable resolving to a :class:`CompositionResult`.

        Raises:
            ValueError: If *concepts* is empty.
        """
        concepts = tuple(concepts)
        if not concepts:
            raise ValueError("concepts must not be empty")
        return self._compose(concepts)

    async def _compose(self, concepts: tuple[str, ...]) -> CompositionResult:
        t0 = time.monotonic()

        if not self._monitor.is_available():
            return self._local(concepts, "remote unavailable", t0)

        try:
            reply = await self._client.generate(concepts, timeout_s=self._timeout_s)
        except ProxyTimeout:
            return self._fail(concepts, "generation timed out", t0)
        except ProxyError as exc:
            return self._fail(concepts, f"generation failed: {exc}", t0)
        except Exception as exc:  # noqa: BLE001
            return self._fail(concepts, f"generation error: {exc}", t0)

        if not reply.phrase:
            return self._fail(concepts, "empty phrase from proxy", t0)

        latency_ms = (time.monotonic() - t0) * 1000.0
        if reply.source == PhraseSource.REMOTE.value:
            self._log.perf(
                "composer", "remote_done", latency_ms, {"concepts": list(concepts)}
            )
            return CompositionResult(reply.phrase, PhraseSource.REMOTE, None, latency_ms)

        # The proxy answered but its own model failed; keep its phrase.
        reason = reply.reason or f"proxy source {reply.source or 'unknown'}"
        self._monitor.mark_unavailable(f"remote degraded: {reason}")
        self._log.perf(
            "composer", "proxy_fallback", latency_ms,
            {"concepts": list(concepts), "reason": reason},
        )
        return CompositionResult(reply.phrase, PhraseSource.LOCAL, reason, latency_ms)

    def _fail(self, concepts: tuple[str, ...], reason: str, t0: float) -> CompositionResult:
        self._monitor.mark_unavailable(reason)
        return self._local(concepts, reason, t0)

    def _local(self, concepts: tuple[str, ...], reason: str, t0: float) -> CompositionResult:
        phrase = compose_local(concepts)
        latency_ms = (time.monotonic() - t0) * 1000.0
        self._log.perf(
            "composer", "local_done", latency_ms,
            {"concepts": list(concepts), "reason": reason},
        )
        return CompositionResult(phrase, PhraseSource.LOCAL, reason, latency_ms)
