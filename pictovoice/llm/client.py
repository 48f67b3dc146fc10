"""
pictovoice/llm/client.py — Async HTTP client for the phrase proxy.

Thin aiohttp wrapper over the two proxy endpoints the board uses:
``GET /api/test-connection`` (availability probe) and
``POST /api/generate-phrase``. Every transport problem is converted into a
:class:`ProxyError` so callers handle exactly one exception family;
timeouts raise the :class:`ProxyTimeout` subclass.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import aiohttp

from pictovoice.core.constants import C

logger = logging.getLogger(__name__)


class ProxyError(Exception):
    """
    Raised when a proxy request fails.

    Attributes:
        status: HTTP status code when the proxy answered, else None.
    """

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ProxyTimeout(ProxyError):
    """Raised when a proxy request exceeds its timeout."""


@dataclass(frozen=True)
class ProbeReply:
    """Decoded ``/api/test-connection`` response."""

    status: str
    message: str = ""

    @property
    def connected(self) -> bool:
        return self.status == "connected"


@dataclass(frozen=True)
class GenerateReply:
    """Decoded ``/api/generate-phrase`` response."""

    phrase: str
    source: str
    reason: Optional[str] = None


class ProxyClient:
    """
    aiohttp client for the phrase proxy.

    The underlying :class:`aiohttp.ClientSession` is created lazily on the
    first request and must be released with :meth:`close` (or by using the
    client as an async context manager).

    Args:
        base_url: Proxy root, e.g. ``http://localhost:3002``.
        session: Optional externally owned session (not closed by us).
    """

    def __init__(
        self,
        base_url: str = C.PROXY_BASE_URL,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def __aenter__(self) -> "ProxyClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the owned HTTP session, if one was opened."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None if self._owns_session else self._session

    # ──────────────────────────────────────────
    # Endpoints
    # ──────────────────────────────────────────

    async def test_connection(
        self, timeout_s: float = C.PROBE_TIMEOUT_MS / 1000.0
    ) -> ProbeReply:
        """
        Probe remote availability.

        Returns:
            The proxy's reported status; ``connected`` means usable.

        Raises:
            ProxyTimeout: If no answer arrived within *timeout_s*.
            ProxyError: On connection failure, non-2xx status, or bad body.
        """
        body = await self._request("GET", C.TEST_CONNECTION_PATH, timeout_s)
        return ProbeReply(
            status=str(body.get("status", "")),
            message=str(body.get("message") or ""),
        )

    async def generate(
        self,
        concepts: Sequence[str],
        timeout_s: float = C.GENERATION_TIMEOUT_MS / 1000.0,
    ) -> GenerateReply:
        """
        Ask the proxy to turn *concepts* into a phrase.

        Args:
            concepts: Ordered concept keys; order is preserved on the wire.
            timeout_s: Total request timeout in seconds.

        Raises:
            ProxyTimeout: If no answer arrived within *timeout_s*.
            ProxyError: On connection failure, non-2xx status, or bad body.
        """
        body = await self._request(
            "POST", C.GENERATE_PATH, timeout_s, json={"concepts": list(concepts)}
        )
        phrase = body.get("phrase")
        reason = body.get("reason")
        return GenerateReply(
            phrase=phrase.strip() if isinstance(phrase, str) else "",
            source=str(body.get("source", "")),
            reason=str(reason) if reason is not None else None,
        )

    # ──────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _request(
        self, method: str, path: str, timeout_s: float, json: Any = None
    ) -> dict:
        url = self._base_url + path
        timeout = aiohttp.ClientTimeout(total=timeout_s)
        try:
            async with self._get_session().request(
                method, url, json=json, timeout=timeout
            ) as resp:
                if resp.status >= 400:
                    detail = await self._error_detail(resp)
                    raise ProxyError(f"HTTP {resp.status}: {detail}", status=resp.status)
                body = await resp.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise ProxyTimeout(f"{method} {path} timed out after {timeout_s:.1f}s") from exc
        except aiohttp.ClientError as exc:
            raise ProxyError(f"{method} {path} failed: {exc}") from exc
        except ValueError as exc:
            raise ProxyError(f"{method} {path} returned invalid JSON") from exc

        if not isinstance(body, dict):
            raise ProxyError(f"{method} {path} returned a non-object body")
        return body

    @staticmethod
    async def _error_detail(resp: aiohttp.ClientResponse) -> str:
        try:
            body = await resp.json(content_type=None)
        except (aiohttp.ClientError, ValueError):
            return resp.reason or "proxy error"
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return resp.reason or "proxy error"
