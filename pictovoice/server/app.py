"""
pictovoice/server/app.py — FastAPI phrase proxy.

Fronts the local phrase model for the board client. Whatever happens to the
model, ``/api/generate-phrase`` answers with a usable phrase: a model reply
is reported as ``source: "remote"``, anything else as ``source: "local"``
with a ``reason``.

REST endpoints
--------------
GET  /health               Uptime and request counters
GET  /api/test-connection  {"status": "connected"|"error", "message", "timestamp"}
POST /api/generate-phrase  {"concepts": [...], "context"?} → {"phrase", "source", ...}

Unknown routes answer ``404 {"error", "available_endpoints"}``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import psutil
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from pictovoice import __version__
from pictovoice.core.config import ServerConfig
from pictovoice.core.logger import get_logger
from pictovoice.llm.engine import InferenceTimeout, ModelNotFoundError, PhraseEngine
from pictovoice.llm.fallback import compose_local
from pictovoice.llm.prompt_builder import ConceptList, PromptBuilder

_log = get_logger()

AVAILABLE_ENDPOINTS = [
    "GET /health",
    "GET /api/test-connection",
    "POST /api/generate-phrase",
]

_PROBE_MAX_NEW_TOKENS = 8


@dataclass
class ProxyStats:
    """Request counters reported by ``/health``."""

    started_at: float = field(default_factory=time.monotonic)
    total_requests: int = 0
    remote_success: int = 0
    remote_errors: int = 0
    local_fallbacks: int = 0

    def snapshot(self) -> Dict[str, int]:
        return {
            "total_requests": self.total_requests,
            "remote_success": self.remote_success,
            "remote_errors": self.remote_errors,
            "local_fallbacks": self.local_fallbacks,
        }


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _probe_error_message(exc: Exception) -> str:
    """Map a model failure to a short, user-facing probe message."""
    text = str(exc).lower()
    if isinstance(exc, InferenceTimeout) or "timeout" in text or "timed out" in text:
        return "Timeout connecting to the phrase model"
    if isinstance(exc, ModelNotFoundError):
        return "Phrase model not available"
    if "memory" in text:
        return "Not enough memory for the phrase model"
    return "Could not reach the phrase model"


def create_app(
    config: Optional[ServerConfig] = None,
    engine: Optional[PhraseEngine] = None,
) -> FastAPI:
    """
    Build the proxy application.

    Args:
        config: Server settings; defaults are used when omitted.
        engine: Phrase model engine. When None every request is answered
            by the local fallback.

    Returns:
        A configured :class:`FastAPI` instance. Its ``state.stats`` holds
        the :class:`ProxyStats` counters.
    """
    cfg = config or ServerConfig()
    builder = PromptBuilder()
    stats = ProxyStats()

    app = FastAPI(title="PictoVoice Phrase Proxy", version=__version__)
    app.state.stats = stats
    app.state.engine = engine
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cfg.allowed_origins),
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type"],
    )

    @app.middleware("http")
    async def _count_requests(request: Request, call_next: Any) -> Any:
        stats.total_requests += 1
        return await call_next(request)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code in (404, 405):
            return JSONResponse(
                {"error": "Route not found", "available_endpoints": AVAILABLE_ENDPOINTS},
                status_code=404,
            )
        return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)

    # ── Routes ───────────────────────────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        uptime_ms = int((time.monotonic() - stats.started_at) * 1000)
        return JSONResponse({
            "status": "OK",
            "timestamp": _now_iso(),
            "service": "PictoVoice Phrase Proxy",
            "uptime_ms": uptime_ms,
            "uptime_human": f"{uptime_ms // 1000}s",
            "model": cfg.model_id,
            "memory_mb": round(psutil.Process().memory_info().rss / (1024 ** 2), 1),
            "stats": stats.snapshot(),
        })

    @app.get("/api/test-connection")
    async def test_connection() -> JSONResponse:
        if engine is None:
            return JSONResponse({
                "status": "error",
                "message": "Phrase model not initialised",
                "timestamp": _now_iso(),
            })
        try:
            result = await run_in_threadpool(
                engine.generate, builder.probe_messages(), _PROBE_MAX_NEW_TOKENS
            )
        except Exception as exc:  # noqa: BLE001
            _log.warn("server", "probe_failed", {"error": str(exc)})
            return JSONResponse({
                "status": "error",
                "message": _probe_error_message(exc),
                "error": str(exc),
                "timestamp": _now_iso(),
            })

        if not result.text:
            return JSONResponse({
                "status": "error",
                "message": "Unexpected empty reply from the phrase model",
                "timestamp": _now_iso(),
            })
        return JSONResponse({
            "status": "connected",
            "message": "Phrase model available",
            "model": engine.model_id,
            "timestamp": _now_iso(),
            "test_response": result.text,
        })

    @app.post("/api/generate-phrase")
    async def generate_phrase(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse({"error": "request body must be JSON"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"error": "concepts required"}, status_code=400)
        try:
            req = ConceptList(**body)
        except ValidationError:
            return JSONResponse({"error": "concepts required"}, status_code=400)

        def _local(reason: str) -> JSONResponse:
            stats.local_fallbacks += 1
            _log.info("server", "local_fallback", {"concepts": req.concepts, "reason": reason})
            return JSONResponse({
                "phrase": compose_local(req.concepts),
                "source": "local",
                "reason": reason,
                "concepts": req.concepts,
            })

        if engine is None:
            return _local("model_not_initialised")

        try:
            result = await run_in_threadpool(
                engine.generate, builder.build_chat_messages(req)
            )
        except ModelNotFoundError as exc:
            _log.warn("server", "model_not_found", {"error": str(exc)})
            return _local("model_not_available")
        except InferenceTimeout:
            stats.remote_errors += 1
            return _local("timeout")
        except Exception as exc:  # noqa: BLE001
            stats.remote_errors += 1
            _log.error("server", "generation_failed", {"error": str(exc)})
            return _local("model_error")

        phrase = result.text.strip()
        if not phrase:
            return _local("empty_response")

        stats.remote_success += 1
        _log.perf(
            "server", "generated", result.latency_ms,
            {"concepts": req.concepts, "output_tokens": result.output_tokens},
        )
        return JSONResponse({
            "phrase": phrase,
            "source": "remote",
            "concepts": req.concepts,
            "model": engine.model_id,
        })

    return app


# ── Public launcher ───────────────────────────────────────────────────────────

def start_server(config: ServerConfig, engine: Optional[PhraseEngine] = None) -> None:
    """
    Start the proxy with uvicorn in the current thread. Blocking.

    Args:
        config: Bind address, port and model settings.
        engine: Phrase engine; built from *config* when omitted.
    """
    import uvicorn  # type: ignore

    app = create_app(config, engine if engine is not None else PhraseEngine(config))
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=config.host,
            port=config.port,
            log_level="warning",
            access_log=False,
        )
    )
    _log.info("server", "server_start", {"host": config.host, "port": config.port})
    server.run()
