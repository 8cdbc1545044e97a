from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, Request, Response
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from pydantic import BaseModel

from .config import Settings, settings as default_settings
from .errors import CinesonicsError, TokenExpired, TokenNotFound, UpstreamUnavailable
from .ledger import QuotaLedger, resolve_client_id
from .logging_utils import get_logger
from .metrics import COVER_REQUESTS
from .orchestrator import GenerationOrchestrator, Upstream
from .upstream import PollinationsClient
from .vault import RedeemStatus, TokenVault, sweep_periodically


class GeneratePayload(BaseModel):
    vibe: Any = None


def client_id(request: Request, x_forwarded_for: Optional[str] = None) -> str:
    peer = request.client.host if request.client else None
    return resolve_client_id(x_forwarded_for, peer)


def _quota_headers(response: Response, ledger: QuotaLedger, user_remaining: int) -> None:
    response.headers["X-Quota-Limit"] = str(ledger.user_limit)
    response.headers["X-Quota-Remaining"] = str(user_remaining)
    response.headers["X-Quota-Reset"] = str(ledger.reset_seconds())


def _access_log(request: Request, rid: str, status_code: int, start: float) -> None:
    logger = get_logger("cinesonics.api")
    rec = logging.LogRecord(
        name="cinesonics.api",
        level=logging.INFO,
        pathname=__file__,
        lineno=0,
        msg=f"{request.method} {request.url.path}",
        args=(),
        exc_info=None,
    )
    rec.request_id = rid  # type: ignore[attr-defined]
    rec.method = request.method  # type: ignore[attr-defined]
    rec.path = request.url.path  # type: ignore[attr-defined]
    rec.status_code = status_code  # type: ignore[attr-defined]
    rec.latency_ms = round((time.perf_counter() - start) * 1000.0, 2)  # type: ignore[attr-defined]
    logger.handle(rec)


def create_app(
    cfg: Settings | None = None,
    ledger: QuotaLedger | None = None,
    vault: TokenVault | None = None,
    upstream: Upstream | None = None,
) -> FastAPI:
    """Build the API around its own ledger and vault.

    ``upstream`` must provide ``complete``, ``cover_url`` and ``fetch_image``;
    it defaults to a :class:`PollinationsClient` for the configured key.
    """
    cfg = cfg or default_settings
    if ledger is None:
        ledger = QuotaLedger(cfg.global_limit, cfg.user_limit)
    if vault is None:
        vault = TokenVault(cfg.cover_ttl_seconds)
    if upstream is None:
        upstream = PollinationsClient(cfg.pollinations_api_key, cfg)
    orchestrator = GenerationOrchestrator(
        ledger,
        vault,
        upstream,
        api_key=cfg.pollinations_api_key,
        max_vibe_chars=cfg.max_vibe_chars,
        cover_ttl=cfg.cover_ttl_seconds,
    )

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = get_logger("cinesonics.api")
        if cfg.pollinations_api_key:
            logger.info("API key loaded")
        else:
            logger.error("API key MISSING, set POLLINATIONS_API_KEY in .env")
        logger.info(f"Limits: {ledger.user_limit}/user/day, {ledger.global_limit}/site/day")
        sweeper = asyncio.create_task(sweep_periodically(vault, cfg.sweep_interval_seconds))
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper

    app = FastAPI(title="Cinesonics API", version="0.1.0", lifespan=lifespan)
    app.state.settings = cfg
    app.state.ledger = ledger
    app.state.vault = vault
    app.state.orchestrator = orchestrator

    origins = cfg.origins()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            _access_log(request, rid, 500, start)
            raise
        _access_log(request, rid, getattr(response, "status_code", 200), start)
        response.headers["X-Request-ID"] = rid
        return response

    @app.exception_handler(CinesonicsError)
    async def cinesonics_error(request: Request, exc: CinesonicsError) -> JSONResponse:
        return JSONResponse(status_code=exc.http_status, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def unreadable_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        if request.url.path != "/api/generate":
            return await request_validation_exception_handler(request, exc)
        # An unreadable body is an empty vibe: quota is still checked first.
        try:
            await orchestrator.generate(client_id(request, request.headers.get("x-forwarded-for")), None)
        except CinesonicsError as e:
            return JSONResponse(status_code=e.http_status, content=e.to_body())
        raise exc

    app.mount("/metrics", make_asgi_app())

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok", "apiKeyLoaded": bool(cfg.pollinations_api_key)}

    @app.get("/api/status")
    async def status(request: Request, response: Response, x_forwarded_for: Optional[str] = Header(default=None)) -> Dict[str, Any]:
        remaining = ledger.remaining(client_id(request, x_forwarded_for))
        _quota_headers(response, ledger, remaining.user)
        return {
            "globalRemaining": remaining.global_,
            "userRemaining": remaining.user,
            "globalLimit": ledger.global_limit,
            "userLimit": ledger.user_limit,
            "resetPolicy": "midnight UTC",
            "resetsInSeconds": ledger.reset_seconds(),
        }

    @app.post("/api/generate")
    async def generate(
        request: Request,
        response: Response,
        p: Optional[GeneratePayload] = None,
        x_forwarded_for: Optional[str] = Header(default=None),
    ) -> Dict[str, Any]:
        result = await orchestrator.generate(client_id(request, x_forwarded_for), p.vibe if p is not None else None)
        _quota_headers(response, ledger, result.remaining.user)
        return result.as_dict()

    @app.get("/api/cover/{token}")
    async def cover(token: str) -> Response:
        redemption = vault.redeem(token)
        if redemption.status is RedeemStatus.NOT_FOUND:
            COVER_REQUESTS.labels(outcome="not_found").inc()
            raise TokenNotFound()
        if redemption.status is RedeemStatus.EXPIRED:
            COVER_REQUESTS.labels(outcome="expired").inc()
            raise TokenExpired()
        try:
            body, content_type = await upstream.fetch_image(redemption.resource_locator)
        except UpstreamUnavailable as e:
            COVER_REQUESTS.labels(outcome="upstream_error").inc()
            return JSONResponse(status_code=502, content=e.to_body())
        COVER_REQUESTS.labels(outcome="ok").inc()
        return Response(
            content=body,
            media_type=content_type,
            headers={"Cache-Control": "public, max-age=86400"},
        )

    return app


app = create_app()


def run() -> None:
    import uvicorn
    uvicorn.run("cinesonics.api:app", host=default_settings.host, port=default_settings.port)
