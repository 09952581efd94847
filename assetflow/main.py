# assetflow/main.py
"""
ASGI app factory:  uvicorn assetflow.main:create_app --factory
"""
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

import sentry_sdk
import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from limits import parse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from slowapi import Limiter
from slowapi.util import get_remote_address

from assetflow import __version__
from assetflow.api import local_blobs, routes
from assetflow.config import Settings, get_settings
from assetflow.db import Base, make_engine
from assetflow.errors import AssetError, BlobStoreError, RateLimited
from assetflow.logging_config import logger, setup_logging
from assetflow.metrics import latency_hist
from assetflow.metrics import router as metrics_router
from assetflow.pipeline import AssetPipeline, build_pipeline
from assetflow.storage.local import LocalBlobStore


def _error(status_code: int, code: str, message: str, details: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "error": {"code": code, "message": message, "details": details or {}}},
    )


def client_key(request: Request) -> str:
    return f"{get_remote_address(request)}:{request.headers.get('x-user-id', 'anon')}"


def build_limiter(settings: Settings) -> Limiter:
    # grove per-client guard; de domein-quota zit in de QuotaGuard
    return Limiter(key_func=client_key, default_limits=[settings.api_rate_limit], headers_enabled=False)


def api_rate_limit(request: Request) -> None:
    """Router dependency: telt elke API call tegen `api_rate_limit` van de client."""
    limiter: Limiter = request.app.state.limiter
    item = request.app.state.api_limit
    key = client_key(request)
    if not limiter.limiter.hit(item, key, "api"):
        stats = limiter.limiter.get_window_stats(item, key, "api")
        reset_at = datetime.fromtimestamp(int(stats.reset_time), timezone.utc).replace(tzinfo=None)
        logger.warning("api_rate_limited", client=key, limit=str(item))
        raise RateLimited(item.amount, item.get_expiry(), reset_at.isoformat() + "Z", what="API")


def create_app(pipeline: Optional[AssetPipeline] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or (pipeline.settings if pipeline else get_settings())
    setup_logging(settings.log_level)

    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            integrations=[FastApiIntegration()],
            environment=settings.app_env,
            traces_sample_rate=0.0,
        )

    if pipeline is None:
        engine = make_engine(settings.database_url, pool_pre_ping=True)
        if not settings.is_production:
            # dev gemak; in productie via alembic
            Base.metadata.create_all(bind=engine)
        pipeline = build_pipeline(settings, engine=engine)

    app = FastAPI(title="assetflow", version=__version__)
    app.state.pipeline = pipeline
    app.state.settings = settings

    # ----------------------------------------------------
    # Errors
    # ----------------------------------------------------
    @app.exception_handler(AssetError)
    def asset_error_handler(request: Request, exc: AssetError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(BlobStoreError)
    def blob_store_error_handler(request: Request, exc: BlobStoreError):
        logger.error("blob_store_unavailable", error=str(exc), endpoint=str(request.url.path))
        return _error(503, "STORAGE_UNAVAILABLE", "Blob store temporarily unavailable; retry later")

    @app.exception_handler(RequestValidationError)
    def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [{"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in exc.errors()]
        return _error(400, "INVALID_REQUEST", "Request body or parameters are invalid", {"errors": errors})

    # ----------------------------------------------------
    # Health
    # ----------------------------------------------------
    @app.get("/health", include_in_schema=True)
    def health() -> dict:
        return {"status": "ok", "version": __version__}

    # ----------------------------------------------------
    # Logging middleware
    # ----------------------------------------------------
    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        start = time.time()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        bound_logger = logger.bind(
            ip=request.client.host if request.client else "unknown",
            endpoint=str(request.url.path),
            method=request.method,
        )

        bound_logger.info("request_started")
        response = await call_next(request)
        latency = time.time() - start

        route = request.scope.get("route")
        latency_hist.labels(getattr(route, "path", "unmatched")).observe(latency)
        bound_logger.bind(status_code=response.status_code, latency_ms=round(latency * 1000, 2)).info(
            "request_finished"
        )
        response.headers["X-Request-ID"] = request_id
        return response

    # ----------------------------------------------------
    # Rate limiting (slowapi storage + strategie)
    # ----------------------------------------------------
    app.state.limiter = build_limiter(settings)
    app.state.api_limit = parse(settings.api_rate_limit)

    # ----------------------------------------------------
    # Routers
    # ----------------------------------------------------
    app.include_router(routes.router, dependencies=[Depends(api_rate_limit)])
    app.include_router(metrics_router)  # /metrics
    if isinstance(pipeline.store, LocalBlobStore):
        app.include_router(local_blobs.router)

    logger.info("startup", service="assetflow-api", env=settings.app_env, storage=settings.storage_backend)
    return app
