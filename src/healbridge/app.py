"""
Application entry point — creates and configures the FastAPI app.
"""
import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from healbridge.api.auth_routes import router as auth_router
from healbridge.api.copilot_routes import router as copilot_router
from healbridge.config import load_config
from healbridge.errors import HealBridgeError, UnauthorizedError
from healbridge.services.database import close_database, init_database
from healbridge.services.gemini_client import get_ai_provider

log = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    """Route structlog through a level filter; key=value output in dev, JSON otherwise."""
    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    cfg = load_config()
    renderer = (
        structlog.dev.ConsoleRenderer()
        if cfg.app.env == "development"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        cache_logger_on_first_use=False,
    )


async def healbridge_error_handler(request: Request, exc: HealBridgeError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthorizedError) else None
    if exc.status_code >= 500:
        log.error("request_failed", path=request.url.path, status=exc.status_code, detail=exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and graceful shutdown."""
    cfg = load_config()
    log.info("app_starting", version=cfg.app.version, env=cfg.app.env)
    await init_database()
    log.info("app_started")
    yield
    log.info("app_shutting_down")
    await get_ai_provider().close()
    await close_database()
    log.info("app_stopped")


def create_app() -> FastAPI:
    cfg = load_config()
    configure_logging(cfg.app.log_level)

    app = FastAPI(
        title="HealBridge API",
        description="Healthcare peer support platform: authentication and AI copilot",
        version=cfg.app.version,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[cfg.app.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_exception_handler(HealBridgeError, healbridge_error_handler)

    app.include_router(auth_router, prefix=cfg.api.prefix)
    app.include_router(copilot_router, prefix=cfg.api.prefix)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "version": cfg.app.version, "service": "healbridge-gateway"}

    return app
