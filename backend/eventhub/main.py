"""
eventhub - FastAPI Application Entry Point.

Feature-based modular architecture:
  Each feature in eventhub/features/ has its own router, schemas, and service.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from eventhub.config import get_settings
from eventhub.core.dependencies import get_event_engine
from eventhub.core.exceptions import AppBaseError, app_error_to_http
from eventhub.background.scheduler import init_scheduler, shutdown_scheduler

# ── Feature Routers ──────────────────────────────────────
from eventhub.features.events.router import router as events_router

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Quiet noisy HTTP client loggers
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup & shutdown."""
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    logger.info(f"🚀 {settings.APP_NAME} v{settings.APP_VERSION} starting...")
    logger.info(f"🔗 Supabase: {settings.SUPABASE_URL[:40]}...")
    init_scheduler()
    yield
    logger.info("👋 Shutting down...")
    shutdown_scheduler()
    await get_event_engine().dispatcher.shutdown()


async def app_error_handler(request: Request, exc: AppBaseError) -> JSONResponse:
    """Render engine errors with their status code and retryable flag."""
    http_error = app_error_to_http(exc)
    if http_error.status_code >= 500:
        logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=http_error.status_code, content={"detail": http_error.detail})


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Event lifecycle and attendance engine",
        lifespan=lifespan,
    )

    # ── CORS ─────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppBaseError, app_error_handler)

    # ── Register Feature Routers ─────────────────────────
    app.include_router(events_router, prefix="/api/events", tags=["Events"])

    # ── Health Check ─────────────────────────────────────
    @app.get("/health", tags=["System"])
    async def health_check():
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
        }

    return app


app = create_app()
