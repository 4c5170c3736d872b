"""
Babble Chat Server

Entry point for the FastAPI application.
"""

import logging

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from babble.api.v1 import router as api_v1_router
from babble.api.v1.realtime import topic_visible
from babble.core.chat import manager
from babble.core.config import get_settings
from babble.core.database import dispose_engine
from babble.core.middleware import SecurityHeadersMiddleware, install_error_handlers
from babble.core.redis import close_redis

settings = get_settings()
log = structlog.get_logger()


def configure_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog with the specified level and format."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format="%(levelname)s %(name)s %(message)s")
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Babble",
        description="Real-time chat channels on top of the forum.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )
    install_error_handlers(app)

    app.include_router(api_v1_router, prefix="/babble")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check endpoint for startup probes."""
        return {"status": "ready"}

    @app.on_event("startup")
    async def on_startup():
        configure_logging(settings.log_level, settings.log_format)
        manager.channel_prefix = settings.channel_prefix
        manager.access_check = topic_visible
        log.info("Babble starting", channel_prefix=settings.channel_prefix)

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("Babble shutting down")
        await close_redis()
        await dispose_engine()

    return app


app = create_app()


def run() -> None:
    """CLI entry point for the server."""
    uvicorn.run(
        "babble.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )
