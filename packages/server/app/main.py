"""
Team Chat API Server

Entry point for the FastAPI application.
"""

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from app.core.chat import RealtimeGateway
from app.core.config import get_settings
from app.core.database import init_db, ping_db
from app.core.errors import UpstreamUnavailable, register_error_handlers, run_with_timeout
from app.core.logging import configure_logging
from app.core.middleware import SecurityHeadersMiddleware
from app.core.redis import close_redis, ping_redis
from app.api.v1 import router as api_v1_router
from app.api.v1.auth import router as auth_router

settings = get_settings()
log = structlog.get_logger()


def create_app(gateway: RealtimeGateway | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="Team Chat",
        description="Multi-tenant team chat: direct and group messaging over REST and WebSocket.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.gateway = gateway or RealtimeGateway()

    # Middleware (outermost first)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )
    register_error_handlers(app)

    # Auth routes (no active organization required)
    app.include_router(auth_router, prefix="/auth", tags=["Authentication"])

    # API routes
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check: database and (when enabled) Redis must answer."""
        checks = {}
        try:
            await run_with_timeout(ping_db(), settings.store_timeout_seconds, "store")
            checks["database"] = "ok"
        except UpstreamUnavailable:
            checks["database"] = "unavailable"
        if settings.cache_enabled:
            try:
                await run_with_timeout(ping_redis(), settings.cache_timeout_seconds, "cache")
                checks["redis"] = "ok"
            except (UpstreamUnavailable, RedisError):
                checks["redis"] = "unavailable"

        if any(status != "ok" for status in checks.values()):
            return JSONResponse(status_code=503, content={"status": "unavailable", "checks": checks})
        return {"status": "ready", "checks": checks}

    @app.on_event("startup")
    async def on_startup():
        log.info("Team Chat starting", debug=settings.debug)
        if settings.debug:
            await init_db()

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("Team Chat shutting down")
        await app.state.gateway.close()
        await close_redis()

    return app


app = create_app()


def run() -> None:
    uvicorn.run("app.main:app", host=settings.host, port=settings.port, log_level=settings.log_level)


if __name__ == "__main__":
    run()
