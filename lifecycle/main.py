"""
FastAPI application factory with middleware, CORS, and request tracing.
"""

import os
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lifecycle import __version__
from lifecycle.config import get_settings
from lifecycle.routers import history, lifecycle, system, webhooks
from lifecycle.services import get_scheduler
from lifecycle.utils.logging import configure_logging, get_logger

# Configure logging at module level
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Creates the data directory and owns the periodic job scheduler.
    """
    settings = get_settings()

    logger.info(
        "application_startup",
        version=app.version,
        dev_mode=settings.dev_mode,
        business_timezone=settings.business_timezone,
    )

    data_dir = os.path.dirname(settings.db_path) or "."
    os.makedirs(data_dir, exist_ok=True)
    logger.info("directories_created", paths=[data_dir])

    scheduler = None
    if settings.scheduler_enabled and not settings.testing:
        scheduler = get_scheduler()
        scheduler.start()

    yield

    if scheduler is not None:
        await scheduler.stop()
    logger.info("application_shutdown")


def create_app() -> FastAPI:
    """
    Application factory.
    Creates and configures FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Ticket Lifecycle API",
        description="Time-in-status analytics and reconciled closure counts for support tickets",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_tracing_middleware(request: Request, call_next):
        """Add request ID and timing to all requests."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        # Bind request ID to structlog context
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": "Internal server error",
                    "request_id": request_id,
                },
                headers={"X-Request-ID": request_id},
            )

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
        return response

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for load balancers and monitoring."""
        return {"status": "healthy", "version": app.version}

    app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["Webhooks"])
    app.include_router(lifecycle.router, prefix="/api/v1/ticket-lifecycle", tags=["Ticket Lifecycle"])
    app.include_router(history.router, prefix="/api/v1/history", tags=["History"])
    app.include_router(system.router, prefix="/api/v1/system", tags=["System"])

    logger.info("application_configured", routers_count=4)

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "lifecycle.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower(),
    )
