"""
FastAPI backend for the tool directory's background workers.

Hosts the screenshot job queue, the shared fetch-or-compute cache and the
endpoints built on them (screenshot polling, duplicate URL detection, the
cached tool catalog, cache administration).
"""

from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.health import get_health_status, set_startup_time
from core.logging import configure_logging, get_logger
from routers import cache, screenshots, tools, websites

settings = container.settings()
configure_logging(settings)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info("Starting toolhub worker services")
    set_startup_time()

    await container.cache().startup()

    tools_service = container.tools_service()
    if settings.supabase_configured:
        await tools_service.warm()

    cleanup_service = container.cleanup_service()
    if settings.cleanup_enabled:
        await cleanup_service.start()

    logger.info("Services started successfully")
    yield

    # Stop producers of work first, then the stores they write to
    if settings.cleanup_enabled:
        await cleanup_service.stop()
    await container.screenshot_queue().shutdown()
    await container.screenshot_service().shutdown()
    await container.duplicate_checker().shutdown()
    await tools_service.shutdown()
    await container.cache().shutdown()
    logger.info("Services shutdown complete")


app = FastAPI(
    title="Toolhub Worker Services",
    version="1.0.0",
    description="Background screenshot queue and TTL cache for the tool directory",
    lifespan=lifespan,
)


class CatchAllExceptionsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error("Unhandled exception", error_type=type(e).__name__,
                         error=str(e), path=request.url.path, exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "success": False,
                    "error": f"{type(e).__name__}: {str(e)}",
                    "detail": "Internal server error"
                }
            )


app.add_middleware(CatchAllExceptionsMiddleware)

# CORS must be added after the exception middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(screenshots.router)
app.include_router(websites.router)
app.include_router(cache.router)
app.include_router(tools.router)


@app.get("/health")
async def health_check():
    """Detailed health check."""
    health = await get_health_status(
        container.cache(), container.screenshot_queue(), settings
    )
    return {
        **health,
        "service": "toolhub-workers",
        "environment": "development" if settings.debug else "production",
        "timestamp": datetime.now().isoformat(),
    }


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting toolhub worker services",
                host=settings.host, port=settings.port, debug=settings.debug)
    # A single worker process: queue and cache state are per-process
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
