"""SplitSync API - Main entry point."""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from splitsync.config import get_settings
from splitsync.cron import create_plaid_sync_task
from splitsync.logging_config import get_logger, setup_logging
from splitsync.routers import plaid_router, sync_router
from splitsync.schemas.common import ErrorResponse
from splitsync.services.sync_service import SyncLocks
from splitsync.services.webhook_service import WebhookTracker


settings = get_settings()
setup_logging()
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"Starting {settings.app_name} API...")
    app.state.sync_locks = SyncLocks()
    app.state.webhook_tracker = WebhookTracker()

    if settings.enable_cron_jobs:
        await create_plaid_sync_task(app.state.sync_locks)()
        logger.info("[CRON] Daily Plaid sync scheduled")

    yield

    # Shutdown
    await app.state.webhook_tracker.drain()
    logger.info(f"Shutting down {settings.app_name} API...")


app = FastAPI(
    title=settings.app_name,
    description="Plaid transaction sync with split budgeting and bill matching",
    version="1.0.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    error = ErrorResponse(
        error="Internal server error",
        detail=str(exc) if settings.debug else None,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error.model_dump(exclude_none=True),
    )


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": "1.0.0",
    }


# Include routers with API prefix
api_prefix = settings.api_v1_prefix

app.include_router(plaid_router, prefix=api_prefix)
app.include_router(sync_router, prefix=api_prefix)


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": "1.0.0",
        "docs": "/docs" if settings.debug else "Disabled in production",
        "api": settings.api_v1_prefix,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "splitsync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
    )
