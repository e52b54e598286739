"""
Main FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from asset_admin.core.config import settings
from asset_admin.core.database import close_db, init_db
from asset_admin.core.dispatch import get_dispatcher
from asset_admin.core.logging import get_logger, set_correlation_id, setup_logging
from asset_admin.api.files import router as files_router
from asset_admin.api.health import router as health_router

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    await logger.ainfo("Starting asset admin service")

    try:
        await init_db()
        await logger.ainfo("Database initialized successfully")
    except Exception as e:
        await logger.aerror("Failed to start application", error=str(e))
        raise

    yield

    await logger.ainfo("Shutting down asset admin service")

    try:
        # Let pending reference refreshes finish before the engine goes away
        await get_dispatcher().drain()
        await close_db()
        await logger.ainfo("Application shutdown completed")
    except Exception as e:
        await logger.aerror("Error during shutdown", error=str(e))


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title="Asset Admin",
        description="File asset lifecycle and storage integrity administration",
        version="1.0.0",
        docs_url="/api/docs" if settings.DEBUG else None,
        redoc_url="/api/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.DEBUG else settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        """Add correlation ID to each request."""
        corr_id = set_correlation_id(request.headers.get("X-Correlation-ID"))

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = corr_id

        return response

    app.include_router(health_router, prefix="/api", tags=["Health"])
    app.include_router(files_router, tags=["Files"])

    return app


app = create_app()
