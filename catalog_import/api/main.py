"""
FastAPI Main Application
Entry point for the Catalog Import API.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ..config.settings import get_settings
from ..ingestion.dispatch import ThreadDispatcher
from . import dependencies
from .errors import setup_error_handlers
from .middleware import RequestLoggingMiddleware
from .routers import health_router, imports_router

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Stops the local job thread pool on shutdown so running imports finish
    their current rows.
    """
    settings = get_settings()
    logger.info(
        f"Starting {settings.app_name} v{settings.version} "
        f"(environment={settings.environment}, dispatcher={settings.dispatcher})"
    )

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    controller = dependencies.current_job_controller()
    if controller is not None and isinstance(controller.dispatcher, ThreadDispatcher):
        controller.dispatcher.shutdown(wait=True)


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Batch CSV import of catalog products",
        version=settings.version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.add_middleware(RequestLoggingMiddleware)
    setup_error_handlers(app)

    app.include_router(health_router)
    app.include_router(imports_router)

    return app


# Create app instance
app = create_app()


@app.get("/")
async def root():
    """API information."""
    settings = get_settings()

    return {
        "name": settings.app_name,
        "version": settings.version,
        "endpoints": {
            "health": "/health",
            "imports": "/api/v1/imports",
            "docs": "/docs",
        },
    }


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "catalog_import.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
