"""Main application entrypoint for the vidingest upload service."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from vidingest.api.v1 import routes_health
from vidingest.api.v1.routes_upload import router as upload_router
from vidingest.core.config import settings
from vidingest.core.logging import setup_logging
from vidingest.services.runtime import UploadServices


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build (unless injected) and run the upload services for the app's lifetime."""
    services: Optional[UploadServices] = getattr(app.state, "services", None)
    if services is None:
        services = UploadServices.build(settings)
        app.state.services = services

    services.start()
    try:
        yield
    finally:
        await services.stop()


def create_app(services: Optional[UploadServices] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Pre-built upload services; built from settings at startup if omitted

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    setup_logging()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.include_router(routes_health.router, tags=["health"])
    app.include_router(upload_router)

    return app


# Export app instance for ASGI servers
app = create_app()
