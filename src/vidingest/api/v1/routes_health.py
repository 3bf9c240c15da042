"""Health check endpoint for the vidingest upload service."""

from fastapi import APIRouter, Request

from vidingest.core.config import settings

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Health check endpoint.

    Reports the configured storage backend and, once the upload services are
    running, how many sessions and jobs are in flight.

    Returns:
        dict: Health status response with status, service, and version fields
    """
    response = {
        "status": "ok",
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "storage_backend": settings.STORAGE_BACKEND,
    }

    services = getattr(request.app.state, "services", None)
    if services is not None:
        jobs = services.job_queue.stats()
        response.update(
            {
                "storage_backend": services.storage.get_backend_name(),
                "active_sessions": services.orchestrator.active_sessions(),
                "active_jobs": jobs["active"],
                "queued_jobs": jobs["queued"],
            }
        )
    return response
