"""Upload API routes."""

import asyncio
import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Body,
    Header,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
)

from vidingest.core.exceptions import (
    FinalizeRejected,
    InvalidArgument,
    MissingChunk,
    MissingParts,
    PartUploadFailed,
    StorageUnavailable,
    UploadError,
    UploadNotFound,
)
from vidingest.core.logging import upload_id_context
from vidingest.models.upload import (
    CancelUploadRequest,
    CancelUploadResponse,
    ChunkUploadResponse,
    CompleteChunksRequest,
    CompleteChunksResponse,
    CompleteUploadRequest,
    CompleteUploadResponse,
    InitUploadRequest,
    InitUploadResponse,
    PartUploadResponse,
)
from vidingest.services.ingest import ingest_file
from vidingest.services.runtime import UploadServices

router = APIRouter(prefix="/api/v1/upload", tags=["upload"])
logger = logging.getLogger(__name__)


def get_services(request: Request) -> UploadServices:
    return request.app.state.services


def to_http_exception(error: UploadError) -> HTTPException:
    """Map an upload pipeline error to its HTTP status."""
    if isinstance(error, MissingParts):
        return HTTPException(status_code=409, detail={"message": str(error), "missing_parts": error.missing})
    if isinstance(error, MissingChunk):
        return HTTPException(status_code=409, detail={"message": str(error), "chunk_index": error.chunk_index})
    if isinstance(error, InvalidArgument):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, UploadNotFound):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, (PartUploadFailed, FinalizeRejected)):
        return HTTPException(status_code=502, detail=str(error))
    if isinstance(error, StorageUnavailable):
        return HTTPException(status_code=503, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


@router.post("/init", response_model=InitUploadResponse, status_code=201)
async def init_upload(request: Request, body: InitUploadRequest = Body(...)) -> InitUploadResponse:
    """Open a multipart upload session."""
    services = get_services(request)
    upload_id = body.upload_id or f"upload_{uuid4().hex}"
    upload_id_context.set(upload_id)

    try:
        result = await services.orchestrator.initialize(upload_id, body.file_name, body.content_type)
    except UploadError as e:
        raise to_http_exception(e)

    if body.video_id:
        services.registry.update(upload_id, {"video_id": body.video_id})

    return InitUploadResponse(
        upload_id=upload_id,
        remote_file_id=result.remote_file_id,
        stored_file_name=result.stored_file_name,
        part_size_bytes=services.settings.part_size_bytes,
        max_parts=services.settings.MAX_PARTS,
    )


@router.post("/parts/{upload_id}/{part_number}", response_model=PartUploadResponse)
async def upload_part(upload_id: str, part_number: int, request: Request) -> PartUploadResponse:
    """Stream the raw request body to storage as one part."""
    services = get_services(request)
    upload_id_context.set(upload_id)

    try:
        result = await services.orchestrator.stream_part(upload_id, part_number, request.stream())
    except UploadError as e:
        raise to_http_exception(e)

    return PartUploadResponse(
        upload_id=upload_id,
        part_number=result.part_number,
        digest=result.digest,
        size=result.size,
    )


@router.post("/complete", response_model=CompleteUploadResponse)
async def complete_upload(request: Request, body: CompleteUploadRequest = Body(...)) -> CompleteUploadResponse:
    """Finalize a multipart upload and queue its thumbnail."""
    services = get_services(request)
    upload_id_context.set(body.upload_id)

    video_id = body.video_id or (services.registry.get(body.upload_id) or {}).get("video_id")
    context = {"video_id": video_id} if video_id else {}
    try:
        result = await services.orchestrator.finalize(
            body.upload_id, body.total_parts, body.original_name, context
        )
    except UploadError as e:
        raise to_http_exception(e)

    return CompleteUploadResponse(
        upload_id=result.upload_id,
        object_url=result.object_url,
        stored_file_name=result.stored_file_name,
        size=result.size,
        total_parts=result.total_parts,
        job_id=result.job_id,
    )


@router.post("/cancel", response_model=CancelUploadResponse)
async def cancel_upload(request: Request, body: CancelUploadRequest = Body(...)) -> CancelUploadResponse:
    """Abort a multipart upload (best effort)."""
    services = get_services(request)
    upload_id_context.set(body.upload_id)
    cancelled = await services.orchestrator.cancel(body.upload_id)
    return CancelUploadResponse(upload_id=body.upload_id, cancelled=cancelled)


@router.post("/chunk", response_model=ChunkUploadResponse)
async def upload_chunk(
    request: Request,
    x_upload_id: str = Header(...),
    x_chunk_index: int = Header(...),
    x_total_chunks: int = Header(...),
) -> ChunkUploadResponse:
    """Persist one legacy-path chunk from the raw request body."""
    services = get_services(request)
    upload_id_context.set(x_upload_id)

    try:
        if x_chunk_index == 0 and x_upload_id not in services.registry:
            services.registry.init(x_upload_id, {"upload_method": "chunked", "total_chunks": x_total_chunks})
        await services.assembler.save_chunk(x_upload_id, x_chunk_index, x_total_chunks, request.stream())
    except UploadError as e:
        raise to_http_exception(e)

    return ChunkUploadResponse(
        upload_id=x_upload_id,
        chunk_index=x_chunk_index,
        total_chunks=x_total_chunks,
    )


async def _ingest_in_background(
    services: UploadServices, upload_id: str, path: Any, file_name: str, video_id: Optional[str]
) -> None:
    upload_id_context.set(upload_id)
    try:
        await ingest_file(
            services.orchestrator,
            upload_id,
            path,
            file_name,
            video_id=video_id,
            part_size=services.settings.part_size_bytes,
        )
    except UploadError as e:
        # Already recorded in the status registry.
        logger.error("Background ingest failed", extra={"upload_id": upload_id, "error": str(e)})


@router.post("/complete-chunks", response_model=CompleteChunksResponse, status_code=202)
async def complete_chunks(
    request: Request,
    background_tasks: BackgroundTasks,
    body: CompleteChunksRequest = Body(...),
) -> CompleteChunksResponse:
    """Assemble the received chunks and move the file to storage in the background."""
    services = get_services(request)
    upload_id_context.set(body.upload_id)

    try:
        path = await services.assembler.assemble_chunks(body.upload_id, body.total_chunks, body.file_name)
    except UploadError as e:
        raise to_http_exception(e)

    background_tasks.add_task(
        _ingest_in_background, services, body.upload_id, path, body.file_name, body.video_id
    )
    return CompleteChunksResponse(
        upload_id=body.upload_id,
        status="processing",
        message="Chunks assembled, upload to storage started",
    )


@router.get("/status")
async def list_statuses(
    request: Request,
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
) -> Dict[str, Any]:
    services = get_services(request)
    records = services.registry.list_all(status=status, limit=limit)
    return {"uploads": records, "count": len(records)}


@router.get("/status/{upload_id}")
async def get_status(upload_id: str, request: Request) -> Dict[str, Any]:
    """Current status record of an upload."""
    record = get_services(request).registry.get(upload_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No status for upload {upload_id}")
    return {"upload_id": upload_id, **record}


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, request: Request) -> Dict[str, Any]:
    job = get_services(request).job_queue.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return job.to_dict()


@router.get("/stats")
async def get_stats(request: Request) -> Dict[str, Any]:
    services = get_services(request)
    return {
        "uploads": services.registry.stats(),
        "jobs": services.job_queue.stats(),
        "active_sessions": services.orchestrator.active_sessions(),
    }


@router.websocket("/ws/{upload_id}")
async def status_stream(websocket: WebSocket, upload_id: str) -> None:
    """Send the current record, then every published update, until the client leaves."""
    services: UploadServices = websocket.app.state.services
    await websocket.accept()

    async with services.publisher.subscribe(upload_id) as queue:
        current = services.registry.get(upload_id)
        if current is not None:
            await websocket.send_json({"upload_id": upload_id, **current})

        async def forward() -> None:
            while True:
                record = await queue.get()
                await websocket.send_json({"upload_id": upload_id, **record})

        forwarder = asyncio.create_task(forward())
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.debug("Status subscriber disconnected", extra={"upload_id": upload_id})
        finally:
            forwarder.cancel()
            await asyncio.gather(forwarder, return_exceptions=True)
