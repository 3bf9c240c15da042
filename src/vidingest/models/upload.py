"""Upload API data models."""

from typing import Optional

from pydantic import BaseModel, Field


class InitUploadRequest(BaseModel):
    """Request model for opening a multipart upload."""

    file_name: str
    content_type: str = "video/mp4"
    upload_id: Optional[str] = Field(default=None, max_length=100)
    video_id: Optional[str] = None


class InitUploadResponse(BaseModel):
    """Response model for an opened multipart upload."""

    upload_id: str
    remote_file_id: str
    stored_file_name: str
    part_size_bytes: int
    max_parts: int


class PartUploadResponse(BaseModel):
    """Response model for one uploaded part."""

    upload_id: str
    part_number: int
    digest: str
    size: int


class CompleteUploadRequest(BaseModel):
    """Request model for finalizing a multipart upload."""

    upload_id: str
    total_parts: int = Field(ge=1)
    original_name: Optional[str] = None
    video_id: Optional[str] = None


class CompleteUploadResponse(BaseModel):
    """Response model for a finalized multipart upload."""

    upload_id: str
    object_url: str
    stored_file_name: str
    size: int
    total_parts: int
    job_id: Optional[str] = None


class CancelUploadRequest(BaseModel):
    """Request model for cancelling a multipart upload."""

    upload_id: str


class CancelUploadResponse(BaseModel):
    upload_id: str
    cancelled: bool


class ChunkUploadResponse(BaseModel):
    """Response model for one legacy-path chunk."""

    upload_id: str
    chunk_index: int
    total_chunks: int
    received: bool = True


class CompleteChunksRequest(BaseModel):
    """Request model for assembling legacy-path chunks."""

    upload_id: str
    total_chunks: int = Field(ge=1)
    file_name: str
    video_id: Optional[str] = None


class CompleteChunksResponse(BaseModel):
    upload_id: str
    status: str
    message: str
