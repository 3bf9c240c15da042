"""Thumbnail generation job."""

import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

from vidingest.core.exceptions import InvalidArgument
from vidingest.services.jobs.queue import Job
from vidingest.services.media.ffmpeg import FrameExtractor
from vidingest.services.metadata import MetadataStoreClient
from vidingest.status.registry import StatusRegistry
from vidingest.storage.base import ObjectStore
from vidingest.storage.naming import sanitize_filename, split_name

logger = logging.getLogger(__name__)


class ThumbnailJobHandler:
    """Extracts a frame from a stored video, stores it and links it to the video record."""

    def __init__(
        self,
        extractor: FrameExtractor,
        store: ObjectStore,
        work_dir: str | Path = "uploads/thumbs",
        seek_seconds: float = 5.0,
        metadata_client: Optional[MetadataStoreClient] = None,
        registry: Optional[StatusRegistry] = None,
    ):
        self.extractor = extractor
        self.store = store
        self.work_dir = Path(work_dir)
        self.seek_seconds = seek_seconds
        self.metadata_client = metadata_client
        self.registry = registry

    @staticmethod
    def thumbnail_name(original_name: str, timestamp_ms: Optional[int] = None) -> str:
        try:
            stem, _ = split_name(sanitize_filename(original_name or "video"))
        except InvalidArgument:
            stem = "video"
        timestamp_ms = int(time.time() * 1000) if timestamp_ms is None else timestamp_ms
        return f"{stem or 'video'}_{timestamp_ms}.jpg"

    def _stage(self, job: Job, status: str, stage: str) -> None:
        if self.registry is not None and job.upload_id:
            self.registry.update(
                job.upload_id,
                {"background_task": {"job_id": job.job_id, "status": status, "stage": stage}},
            )

    async def __call__(self, job: Job) -> Dict[str, Any]:
        object_url = job.payload["object_url"]
        video_id = job.payload.get("video_id")
        thumbnail_name = self.thumbnail_name(job.payload.get("original_name", ""))
        local_path = self.work_dir / thumbnail_name

        try:
            await self.extractor.extract_frame(object_url, local_path, self.seek_seconds)
            self._stage(job, "uploading_thumbnail", "uploading thumbnail to storage")
            thumbnail_url = await self.store.put_file(local_path, thumbnail_name, "image/jpeg")
        finally:
            local_path.unlink(missing_ok=True)

        logger.info(
            "Thumbnail stored",
            extra={"upload_id": job.upload_id, "thumbnail_url": thumbnail_url, "backend": self.store.get_backend_name()},
        )

        if video_id and self.metadata_client is not None:
            self._stage(job, "updating_database", "updating video metadata")
            updated = await self.metadata_client.update_record(
                video_id, {"thumbnail_url": thumbnail_url, "url": object_url}
            )
            if not updated:
                logger.warning(
                    "Video record not updated with thumbnail",
                    extra={"upload_id": job.upload_id, "video_id": video_id},
                )

        return {"thumbnail_url": thumbnail_url, "object_url": object_url}
