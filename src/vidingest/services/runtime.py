"""Composition root: builds and wires the upload services from settings."""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from vidingest.core.config import Settings
from vidingest.core.rate_limit import MinIntervalRateLimiter
from vidingest.core.retry import RetryPolicy
from vidingest.services.chunks.assembler import ChunkAssembler
from vidingest.services.jobs.queue import THUMBNAIL_JOB, BackgroundJobQueue
from vidingest.services.jobs.thumbnail import ThumbnailJobHandler
from vidingest.services.media.ffmpeg import FrameExtractor
from vidingest.services.metadata import MetadataStoreClient
from vidingest.services.multipart.orchestrator import FinalizeResult, MultipartUploadOrchestrator
from vidingest.status.pubsub import InMemoryPublisher
from vidingest.status.registry import StatusRegistry
from vidingest.storage.b2 import B2Client
from vidingest.storage.base import LargeObjectStorageClient, ObjectStore
from vidingest.storage.factory import build_b2_client, get_large_object_client, get_thumbnail_store

logger = logging.getLogger(__name__)


@dataclass
class UploadServices:
    """Every long-lived upload component, wired together."""

    settings: Settings
    registry: StatusRegistry
    publisher: InMemoryPublisher
    rate_limiter: MinIntervalRateLimiter
    orchestrator: MultipartUploadOrchestrator
    assembler: ChunkAssembler
    job_queue: BackgroundJobQueue
    storage: LargeObjectStorageClient
    thumbnail_store: ObjectStore
    metadata_client: MetadataStoreClient
    b2_client: Optional[B2Client] = None
    _sweepers: list[asyncio.Task] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        settings: Settings,
        storage: Optional[LargeObjectStorageClient] = None,
        thumbnail_store: Optional[ObjectStore] = None,
        extractor: Optional[FrameExtractor] = None,
        metadata_client: Optional[MetadataStoreClient] = None,
    ) -> "UploadServices":
        """Build the service graph; explicit collaborators override settings."""
        b2_client = None
        uses_b2 = "b2" in (settings.STORAGE_BACKEND.lower(), settings.THUMBNAIL_STORAGE_BACKEND.lower())
        if uses_b2 and (storage is None or thumbnail_store is None):
            b2_client = build_b2_client(settings)

        storage = storage or get_large_object_client(settings, b2_client)
        thumbnail_store = thumbnail_store or get_thumbnail_store(settings, b2_client)
        metadata_client = metadata_client or MetadataStoreClient(
            settings.METADATA_STORE_URL,
            api_key=settings.METADATA_STORE_KEY,
            table=settings.METADATA_STORE_TABLE,
            timeout=settings.METADATA_UPDATE_TIMEOUT,
        )

        publisher = InMemoryPublisher()
        registry = StatusRegistry(
            publisher=publisher,
            retention_seconds=settings.status_retention_seconds,
            completion_republish_delay=settings.completion_republish_seconds,
        )
        rate_limiter = MinIntervalRateLimiter(settings.control_plane_min_interval_seconds)

        upload_root = Path(settings.UPLOAD_ROOT)
        thumbnail_handler = ThumbnailJobHandler(
            extractor=extractor or FrameExtractor(settings.FFMPEG_BIN, settings.FFMPEG_TIMEOUT_SECONDS),
            store=thumbnail_store,
            work_dir=upload_root / "thumbs",
            seek_seconds=settings.THUMBNAIL_SEEK_SECONDS,
            metadata_client=metadata_client,
            registry=registry,
        )
        job_queue = BackgroundJobQueue(
            handlers={THUMBNAIL_JOB: thumbnail_handler},
            registry=registry,
            max_concurrent=settings.JOB_MAX_CONCURRENT,
            retry_policy=RetryPolicy(
                max_attempts=settings.JOB_MAX_ATTEMPTS,
                backoff_seconds=settings.JOB_RETRY_DELAY_SECONDS,
                strategy="fixed",
            ),
            poll_interval=settings.JOB_POLL_INTERVAL_SECONDS,
            retention_seconds=settings.job_retention_seconds,
        )

        def queue_thumbnail(result: FinalizeResult, context: Dict[str, Any]) -> str:
            return job_queue.enqueue(
                {
                    "upload_id": result.upload_id,
                    "object_url": result.object_url,
                    "original_name": result.original_name,
                    "video_id": context.get("video_id"),
                },
                THUMBNAIL_JOB,
            )

        orchestrator = MultipartUploadOrchestrator(
            storage=storage,
            registry=registry,
            rate_limiter=rate_limiter,
            retry_policy=RetryPolicy(
                max_attempts=settings.RETRY_MAX_ATTEMPTS,
                backoff_seconds=settings.RETRY_BACKOFF_SECONDS,
                strategy="linear",
            ),
            allowed_content_types=settings.allowed_video_mime_types,
            max_parts=settings.MAX_PARTS,
            default_bucket_id=settings.B2_VIDEO_BUCKET_ID,
            default_bucket_name=settings.B2_VIDEO_BUCKET_NAME,
            progress_base=settings.MULTIPART_PROGRESS_BASE,
            progress_increment=settings.MULTIPART_PROGRESS_INCREMENT,
            session_max_age_seconds=settings.session_max_age_seconds,
            on_finalized=queue_thumbnail,
            collect_garbage=settings.COLLECT_GARBAGE_AFTER_PART,
        )
        assembler = ChunkAssembler(
            registry=registry,
            chunks_dir=upload_root / "chunks",
            output_dir=upload_root / "temp",
        )

        return cls(
            settings=settings,
            registry=registry,
            publisher=publisher,
            rate_limiter=rate_limiter,
            orchestrator=orchestrator,
            assembler=assembler,
            job_queue=job_queue,
            storage=storage,
            thumbnail_store=thumbnail_store,
            metadata_client=metadata_client,
            b2_client=b2_client,
        )

    def start(self) -> None:
        """Start the job poller and the periodic sweeps on the running loop."""
        for sub_dir in ("chunks", "temp", "thumbs"):
            (Path(self.settings.UPLOAD_ROOT) / sub_dir).mkdir(parents=True, exist_ok=True)

        self.job_queue.start()
        self._sweepers = [
            asyncio.create_task(
                self._every(self.settings.STATUS_SWEEP_INTERVAL_SECONDS, self._sweep_statuses)
            ),
            asyncio.create_task(
                self._every(self.settings.SESSION_SWEEP_INTERVAL_SECONDS, self._sweep_sessions)
            ),
        ]
        logger.info("Upload services started", extra={"storage_backend": self.storage.get_backend_name()})

    async def stop(self) -> None:
        for task in self._sweepers:
            task.cancel()
        await asyncio.gather(*self._sweepers, return_exceptions=True)
        self._sweepers = []
        await self.job_queue.stop()
        if self.b2_client is not None:
            await self.b2_client.aclose()
        logger.info("Upload services stopped")

    async def _sweep_statuses(self) -> None:
        self.registry.sweep()

    async def _sweep_sessions(self) -> None:
        self.orchestrator.evict_stale_sessions()

    @staticmethod
    async def _every(interval: float, fn: Callable[[], Awaitable[None]]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await fn()
            except Exception as e:
                logger.error("Periodic sweep failed", extra={"sweep": fn.__name__, "error": str(e)}, exc_info=True)
