"""Tests for wiring the upload services from settings."""

import asyncio
from pathlib import Path

import pytest

from vidingest.core.config import Settings
from vidingest.services.jobs import THUMBNAIL_JOB
from vidingest.services.multipart.orchestrator import FinalizeResult
from vidingest.services.runtime import UploadServices
from vidingest.storage.b2 import B2Client, B2ObjectStore
from vidingest.storage.local import LocalLargeObjectClient, LocalObjectStore


@pytest.fixture
def settings(tmp_path):
    return Settings(
        STORAGE_BACKEND="local",
        THUMBNAIL_STORAGE_BACKEND="local",
        LOCAL_STORAGE_PATH=str(tmp_path / "objects"),
        UPLOAD_ROOT=str(tmp_path / "uploads"),
        RETRY_MAX_ATTEMPTS=4,
        JOB_MAX_CONCURRENT=3,
        STATUS_COMPLETION_REPUBLISH_MS=0,
    )


def test_build_wires_components(settings):
    services = UploadServices.build(settings)

    assert isinstance(services.storage, LocalLargeObjectClient)
    assert isinstance(services.thumbnail_store, LocalObjectStore)
    assert services.b2_client is None
    assert services.registry.publisher is services.publisher
    assert services.orchestrator.registry is services.registry
    assert services.assembler.registry is services.registry
    assert services.orchestrator.retry_policy.max_attempts == 4
    assert services.job_queue.max_concurrent == 3
    assert THUMBNAIL_JOB in services.job_queue.handlers
    assert services.assembler.chunks_dir == Path(settings.UPLOAD_ROOT) / "chunks"


def test_finalized_uploads_queue_a_thumbnail(settings):
    services = UploadServices.build(settings)
    result = FinalizeResult(
        upload_id="u1",
        object_url="https://videos.example/clip.mp4",
        stored_file_name="clip.mp4",
        size=10,
        total_parts=1,
        original_name="clip.mp4",
        remote_file_id="session-1",
    )

    job_id = services.orchestrator.on_finalized(result, {"video_id": "vid-1"})

    job = services.job_queue.get_job(job_id)
    assert job.job_type == THUMBNAIL_JOB
    assert job.payload == {
        "upload_id": "u1",
        "object_url": "https://videos.example/clip.mp4",
        "original_name": "clip.mp4",
        "video_id": "vid-1",
    }


def test_b2_backends_share_one_client(tmp_path):
    settings = Settings(
        STORAGE_BACKEND="b2",
        THUMBNAIL_STORAGE_BACKEND="b2",
        B2_ACCOUNT_ID="acct",
        B2_APPLICATION_KEY="key",
        UPLOAD_ROOT=str(tmp_path / "uploads"),
    )

    services = UploadServices.build(settings)

    assert isinstance(services.b2_client, B2Client)
    assert services.storage is services.b2_client
    assert isinstance(services.thumbnail_store, B2ObjectStore)
    assert services.thumbnail_store.client is services.b2_client


@pytest.mark.asyncio
async def test_start_and_stop(settings):
    services = UploadServices.build(settings)

    services.start()
    await asyncio.sleep(0)

    for sub_dir in ("chunks", "temp", "thumbs"):
        assert (Path(settings.UPLOAD_ROOT) / sub_dir).is_dir()
    assert len(services._sweepers) == 2

    await services.stop()

    assert services._sweepers == []
