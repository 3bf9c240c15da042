"""Pytest configuration and shared fixtures."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from vidingest.core.rate_limit import MinIntervalRateLimiter
from vidingest.core.retry import RetryPolicy
from vidingest.services.multipart.orchestrator import MultipartUploadOrchestrator
from vidingest.status.registry import StatusRegistry
from vidingest.storage.base import FinalizedObject, LargeObjectStorageClient, PartUploadTarget


@pytest.fixture
def registry():
    """Status registry without a delayed completion re-publish."""
    return StatusRegistry(completion_republish_delay=0)


@pytest.fixture
def fast_retry():
    """Three attempts with no backoff."""
    return RetryPolicy(max_attempts=3, backoff_seconds=0)


@pytest.fixture
def rate_limiter():
    return MinIntervalRateLimiter(0)


@pytest.fixture
def storage_client():
    """Mock large-object storage client that accepts everything."""
    client = MagicMock(spec=LargeObjectStorageClient)
    client.open_session = AsyncMock(return_value="remote-file-1")
    client.get_part_upload_target = AsyncMock(
        return_value=PartUploadTarget(upload_url="https://pod.example/upload", authorization_token="part-token")
    )
    client.upload_part = AsyncMock(return_value={"ok": True})
    client.finalize = AsyncMock(
        side_effect=lambda session_id, digests: FinalizedObject(
            object_name="stored.mp4", size=0, file_id=session_id
        )
    )
    client.cancel_session = AsyncMock(return_value=None)
    client.public_url = MagicMock(side_effect=lambda bucket, name: f"https://{bucket}.example/{name}")
    client.get_backend_name.return_value = "mock"
    return client


@pytest.fixture
def orchestrator(storage_client, registry, rate_limiter, fast_retry):
    return MultipartUploadOrchestrator(
        storage=storage_client,
        registry=registry,
        rate_limiter=rate_limiter,
        retry_policy=fast_retry,
        allowed_content_types=["video/mp4", "video/webm"],
        max_parts=100,
        default_bucket_id="bucket-1",
        default_bucket_name="videos",
    )
