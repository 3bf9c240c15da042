"""Tests for pushing an assembled file through the multipart orchestrator."""

import hashlib

import pytest

from vidingest.core.exceptions import InvalidArgument, PartUploadFailed, StorageClientError
from vidingest.services.ingest import ingest_file, iter_file_parts


def test_iter_file_parts(tmp_path):
    path = tmp_path / "video.mp4"
    path.write_bytes(b"0123456789")

    assert list(iter_file_parts(path, 4)) == [b"0123", b"4567", b"89"]


@pytest.mark.asyncio
async def test_ingest_file_streams_parts_and_deletes_file(orchestrator, storage_client, registry, tmp_path):
    path = tmp_path / "assembled.mp4"
    path.write_bytes(b"0123456789")

    result = await ingest_file(orchestrator, "legacy-1", path, "holiday.mp4", part_size=4)

    assert result.total_parts == 3
    assert result.size == 10
    assert not path.exists()
    digests = storage_client.finalize.await_args.args[1]
    assert digests == [hashlib.sha1(p).hexdigest() for p in (b"0123", b"4567", b"89")]
    _, _, content_type = storage_client.open_session.await_args.args
    assert content_type == "video/mp4"
    assert registry.get("legacy-1")["status"] == "complete"


@pytest.mark.asyncio
async def test_ingest_file_passes_video_id(orchestrator, tmp_path):
    hook_calls = []
    orchestrator.on_finalized = lambda result, context: hook_calls.append(context) or "job-1"
    path = tmp_path / "assembled.webm"
    path.write_bytes(b"data")

    result = await ingest_file(orchestrator, "legacy-1", path, "clip.webm", video_id="vid-7")

    assert hook_calls == [{"video_id": "vid-7"}]
    assert result.job_id == "job-1"


@pytest.mark.asyncio
async def test_ingest_empty_file(orchestrator, tmp_path):
    path = tmp_path / "empty.mp4"
    path.write_bytes(b"")

    with pytest.raises(InvalidArgument):
        await ingest_file(orchestrator, "legacy-1", path, "empty.mp4")

    assert not path.exists()


@pytest.mark.asyncio
async def test_ingest_failure_still_deletes_file(orchestrator, storage_client, registry, tmp_path):
    storage_client.upload_part.side_effect = StorageClientError("pod offline", status_code=503)
    path = tmp_path / "assembled.mp4"
    path.write_bytes(b"0123456789")

    with pytest.raises(PartUploadFailed):
        await ingest_file(orchestrator, "legacy-1", path, "clip.mp4", part_size=4)

    assert not path.exists()
    assert registry.get("legacy-1")["status"] == "error"
