"""Tests for the upload API routes."""

import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from vidingest.api.v1.routes_upload import to_http_exception
from vidingest.core.config import Settings
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
from vidingest.main import create_app
from vidingest.services.runtime import UploadServices

API = "/api/v1/upload"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        STORAGE_BACKEND="local",
        THUMBNAIL_STORAGE_BACKEND="local",
        LOCAL_STORAGE_PATH=str(tmp_path / "objects"),
        UPLOAD_ROOT=str(tmp_path / "uploads"),
        RETRY_BACKOFF_SECONDS=0,
        CONTROL_PLANE_MIN_INTERVAL_MS=0,
        STATUS_COMPLETION_REPUBLISH_MS=0,
        JOB_RETRY_DELAY_SECONDS=0,
        JOB_POLL_INTERVAL_SECONDS=0.02,
    )


@pytest.fixture
def extractor():
    async def fake_extract(source, output_path, seek_seconds):
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(output_path).write_bytes(b"jpeg")
        return Path(output_path)

    mock = MagicMock()
    mock.extract_frame = AsyncMock(side_effect=fake_extract)
    return mock


@pytest.fixture
def services(settings, extractor):
    return UploadServices.build(settings, extractor=extractor)


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client


def wait_for_status(client, upload_id, status, timeout=5.0):
    deadline = time.monotonic() + timeout
    record = None
    while time.monotonic() < deadline:
        response = client.get(f"{API}/status/{upload_id}")
        if response.status_code == 200:
            record = response.json()
            if record["status"] == status:
                return record
        time.sleep(0.02)
    pytest.fail(f"{upload_id} never reached {status!r}; last record: {record}")


def init_upload(client, upload_id="u1", file_name="clip.mp4", **extra):
    response = client.post(
        f"{API}/init",
        json={"file_name": file_name, "content_type": "video/mp4", "upload_id": upload_id, **extra},
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestMultipartRoutes:
    """Tests for the multipart upload endpoints."""

    def test_full_multipart_upload(self, client, settings, extractor):
        init = init_upload(client)
        assert init["upload_id"] == "u1"
        assert init["stored_file_name"].startswith("clip_")
        assert init["max_parts"] == settings.MAX_PARTS

        part1 = client.post(f"{API}/parts/u1/1", content=b"hello ")
        part2 = client.post(f"{API}/parts/u1/2", content=b"world")
        assert part1.status_code == 200
        assert part1.json()["size"] == 6
        assert part2.json()["part_number"] == 2

        response = client.post(f"{API}/complete", json={"upload_id": "u1", "total_parts": 2})

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["size"] == 11
        assert body["total_parts"] == 2
        assert body["job_id"]
        stored = Path(settings.LOCAL_STORAGE_PATH) / body["stored_file_name"]
        assert stored.read_bytes() == b"hello world"

        record = wait_for_status(client, "u1", "complete")
        assert record["progress"] == 100
        assert record["object_url"] == body["object_url"]
        assert record["thumbnail_url"].startswith("file://")
        assert record["background_task"]["status"] == "completed"
        extractor.extract_frame.assert_awaited_once()

        job = client.get(f"{API}/jobs/{body['job_id']}")
        assert job.status_code == 200
        assert job.json()["status"] == "completed"
        assert job.json()["upload_id"] == "u1"

    def test_init_generates_upload_id(self, client):
        response = client.post(f"{API}/init", json={"file_name": "clip.mp4"})

        assert response.status_code == 201
        assert response.json()["upload_id"].startswith("upload_")

    def test_init_rejects_content_type(self, client):
        response = client.post(f"{API}/init", json={"file_name": "doc.pdf", "content_type": "application/pdf"})

        assert response.status_code == 400
        assert "content type" in response.json()["detail"]

    def test_part_for_unknown_upload(self, client):
        response = client.post(f"{API}/parts/nope/1", content=b"data")

        assert response.status_code == 404

    def test_part_number_out_of_range(self, client):
        init_upload(client)

        response = client.post(f"{API}/parts/u1/0", content=b"data")

        assert response.status_code == 400

    def test_complete_with_missing_parts(self, client):
        init_upload(client)
        client.post(f"{API}/parts/u1/1", content=b"first")

        response = client.post(f"{API}/complete", json={"upload_id": "u1", "total_parts": 2})

        assert response.status_code == 409
        assert response.json()["detail"]["missing_parts"] == [2]

        client.post(f"{API}/parts/u1/2", content=b"second")
        retry = client.post(f"{API}/complete", json={"upload_id": "u1", "total_parts": 2})
        assert retry.status_code == 200

    def test_complete_unknown_upload(self, client):
        response = client.post(f"{API}/complete", json={"upload_id": "nope", "total_parts": 1})

        assert response.status_code == 404

    def test_cancel(self, client):
        init_upload(client, upload_id="u2")

        response = client.post(f"{API}/cancel", json={"upload_id": "u2"})

        assert response.json() == {"upload_id": "u2", "cancelled": True}
        assert client.get(f"{API}/status/u2").json()["status"] == "cancelled"
        assert client.post(f"{API}/cancel", json={"upload_id": "u2"}).json()["cancelled"] is False


class TestChunkRoutes:
    """Tests for the legacy chunked upload endpoints."""

    def test_chunked_upload_is_ingested(self, client, settings):
        for index, data in enumerate([b"abc", b"def", b"gh"]):
            response = client.post(
                f"{API}/chunk",
                content=data,
                headers={"x-upload-id": "legacy-1", "x-chunk-index": str(index), "x-total-chunks": "3"},
            )
            assert response.status_code == 200
            assert response.json()["received"] is True

        response = client.post(
            f"{API}/complete-chunks",
            json={"upload_id": "legacy-1", "total_chunks": 3, "file_name": "old clip.mp4"},
        )

        assert response.status_code == 202
        assert response.json()["status"] == "processing"
        record = wait_for_status(client, "legacy-1", "complete")
        stored = Path(settings.LOCAL_STORAGE_PATH) / record["stored_file_name"]
        assert stored.read_bytes() == b"abcdefgh"
        assert list((Path(settings.UPLOAD_ROOT) / "chunks").iterdir()) == []
        assert list((Path(settings.UPLOAD_ROOT) / "temp").iterdir()) == []

    def test_complete_chunks_with_missing_chunk(self, client):
        client.post(
            f"{API}/chunk",
            content=b"abc",
            headers={"x-upload-id": "legacy-2", "x-chunk-index": "0", "x-total-chunks": "2"},
        )

        response = client.post(
            f"{API}/complete-chunks",
            json={"upload_id": "legacy-2", "total_chunks": 2, "file_name": "clip.mp4"},
        )

        assert response.status_code == 409
        assert response.json()["detail"]["chunk_index"] == 1
        assert client.get(f"{API}/status/legacy-2").json()["status"] == "error"

    def test_chunk_index_out_of_range(self, client):
        response = client.post(
            f"{API}/chunk",
            content=b"abc",
            headers={"x-upload-id": "legacy-3", "x-chunk-index": "5", "x-total-chunks": "2"},
        )

        assert response.status_code == 400


class TestStatusRoutes:
    """Tests for status, job and stats endpoints."""

    def test_unknown_status_and_job(self, client):
        assert client.get(f"{API}/status/missing").status_code == 404
        assert client.get(f"{API}/jobs/missing").status_code == 404

    def test_list_and_stats(self, client):
        init_upload(client, upload_id="a")
        init_upload(client, upload_id="b")

        listing = client.get(f"{API}/status", params={"status": "receiving"}).json()
        stats = client.get(f"{API}/stats").json()

        assert listing["count"] == 2
        assert {r["upload_id"] for r in listing["uploads"]} == {"a", "b"}
        assert stats["uploads"]["total"] == 2
        assert stats["active_sessions"] == 2
        assert stats["jobs"]["queued"] == 0

    def test_websocket_streams_updates(self, client):
        init_upload(client)

        with client.websocket_connect(f"{API}/ws/u1") as websocket:
            current = websocket.receive_json()
            assert current["upload_id"] == "u1"
            assert current["status"] == "receiving"

            client.post(f"{API}/parts/u1/1", content=b"data")

            update = websocket.receive_json()
            assert update["status"] == "uploading"
            assert update["progress"] == 12


@pytest.mark.parametrize(
    "error,status_code",
    [
        (MissingParts("m", missing=[3]), 409),
        (MissingChunk("m", chunk_index=0), 409),
        (InvalidArgument("m"), 400),
        (UploadNotFound("m"), 404),
        (PartUploadFailed("m"), 502),
        (FinalizeRejected("m"), 502),
        (StorageUnavailable("m"), 503),
        (UploadError("m"), 500),
    ],
)
def test_to_http_exception(error, status_code):
    assert to_http_exception(error).status_code == status_code
