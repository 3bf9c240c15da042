"""Tests for local and GCS storage backends and backend selection."""

import hashlib
from unittest.mock import MagicMock, patch

import pytest

from vidingest.core.config import Settings
from vidingest.core.exceptions import StorageClientError
from vidingest.storage.b2 import B2Client, B2ObjectStore
from vidingest.storage.factory import get_large_object_client, get_thumbnail_store
from vidingest.storage.local import LocalLargeObjectClient, LocalObjectStore


def sha1(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


class TestLocalLargeObjectClient:
    """Tests for the directory-backed large-object client."""

    @pytest.mark.asyncio
    async def test_full_session(self, tmp_path):
        client = LocalLargeObjectClient(tmp_path)
        session_id = await client.open_session("videos", "clip_1_abc.mp4", "video/mp4")
        target = await client.get_part_upload_target(session_id)

        await client.upload_part(target, 2, b"world", sha1(b"world"))
        await client.upload_part(target, 1, b"hello ", sha1(b"hello "))
        finalized = await client.finalize(session_id, [sha1(b"hello "), sha1(b"world")])

        assert finalized.object_name == "clip_1_abc.mp4"
        assert finalized.size == 11
        assert (tmp_path / "clip_1_abc.mp4").read_bytes() == b"hello world"
        assert not (tmp_path / ".sessions" / session_id).exists()
        assert client.public_url("videos", "clip_1_abc.mp4") == (tmp_path / "clip_1_abc.mp4").resolve().as_uri()

    @pytest.mark.asyncio
    async def test_upload_part_verifies_digest(self, tmp_path):
        client = LocalLargeObjectClient(tmp_path)
        session_id = await client.open_session("videos", "a.mp4", "video/mp4")
        target = await client.get_part_upload_target(session_id)

        with pytest.raises(StorageClientError, match="checksum"):
            await client.upload_part(target, 1, b"data", sha1(b"other"))

    @pytest.mark.asyncio
    async def test_finalize_rejects_digest_order(self, tmp_path):
        client = LocalLargeObjectClient(tmp_path)
        session_id = await client.open_session("videos", "a.mp4", "video/mp4")
        target = await client.get_part_upload_target(session_id)
        await client.upload_part(target, 1, b"a", sha1(b"a"))
        await client.upload_part(target, 2, b"b", sha1(b"b"))

        with pytest.raises(StorageClientError, match="Part 1"):
            await client.finalize(session_id, [sha1(b"b"), sha1(b"a")])

    @pytest.mark.asyncio
    async def test_finalize_orders_parts_numerically(self, tmp_path):
        client = LocalLargeObjectClient(tmp_path)
        session_id = await client.open_session("videos", "long.mp4", "video/mp4")
        target = await client.get_part_upload_target(session_id)
        await client.upload_part(target, 100000, b"tail", sha1(b"tail"))
        await client.upload_part(target, 99999, b"head-", sha1(b"head-"))

        finalized = await client.finalize(session_id, [sha1(b"head-"), sha1(b"tail")])

        assert finalized.size == 9
        assert (tmp_path / "long.mp4").read_bytes() == b"head-tail"

    @pytest.mark.asyncio
    async def test_finalize_rejects_part_count(self, tmp_path):
        client = LocalLargeObjectClient(tmp_path)
        session_id = await client.open_session("videos", "a.mp4", "video/mp4")

        with pytest.raises(StorageClientError, match="Expected 1 parts"):
            await client.finalize(session_id, [sha1(b"a")])

    @pytest.mark.asyncio
    async def test_cancel_session(self, tmp_path):
        client = LocalLargeObjectClient(tmp_path)
        session_id = await client.open_session("videos", "a.mp4", "video/mp4")

        await client.cancel_session(session_id)

        assert not (tmp_path / ".sessions" / session_id).exists()
        with pytest.raises(StorageClientError):
            await client.cancel_session(session_id)


class TestObjectStores:
    """Tests for the thumbnail object stores."""

    @pytest.mark.asyncio
    async def test_local_object_store(self, tmp_path):
        source = tmp_path / "frame.jpg"
        source.write_bytes(b"jpeg")
        store = LocalObjectStore(tmp_path / "thumbs")

        url = await store.put_file(source, "clip_1.jpg", "image/jpeg")

        assert (tmp_path / "thumbs" / "clip_1.jpg").read_bytes() == b"jpeg"
        assert url == (tmp_path / "thumbs" / "clip_1.jpg").resolve().as_uri()
        assert store.get_backend_name() == "local"

    @pytest.mark.asyncio
    async def test_gcs_object_store(self, tmp_path):
        from vidingest.storage.gcs import GCSObjectStore

        source = tmp_path / "frame.jpg"
        source.write_bytes(b"jpeg")

        with patch("vidingest.storage.gcs.storage.Client") as mock_client_class:
            mock_bucket = MagicMock()
            mock_blob = MagicMock()
            mock_client_class.return_value.bucket.return_value = mock_bucket
            mock_bucket.blob.return_value = mock_blob

            store = GCSObjectStore("thumb-bucket", project_id="proj")
            url = await store.put_file(source, "clip_1.jpg", "image/jpeg")

        assert url == "https://storage.googleapis.com/thumb-bucket/thumbnails/clip_1.jpg"
        mock_client_class.assert_called_once_with(project="proj")
        mock_bucket.blob.assert_called_once_with("thumbnails/clip_1.jpg")
        mock_blob.upload_from_filename.assert_called_once_with(str(source), content_type="image/jpeg")

    @pytest.mark.asyncio
    async def test_gcs_requires_bucket(self, tmp_path):
        from vidingest.storage.gcs import GCSObjectStore

        with pytest.raises(ValueError, match="GCS_BUCKET_NAME"):
            await GCSObjectStore("").put_file(tmp_path / "x.jpg", "x.jpg", "image/jpeg")


class TestFactory:
    """Tests for backend selection from settings."""

    def test_local_backends(self, tmp_path):
        settings = Settings(
            STORAGE_BACKEND="local",
            THUMBNAIL_STORAGE_BACKEND="local",
            LOCAL_STORAGE_PATH=str(tmp_path),
        )

        assert isinstance(get_large_object_client(settings), LocalLargeObjectClient)
        store = get_thumbnail_store(settings)
        assert isinstance(store, LocalObjectStore)
        assert store.base_path == tmp_path / "thumbnails"

    def test_b2_backends_share_client(self):
        settings = Settings(
            STORAGE_BACKEND="b2",
            THUMBNAIL_STORAGE_BACKEND="b2",
            B2_ACCOUNT_ID="acct",
            B2_APPLICATION_KEY="key",
            B2_THUMBNAIL_BUCKET_ID="tb-id",
            B2_THUMBNAIL_BUCKET_NAME="thumbs",
        )
        client = B2Client("acct", "key")

        assert get_large_object_client(settings, b2_client=client) is client
        store = get_thumbnail_store(settings, b2_client=client)
        assert isinstance(store, B2ObjectStore)
        assert store.client is client
        assert store.bucket_id == "tb-id"

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown STORAGE_BACKEND"):
            get_large_object_client(Settings(STORAGE_BACKEND="ftp"))
