"""Storage backend selection from settings."""

from pathlib import Path

from vidingest.core.config import Settings
from vidingest.storage.b2 import B2Client, B2ObjectStore
from vidingest.storage.base import LargeObjectStorageClient, ObjectStore
from vidingest.storage.local import LocalLargeObjectClient, LocalObjectStore


def build_b2_client(settings: Settings) -> B2Client:
    return B2Client(
        account_id=settings.B2_ACCOUNT_ID,
        application_key=settings.B2_APPLICATION_KEY,
        api_url=settings.B2_API_URL,
        public_url_template=settings.PUBLIC_URL_TEMPLATE,
        timeout=settings.B2_REQUEST_TIMEOUT,
    )


def get_large_object_client(settings: Settings, b2_client: B2Client | None = None) -> LargeObjectStorageClient:
    """Return the large-object client configured by STORAGE_BACKEND.

    Raises:
        ValueError: If the backend name is unknown
    """
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "b2":
        return b2_client or build_b2_client(settings)
    if backend == "local":
        return LocalLargeObjectClient(settings.LOCAL_STORAGE_PATH)
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")


def get_thumbnail_store(settings: Settings, b2_client: B2Client | None = None) -> ObjectStore:
    """Return the thumbnail object store configured by THUMBNAIL_STORAGE_BACKEND.

    Raises:
        ValueError: If the backend name is unknown
    """
    backend = settings.THUMBNAIL_STORAGE_BACKEND.lower()
    if backend == "b2":
        return B2ObjectStore(
            b2_client or build_b2_client(settings),
            bucket_id=settings.B2_THUMBNAIL_BUCKET_ID,
            bucket_name=settings.B2_THUMBNAIL_BUCKET_NAME,
        )
    if backend == "gcs":
        from vidingest.storage.gcs import GCSObjectStore

        return GCSObjectStore(settings.GCS_BUCKET_NAME, project_id=settings.GCP_PROJECT_ID)
    if backend == "local":
        return LocalObjectStore(Path(settings.LOCAL_STORAGE_PATH) / "thumbnails")
    raise ValueError(f"Unknown THUMBNAIL_STORAGE_BACKEND: {settings.THUMBNAIL_STORAGE_BACKEND}")
