"""Google Cloud Storage object store for derivatives."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from google.cloud import storage

from vidingest.storage.base import ObjectStore

logger = logging.getLogger(__name__)


class GCSObjectStore(ObjectStore):
    """Google Cloud Storage backend for thumbnails."""

    def __init__(self, bucket_name: str, project_id: str = "", prefix: str = "thumbnails"):
        self.bucket_name = bucket_name
        self.project_id = project_id
        self.prefix = prefix.strip("/")
        self._client: Optional[storage.Client] = None
        self._bucket: Optional[storage.Bucket] = None

    def _get_bucket(self) -> storage.Bucket:
        """Lazy-load and cache GCS bucket."""
        if self._bucket is None:
            if not self.bucket_name:
                raise ValueError("GCS_BUCKET_NAME not configured")

            self._client = storage.Client(project=self.project_id or None)
            self._bucket = self._client.bucket(self.bucket_name)

        return self._bucket

    def _blob_path(self, object_name: str) -> str:
        return f"{self.prefix}/{object_name}" if self.prefix else object_name

    async def put_file(self, local_path: Path, object_name: str, content_type: str) -> str:
        """Upload file to GCS and return its public URL."""
        bucket = self._get_bucket()
        blob_path = self._blob_path(object_name)
        blob = bucket.blob(blob_path)

        await asyncio.to_thread(blob.upload_from_filename, str(local_path), content_type=content_type)

        logger.info(
            "Object uploaded to GCS",
            extra={"bucket": self.bucket_name, "blob_path": blob_path},
        )
        return f"https://storage.googleapis.com/{self.bucket_name}/{blob_path}"

    def get_backend_name(self) -> str:
        return "gcs"
