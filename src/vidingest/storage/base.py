"""Abstract storage interfaces used by the upload pipeline."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict


@dataclass(frozen=True)
class PartUploadTarget:
    """Endpoint and credential for uploading parts of one large-object session."""

    upload_url: str
    authorization_token: str


@dataclass(frozen=True)
class FinalizedObject:
    """Backend view of an object assembled from its parts."""

    object_name: str
    size: int
    file_id: str | None = None


class LargeObjectStorageClient(ABC):
    """Abstract client for a backend that assembles objects from parts."""

    @abstractmethod
    async def open_session(self, bucket_id: str, file_name: str, content_type: str) -> str:
        """Open a large-object session.

        Args:
            bucket_id: Target container identifier
            file_name: Stored object name
            content_type: MIME type of the final object

        Returns:
            Backend session identifier
        """
        pass

    @abstractmethod
    async def get_part_upload_target(self, session_id: str) -> PartUploadTarget:
        """Fetch an endpoint/credential pair for uploading parts of a session."""
        pass

    @abstractmethod
    async def upload_part(
        self, target: PartUploadTarget, part_number: int, data: bytes, digest: str
    ) -> Dict[str, Any]:
        """Upload one part.

        Args:
            target: Endpoint from get_part_upload_target
            part_number: 1-based part number
            data: Part bytes
            digest: Hex SHA-1 of ``data``, verified by the backend

        Returns:
            Backend acknowledgement
        """
        pass

    @abstractmethod
    async def finalize(self, session_id: str, ordered_digests: list[str]) -> FinalizedObject:
        """Assemble the object from its parts, validated by position."""
        pass

    @abstractmethod
    async def cancel_session(self, session_id: str) -> None:
        """Abort a session and discard its uploaded parts."""
        pass

    @abstractmethod
    def public_url(self, bucket_name: str, object_name: str) -> str:
        """Public URL of a stored object."""
        pass

    @abstractmethod
    def get_backend_name(self) -> str:
        """Return backend identifier."""
        pass


class ObjectStore(ABC):
    """Abstract single-shot object store used for derivatives (thumbnails)."""

    @abstractmethod
    async def put_file(self, local_path: Path, object_name: str, content_type: str) -> str:
        """Store a local file.

        Args:
            local_path: File to upload
            object_name: Target object name
            content_type: MIME type

        Returns:
            Public URL of the stored object
        """
        pass

    @abstractmethod
    def get_backend_name(self) -> str:
        """Return backend identifier."""
        pass
