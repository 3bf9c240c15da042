"""Streaming multipart uploads into large-object storage."""

import gc
import hashlib
import io
import logging
import threading
import time
from collections.abc import AsyncIterable, Iterable
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from vidingest.core.exceptions import (
    FinalizeRejected,
    InvalidArgument,
    MissingParts,
    PartUploadFailed,
    StorageClientError,
    StorageUnavailable,
    UploadNotFound,
)
from vidingest.core.rate_limit import MinIntervalRateLimiter
from vidingest.core.retry import RetryPolicy
from vidingest.status.registry import StatusRegistry, UploadState, validate_upload_id
from vidingest.storage.base import LargeObjectStorageClient, PartUploadTarget
from vidingest.storage.naming import build_stored_name, sanitize_filename

logger = logging.getLogger(__name__)

T = TypeVar("T")

PartData = Union[bytes, bytearray, memoryview, Iterable[bytes], AsyncIterable[bytes]]

RETRYABLE_ERRORS = (StorageClientError, OSError)


@dataclass
class UploadSession:
    """In-flight large-object session for one upload."""

    upload_id: str
    remote_file_id: str
    file_name: str
    bucket_id: str
    bucket_name: str
    content_type: str
    original_name: str
    created_at: float
    part_hashes: list[Optional[str]] = field(default_factory=list)
    part_sizes: Dict[int, int] = field(default_factory=dict)
    part_url_cache: Dict[int, PartUploadTarget] = field(default_factory=dict)

    def record_part(self, part_number: int, digest: str, size: int) -> None:
        index = part_number - 1
        if index >= len(self.part_hashes):
            self.part_hashes.extend([None] * (index + 1 - len(self.part_hashes)))
        self.part_hashes[index] = digest
        self.part_sizes[part_number] = size

    def missing_parts(self, total_parts: int) -> list[int]:
        return [
            n for n in range(1, total_parts + 1)
            if n > len(self.part_hashes) or not self.part_hashes[n - 1]
        ]

    def parts_beyond(self, total_parts: int) -> list[int]:
        return [n for n, digest in enumerate(self.part_hashes, start=1) if n > total_parts and digest]


@dataclass
class InitializeResult:
    upload_id: str
    remote_file_id: str
    stored_file_name: str
    bucket_id: str


@dataclass
class PartResult:
    part_number: int
    digest: str
    size: int


@dataclass
class FinalizeResult:
    upload_id: str
    object_url: str
    stored_file_name: str
    size: int
    total_parts: int
    original_name: str
    remote_file_id: str
    job_id: Optional[str] = None


FinalizedHook = Callable[[FinalizeResult, Dict[str, Any]], Optional[str]]


class MultipartUploadOrchestrator:
    """Moves objects of unbounded size into large-object storage part by part.

    At most one part's bytes are held per call to ``stream_part``. Every
    control-plane call (session open, part target fetch, finalize, cancel)
    goes through the shared rate limiter.
    """

    def __init__(
        self,
        storage: LargeObjectStorageClient,
        registry: StatusRegistry,
        rate_limiter: Optional[MinIntervalRateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        allowed_content_types: Optional[Iterable[str]] = None,
        max_parts: int = 10_000,
        default_bucket_id: str = "",
        default_bucket_name: str = "",
        progress_base: int = 10,
        progress_increment: int = 2,
        session_max_age_seconds: float = 24 * 3600,
        on_finalized: Optional[FinalizedHook] = None,
        collect_garbage: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.registry = registry
        self.rate_limiter = rate_limiter or MinIntervalRateLimiter(0.1)
        self.retry_policy = retry_policy or RetryPolicy()
        self.allowed_content_types = set(allowed_content_types) if allowed_content_types else None
        self.max_parts = max_parts
        self.default_bucket_id = default_bucket_id
        self.default_bucket_name = default_bucket_name
        self.progress_base = progress_base
        self.progress_increment = progress_increment
        self.session_max_age_seconds = session_max_age_seconds
        self.on_finalized = on_finalized
        self.collect_garbage = collect_garbage
        self._clock = clock
        self._sessions: Dict[str, UploadSession] = {}
        self._lock = threading.Lock()

    # Session map

    def get_session(self, upload_id: str) -> Optional[UploadSession]:
        with self._lock:
            return self._sessions.get(upload_id)

    def _require_session(self, upload_id: str) -> UploadSession:
        session = self.get_session(upload_id)
        if session is None:
            raise UploadNotFound("Upload not found or expired", upload_id=upload_id)
        return session

    def _pop_session(self, upload_id: str) -> Optional[UploadSession]:
        with self._lock:
            return self._sessions.pop(upload_id, None)

    def _is_current(self, session: UploadSession) -> bool:
        return self.get_session(session.upload_id) is session

    def active_sessions(self) -> int:
        with self._lock:
            return len(self._sessions)

    # Control plane

    async def _control_plane(self, fn: Callable[..., Awaitable[T]], *args: Any) -> T:
        async def _attempt() -> T:
            await self.rate_limiter.wait()
            return await fn(*args)

        return await self.retry_policy.call(_attempt, retry_on=RETRYABLE_ERRORS)

    async def _part_target(self, session: UploadSession, part_number: int) -> PartUploadTarget:
        target = session.part_url_cache.get(part_number)
        if target is None:
            await self.rate_limiter.wait()
            target = await self.storage.get_part_upload_target(session.remote_file_id)
            session.part_url_cache[part_number] = target
        return target

    # Operations

    async def initialize(
        self,
        upload_id: str,
        file_name: str,
        content_type: str = "video/mp4",
        bucket_id: Optional[str] = None,
        bucket_name: Optional[str] = None,
    ) -> InitializeResult:
        """Open a large-object session for ``upload_id``.

        Raises:
            InvalidArgument: If the id, file name or content type is rejected
            StorageUnavailable: If the session could not be opened after retries
        """
        validate_upload_id(upload_id)
        safe_name = sanitize_filename(file_name)
        if self.allowed_content_types is not None and content_type not in self.allowed_content_types:
            raise InvalidArgument(f"Invalid content type: {content_type}", upload_id=upload_id)

        stored_name = build_stored_name(safe_name)
        target_bucket_id = bucket_id or self.default_bucket_id
        target_bucket_name = bucket_name or self.default_bucket_name

        if self.get_session(upload_id) is not None:
            logger.warning("Replacing existing multipart session", extra={"upload_id": upload_id})

        self.registry.init(
            upload_id,
            {
                "status": UploadState.PREPARING.value,
                "stage": "starting multipart upload",
                "progress": max(0, self.progress_base // 2),
                "file_name": stored_name,
                "original_name": file_name,
            },
        )

        try:
            remote_file_id = await self._control_plane(
                self.storage.open_session, target_bucket_id, stored_name, content_type
            )
        except Exception as e:
            error = StorageUnavailable(f"Could not open large-object session: {e}", upload_id=upload_id)
            self.registry.fail(upload_id, error)
            raise error from e

        session = UploadSession(
            upload_id=upload_id,
            remote_file_id=remote_file_id,
            file_name=stored_name,
            bucket_id=target_bucket_id,
            bucket_name=target_bucket_name,
            content_type=content_type,
            original_name=file_name,
            created_at=self._clock(),
        )
        with self._lock:
            self._sessions[upload_id] = session

        self.registry.update(
            upload_id,
            {
                "status": UploadState.RECEIVING.value,
                "stage": "ready to receive parts",
                "progress": self.progress_base,
                "remote_file_id": remote_file_id,
                "upload_method": "multipart",
            },
        )
        logger.info(
            "Multipart upload initialized",
            extra={"upload_id": upload_id, "remote_file_id": remote_file_id, "stored_file_name": stored_name},
        )
        return InitializeResult(
            upload_id=upload_id,
            remote_file_id=remote_file_id,
            stored_file_name=stored_name,
            bucket_id=target_bucket_id,
        )

    async def stream_part(self, upload_id: str, part_number: int, data: PartData) -> PartResult:
        """Digest and upload one part, retrying the upload with backoff.

        ``data`` may be a bytes-like object or a finite, non-restartable
        (async) iterable of byte chunks. The digest and byte count come from
        the same read pass.

        Raises:
            InvalidArgument: If the part number is out of range or the part is empty
            UploadNotFound: If there is no session for ``upload_id``
            PartUploadFailed: If every upload attempt failed
        """
        if isinstance(part_number, bool) or not isinstance(part_number, int) or not 1 <= part_number <= self.max_parts:
            raise InvalidArgument(
                f"Part number must be between 1 and {self.max_parts}", upload_id=upload_id
            )
        session = self._require_session(upload_id)

        payload, digest, size = await read_part(data)
        if size == 0:
            raise InvalidArgument(f"Part {part_number} is empty", upload_id=upload_id)

        attempts = 0

        async def _attempt() -> Dict[str, Any]:
            nonlocal attempts
            attempts += 1
            target = await self._part_target(session, part_number)
            try:
                return await self.storage.upload_part(target, part_number, payload, digest)
            except RETRYABLE_ERRORS:
                # Upload endpoints are single-use after a failure.
                session.part_url_cache.pop(part_number, None)
                raise

        try:
            await self.retry_policy.call(_attempt, retry_on=RETRYABLE_ERRORS)
        except Exception as e:
            error = PartUploadFailed(
                f"Part {part_number} failed after {attempts} attempts: {e}",
                upload_id=upload_id,
                part_number=part_number,
                attempts=attempts,
            )
            if self._is_current(session):
                self.registry.fail(upload_id, error)
            raise error from e
        finally:
            del payload
            if self.collect_garbage:
                gc.collect()

        if not self._is_current(session):
            # Cancelled or finalized while the part was in flight.
            logger.warning(
                "Discarding part that landed after the session closed",
                extra={"upload_id": upload_id, "part_number": part_number},
            )
            raise UploadNotFound("Upload not found or expired", upload_id=upload_id)

        session.record_part(part_number, digest, size)
        self.registry.update(
            upload_id,
            {
                "status": UploadState.UPLOADING.value,
                "stage": f"streamed part {part_number}",
                "progress": min(95, self.progress_base + part_number * self.progress_increment),
            },
        )
        logger.info(
            "Part uploaded",
            extra={"upload_id": upload_id, "part_number": part_number, "size_bytes": size, "attempts": attempts},
        )
        return PartResult(part_number=part_number, digest=digest, size=size)

    async def finalize(
        self,
        upload_id: str,
        total_parts: int,
        original_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> FinalizeResult:
        """Assemble the object from exactly ``total_parts`` recorded parts.

        Backend rejection is not retried; the session is cancelled best-effort.

        Raises:
            InvalidArgument: If ``total_parts`` is out of range or extra parts were streamed
            MissingParts: If any part in ``1..total_parts`` has not landed
            UploadNotFound: If there is no session for ``upload_id``
            FinalizeRejected: If the backend refused to finalize
        """
        if isinstance(total_parts, bool) or not isinstance(total_parts, int) or not 1 <= total_parts <= self.max_parts:
            raise InvalidArgument("Invalid total parts count", upload_id=upload_id)

        session = self._require_session(upload_id)
        missing = session.missing_parts(total_parts)
        if missing:
            raise MissingParts(
                f"Missing parts for {upload_id}: expected {total_parts}, "
                f"got {total_parts - len(missing)}",
                upload_id=upload_id,
                missing=missing,
            )
        extra = session.parts_beyond(total_parts)
        if extra:
            raise InvalidArgument(
                f"Parts {extra} were uploaded beyond total_parts={total_parts}", upload_id=upload_id
            )

        # A concurrent cancel or finalize fails fast from here on.
        if self._pop_session(upload_id) is None:
            raise UploadNotFound("Upload not found or expired", upload_id=upload_id)

        ordered_digests = [digest for digest in session.part_hashes[:total_parts] if digest]
        self.registry.update(
            upload_id,
            {
                "status": UploadState.FINALIZING.value,
                "stage": "finalizing multipart upload",
                "progress": 95,
            },
        )

        try:
            await self.rate_limiter.wait()
            finalized = await self.storage.finalize(session.remote_file_id, ordered_digests)
        except Exception as e:
            logger.error(
                "Finalize rejected by storage backend",
                extra={"upload_id": upload_id, "remote_file_id": session.remote_file_id, "error": str(e)},
            )
            await self._cancel_remote(session)
            error = FinalizeRejected(f"Finalize rejected: {e}", upload_id=upload_id)
            self.registry.fail(upload_id, error)
            raise error from e

        object_url = self.storage.public_url(session.bucket_name, finalized.object_name)
        size = finalized.size or sum(session.part_sizes.get(n, 0) for n in range(1, total_parts + 1))
        result = FinalizeResult(
            upload_id=upload_id,
            object_url=object_url,
            stored_file_name=finalized.object_name,
            size=size,
            total_parts=total_parts,
            original_name=original_name or session.original_name,
            remote_file_id=session.remote_file_id,
        )
        logger.info(
            "Multipart upload finalized",
            extra={"upload_id": upload_id, "object_url": object_url, "size_bytes": size, "total_parts": total_parts},
        )

        fields = {
            "object_url": object_url,
            "stored_file_name": result.stored_file_name,
            "file_size": size,
            "total_parts": total_parts,
        }
        if self.on_finalized is None:
            self.registry.complete(upload_id, fields)
            return result

        self.registry.update(
            upload_id,
            {
                **fields,
                "status": UploadState.PROCESSING.value,
                "stage": "upload stored, generating thumbnail",
                "progress": 98,
            },
        )
        try:
            result.job_id = self.on_finalized(result, dict(context or {}))
        except Exception as e:
            logger.error(
                "Post-finalize hook failed, completing without derivatives",
                extra={"upload_id": upload_id, "error": str(e)},
                exc_info=True,
            )
            self.registry.complete(upload_id, {**fields, "background_task": {"status": "failed", "error": str(e)}})
        return result

    async def cancel(self, upload_id: str) -> bool:
        """Evict the session and abort it on the backend.

        Returns:
            True if a session existed and the backend abort succeeded
        """
        session = self._pop_session(upload_id)
        if session is None:
            logger.warning("Cancel requested for unknown upload", extra={"upload_id": upload_id})
            return False

        aborted = await self._cancel_remote(session)
        self.registry.update(
            upload_id,
            {
                "status": UploadState.CANCELLED.value,
                "stage": "upload cancelled",
                "progress": 0,
            },
        )
        return aborted

    async def _cancel_remote(self, session: UploadSession) -> bool:
        try:
            await self.rate_limiter.wait()
            await self.storage.cancel_session(session.remote_file_id)
        except Exception as e:
            logger.warning(
                "Failed to cancel large-object session",
                extra={"upload_id": session.upload_id, "remote_file_id": session.remote_file_id, "error": str(e)},
            )
            return False
        logger.info(
            "Cancelled large-object session",
            extra={"upload_id": session.upload_id, "remote_file_id": session.remote_file_id},
        )
        return True

    def evict_stale_sessions(self, now: Optional[float] = None) -> int:
        """Drop sessions older than the max age without contacting the backend."""
        now = self._clock() if now is None else now
        with self._lock:
            stale = [
                upload_id
                for upload_id, session in self._sessions.items()
                if now - session.created_at > self.session_max_age_seconds
            ]
            for upload_id in stale:
                del self._sessions[upload_id]

        if stale:
            logger.info("Evicted stale multipart sessions", extra={"count": len(stale)})
        return len(stale)


async def read_part(data: PartData) -> tuple[bytes, str, int]:
    """Consume ``data`` once, returning (bytes, hex SHA-1, byte count)."""
    sha1 = hashlib.sha1()

    if isinstance(data, (bytes, bytearray, memoryview)):
        payload = bytes(data)
        sha1.update(payload)
        return payload, sha1.hexdigest(), len(payload)

    # getvalue() hands back the buffer's bytes without a second copy.
    buffer = io.BytesIO()
    if isinstance(data, AsyncIterable):
        async for chunk in data:
            sha1.update(chunk)
            buffer.write(chunk)
    elif isinstance(data, Iterable):
        for chunk in data:
            sha1.update(chunk)
            buffer.write(chunk)
    else:
        raise InvalidArgument(f"Unsupported part data type: {type(data).__name__}")

    payload = buffer.getvalue()
    buffer.close()
    return payload, sha1.hexdigest(), len(payload)
