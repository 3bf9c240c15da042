"""Upload status registry: the single source of truth for upload progress."""

import asyncio
import copy
import logging
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from vidingest.core.exceptions import InvalidArgument
from vidingest.status.pubsub import StatusPublisher

logger = logging.getLogger(__name__)

MAX_UPLOAD_ID_LENGTH = 100
MAX_LIST_LIMIT = 1000


class UploadState(str, Enum):
    """Upload status vocabulary shared by every component."""

    PREPARING = "preparing"
    RECEIVING = "receiving"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def validate_upload_id(upload_id: Any) -> str:
    """Return ``upload_id`` unchanged if it is usable as a registry key."""
    if not isinstance(upload_id, str) or not upload_id.strip() or len(upload_id) > MAX_UPLOAD_ID_LENGTH:
        raise InvalidArgument(f"Invalid upload id: {upload_id!r}")
    return upload_id


class StatusRegistry:
    """Keyed, mergeable progress records with a publish hook.

    Every mutation is a shallow merge over the previous record followed by a
    best-effort publish on the ``upload_id`` channel. Publish failures are
    logged and never propagate to the caller.
    """

    def __init__(
        self,
        publisher: Optional[StatusPublisher] = None,
        retention_seconds: float = 24 * 3600,
        completion_republish_delay: float = 0.5,
        clock: Callable[[], float] = time.time,
    ):
        self.publisher = publisher
        self.retention_seconds = retention_seconds
        self.completion_republish_delay = completion_republish_delay
        self._clock = clock
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def attach_publisher(self, publisher: Optional[StatusPublisher]) -> None:
        self.publisher = publisher

    def init(self, upload_id: str, initial: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Create (or reset) the record for ``upload_id`` and publish it."""
        validate_upload_id(upload_id)
        now = self._clock()
        record = {
            "status": UploadState.PREPARING.value,
            "progress": 0,
            "stage": "initializing",
            "timestamp": now,
            "created_at": _utc_iso(),
            **(initial or {}),
        }
        record["timestamp"] = now
        with self._lock:
            self._records[upload_id] = record
            snapshot = copy.deepcopy(record)

        logger.debug("Initialized upload status", extra={"upload_id": upload_id})
        self._publish(upload_id, snapshot)
        return snapshot

    def update(self, upload_id: str, partial: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Shallow-merge ``partial`` into the record, creating it if absent."""
        validate_upload_id(upload_id)
        with self._lock:
            current = self._records.get(upload_id, {})
            record = {
                **current,
                **(partial or {}),
                "timestamp": self._clock(),
                "updated_at": _utc_iso(),
            }
            self._records[upload_id] = record
            snapshot = copy.deepcopy(record)

        self._publish(upload_id, snapshot)
        return snapshot

    def complete(self, upload_id: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Mark the upload complete, publish, and publish again after a delay."""
        validate_upload_id(upload_id)
        data = data or {}
        with self._lock:
            current = self._records.get(upload_id, {})
            record = {
                **current,
                **data,
                "status": UploadState.COMPLETE.value,
                "progress": 100,
                "stage": "complete",
                "upload_complete": True,
                "publish_ready": data.get("publish_ready", True),
                "timestamp": self._clock(),
                "completed_at": data.get("completed_at") or _utc_iso(),
            }
            self._records[upload_id] = record
            snapshot = copy.deepcopy(record)

        logger.info(
            "Upload completed",
            extra={
                "upload_id": upload_id,
                "object_url": snapshot.get("object_url"),
                "thumbnail_url": snapshot.get("thumbnail_url"),
            },
        )
        self._publish(upload_id, snapshot)
        self._schedule_republish(upload_id, snapshot)
        return snapshot

    def fail(self, upload_id: str, error: Any) -> Dict[str, Any]:
        """Record a terminal error for the upload and publish it."""
        validate_upload_id(upload_id)
        message = str(error)[:1000] if error else "Unknown error"
        code = getattr(error, "code", None) or (
            type(error).__name__ if isinstance(error, BaseException) else "UNKNOWN"
        )
        with self._lock:
            current = self._records.get(upload_id, {})
            record = {
                **current,
                "status": UploadState.ERROR.value,
                "error": message,
                "error_details": {
                    "message": message,
                    "code": code,
                    "stage": current.get("stage", "unknown"),
                    "failed_at": _utc_iso(),
                },
                "timestamp": self._clock(),
            }
            self._records[upload_id] = record
            snapshot = copy.deepcopy(record)

        logger.error(
            "Upload failed",
            extra={"upload_id": upload_id, "error": message, "error_code": code},
        )
        self._publish(upload_id, snapshot)
        return snapshot

    def get(self, upload_id: str) -> Optional[Dict[str, Any]]:
        """Return a copy of the current record, or None."""
        with self._lock:
            record = self._records.get(upload_id)
            return copy.deepcopy(record) if record is not None else None

    def remove(self, upload_id: str) -> bool:
        with self._lock:
            removed = self._records.pop(upload_id, None) is not None
        if removed:
            logger.info("Removed upload status", extra={"upload_id": upload_id})
        return removed

    def list_all(self, status: Optional[str] = None, limit: int = 100) -> list[Dict[str, Any]]:
        """List records newest first, optionally filtered by status."""
        with self._lock:
            records = [
                {"upload_id": upload_id, **copy.deepcopy(record)}
                for upload_id, record in self._records.items()
            ]
        if status:
            records = [r for r in records if r.get("status") == status]
        records.sort(key=lambda r: r.get("timestamp") or 0, reverse=True)
        return records[: max(0, min(limit, MAX_LIST_LIMIT))]

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            statuses = [record.get("status", "unknown") for record in self._records.values()]
        by_status: Dict[str, int] = {}
        for status in statuses:
            by_status[status] = by_status.get(status, 0) + 1
        completed = by_status.get(UploadState.COMPLETE.value, 0)
        failed = by_status.get(UploadState.ERROR.value, 0)
        return {
            "total": len(statuses),
            "by_status": by_status,
            "completed": completed,
            "failed": failed,
            "active": len(statuses) - completed - failed,
        }

    def sweep(self, now: Optional[float] = None) -> int:
        """Delete records whose last mutation is older than the retention window."""
        now = self._clock() if now is None else now
        with self._lock:
            expired = [
                upload_id
                for upload_id, record in self._records.items()
                if now - record.get("timestamp", now) > self.retention_seconds
            ]
            for upload_id in expired:
                del self._records[upload_id]

        if expired:
            logger.info("Cleaned up stale upload statuses", extra={"count": len(expired)})
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, upload_id: object) -> bool:
        with self._lock:
            return upload_id in self._records

    def _publish(self, upload_id: str, record: Dict[str, Any]) -> None:
        if self.publisher is None:
            logger.debug("No status transport attached, skipping publish", extra={"upload_id": upload_id})
            return
        try:
            self.publisher.publish(upload_id, record)
        except Exception as e:
            logger.error(
                "Failed to publish status update",
                extra={"upload_id": upload_id, "error": str(e)},
                exc_info=True,
            )

    def _schedule_republish(self, upload_id: str, record: Dict[str, Any]) -> None:
        # Terminal records go out twice; the transport is at-most-once.
        if not self.completion_republish_delay or self.completion_republish_delay <= 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, skipping completion re-publish", extra={"upload_id": upload_id})
            return
        loop.call_later(self.completion_republish_delay, self._publish, upload_id, record)
