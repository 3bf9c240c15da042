"""Push an assembled legacy-path file through the multipart orchestrator."""

import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from vidingest.core.exceptions import InvalidArgument
from vidingest.services.multipart.orchestrator import FinalizeResult, MultipartUploadOrchestrator

logger = logging.getLogger(__name__)


def iter_file_parts(path: Path, part_size: int) -> Iterator[bytes]:
    """Yield successive ``part_size`` reads of ``path``; finite, not restartable."""
    with open(path, "rb") as f:
        while part := f.read(part_size):
            yield part


async def ingest_file(
    orchestrator: MultipartUploadOrchestrator,
    upload_id: str,
    path: str | Path,
    original_name: str,
    video_id: Optional[str] = None,
    part_size: int = 50 * 1024 * 1024,
    content_type: Optional[str] = None,
) -> FinalizeResult:
    """Stream ``path`` to storage part by part and finalize it.

    The local file is deleted whether or not the upload succeeds.
    """
    path = Path(path)
    try:
        if not path.exists() or path.stat().st_size == 0:
            raise InvalidArgument(f"Nothing to upload at {path}", upload_id=upload_id)

        content_type = content_type or mimetypes.guess_type(original_name)[0] or "video/mp4"
        await orchestrator.initialize(upload_id, original_name, content_type)

        total_parts = 0
        for part_number, part in enumerate(iter_file_parts(path, part_size), start=1):
            await orchestrator.stream_part(upload_id, part_number, part)
            total_parts = part_number
            del part

        context: Dict[str, Any] = {"video_id": video_id} if video_id else {}
        return await orchestrator.finalize(upload_id, total_parts, original_name, context)
    finally:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to remove temp file", extra={"upload_id": upload_id, "path": str(path), "error": str(e)})
