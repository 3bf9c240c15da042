"""Disk-backed chunk persistence and reassembly for the legacy upload path."""

import logging
import os
from collections.abc import AsyncIterable, Iterable
from pathlib import Path
from typing import BinaryIO, Union

from vidingest.core.exceptions import InvalidArgument, MissingChunk
from vidingest.status.registry import StatusRegistry, UploadState, validate_upload_id
from vidingest.storage.naming import build_stored_name, sanitize_filename

logger = logging.getLogger(__name__)

COPY_BLOCK_SIZE = 65536  # 64KB

ChunkStream = Union[bytes, bytearray, BinaryIO, Iterable[bytes], AsyncIterable[bytes]]


class ChunkAssembler:
    """Persists independently posted chunks and concatenates them by index.

    Chunk reception owns the first half of the progress range (0-50), assembly
    reports 55-60.
    """

    def __init__(
        self,
        registry: StatusRegistry,
        chunks_dir: str | Path = "uploads/chunks",
        output_dir: str | Path = "uploads/temp",
    ):
        self.registry = registry
        self.chunks_dir = Path(chunks_dir)
        self.output_dir = Path(output_dir)

    def chunk_path(self, upload_id: str, chunk_index: int) -> Path:
        """Path of the file holding chunk ``chunk_index`` of ``upload_id``."""
        validate_upload_id(upload_id)
        if sanitize_filename(upload_id) != upload_id:
            raise InvalidArgument(f"Upload id {upload_id!r} is not safe for use in a path", upload_id=upload_id)
        return self.chunks_dir / f"{upload_id}_chunk_{chunk_index}"

    async def save_chunk(self, upload_id: str, chunk_index: int, total_chunks: int, stream: ChunkStream) -> Path:
        """Write one chunk straight to disk without buffering it in memory.

        A repeated ``chunk_index`` replaces the earlier file.

        Raises:
            InvalidArgument: If the index or total is out of range
        """
        if total_chunks < 1 or not 0 <= chunk_index < total_chunks:
            raise InvalidArgument(
                f"Chunk index {chunk_index} out of range for {total_chunks} chunks", upload_id=upload_id
            )
        chunk_path = self.chunk_path(upload_id, chunk_index)
        self.chunks_dir.mkdir(parents=True, exist_ok=True)

        partial_path = chunk_path.with_name(chunk_path.name + ".partial")
        size = 0
        try:
            with open(partial_path, "wb") as f:
                if isinstance(stream, (bytes, bytearray)):
                    f.write(stream)
                    size = len(stream)
                elif isinstance(stream, AsyncIterable):
                    async for block in stream:
                        f.write(block)
                        size += len(block)
                elif hasattr(stream, "read"):
                    while block := stream.read(COPY_BLOCK_SIZE):
                        f.write(block)
                        size += len(block)
                else:
                    for block in stream:
                        f.write(block)
                        size += len(block)
            os.replace(partial_path, chunk_path)
        except BaseException:
            partial_path.unlink(missing_ok=True)
            raise

        self.registry.update(
            upload_id,
            {
                "status": UploadState.RECEIVING.value,
                "stage": f"received chunk {chunk_index + 1}/{total_chunks}",
                "progress": (chunk_index + 1) * 50 // total_chunks,
            },
        )
        logger.debug(
            "Chunk saved",
            extra={"upload_id": upload_id, "chunk_index": chunk_index, "size_bytes": size},
        )
        return chunk_path

    def missing_chunks(self, upload_id: str, total_chunks: int) -> list[int]:
        return [i for i in range(total_chunks) if not self.chunk_path(upload_id, i).exists()]

    def validate_chunks(self, upload_id: str, total_chunks: int) -> bool:
        """Check every expected chunk file is present."""
        missing = self.missing_chunks(upload_id, total_chunks)
        if missing:
            logger.warning(
                "Chunk validation failed",
                extra={"upload_id": upload_id, "missing_chunks": missing[:20]},
            )
            return False
        return True

    def cleanup_chunks(self, upload_id: str, total_chunks: int) -> int:
        """Remove any chunk files still on disk. Safe to call repeatedly."""
        removed = 0
        for i in range(total_chunks):
            chunk_path = self.chunk_path(upload_id, i)
            try:
                chunk_path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.error(
                    "Failed to remove chunk",
                    extra={"upload_id": upload_id, "chunk_index": i, "error": str(e)},
                )
        if removed:
            logger.info("Cleaned up chunks", extra={"upload_id": upload_id, "count": removed})
        return removed

    async def assemble_chunks(self, upload_id: str, total_chunks: int, original_filename: str) -> Path:
        """Concatenate chunks ``0..total_chunks-1`` into one file under ``output_dir``.

        Each chunk is deleted as soon as it has been appended. On any failure
        the partial output and the remaining chunks are removed.

        Raises:
            MissingChunk: If an expected chunk file is absent
        """
        if total_chunks < 1:
            raise InvalidArgument("total_chunks must be at least 1", upload_id=upload_id)

        self.output_dir.mkdir(parents=True, exist_ok=True)
        final_path = self.output_dir / build_stored_name(original_filename)

        missing = self.missing_chunks(upload_id, total_chunks)
        if missing:
            error = MissingChunk(
                f"Missing chunk {missing[0]} of {total_chunks}", upload_id=upload_id, chunk_index=missing[0]
            )
            self.cleanup_chunks(upload_id, total_chunks)
            self.registry.fail(upload_id, error)
            raise error

        assembled_bytes = 0
        try:
            with open(final_path, "wb") as out:
                for chunk_index in range(total_chunks):
                    chunk_path = self.chunk_path(upload_id, chunk_index)
                    if not chunk_path.exists():
                        raise MissingChunk(
                            f"Missing chunk {chunk_index} of {total_chunks}",
                            upload_id=upload_id,
                            chunk_index=chunk_index,
                        )
                    with open(chunk_path, "rb") as src:
                        while block := src.read(COPY_BLOCK_SIZE):
                            out.write(block)
                            assembled_bytes += len(block)
                    chunk_path.unlink()

                    self.registry.update(
                        upload_id,
                        {
                            "status": UploadState.PROCESSING.value,
                            "stage": f"assembling chunk {chunk_index + 1}/{total_chunks}",
                            "progress": 55 + (chunk_index + 1) * 5 // total_chunks,
                        },
                    )
        except Exception as e:
            final_path.unlink(missing_ok=True)
            self.cleanup_chunks(upload_id, total_chunks)
            self.registry.fail(upload_id, e)
            raise

        logger.info(
            "File assembly complete",
            extra={"upload_id": upload_id, "path": str(final_path), "size_bytes": assembled_bytes},
        )
        return final_path
