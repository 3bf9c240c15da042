"""Thumbnail frame extraction using ffmpeg."""

import asyncio
import logging
from pathlib import Path

from vidingest.core.exceptions import FrameExtractionError

logger = logging.getLogger(__name__)


def format_seek(seconds: float) -> str:
    """Format seconds as an ffmpeg ``HH:MM:SS.mmm`` position."""
    seconds = max(0.0, float(seconds))
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{int(hours):02d}:{int(minutes):02d}:{secs:06.3f}"


class FrameExtractor:
    """Extracts a single JPEG frame from a local path or remote URL."""

    def __init__(self, ffmpeg_bin: str = "ffmpeg", timeout_seconds: float = 45):
        self.ffmpeg_bin = ffmpeg_bin
        self.timeout_seconds = timeout_seconds

    def build_command(self, source: str, output_path: Path, seek_seconds: float) -> list[str]:
        return [
            self.ffmpeg_bin,
            "-y",
            "-ss", format_seek(seek_seconds),
            "-i", source,
            "-vframes", "1",
            "-q:v", "2",
            str(output_path),
        ]

    async def extract_frame(self, source: str, output_path: Path, seek_seconds: float = 5.0) -> Path:
        """Write the frame at ``seek_seconds`` of ``source`` to ``output_path``.

        Args:
            source: Local file path or URL readable by ffmpeg
            output_path: Destination image path
            seek_seconds: Position of the frame

        Returns:
            Path to the written image

        Raises:
            FrameExtractionError: If ffmpeg is missing, fails or times out
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(source, output_path, seek_seconds)

        logger.info(
            "Extracting thumbnail frame",
            extra={"source": source, "output_path": str(output_path), "seek_seconds": seek_seconds},
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise FrameExtractionError(f"ffmpeg binary not found: {self.ffmpeg_bin}") from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.error("ffmpeg timeout", extra={"source": source, "timeout": self.timeout_seconds})
            raise FrameExtractionError("Thumbnail generation timed out")

        if process.returncode != 0:
            error_msg = (stderr or b"").decode("utf-8", errors="replace")[-500:]
            logger.error(
                "ffmpeg frame extraction failed",
                extra={"source": source, "returncode": process.returncode, "stderr": error_msg},
            )
            raise FrameExtractionError(f"ffmpeg failed with code {process.returncode}: {error_msg}")

        if not output_path.exists():
            raise FrameExtractionError(f"ffmpeg produced no output at {output_path}")

        logger.info("Thumbnail frame extracted", extra={"output_path": str(output_path)})
        return output_path
