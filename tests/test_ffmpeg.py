"""Tests for ffmpeg frame extraction."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from vidingest.core.exceptions import FrameExtractionError
from vidingest.services.media.ffmpeg import FrameExtractor, format_seek


@pytest.mark.parametrize(
    "seconds,expected",
    [(5, "00:00:05.000"), (0, "00:00:00.000"), (3725.5, "01:02:05.500"), (-3, "00:00:00.000")],
)
def test_format_seek(seconds, expected):
    assert format_seek(seconds) == expected


def test_build_command():
    extractor = FrameExtractor(ffmpeg_bin="/usr/bin/ffmpeg")

    cmd = extractor.build_command("https://v/clip.mp4", Path("/tmp/out.jpg"), 5)

    assert cmd == [
        "/usr/bin/ffmpeg", "-y", "-ss", "00:00:05.000", "-i", "https://v/clip.mp4",
        "-vframes", "1", "-q:v", "2", "/tmp/out.jpg",
    ]


def make_process(returncode=0, stderr=b"", output_path=None):
    process = MagicMock()
    process.returncode = returncode

    async def communicate():
        if output_path is not None:
            output_path.write_bytes(b"jpeg")
        return b"", stderr

    process.communicate = communicate
    process.wait = AsyncMock(return_value=returncode)
    return process


@pytest.mark.asyncio
async def test_extract_frame_success(tmp_path):
    output_path = tmp_path / "thumbs" / "frame.jpg"
    process = make_process(output_path=output_path)

    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)) as mock_exec:
        result = await FrameExtractor().extract_frame("https://v/clip.mp4", output_path, 5)

    assert result == output_path
    args = mock_exec.await_args.args
    assert args[0] == "ffmpeg"
    assert "00:00:05.000" in args


@pytest.mark.asyncio
async def test_extract_frame_nonzero_exit(tmp_path):
    process = make_process(returncode=1, stderr=b"Invalid data found when processing input")

    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
        with pytest.raises(FrameExtractionError, match="Invalid data"):
            await FrameExtractor().extract_frame("bad.mp4", tmp_path / "frame.jpg")


@pytest.mark.asyncio
async def test_extract_frame_without_output(tmp_path):
    process = make_process()

    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
        with pytest.raises(FrameExtractionError, match="no output"):
            await FrameExtractor().extract_frame("clip.mp4", tmp_path / "frame.jpg")


@pytest.mark.asyncio
async def test_missing_binary(tmp_path):
    with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError())):
        with pytest.raises(FrameExtractionError, match="not found"):
            await FrameExtractor(ffmpeg_bin="nope").extract_frame("clip.mp4", tmp_path / "frame.jpg")


@pytest.mark.asyncio
async def test_timeout_kills_process(tmp_path):
    process = MagicMock()
    process.returncode = None

    async def hang():
        await asyncio.sleep(10)

    process.communicate = hang
    process.wait = AsyncMock(return_value=-9)

    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
        with pytest.raises(FrameExtractionError, match="timed out"):
            await FrameExtractor(timeout_seconds=0.01).extract_frame("clip.mp4", tmp_path / "frame.jpg")

    process.kill.assert_called_once()
    process.wait.assert_awaited_once()
