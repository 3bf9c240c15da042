"""Object name sanitization and collision-resistant naming."""

import re
import time
from uuid import uuid4

from vidingest.core.exceptions import InvalidArgument

MAX_NAME_LENGTH = 255


def sanitize_filename(filename: str) -> str:
    """Remove path traversal and dangerous characters.

    Raises:
        InvalidArgument: If nothing usable is left after sanitization
    """
    if not filename or not isinstance(filename, str):
        raise InvalidArgument("Valid file name is required")

    safe = filename.replace("../", "").replace("..\\", "")
    safe = safe.replace("/", "_").replace("\\", "_")
    safe = re.sub(r"[^a-zA-Z0-9._-]", "_", safe)
    safe = safe.strip(".")
    safe = safe[:MAX_NAME_LENGTH]

    if not safe:
        raise InvalidArgument(f"File name {filename!r} became empty after sanitization")
    return safe


def split_name(filename: str) -> tuple[str, str]:
    """Split a sanitized name into (stem, extension without the dot)."""
    if "." not in filename:
        return filename, ""
    stem, _, extension = filename.rpartition(".")
    return stem, extension


def build_stored_name(filename: str, timestamp_ms: int | None = None) -> str:
    """Derive a collision-resistant object name: ``stem_timestamp_random.ext``."""
    safe = sanitize_filename(filename)
    stem, extension = split_name(safe)
    stem = stem.split(".")[0] or "file"
    timestamp_ms = int(time.time() * 1000) if timestamp_ms is None else timestamp_ms
    name = f"{stem}_{timestamp_ms}_{uuid4().hex[:12]}"
    return f"{name}.{extension}" if extension else name
