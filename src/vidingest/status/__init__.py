"""Upload status registry and its publish/subscribe sinks."""

from vidingest.status.pubsub import InMemoryPublisher, StatusPublisher
from vidingest.status.registry import StatusRegistry, UploadState

__all__ = [
    "InMemoryPublisher",
    "StatusPublisher",
    "StatusRegistry",
    "UploadState",
]
