"""
Multipart Upload Orchestrator

Streams bounded-size parts into large-object storage, keeps one SHA-1 digest
per part and finalizes or cancels the backend session.
"""

from vidingest.services.multipart.orchestrator import (
    FinalizeResult,
    InitializeResult,
    MultipartUploadOrchestrator,
    PartResult,
    UploadSession,
)

__all__ = [
    "FinalizeResult",
    "InitializeResult",
    "MultipartUploadOrchestrator",
    "PartResult",
    "UploadSession",
]
