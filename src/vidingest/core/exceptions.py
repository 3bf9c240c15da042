"""Custom exceptions for the upload pipeline."""


class UploadError(Exception):
    """Base exception for upload pipeline failures."""

    def __init__(self, message: str, upload_id: str | None = None):
        super().__init__(message)
        self.upload_id = upload_id


class InvalidArgument(UploadError):
    """Exception raised for a bad file name, content type, part number or id."""
    pass


class UploadNotFound(UploadError):
    """Exception raised when no in-flight session or record exists for an upload."""
    pass


class MissingParts(InvalidArgument):
    """Exception raised when finalize is requested before every part has landed."""

    def __init__(self, message: str, upload_id: str | None = None, missing: list[int] | None = None):
        super().__init__(message, upload_id)
        self.missing = missing or []


class StorageUnavailable(UploadError):
    """Exception raised when a control-plane call fails after bounded retries."""
    pass


class PartUploadFailed(UploadError):
    """Exception raised when one part exhausts its upload retries."""

    def __init__(self, message: str, upload_id: str | None = None, part_number: int = 0, attempts: int = 0):
        super().__init__(message, upload_id)
        self.part_number = part_number
        self.attempts = attempts


class MissingChunk(UploadError):
    """Exception raised when an expected chunk file is absent at assembly time."""

    def __init__(self, message: str, upload_id: str | None = None, chunk_index: int = -1):
        super().__init__(message, upload_id)
        self.chunk_index = chunk_index


class FinalizeRejected(UploadError):
    """Exception raised when the backend refuses to finalize a large-object session."""
    pass


class StorageClientError(Exception):
    """Exception raised by storage clients when a backend call fails."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class FrameExtractionError(Exception):
    """Exception raised when a thumbnail frame cannot be extracted."""
    pass
