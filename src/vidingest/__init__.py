"""Streaming video upload service: multipart uploads, chunk assembly, status and background jobs."""

__version__ = "0.1.0"
