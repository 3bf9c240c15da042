"""Background job queue and the thumbnail job."""

from vidingest.services.jobs.queue import THUMBNAIL_JOB, BackgroundJobQueue, Job, JobStatus

__all__ = [
    "THUMBNAIL_JOB",
    "BackgroundJobQueue",
    "Job",
    "JobStatus",
]
