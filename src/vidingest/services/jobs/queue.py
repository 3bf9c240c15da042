"""In-memory background job queue with bounded concurrency and retry."""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional
from uuid import uuid4

from vidingest.core.retry import RetryPolicy
from vidingest.status.registry import StatusRegistry, validate_upload_id

logger = logging.getLogger(__name__)

THUMBNAIL_JOB = "thumbnail_generation"


class JobStatus(str, Enum):
    """Job lifecycle states."""

    QUEUED = "queued"
    PROCESSING = "processing"
    RETRY_SCHEDULED = "retry_scheduled"
    COMPLETED = "completed"
    FAILED = "failed"


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class Job:
    """A unit of background work and its attempt history."""

    job_id: str
    job_type: str
    payload: Dict[str, Any]
    max_attempts: int
    status: JobStatus = JobStatus.QUEUED
    attempts: int = 0
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    failed_at: Optional[float] = None
    last_error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    @property
    def upload_id(self) -> Optional[str]:
        return self.payload.get("upload_id")

    @property
    def finished_at(self) -> Optional[float]:
        return self.completed_at or self.failed_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "type": self.job_type,
            "status": self.status.value,
            "upload_id": self.upload_id,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "failed_at": _iso(self.failed_at),
            "last_error": self.last_error,
            "result": self.result,
        }


JobHandler = Callable[[Job], Awaitable[Dict[str, Any]]]


class BackgroundJobQueue:
    """Polling queue that runs at most ``max_concurrent`` jobs at a time.

    Failed jobs are re-queued at the front after the retry policy's delay
    until ``max_attempts`` is reached. Every transition is written into the
    status registry under the job's ``upload_id``.
    """

    def __init__(
        self,
        handlers: Dict[str, JobHandler],
        registry: StatusRegistry,
        max_concurrent: int = 2,
        retry_policy: Optional[RetryPolicy] = None,
        poll_interval: float = 2.0,
        retention_seconds: float = 30 * 60,
        clock: Callable[[], float] = time.time,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.handlers = dict(handlers)
        self.registry = registry
        self.max_concurrent = max_concurrent
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, backoff_seconds=5.0, strategy="fixed")
        self.poll_interval = poll_interval
        self.retention_seconds = retention_seconds
        self._clock = clock

        self._queue: Deque[Job] = deque()
        self._active: Dict[str, Job] = {}
        self._scheduled: Dict[str, Job] = {}
        self._finished: Dict[str, Job] = {}
        self._tasks: set[asyncio.Task] = set()
        self._retry_timers: set[asyncio.Task] = set()
        self._poller: Optional[asyncio.Task] = None

    def enqueue(self, payload: Dict[str, Any], job_type: str = THUMBNAIL_JOB) -> str:
        """Queue a job and return its id.

        Raises:
            ValueError: If no handler is registered for ``job_type``
            InvalidArgument: If the payload carries a malformed ``upload_id``
        """
        if job_type not in self.handlers:
            raise ValueError(f"No handler registered for job type: {job_type}")
        if payload.get("upload_id") is not None:
            validate_upload_id(payload["upload_id"])

        job = Job(
            job_id=f"{job_type.split('_')[0]}_{int(self._clock() * 1000)}_{uuid4().hex[:9]}",
            job_type=job_type,
            payload=dict(payload),
            max_attempts=self.retry_policy.max_attempts,
            created_at=self._clock(),
        )
        self._queue.append(job)

        logger.info(
            "Job queued",
            extra={"job_id": job.job_id, "job_type": job_type, "upload_id": job.upload_id, "queue_length": len(self._queue)},
        )
        self._write_status(job, {"status": JobStatus.QUEUED.value, "type": job_type})
        return job.job_id

    def get_job(self, job_id: str) -> Optional[Job]:
        for table in (self._active, self._scheduled, self._finished):
            if job_id in table:
                return table[job_id]
        for job in self._queue:
            if job.job_id == job_id:
                return job
        return None

    def stats(self) -> Dict[str, Any]:
        return {
            "queued": len(self._queue),
            "active": len(self._active),
            "retry_scheduled": len(self._scheduled),
            "completed": sum(1 for j in self._finished.values() if j.status == JobStatus.COMPLETED),
            "failed": sum(1 for j in self._finished.values() if j.status == JobStatus.FAILED),
            "max_concurrent": self.max_concurrent,
            "queued_jobs": [
                {"job_id": j.job_id, "upload_id": j.upload_id, "attempts": j.attempts} for j in self._queue
            ],
            "active_jobs": [
                {"job_id": j.job_id, "upload_id": j.upload_id, "started_at": _iso(j.started_at), "attempts": j.attempts}
                for j in self._active.values()
            ],
        }

    def tick(self) -> list[asyncio.Task]:
        """Start as many queued jobs as free concurrency slots allow."""
        started = []
        while self._queue and len(self._active) < self.max_concurrent:
            job = self._queue.popleft()
            job.status = JobStatus.PROCESSING
            job.attempts += 1
            job.started_at = self._clock()
            self._active[job.job_id] = job

            task = asyncio.create_task(self._run(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started.append(task)
        return started

    async def _run(self, job: Job) -> None:
        logger.info(
            "Processing job",
            extra={"job_id": job.job_id, "upload_id": job.upload_id, "attempt": job.attempts},
        )
        try:
            self._write_status(job, {"status": JobStatus.PROCESSING.value, "attempt": job.attempts})
            result = await self.handlers[job.job_type](job)
        except Exception as e:
            self._handle_failure(job, e)
        else:
            self._complete(job, result or {})
        finally:
            # The slot is released even if status bookkeeping itself raised.
            self._active.pop(job.job_id, None)

    def _complete(self, job: Job, result: Dict[str, Any]) -> None:
        self._active.pop(job.job_id, None)
        job.status = JobStatus.COMPLETED
        job.completed_at = self._clock()
        job.result = result
        self._finished[job.job_id] = job

        processing_time = job.completed_at - (job.started_at or job.completed_at)
        logger.info(
            "Job completed",
            extra={"job_id": job.job_id, "upload_id": job.upload_id, "attempts": job.attempts},
        )
        if job.upload_id:
            self.registry.complete(
                job.upload_id,
                {
                    **result,
                    "processing_completed_at": _iso(job.completed_at),
                    "background_task": {
                        "job_id": job.job_id,
                        "status": JobStatus.COMPLETED.value,
                        "attempts": job.attempts,
                        "processing_time": f"{int(processing_time)}s",
                    },
                },
            )

    def _handle_failure(self, job: Job, error: Exception) -> None:
        self._active.pop(job.job_id, None)
        job.last_error = str(error)

        logger.warning(
            "Job attempt failed",
            extra={
                "job_id": job.job_id,
                "upload_id": job.upload_id,
                "attempt": job.attempts,
                "max_attempts": job.max_attempts,
                "error": str(error),
            },
        )

        if self.retry_policy.can_retry(job.attempts):
            delay = self.retry_policy.delay_for(job.attempts)
            job.status = JobStatus.RETRY_SCHEDULED
            self._scheduled[job.job_id] = job
            self._write_status(
                job,
                {
                    "status": "retrying",
                    "stage": f"retry {job.attempts}/{job.max_attempts} in {delay:g}s",
                    "error": str(error),
                },
            )
            timer = asyncio.create_task(self._requeue_later(job, delay))
            self._retry_timers.add(timer)
            timer.add_done_callback(self._retry_timers.discard)
            return

        job.status = JobStatus.FAILED
        job.failed_at = self._clock()
        self._finished[job.job_id] = job
        logger.error(
            "Job failed permanently",
            extra={"job_id": job.job_id, "upload_id": job.upload_id, "attempts": job.attempts},
        )
        if job.upload_id:
            fields: Dict[str, Any] = {
                "background_task": {
                    "job_id": job.job_id,
                    "status": JobStatus.FAILED.value,
                    "stage": f"{job.job_type} failed after retries",
                    "error": str(error),
                    "attempts": job.attempts,
                },
            }
            if job.job_type == THUMBNAIL_JOB:
                # The upload itself succeeded; only the derivative is missing.
                fields.update({"thumbnail_url": None, "thumbnail_status": "failed"})
            self.registry.update(job.upload_id, fields)

    async def _requeue_later(self, job: Job, delay: float) -> None:
        await asyncio.sleep(delay)
        self._scheduled.pop(job.job_id, None)
        job.status = JobStatus.QUEUED
        self._queue.appendleft(job)
        logger.info(
            "Job re-queued for retry",
            extra={"job_id": job.job_id, "next_attempt": job.attempts + 1, "max_attempts": job.max_attempts},
        )

    def _write_status(self, job: Job, background_task: Dict[str, Any]) -> None:
        if not job.upload_id:
            return
        self.registry.update(job.upload_id, {"background_task": {"job_id": job.job_id, **background_task}})

    def purge_expired(self, now: Optional[float] = None) -> int:
        """Forget terminal jobs that finished longer ago than the retention window."""
        now = self._clock() if now is None else now
        expired = [
            job_id
            for job_id, job in self._finished.items()
            if job.finished_at is not None and now - job.finished_at > self.retention_seconds
        ]
        for job_id in expired:
            del self._finished[job_id]
        if expired:
            logger.debug("Purged expired job records", extra={"count": len(expired)})
        return len(expired)

    async def drain(self) -> None:
        """Run until nothing is queued, active or waiting to retry."""
        while True:
            self.tick()
            pending = set(self._tasks) | set(self._retry_timers)
            if not pending:
                if not self._queue:
                    return
                continue
            await asyncio.wait(pending)

    async def _poll(self) -> None:
        while True:
            try:
                self.tick()
                self.purge_expired()
            except Exception as e:
                logger.error("Job queue tick failed", extra={"error": str(e)}, exc_info=True)
            await asyncio.sleep(self.poll_interval)

    def start(self) -> None:
        if self._poller is None or self._poller.done():
            self._poller = asyncio.create_task(self._poll())
            logger.info(
                "Job queue started",
                extra={"max_concurrent": self.max_concurrent, "poll_interval": self.poll_interval},
            )

    async def stop(self) -> None:
        """Stop polling and cancel pending retry timers; running jobs finish."""
        tasks = [t for t in (self._poller, *self._retry_timers) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._poller = None
        logger.info("Job queue stopped")
