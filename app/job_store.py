import logging
import time
from typing import Optional, List, Any, Union
from threading import Lock
import uuid
from app.core.clock import utcnow
from cachetools import TTLCache
from app.config import settings
from app.models.job import CrawlParams, Job, JobKind, JobParams, JobStatus

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {"status", "result", "error", "current_step", "total_steps"}

class JobStore:
    """Thread-safe in-memory job registry.

    Records live in a TTL cache: a job that has not been written for
    ``ttl`` seconds is evicted and afterwards reported as unknown. Nothing
    survives a process restart.
    """
    def __init__(self, maxsize: int = None, ttl: int = None, timer=time.monotonic):
        self._jobs: TTLCache = TTLCache(
            maxsize=maxsize or settings.JOB_STORE_MAXSIZE,
            ttl=ttl or settings.JOB_TTL_SECONDS,
            timer=timer,
        )
        self._lock = Lock()

    def create_job(
        self, entry_url: str, params: Union[JobParams, CrawlParams], kind: JobKind = JobKind.AGENT
    ) -> Job:
        """Create a new pending job and return it."""
        job_id = str(uuid.uuid4())
        now = utcnow()
        job = Job(
            job_id=job_id,
            kind=kind,
            entry_url=entry_url,
            params=params,
            status=JobStatus.PENDING,
            total_steps=params.step_limit,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._jobs[job_id] = job
        return job.model_copy(deep=True)

    def get_job(self, job_id: str) -> Optional[Job]:
        """Get a snapshot of a job by ID."""
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def list_jobs(self) -> List[Job]:
        """Snapshots of every live job, newest first."""
        with self._lock:
            jobs = [job.model_copy(deep=True) for job in self._jobs.values()]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    def update_job(self, job_id: str, **fields: Any) -> None:
        """Merge fields into a job.

        Unknown ids are ignored. Status never moves backwards and a job in a
        terminal status accepts no further writes.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update job fields: {', '.join(sorted(unknown))}")

        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return
            if job.status.is_terminal:
                logger.warning(f"Ignoring update to finished job {job_id} ({job.status})")
                return
            if "status" in fields:
                new_status = JobStatus(fields["status"])
                if new_status.rank < job.status.rank:
                    logger.warning(f"Ignoring status regression {job.status} -> {new_status} for job {job_id}")
                    fields = {k: v for k, v in fields.items() if k != "status"}
                else:
                    fields["status"] = new_status
            if "current_step" in fields and fields["current_step"] < job.current_step:
                fields["current_step"] = job.current_step

            fields["updated_at"] = utcnow()
            # Re-inserting restarts the TTL, so eviction counts from the last write
            self._jobs[job_id] = job.model_copy(update=fields)

    def clear(self) -> None:
        """Drop every job."""
        with self._lock:
            self._jobs.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

# Global job store instance
job_store = JobStore()
