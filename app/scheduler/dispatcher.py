"""Cron-driven dispatch of due scheduled jobs.

One pass selects every active job whose ``next_run_at`` has passed, starts a
remote agent run for it and immediately reschedules it. No lock is taken:
two overlapping passes can both start the same job before either commits.
"""

import logging
from datetime import datetime
from typing import List, Optional

import httpx
from pydantic import BaseModel, Field

from app.config import settings
from app.core.clock import utcnow
from app.core.config import DEFAULT_SCHEDULED_START_URL
from app.models.scheduled_job import LastRunStatus, ScheduledJob
from app.scheduler.repository import ScheduledJobRepository, calculate_next_run_at

logger = logging.getLogger(__name__)

REMOTE_MAX_TURNS = 500


class RemoteRunError(Exception):
    """The remote agent service did not accept the run."""


class RemoteRunClient:
    """Starts runs on the remote agentic browser service."""

    def __init__(self, base_url: str = None, client: httpx.AsyncClient = None, timeout: float = 30.0):
        self.base_url = (base_url or settings.AGENT_API_URL).rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def start_run(self, prompt: str, start_url: str, max_turns: int) -> str:
        """POST /run and return the remote job id."""
        try:
            response = await self._client.post(
                f"{self.base_url}/run",
                json={"prompt": prompt, "start_url": start_url, "max_turns": max_turns},
            )
        except httpx.HTTPError as e:
            raise RemoteRunError(f"{type(e).__name__}: {e}") from e

        if response.status_code >= 400:
            raise RemoteRunError(f"API {response.status_code}: {response.text[:500]}")
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteRunError("API returned a non-JSON body") from e
        job_id = data.get("job_id") if isinstance(data, dict) else None
        if not job_id:
            raise RemoteRunError("API response did not include a job_id")
        return str(job_id)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class DueJob(BaseModel):
    """Plain copy of a due row, safe to read after a session rollback."""
    id: str
    title: str
    prompt: str
    start_url: Optional[str] = None
    max_turns: int = 1
    frequency: str
    total_runs: int = 0

    @classmethod
    def from_row(cls, row: ScheduledJob) -> "DueJob":
        return cls(
            id=row.id,
            title=row.title,
            prompt=row.prompt,
            start_url=row.start_url,
            max_turns=row.max_turns or 1,
            frequency=row.frequency,
            total_runs=row.total_runs or 0,
        )


class DispatchResult(BaseModel):
    scheduled_job_id: str
    title: str
    status: str
    remote_job_id: Optional[str] = None
    error: Optional[str] = None


class DispatchSummary(BaseModel):
    success: bool = True
    message: str
    jobs_checked: int = 0
    jobs_started: int = 0
    jobs_errored: int = 0
    results: List[DispatchResult] = Field(default_factory=list)


async def _start_one(
    job: DueJob,
    repository: ScheduledJobRepository,
    runs: RemoteRunClient,
    now: datetime,
) -> DispatchResult:
    job_id, title, frequency, total_runs = job.id, job.title, job.frequency, job.total_runs
    next_run_at = calculate_next_run_at(frequency, now)
    try:
        remote_job_id = await runs.start_run(
            prompt=job.prompt,
            start_url=job.start_url or DEFAULT_SCHEDULED_START_URL,
            max_turns=min(max(job.max_turns or 1, 1), REMOTE_MAX_TURNS),
        )
        await repository.update(
            job_id,
            last_run_at=now,
            last_job_id=remote_job_id,
            last_status=LastRunStatus.RUNNING.value,
            last_error=None,
            total_runs=total_runs + 1,
            next_run_at=next_run_at,
        )
        logger.info(f"Scheduled job {job_id} ({title}) started remote run {remote_job_id}")
        return DispatchResult(scheduled_job_id=job_id, title=title, status="started", remote_job_id=remote_job_id)
    except Exception as e:
        error = str(e) or type(e).__name__
        logger.warning(f"Scheduled job {job_id} ({title}) failed to start: {error}")
        try:
            await repository.update(
                job_id,
                last_run_at=now,
                last_status=LastRunStatus.ERROR.value,
                last_error=error[:2000],
                total_runs=total_runs + 1,
                next_run_at=next_run_at,
            )
        except Exception:
            logger.exception(f"Could not record failure for scheduled job {job_id}")
        return DispatchResult(scheduled_job_id=job_id, title=title, status="error", error=error)


async def dispatch_due_jobs(
    repository: ScheduledJobRepository,
    runs: RemoteRunClient,
    now: Optional[datetime] = None,
) -> DispatchSummary:
    """Start every due job once and advance its schedule.

    Only a failure to load due jobs propagates; per-job failures are
    recorded on the job and counted in the summary.
    """
    now = now or utcnow()
    due = [DueJob.from_row(row) for row in await repository.fetch_due(now)]
    if not due:
        return DispatchSummary(message="No jobs due for execution")

    results = []
    for job in due:
        results.append(await _start_one(job, repository, runs, now))

    started = sum(1 for r in results if r.status == "started")
    errored = len(results) - started
    return DispatchSummary(
        message=f"Processed {len(due)} scheduled jobs: {started} started, {errored} errors",
        jobs_checked=len(due),
        jobs_started=started,
        jobs_errored=errored,
        results=results,
    )
