"""Persistence of scheduled jobs."""

import calendar
from datetime import datetime, timedelta
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.config import SCHEDULE_RUN_HOUR_UTC
from app.models.scheduled_job import Frequency, ScheduledJob

MIN_MAX_TURNS = 5
MAX_MAX_TURNS = 500

_UPDATABLE_FIELDS = {
    "title", "prompt", "start_url", "max_turns", "category", "frequency", "is_active",
    "next_run_at", "last_run_at", "last_job_id", "last_status", "last_error", "total_runs",
}


def _add_month(moment: datetime) -> datetime:
    year = moment.year + (moment.month // 12)
    month = moment.month % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def calculate_next_run_at(frequency: str, from_date: Optional[datetime] = None) -> datetime:
    """Next run time for a frequency, pinned to the daily run hour (UTC).

    Unknown frequencies behave like daily. The result is always on a later
    calendar day than ``from_date``.
    """
    now = from_date or utcnow()
    if frequency == Frequency.WEEKLY.value:
        nxt = now + timedelta(days=7)
    elif frequency == Frequency.BI_WEEKLY.value:
        nxt = now + timedelta(days=14)
    elif frequency == Frequency.MONTHLY.value:
        nxt = _add_month(now)
    else:
        nxt = now + timedelta(days=1)
    return nxt.replace(hour=SCHEDULE_RUN_HOUR_UTC, minute=0, second=0, microsecond=0)


def clamp_max_turns(value: Optional[int]) -> int:
    return min(max(int(value or 100), MIN_MAX_TURNS), MAX_MAX_TURNS)


class ScheduledJobRepository:
    """CRUD plus the due-job query over the scheduled_browser_jobs table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def fetch_due(self, now: Optional[datetime] = None) -> List[ScheduledJob]:
        """Active jobs whose next run time has passed, oldest first."""
        now = now or utcnow()
        stmt = (
            select(ScheduledJob)
            .where(ScheduledJob.is_active.is_(True))
            .where(ScheduledJob.next_run_at <= now)
            .order_by(ScheduledJob.next_run_at.asc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list(self) -> List[ScheduledJob]:
        stmt = select(ScheduledJob).order_by(ScheduledJob.created_at.desc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get(self, job_id: str) -> Optional[ScheduledJob]:
        return await self.db.get(ScheduledJob, job_id)

    async def create(
        self,
        *,
        title: str,
        prompt: str,
        start_url: Optional[str] = None,
        max_turns: Optional[int] = None,
        frequency: str = Frequency.DAILY.value,
        template_id: str = "custom",
        category: str = "custom",
        now: Optional[datetime] = None,
    ) -> ScheduledJob:
        job = ScheduledJob(
            template_id=template_id or "custom",
            title=title.strip(),
            prompt=prompt.strip(),
            start_url=(start_url or "").strip() or None,
            max_turns=clamp_max_turns(max_turns),
            category=category or "custom",
            frequency=frequency or Frequency.DAILY.value,
            is_active=True,
            total_runs=0,
            next_run_at=calculate_next_run_at(frequency, now),
        )
        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(job)
        return job

    async def update(self, job_id: str, **fields: Any) -> Optional[ScheduledJob]:
        """Apply fields and commit. Returns None for an unknown id."""
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update scheduled job fields: {', '.join(sorted(unknown))}")
        job = await self.get(job_id)
        if job is None:
            return None
        for key, value in fields.items():
            setattr(job, key, value)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        await self.db.refresh(job)
        return job

    async def toggle(self, job_id: str, is_active: bool) -> Optional[ScheduledJob]:
        return await self.update(job_id, is_active=is_active)

    async def delete(self, job_id: str) -> bool:
        job = await self.get(job_id)
        if job is None:
            return False
        await self.db.delete(job)
        await self.db.commit()
        return True
