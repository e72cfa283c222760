import uuid
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from app.core.clock import utcnow
from app.database import Base


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    MONTHLY = "monthly"


class LastRunStatus(str, Enum):
    RUNNING = "running"
    ERROR = "error"


class ScheduledJob(Base):
    """Recurring browser-agent run. Timestamps are naive UTC."""
    __tablename__ = "scheduled_browser_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    template_id = Column(String(64), nullable=False, default="custom")
    title = Column(String(255), nullable=False)
    prompt = Column(Text, nullable=False)
    start_url = Column(Text, nullable=True)
    max_turns = Column(Integer, nullable=False, default=100)
    category = Column(String(64), nullable=False, default="custom")
    frequency = Column(String(16), nullable=False, default=Frequency.DAILY.value)
    is_active = Column(Boolean, nullable=False, default=True)
    next_run_at = Column(DateTime, nullable=False, index=True)
    last_run_at = Column(DateTime, nullable=True)
    last_job_id = Column(String(128), nullable=True)
    last_status = Column(String(16), nullable=True)
    last_error = Column(Text, nullable=True)
    total_runs = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
