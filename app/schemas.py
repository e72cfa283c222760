from datetime import datetime
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Literal
from app.core.config import (
    DEFAULT_MAX_STEPS,
    DEFAULT_VIEWPORT_WIDTH,
    DEFAULT_VIEWPORT_HEIGHT,
    CRAWL_DEFAULT_MAX_STEPS,
    CRAWL_DEFAULT_MAX_DEPTH,
    CRAWL_VIEWPORT_WIDTH,
    CRAWL_VIEWPORT_HEIGHT,
    QUIZ_DEFAULT_MAX_STEPS,
)
from app.models.scheduled_job import Frequency

def _http_url(v: str) -> str:
    v = v.strip()
    if not v.startswith(("http://", "https://")):
        raise ValueError("entryUrl must be an http(s) URL")
    return v

class StartJobRequest(BaseModel):
    entry_url: str = Field(..., alias="entryUrl", description="Landing page the agent starts from.")
    max_steps: Optional[int] = Field(DEFAULT_MAX_STEPS, alias="maxSteps", description="Action ceiling, clamped to [3, 100].")
    viewport_width: Optional[int] = Field(DEFAULT_VIEWPORT_WIDTH, alias="viewportWidth")
    viewport_height: Optional[int] = Field(DEFAULT_VIEWPORT_HEIGHT, alias="viewportHeight")
    capture_screenshots: bool = Field(True, alias="captureScreenshots", description="Keep a screenshot on every step.")
    task: Optional[str] = Field(None, description="Extra instructions for the agent.")

    @field_validator("entry_url")
    def check_entry_url(cls, v):
        return _http_url(v)

    class Config:
        populate_by_name = True

class StartCrawlRequest(BaseModel):
    entry_url: str = Field(..., alias="entryUrl", description="First page of the funnel.")
    max_steps: Optional[int] = Field(CRAWL_DEFAULT_MAX_STEPS, alias="maxSteps", description="Page ceiling, clamped to [1, 100].")
    max_depth: Optional[int] = Field(CRAWL_DEFAULT_MAX_DEPTH, alias="maxDepth", description="Link hops from the entry page, clamped to [0, 10].")
    follow_same_origin_only: bool = Field(True, alias="followSameOriginOnly")
    capture_screenshots: bool = Field(True, alias="captureScreenshots")
    capture_network: bool = Field(True, alias="captureNetwork")
    capture_cookies: bool = Field(True, alias="captureCookies")
    viewport_width: Optional[int] = Field(CRAWL_VIEWPORT_WIDTH, alias="viewportWidth")
    viewport_height: Optional[int] = Field(CRAWL_VIEWPORT_HEIGHT, alias="viewportHeight")
    quiz_mode: bool = Field(False, alias="quizMode", description="Click through a single-page quiz instead of following links.")
    quiz_max_steps: Optional[int] = Field(QUIZ_DEFAULT_MAX_STEPS, alias="quizMaxSteps", description="Clamped to [1, 35].")

    @field_validator("entry_url")
    def check_entry_url(cls, v):
        return _http_url(v)

    class Config:
        populate_by_name = True

class ScheduledJobCreate(BaseModel):
    title: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1)
    start_url: Optional[str] = Field(None, alias="startUrl")
    max_turns: Optional[int] = Field(100, alias="maxTurns", description="Clamped to [5, 500].")
    frequency: Frequency = Frequency.DAILY
    template_id: str = Field("custom", alias="templateId")
    category: str = "custom"

    @field_validator("title", "prompt")
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    class Config:
        populate_by_name = True

class ScheduledJobUpdate(BaseModel):
    action: Optional[Literal["toggle"]] = None
    is_active: Optional[bool] = Field(None, alias="isActive")
    title: Optional[str] = None
    prompt: Optional[str] = None
    start_url: Optional[str] = Field(None, alias="startUrl")
    max_turns: Optional[int] = Field(None, alias="maxTurns")
    frequency: Optional[Frequency] = None

    class Config:
        populate_by_name = True

class ScheduledJobOut(BaseModel):
    id: str
    template_id: str
    title: str
    prompt: str
    start_url: Optional[str] = None
    max_turns: int
    category: str
    frequency: str
    is_active: bool
    next_run_at: datetime
    last_run_at: Optional[datetime] = None
    last_job_id: Optional[str] = None
    last_status: Optional[str] = None
    last_error: Optional[str] = None
    total_runs: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
