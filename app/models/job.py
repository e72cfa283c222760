from enum import Enum
from datetime import datetime
from app.core.clock import utcnow
from typing import List, Optional, Union
from pydantic import BaseModel, Field, field_validator
from app.core.config import (
    DEFAULT_MAX_STEPS,
    MIN_MAX_STEPS,
    MAX_MAX_STEPS,
    DEFAULT_VIEWPORT_WIDTH,
    DEFAULT_VIEWPORT_HEIGHT,
    CRAWL_DEFAULT_MAX_STEPS,
    CRAWL_MAX_MAX_STEPS,
    CRAWL_DEFAULT_MAX_DEPTH,
    CRAWL_MAX_DEPTH,
    CRAWL_VIEWPORT_WIDTH,
    CRAWL_VIEWPORT_HEIGHT,
    QUIZ_DEFAULT_MAX_STEPS,
    QUIZ_MAX_MAX_STEPS,
)
from app.models.actions import Action, PageObservation

class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    MAX_TURNS_REACHED = "max_turns_reached"
    BLOCKED = "blocked"
    FAILED = "failed"

    def __str__(self):
        return self.value

    @property
    def rank(self) -> int:
        if self is JobStatus.PENDING:
            return 0
        if self is JobStatus.RUNNING:
            return 1
        return 2

    @property
    def is_terminal(self) -> bool:
        return self.rank == 2

class JobKind(str, Enum):
    AGENT = "agent"
    CRAWL = "crawl"

    def __str__(self):
        return self.value

class JobParams(BaseModel):
    """Immutable input configuration of an agent job."""
    entry_url: str
    max_steps: int = DEFAULT_MAX_STEPS
    viewport_width: int = DEFAULT_VIEWPORT_WIDTH
    viewport_height: int = DEFAULT_VIEWPORT_HEIGHT
    capture_screenshots: bool = True
    task: Optional[str] = None

    @field_validator("max_steps", mode="before")
    def clamp_max_steps(cls, v):
        if v is None:
            return DEFAULT_MAX_STEPS
        return min(MAX_MAX_STEPS, max(MIN_MAX_STEPS, int(v)))

    @field_validator("viewport_width", "viewport_height", mode="before")
    def positive_viewport(cls, v, info):
        if not v or int(v) <= 0:
            return DEFAULT_VIEWPORT_WIDTH if info.field_name == "viewport_width" else DEFAULT_VIEWPORT_HEIGHT
        return int(v)

    @property
    def step_limit(self) -> int:
        return self.max_steps

    class Config:
        frozen = True

def _clamp(v, default: int, low: int, high: int) -> int:
    if v is None:
        return default
    return min(high, max(low, int(v)))

class CrawlParams(BaseModel):
    """Immutable input configuration of a deterministic crawl job."""
    entry_url: str
    max_steps: int = CRAWL_DEFAULT_MAX_STEPS
    max_depth: int = CRAWL_DEFAULT_MAX_DEPTH
    follow_same_origin_only: bool = True
    capture_screenshots: bool = True
    capture_network: bool = True
    capture_cookies: bool = True
    viewport_width: int = CRAWL_VIEWPORT_WIDTH
    viewport_height: int = CRAWL_VIEWPORT_HEIGHT
    quiz_mode: bool = False
    quiz_max_steps: int = QUIZ_DEFAULT_MAX_STEPS

    @field_validator("max_steps", mode="before")
    def clamp_max_steps(cls, v):
        return _clamp(v, CRAWL_DEFAULT_MAX_STEPS, 1, CRAWL_MAX_MAX_STEPS)

    @field_validator("max_depth", mode="before")
    def clamp_max_depth(cls, v):
        return _clamp(v, CRAWL_DEFAULT_MAX_DEPTH, 0, CRAWL_MAX_DEPTH)

    @field_validator("quiz_max_steps", mode="before")
    def clamp_quiz_max_steps(cls, v):
        return _clamp(v, QUIZ_DEFAULT_MAX_STEPS, 1, QUIZ_MAX_MAX_STEPS)

    @field_validator("viewport_width", "viewport_height", mode="before")
    def positive_viewport(cls, v, info):
        if not v or int(v) <= 0:
            return CRAWL_VIEWPORT_WIDTH if info.field_name == "viewport_width" else CRAWL_VIEWPORT_HEIGHT
        return int(v)

    @property
    def step_limit(self) -> int:
        return self.quiz_max_steps if self.quiz_mode else self.max_steps

    class Config:
        frozen = True

class CrawlLink(BaseModel):
    href: str
    text: str = ""

class FormInput(BaseModel):
    name: str
    type: str = "text"
    required: bool = False

class CrawlForm(BaseModel):
    action: str = ""
    method: str = "get"
    inputs: List[FormInput] = Field(default_factory=list)
    submit_button_text: Optional[str] = None

class NetworkRequest(BaseModel):
    url: str
    method: str = "GET"
    resource_type: str = ""
    status: Optional[int] = None
    is_tracking: bool = False
    is_checkout: bool = False

class CrawlCookie(BaseModel):
    name: str
    domain: str = ""
    path: str = "/"
    expires: Optional[float] = None
    http_only: bool = False
    secure: bool = False

class CrawlStep(BaseModel):
    """One captured page. Agent steps carry the action that led here."""
    step_index: int
    url: str
    title: str = ""
    action: Optional[Action] = None
    model_thought: Optional[str] = None
    action_executed: bool = True
    action_error: Optional[str] = None
    screenshot_base64: Optional[str] = None
    links: List[str] = Field(default_factory=list)
    cta_buttons: List[CrawlLink] = Field(default_factory=list)
    forms: List[CrawlForm] = Field(default_factory=list)
    network_requests: List[NetworkRequest] = Field(default_factory=list)
    cookies: List[CrawlCookie] = Field(default_factory=list)
    dom_length: int = 0
    content_text: Optional[str] = None
    is_quiz_step: bool = False
    quiz_step_label: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

class CrawlResult(BaseModel):
    entry_url: str
    entry: Optional[PageObservation] = None
    steps: List[CrawlStep] = Field(default_factory=list)
    total_steps: int = 0
    duration_ms: int = 0
    stop_reason: Optional[str] = None
    summary: Optional[str] = None
    block_reason: Optional[str] = None
    visited_urls: List[str] = Field(default_factory=list)
    is_quiz_funnel: bool = False

class Job(BaseModel):
    """Job model for storing run state and metadata."""
    job_id: str
    kind: JobKind = JobKind.AGENT
    entry_url: str
    params: Union[JobParams, CrawlParams]
    status: JobStatus = JobStatus.PENDING
    current_step: int = 0
    total_steps: int = 0
    result: Optional[CrawlResult] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
