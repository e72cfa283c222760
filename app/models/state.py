from typing import TypedDict, Literal, List, Optional
from app.models.actions import Decision, Exchange, PageObservation
from app.models.job import CrawlStep, JobParams

class AgentState(TypedDict):
    """State model for the browser agent graph."""
    job_id: str
    params: JobParams
    observation: Optional[PageObservation]
    entry: Optional[PageObservation]
    history: List[Exchange]
    steps: List[CrawlStep]
    decision: Optional[Decision]
    current_step: int
    parse_failures: int
    outcome: Optional[Literal['completed', 'blocked', 'max_turns_reached']]
    stop_reason: Optional[str]
    summary: Optional[str]
    block_reason: Optional[str]
