from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

class ActionName(str, Enum):
    NAVIGATE = "navigate"
    CLICK_AT = "click_at"
    TYPE_TEXT_AT = "type_text_at"
    HOVER_AT = "hover_at"
    SCROLL_DOCUMENT = "scroll_document"
    SCROLL_AT = "scroll_at"
    KEY_COMBINATION = "key_combination"
    GO_BACK = "go_back"
    GO_FORWARD = "go_forward"
    WAIT = "wait"

    def __str__(self):
        return self.value

class DecisionKind(str, Enum):
    ACTION = "action"
    DONE = "done"
    BLOCKED = "blocked"

    def __str__(self):
        return self.value

class Action(BaseModel):
    """One UI action. Coordinates in args are on the 0-999 grid."""
    name: ActionName
    args: Dict[str, Any] = Field(default_factory=dict)

class Decision(BaseModel):
    """What the vision model wants to do next."""
    kind: DecisionKind
    action: Optional[Action] = None
    text: Optional[str] = None

class PageObservation(BaseModel):
    url: str
    title: str = ""
    screenshot_base64: str
    links: List[str] = Field(default_factory=list)

class ActionOutcome(BaseModel):
    """Result of a single executed action, always carrying a fresh observation."""
    ok: bool
    observation: PageObservation
    error: Optional[str] = None
    recoverable: bool = True

class Exchange(BaseModel):
    """One decision/action round trip, as kept in the agent's history."""
    seen: PageObservation
    thought: Optional[str] = None
    action: Action
    result_url: str
    error: Optional[str] = None
