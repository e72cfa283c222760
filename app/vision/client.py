import json
import logging
from typing import Any, Dict, List, Optional
from langsmith import traceable
from openai import AsyncOpenAI
from openai import APIConnectionError, APIError, InternalServerError, RateLimitError
from app.config import settings
from app.models.actions import Action, ActionName, Decision, DecisionKind, Exchange, PageObservation
from app.vision.prompts import (
    FUNNEL_NAVIGATION_PROMPT,
    TASK_HEADER,
    BROWSER_TOOLS,
    DONE_TOOL,
    BLOCKED_TOOL,
)

logger = logging.getLogger(__name__)


class VisionError(Exception):
    """The vision provider rejected the request."""


class VisionTransientError(VisionError):
    """Network failure, timeout, rate limit or provider-side 5xx. Worth retrying."""


class VisionParseError(VisionError):
    """The provider answered but not with exactly one usable function call."""


def _image_part(observation: PageObservation) -> Dict[str, Any]:
    return {
        "type": "image_url",
        "image_url": {"url": f"data:image/jpeg;base64,{observation.screenshot_base64}"},
    }


def _page_message(observation: PageObservation, prefix: str) -> Dict[str, Any]:
    label = f"{prefix}: {observation.url}"
    if observation.title:
        label += f" ({observation.title})"
    if not observation.screenshot_base64:
        return {"role": "user", "content": [{"type": "text", "text": label + " [screenshot unavailable]"}]}
    return {"role": "user", "content": [{"type": "text", "text": label}, _image_part(observation)]}


def build_messages(
    entry_url: str,
    history: List[Exchange],
    observation: PageObservation,
    task: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Render the runner-owned history into a chat completion request.

    The system framing and the task instruction always lead; each retained
    exchange becomes the screenshot it was decided on, the tool call, and
    the tool result. The current screenshot closes the conversation.
    """
    task_text = TASK_HEADER.format(entry_url=entry_url)
    if task:
        task_text += f"\nAdditional instructions: {task}"
    messages: List[Dict[str, Any]] = [
        {"role": "system", "content": FUNNEL_NAVIGATION_PROMPT},
        {"role": "user", "content": task_text},
    ]

    for i, exchange in enumerate(history):
        call_id = f"call_{i}"
        messages.append(_page_message(exchange.seen, "Page"))
        messages.append({
            "role": "assistant",
            "content": exchange.thought,
            "tool_calls": [{
                "id": call_id,
                "type": "function",
                "function": {
                    "name": exchange.action.name.value,
                    "arguments": json.dumps(exchange.action.args),
                },
            }],
        })
        tool_result = {"url": exchange.result_url}
        if exchange.error:
            tool_result["error"] = exchange.error
        messages.append({"role": "tool", "tool_call_id": call_id, "content": json.dumps(tool_result)})

    messages.append(_page_message(observation, "Current page"))
    return messages


def parse_decision(message: Any) -> Decision:
    """Turn a chat completion message into a Decision, or raise VisionParseError."""
    tool_calls = getattr(message, "tool_calls", None) or []
    thought = (getattr(message, "content", None) or "").strip() or None
    if not tool_calls:
        raise VisionParseError(f"model returned no function call: {(thought or '')[:200]!r}")

    call = tool_calls[0]
    if len(tool_calls) > 1:
        logger.warning(f"Model returned {len(tool_calls)} function calls, using {call.function.name}")
    try:
        args = json.loads(call.function.arguments or "{}")
    except json.JSONDecodeError as e:
        raise VisionParseError(f"invalid arguments for {call.function.name}: {e}") from e
    if not isinstance(args, dict):
        raise VisionParseError(f"arguments for {call.function.name} are not an object")

    name = call.function.name
    if name == DONE_TOOL:
        return Decision(kind=DecisionKind.DONE, text=args.get("summary") or thought)
    if name == BLOCKED_TOOL:
        return Decision(kind=DecisionKind.BLOCKED, text=args.get("reason") or thought or "blocked")
    try:
        action_name = ActionName(name)
    except ValueError:
        raise VisionParseError(f"unknown action {name!r}")
    return Decision(kind=DecisionKind.ACTION, action=Action(name=action_name, args=args), text=thought)


class VisionDecisionClient:
    """Asks a hosted vision model for the next browser action.

    Holds no conversation state: every call receives the full (already
    trimmed) history from the caller.
    """

    def __init__(self, client: AsyncOpenAI = None, model: str = None):
        self.client = client or AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY,
            base_url=settings.VISION_BASE_URL,
            timeout=settings.VISION_TIMEOUT_SECONDS,
            max_retries=0,
        )
        self.model = model or settings.VISION_MODEL

    @traceable(name="decide_next_action")
    async def decide(
        self,
        entry_url: str,
        history: List[Exchange],
        observation: PageObservation,
        task: Optional[str] = None,
    ) -> Decision:
        messages = build_messages(entry_url, history, observation, task)
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                tools=BROWSER_TOOLS,
                tool_choice="required",
                parallel_tool_calls=False,
                temperature=0.2,
            )
        except (APIConnectionError, RateLimitError, InternalServerError) as e:
            raise VisionTransientError(f"{type(e).__name__}: {e}") from e
        except APIError as e:
            raise VisionError(f"{type(e).__name__}: {e}") from e

        if not response.choices:
            raise VisionParseError("provider returned no choices")
        return parse_decision(response.choices[0].message)
