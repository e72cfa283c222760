import asyncio
import logging
import time
from dataclasses import dataclass, field
from langchain_core.runnables import RunnableConfig
from app.browser.executor import ActionExecutor
from app.job_store import JobStore
from app.models.actions import DecisionKind, Exchange
from app.models.job import CrawlResult, CrawlStep
from app.models.state import AgentState
from app.vision.client import VisionDecisionClient, VisionError, VisionParseError, VisionTransientError
from app.workflow.utils import trim_history, is_checkout_page, backoff_seconds, log_transition

MAX_PARSE_FAILURES = 2


class JobFailure(Exception):
    """Ends the current job as failed with a readable message."""


@dataclass
class RunContext:
    """Per-job collaborators handed to the graph nodes through the run config."""
    job_id: str
    store: JobStore
    executor: ActionExecutor
    vision: VisionDecisionClient
    logger: logging.Logger
    history_max_exchanges: int = 10
    retry_budget: int = 3
    backoff_base: float = 1.0
    started_at: float = field(default_factory=time.monotonic)
    steps_completed: int = 0


def _context(config: RunnableConfig) -> RunContext:
    return config["configurable"]["context"]


def build_result(state: AgentState, ctx: RunContext, **extra) -> CrawlResult:
    """Snapshot of what the job has produced so far."""
    params = state["params"]
    entry = state.get("entry")
    if entry is not None and not params.capture_screenshots:
        entry = entry.model_copy(update={"screenshot_base64": ""})
    steps = list(state.get("steps") or [])
    fields = dict(
        entry_url=params.entry_url,
        entry=entry,
        steps=steps,
        total_steps=len(steps),
        duration_ms=int((time.monotonic() - ctx.started_at) * 1000),
        stop_reason=state.get("stop_reason"),
        summary=state.get("summary"),
        block_reason=state.get("block_reason"),
    )
    fields.update(extra)
    return CrawlResult(**fields)


async def open_entry(state: AgentState, config: RunnableConfig) -> dict:
    """Navigate to the entry url and record the landing page."""
    ctx = _context(config)
    params = state["params"]
    ctx.logger.info(f"Navigating to {params.entry_url}")

    attempt = 0
    while True:
        outcome = await ctx.executor.open(params.entry_url)
        if outcome.ok:
            break
        if not outcome.recoverable or attempt >= ctx.retry_budget:
            raise JobFailure(
                f"Could not open {params.entry_url} after {attempt + 1} attempts: {outcome.error}"
            )
        delay = backoff_seconds(attempt, ctx.backoff_base)
        attempt += 1
        ctx.logger.warning(f"Entry page failed to load, retrying in {delay:.1f}s: {outcome.error}")
        await asyncio.sleep(delay)

    update = {"observation": outcome.observation, "entry": outcome.observation}
    ctx.store.update_job(ctx.job_id, result=build_result({**state, **update}, ctx))
    log_transition(ctx.logger, "open_entry", url=outcome.observation.url, title=outcome.observation.title)
    return update


async def decide(state: AgentState, config: RunnableConfig) -> dict:
    """Ask the vision model for the next move and apply the stop rules."""
    ctx = _context(config)
    params = state["params"]
    parse_failures = state.get("parse_failures", 0)
    transient_attempts = 0

    while True:
        try:
            decision = await ctx.vision.decide(
                params.entry_url, state["history"], state["observation"], params.task
            )
            break
        except VisionParseError as e:
            parse_failures += 1
            ctx.logger.warning(f"Unparsable vision response ({parse_failures}/{MAX_PARSE_FAILURES}): {e}")
            if parse_failures >= MAX_PARSE_FAILURES:
                raise JobFailure(f"Vision model response could not be parsed twice in a row: {e}") from e
        except VisionTransientError as e:
            if transient_attempts >= ctx.retry_budget:
                raise JobFailure(
                    f"Vision provider unavailable after {transient_attempts + 1} attempts: {e}"
                ) from e
            delay = backoff_seconds(transient_attempts, ctx.backoff_base)
            transient_attempts += 1
            ctx.logger.warning(f"Vision provider error, retrying in {delay:.1f}s: {e}")
            await asyncio.sleep(delay)
        except VisionError as e:
            raise JobFailure(f"Vision provider error: {e}") from e

    update = {"decision": decision, "parse_failures": 0}

    if decision.kind == DecisionKind.DONE:
        update.update(outcome="completed", stop_reason="task_complete", summary=decision.text)
    elif decision.kind == DecisionKind.BLOCKED:
        update.update(outcome="blocked", stop_reason="blocked", block_reason=decision.text)
    elif state["current_step"] >= params.max_steps:
        update.update(outcome="max_turns_reached", stop_reason="max_steps_reached")

    log_transition(
        ctx.logger, "decide",
        kind=decision.kind.value,
        action=decision.action.name.value if decision.action else None,
        thought=decision.text,
        outcome=update.get("outcome"),
    )
    return update


async def act(state: AgentState, config: RunnableConfig) -> dict:
    """Execute the chosen action, append the step and publish progress."""
    ctx = _context(config)
    params = state["params"]
    decision = state["decision"]
    seen = state["observation"]

    outcome = await ctx.executor.execute(decision.action)
    page = outcome.observation
    current_step = state["current_step"] + 1

    step = CrawlStep(
        step_index=current_step,
        url=page.url,
        title=page.title,
        action=decision.action,
        model_thought=decision.text,
        action_executed=outcome.ok,
        action_error=outcome.error,
        screenshot_base64=page.screenshot_base64 if params.capture_screenshots else None,
        links=page.links,
    )
    exchange = Exchange(
        seen=seen,
        thought=decision.text,
        action=decision.action,
        result_url=page.url,
        error=outcome.error,
    )

    update = {
        "observation": page,
        "steps": list(state["steps"]) + [step],
        "history": trim_history(list(state["history"]) + [exchange], ctx.history_max_exchanges),
        "current_step": current_step,
        "decision": None,
    }
    if is_checkout_page(page.url, page.title):
        update.update(outcome="completed", stop_reason="checkout_reached")

    ctx.steps_completed = current_step
    ctx.store.update_job(
        ctx.job_id,
        current_step=current_step,
        result=build_result({**state, **update}, ctx),
    )
    log_transition(
        ctx.logger, "act",
        step=current_step,
        action=decision.action.name.value,
        url=page.url,
        error=outcome.error,
        outcome=update.get("outcome"),
    )
    return update
