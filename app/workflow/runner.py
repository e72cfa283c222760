import asyncio
import logging
from typing import Callable, Optional
from app.browser.executor import BrowserCrashedError, browser_session
from app.config import settings as default_settings
from app.core.logging import setup_job_logger, release_job_logger
from app.job_store import JobStore, job_store
from app.models.job import Job, JobParams, JobStatus
from app.models.state import AgentState
from app.vision.client import VisionDecisionClient
from app.workflow.graph import workflow, recursion_limit
from app.workflow.nodes import JobFailure, RunContext, build_result
from app.workflow.utils import short_error

logger = logging.getLogger(__name__)

_TERMINAL_BY_OUTCOME = {
    "completed": JobStatus.COMPLETED,
    "blocked": JobStatus.BLOCKED,
    "max_turns_reached": JobStatus.MAX_TURNS_REACHED,
}

class AgentRunner:
    """Drives one job from pending to a terminal status.

    The browser session belongs to this runner for the whole run and is
    closed on every exit path. Every failure ends as a ``failed`` record in
    the job store; ``run`` itself never raises (except for cancellation,
    which is recorded and then re-raised).
    """

    def __init__(
        self,
        job_id: str,
        params: JobParams,
        store: JobStore = None,
        vision: Optional[VisionDecisionClient] = None,
        session_factory: Callable = None,
        settings=None,
    ):
        self.job_id = job_id
        self.params = params
        self.store = store or job_store
        self.vision = vision
        self.session_factory = session_factory or browser_session
        self.settings = settings or default_settings
        self.logger = logger

    def initial_state(self) -> AgentState:
        return AgentState(
            job_id=self.job_id,
            params=self.params,
            observation=None,
            entry=None,
            history=[],
            steps=[],
            decision=None,
            current_step=0,
            parse_failures=0,
            outcome=None,
            stop_reason=None,
            summary=None,
            block_reason=None,
        )

    async def run(self) -> Optional[Job]:
        """Execute the agent loop and write exactly one terminal update."""
        ctx = None
        self.logger = setup_job_logger(self.job_id)
        try:
            self.store.update_job(
                self.job_id, status=JobStatus.RUNNING, current_step=0, total_steps=self.params.max_steps
            )
            self.logger.info(f"Starting agent run for {self.params.entry_url} (max_steps={self.params.max_steps})")
            vision = self.vision or VisionDecisionClient()

            async with self.session_factory(
                self.params.viewport_width, self.params.viewport_height, self.settings.BROWSER_HEADLESS
            ) as executor:
                ctx = RunContext(
                    job_id=self.job_id,
                    store=self.store,
                    executor=executor,
                    vision=vision,
                    logger=self.logger,
                    history_max_exchanges=self.settings.HISTORY_MAX_EXCHANGES,
                    retry_budget=self.settings.PROVIDER_RETRY_BUDGET,
                    backoff_base=self.settings.RETRY_BACKOFF_SECONDS,
                )
                final_state = await asyncio.wait_for(
                    workflow.ainvoke(
                        self.initial_state(),
                        config={
                            "recursion_limit": recursion_limit(self.params.max_steps),
                            "configurable": {"context": ctx},
                        },
                    ),
                    timeout=self.settings.JOB_TIMEOUT_SECONDS,
                )

            self._finish(final_state, ctx)

        except asyncio.CancelledError:
            self._fail("Job was cancelled before it finished", ctx)
            raise
        except asyncio.TimeoutError:
            self._fail(f"Job exceeded its time budget of {self.settings.JOB_TIMEOUT_SECONDS} seconds", ctx)
        except JobFailure as e:
            self._fail(str(e), ctx)
        except BrowserCrashedError as e:
            self._fail(f"Browser session crashed: {short_error(e)}", ctx)
        except Exception as e:
            self.logger.exception(f"Unexpected error in agent run: {e}")
            self._fail(f"Unexpected error: {type(e).__name__}: {short_error(e)}", ctx)
        finally:
            release_job_logger(self.logger)

        return self.store.get_job(self.job_id)

    def _finish(self, final_state: AgentState, ctx: RunContext) -> None:
        outcome = final_state.get("outcome") or "completed"
        status = _TERMINAL_BY_OUTCOME[outcome]
        result = build_result(final_state, ctx)
        self.store.update_job(
            self.job_id,
            status=status,
            result=result,
            error=None,
            current_step=final_state["current_step"],
        )
        self.logger.info(
            f"Agent run finished: {status} after {final_state['current_step']} steps ({result.stop_reason})"
        )

    def _fail(self, message: str, ctx: Optional[RunContext]) -> None:
        steps = ctx.steps_completed if ctx else 0
        error = f"{message} (after {steps} steps)"
        self.store.update_job(self.job_id, status=JobStatus.FAILED, error=error, result=None)
        self.logger.error(f"Agent run failed: {error}")
