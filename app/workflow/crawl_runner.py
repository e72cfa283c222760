import asyncio
import logging
import time
from collections import deque
from typing import Callable, List, Optional
from app.browser.executor import BrowserCrashedError, browser_session
from app.browser.inspector import PageInspector, PageVisitError
from app.config import settings as default_settings
from app.core.config import QUIZ_STEP_WAIT_MS, QUIZ_TRANSITION_MS, QUIZ_STALL_LIMIT
from app.core.logging import setup_job_logger, release_job_logger
from app.job_store import JobStore, job_store
from app.models.job import CrawlLink, CrawlParams, CrawlResult, CrawlStep, Job, JobStatus
from app.workflow.utils import (
    absolute_link,
    backoff_seconds,
    is_checkout_page,
    is_cta_text,
    page_key,
    short_error,
    url_origin,
)

logger = logging.getLogger(__name__)


class CrawlFailure(Exception):
    """Ends the current crawl as failed with a readable message."""


class CrawlRunner:
    """Walks a funnel without a vision model.

    The default walk is breadth-first over links, bounded by ``max_steps``
    pages and ``max_depth`` hops from the entry page. In quiz mode the runner
    stays on one page and keeps clicking the most likely "next" control,
    capturing each new screen, until it reaches a checkout, runs out of
    controls or the screen stops changing.
    """

    def __init__(
        self,
        job_id: str,
        params: CrawlParams,
        store: JobStore = None,
        session_factory: Callable = None,
        inspector_factory: Callable = PageInspector,
        settings=None,
    ):
        self.job_id = job_id
        self.params = params
        self.store = store or job_store
        self.session_factory = session_factory or browser_session
        self.inspector_factory = inspector_factory
        self.settings = settings or default_settings
        self.logger = logger
        self.steps: List[CrawlStep] = []
        self.visited: List[str] = []
        self.started_at = time.monotonic()

    async def run(self) -> Optional[Job]:
        """Run the crawl and write exactly one terminal update."""
        self.logger = setup_job_logger(self.job_id)
        self.started_at = time.monotonic()
        try:
            self.store.update_job(
                self.job_id, status=JobStatus.RUNNING, current_step=0, total_steps=self.params.step_limit
            )
            mode = "quiz" if self.params.quiz_mode else "link"
            self.logger.info(f"Starting {mode} crawl of {self.params.entry_url}")

            async with self.session_factory(
                self.params.viewport_width, self.params.viewport_height, self.settings.BROWSER_HEADLESS
            ) as executor:
                inspector = self.inspector_factory(executor.page)
                if self.params.capture_network:
                    inspector.capture_network()
                walk = self.crawl_quiz if self.params.quiz_mode else self.crawl_links
                stop_reason = await asyncio.wait_for(walk(inspector), timeout=self.settings.JOB_TIMEOUT_SECONDS)

            result = self.build_result(stop_reason)
            self.store.update_job(
                self.job_id,
                status=JobStatus.COMPLETED,
                result=result,
                error=None,
                current_step=len(self.steps),
                total_steps=len(self.steps),
            )
            self.logger.info(f"Crawl finished after {len(self.steps)} pages ({stop_reason})")

        except asyncio.CancelledError:
            self._fail("Job was cancelled before it finished")
            raise
        except asyncio.TimeoutError:
            self._fail(f"Job exceeded its time budget of {self.settings.JOB_TIMEOUT_SECONDS} seconds")
        except CrawlFailure as e:
            self._fail(str(e))
        except BrowserCrashedError as e:
            self._fail(f"Browser session crashed: {short_error(e)}")
        except Exception as e:
            self.logger.exception(f"Unexpected error in crawl: {e}")
            self._fail(f"Unexpected error: {type(e).__name__}: {short_error(e)}")
        finally:
            release_job_logger(self.logger)

        return self.store.get_job(self.job_id)

    def build_result(self, stop_reason: Optional[str] = None) -> CrawlResult:
        return CrawlResult(
            entry_url=self.params.entry_url,
            steps=list(self.steps),
            total_steps=len(self.steps),
            duration_ms=int((time.monotonic() - self.started_at) * 1000),
            stop_reason=stop_reason,
            visited_urls=list(self.visited),
            is_quiz_funnel=self.params.quiz_mode,
        )

    async def open_entry(self, inspector, url: str) -> str:
        """Load the entry page, retrying network failures with backoff."""
        attempt = 0
        while True:
            try:
                final_url = await inspector.visit(url)
            except PageVisitError as e:
                error = str(e)
            else:
                if final_url:
                    return final_url
                error = "no response"
            if attempt >= self.settings.PROVIDER_RETRY_BUDGET:
                raise CrawlFailure(f"Could not open {url} after {attempt + 1} attempts: {error}")
            delay = backoff_seconds(attempt, self.settings.RETRY_BACKOFF_SECONDS)
            attempt += 1
            self.logger.warning(f"Entry page failed to load, retrying in {delay:.1f}s: {error}")
            await asyncio.sleep(delay)

    async def crawl_links(self, inspector) -> str:
        """Breadth-first walk; returns the stop reason."""
        params = self.params
        queue = deque([(page_key(params.entry_url), 0)])
        seen = set()
        origin = url_origin(params.entry_url)

        while queue and len(self.steps) < params.max_steps:
            url, depth = queue.popleft()
            if url in seen or depth > params.max_depth:
                continue
            seen.add(url)
            self.visited.append(url)
            inspector.reset_network()

            if depth == 0:
                final_url = await self.open_entry(inspector, url)
                # A redirect on the entry page defines the site being crawled
                origin = url_origin(final_url)
            else:
                try:
                    final_url = await inspector.visit(url)
                except PageVisitError as e:
                    self.logger.warning(f"Skipping {url}: {e}")
                    continue
                if final_url is None:
                    continue
                if params.follow_same_origin_only and url_origin(final_url) != origin:
                    self.logger.info(f"Skipping {url}: redirected off-site to {final_url}")
                    continue

            try:
                step = await self.capture_step(inspector, final_url, content_text=params.max_steps == 1)
            except PageVisitError as e:
                if depth == 0:
                    raise CrawlFailure(f"Could not read {final_url}: {e}") from e
                self.logger.warning(f"Skipping {final_url}: {e}")
                continue
            self.record(step)

            if depth < params.max_depth:
                current = page_key(final_url)
                for link in step.links:
                    target = page_key(link)
                    if target == current or target in seen:
                        continue
                    if params.follow_same_origin_only and url_origin(link) != origin:
                        continue
                    queue.append((target, depth + 1))

        if len(self.steps) >= params.max_steps and queue:
            return "max_steps_reached"
        return "queue_exhausted"

    async def crawl_quiz(self, inspector) -> str:
        """Click through a single-page quiz; returns the stop reason."""
        params = self.params
        entry = page_key(params.entry_url)
        self.visited.append(entry)
        await self.open_entry(inspector, entry)

        stalls = 0
        capture = True
        while len(self.steps) < params.quiz_max_steps:
            fingerprint = await inspector.fingerprint()
            if capture:
                step = await self.capture_step(inspector, inspector.url, quiz=True)
                self.record(step)
                inspector.reset_network()
                if is_checkout_page(step.url, step.title):
                    return "checkout_reached"

            if not await inspector.advance():
                return "no_advance"
            await inspector.wait(QUIZ_STEP_WAIT_MS)
            changed = await inspector.fingerprint() != fingerprint
            if not changed:
                await inspector.wait(QUIZ_TRANSITION_MS)
                changed = await inspector.fingerprint() != fingerprint

            if changed:
                stalls = 0
                capture = True
            else:
                stalls += 1
                capture = False
                self.logger.info(f"Quiz screen did not change after a click ({stalls}/{QUIZ_STALL_LIMIT})")
                if stalls >= QUIZ_STALL_LIMIT:
                    return "quiz_stalled"

        return "max_steps_reached"

    async def capture_step(self, inspector, url: str, quiz: bool = False, content_text: bool = False) -> CrawlStep:
        params = self.params
        links: List[str] = []
        ctas: List[CrawlLink] = []
        for anchor in await inspector.anchors():
            full = absolute_link(anchor.get("href", ""), url)
            if not full:
                continue
            if full not in links:
                links.append(full)
            text = anchor.get("text") or ""
            if is_cta_text(text):
                ctas.append(CrawlLink(href=full, text=text))

        title = await inspector.title()
        label = await inspector.step_label() if quiz else None
        return CrawlStep(
            step_index=len(self.steps) + 1,
            url=url,
            title=label or title,
            screenshot_base64=await inspector.screenshot() if params.capture_screenshots else None,
            links=links,
            cta_buttons=ctas,
            forms=await inspector.forms(),
            network_requests=list(inspector.requests) if params.capture_network else [],
            cookies=await inspector.cookies() if params.capture_cookies else [],
            dom_length=await inspector.dom_length(),
            content_text=await inspector.body_text() if content_text else None,
            is_quiz_step=quiz,
            quiz_step_label=label or None,
        )

    def record(self, step: CrawlStep) -> None:
        """Append a step and publish progress."""
        self.steps.append(step)
        self.store.update_job(self.job_id, current_step=len(self.steps), result=self.build_result())
        self.logger.info(
            f"Captured page {step.step_index}: {step.url} "
            f"({len(step.links)} links, {len(step.cta_buttons)} CTAs, {len(step.forms)} forms)"
        )

    def _fail(self, message: str) -> None:
        error = f"{message} (after {len(self.steps)} steps)"
        self.store.update_job(self.job_id, status=JobStatus.FAILED, error=error, result=None)
        self.logger.error(f"Crawl failed: {error}")
