"""Read-only page inspection for the deterministic crawler.

Unlike the ActionExecutor this never acts on coordinates: it loads urls,
reads what a page offers (links, forms, cookies, requests) and, in quiz
mode, clicks the most likely "next" control.
"""
import base64
import logging
from typing import Dict, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from app.browser.executor import BrowserCrashedError, is_crash_error
from app.core.config import (
    CRAWL_NAVIGATION_TIMEOUT_MS,
    CRAWL_SCREENSHOT_TIMEOUT_MS,
    CONTENT_TEXT_LIMIT,
    SETTLE_TIMEOUT_MS,
    TRACKING_PATTERN,
    CHECKOUT_REQUEST_PATTERN,
    QUIZ_NEXT_PATTERN,
)
from app.models.job import CrawlCookie, CrawlForm, NetworkRequest

logger = logging.getLogger(__name__)


class PageVisitError(RuntimeError):
    """A page could not be loaded or read. The browser itself is still usable."""


ANCHORS_JS = """
els => els.map(a => ({href: a.href, text: (a.textContent || '').trim().slice(0, 200)}))
"""

FORMS_JS = """
forms => forms.map(form => {
  const inputs = Array.from(form.querySelectorAll('input, select, textarea'))
    .filter(el => el.name)
    .map(el => ({name: el.name, type: (el.type || 'text').toLowerCase(), required: !!el.required}));
  const submit = form.querySelector('button[type="submit"], input[type="submit"]');
  return {
    action: form.action || '',
    method: (form.method || 'get').toLowerCase(),
    inputs,
    submit_button_text: submit ? (submit.textContent || submit.value || '').trim().slice(0, 100) : null,
  };
})
"""

FINGERPRINT_JS = """
() => {
  const main = document.querySelector('main, [role="main"], .quiz-container, .quiz-content, [class*="quiz"], #quiz, .content, [class*="content"]') || document.body;
  const text = (main.innerText || '').slice(0, 5000);
  const h1 = document.querySelector('h1')?.innerText || '';
  const h2 = document.querySelector('h2')?.innerText || '';
  const stepEl = document.querySelector('[data-step], [data-question], .step, .slide, [class*="step"]');
  const stepAttr = stepEl ? (stepEl.getAttribute('data-step') || stepEl.getAttribute('data-question') || stepEl.className) : '';
  const options = Array.from(document.querySelectorAll('[class*="option"], [class*="answer"], [class*="choice"], input[type="radio"]:checked, [aria-selected="true"]'))
    .map(el => (el.innerText || '').slice(0, 100) || el.value || '').join('|');
  return `${h1}|${h2}|${stepAttr}|${text.length}|${options}|${text.slice(0, 800)}`;
}
"""

STEP_LABEL_JS = """
() => {
  const h1 = document.querySelector('h1')?.innerText?.trim();
  const h2 = document.querySelector('h2')?.innerText?.trim();
  const question = document.querySelector('[class*="question"], [data-question], .quiz-question')?.innerText?.trim();
  return h1 || h2 || question || '';
}
"""

# Clicks the highest-priority visible control; labelled "next"-style buttons win.
ADVANCE_JS = """
nextPattern => {
  const pattern = new RegExp(nextPattern, 'i');
  const candidates = [];
  document.querySelectorAll('button, [role="button"], input[type="submit"], a[class*="btn"], a[class*="button"], label[for], input[type="radio"]:not(:checked), [class*="option"]:not([aria-selected="true"]), [class*="answer"], [class*="choice"], [class*="cta"], [class*="next"]').forEach(el => {
    const text = (el.innerText || el.value || el.placeholder || '').trim();
    if (!text || text.length > 200) return;
    const rect = el.getBoundingClientRect();
    if (rect.width < 5 || rect.height < 5) return;
    const style = window.getComputedStyle(el);
    if (style.visibility === 'hidden' || style.display === 'none') return;
    const cls = typeof el.className === 'string' ? el.className : '';
    let priority = 1;
    if (pattern.test(text)) priority = 10;
    else if (el.type === 'submit') priority = 7;
    else if (el.tagName === 'BUTTON' || el.getAttribute('role') === 'button') priority = 6;
    else if (el.type === 'radio') priority = 5;
    else if (/btn|button|cta|next|submit/i.test(cls)) priority = 4;
    else if (el.tagName === 'LABEL') priority = 3;
    else if (/option|answer|choice/i.test(cls)) priority = 2;
    candidates.push({el, priority});
  });
  candidates.sort((a, b) => b.priority - a.priority);
  for (const {el} of candidates) {
    try { el.click(); return true; } catch (e) { /* next candidate */ }
  }
  return false;
}
"""


def network_request(url: str, method: str = "GET", resource_type: str = "") -> NetworkRequest:
    """A captured request, tagged when it looks like tracking or checkout traffic."""
    return NetworkRequest(
        url=url,
        method=method,
        resource_type=resource_type,
        is_tracking=bool(TRACKING_PATTERN.search(url)),
        is_checkout=bool(CHECKOUT_REQUEST_PATTERN.search(url)),
    )


class PageInspector:
    """Wraps one Playwright page; every Playwright failure surfaces as
    PageVisitError, or BrowserCrashedError once the browser is gone."""

    def __init__(self, page: Page):
        self.page = page
        self.requests: List[NetworkRequest] = []

    @property
    def url(self) -> str:
        return self.page.url

    def capture_network(self) -> None:
        self.page.context.on("request", self._on_request)
        self.page.context.on("response", self._on_response)

    def reset_network(self) -> None:
        self.requests = []

    def _on_request(self, request) -> None:
        self.requests.append(network_request(request.url, request.method, request.resource_type))

    def _on_response(self, response) -> None:
        request = response.request
        for captured in self.requests:
            if captured.status is None and captured.url == request.url and captured.method == request.method:
                captured.status = response.status
                break

    async def _call(self, awaitable):
        try:
            return await awaitable
        except PlaywrightError as e:
            if is_crash_error(e):
                raise BrowserCrashedError(str(e)) from e
            raise PageVisitError(str(e)) from e

    async def visit(self, url: str) -> Optional[str]:
        """Load ``url`` and return where the browser ended up, or None without a response."""
        response = await self._call(
            self.page.goto(url, wait_until="domcontentloaded", timeout=CRAWL_NAVIGATION_TIMEOUT_MS)
        )
        if response is None:
            return None
        try:
            await self.page.wait_for_load_state("networkidle", timeout=SETTLE_TIMEOUT_MS)
        except PlaywrightTimeoutError:
            pass
        return self.page.url

    async def title(self) -> str:
        return await self._call(self.page.title())

    async def screenshot(self) -> Optional[str]:
        """Full-page PNG as base64; None when the capture times out."""
        try:
            raw = await self._call(
                self.page.screenshot(full_page=True, type="png", timeout=CRAWL_SCREENSHOT_TIMEOUT_MS)
            )
        except PageVisitError as e:
            logger.warning(f"Screenshot of {self.url} skipped: {e}")
            return None
        return base64.b64encode(raw).decode("ascii")

    async def anchors(self) -> List[Dict[str, str]]:
        return await self._call(self.page.eval_on_selector_all("a[href]", ANCHORS_JS))

    async def forms(self) -> List[CrawlForm]:
        raw = await self._call(self.page.eval_on_selector_all("form[action]", FORMS_JS))
        return [CrawlForm(**form) for form in raw]

    async def cookies(self) -> List[CrawlCookie]:
        raw = await self._call(self.page.context.cookies())
        return [
            CrawlCookie(
                name=c["name"],
                domain=c.get("domain", ""),
                path=c.get("path", "/"),
                expires=c.get("expires"),
                http_only=c.get("httpOnly", False),
                secure=c.get("secure", False),
            )
            for c in raw
        ]

    async def dom_length(self) -> int:
        return await self._call(self.page.evaluate("() => document.documentElement.outerHTML.length"))

    async def body_text(self) -> str:
        return await self._call(
            self.page.evaluate(f"() => (document.body?.innerText ?? '').slice(0, {CONTENT_TEXT_LIMIT})")
        )

    async def fingerprint(self) -> str:
        return await self._call(self.page.evaluate(FINGERPRINT_JS))

    async def step_label(self) -> str:
        return await self._call(self.page.evaluate(STEP_LABEL_JS))

    async def advance(self) -> bool:
        """Click the control most likely to move a quiz forward."""
        return bool(await self._call(self.page.evaluate(ADVANCE_JS, QUIZ_NEXT_PATTERN)))

    async def wait(self, ms: int) -> None:
        await self._call(self.page.wait_for_timeout(ms))
