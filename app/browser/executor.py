"""Playwright adapter that performs one UI action at a time.

Coordinates arrive on the model's 0-999 grid and are mapped onto the real
viewport before dispatch. Every call hands back a fresh observation of the
page (screenshot, url, title, links) so the caller always sees the effect of
what it just did.
"""
import asyncio
import base64
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from app.core.config import (
    GRID_MAX,
    NAVIGATION_TIMEOUT_MS,
    ACTION_TIMEOUT_MS,
    SCREENSHOT_TIMEOUT_MS,
    SETTLE_TIMEOUT_MS,
    POST_ACTION_WAIT_MS,
    SCREENSHOT_QUALITY,
    SCROLL_AMOUNT_PX,
    MAX_LINKS_PER_STEP,
    USER_AGENT,
)
from app.models.actions import Action, ActionName, ActionOutcome, PageObservation

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

# Substrings of Playwright errors raised once the page or browser is gone
_CRASH_MARKERS = ("target closed", "has been closed", "browser has disconnected", "crashed")


class BrowserCrashedError(RuntimeError):
    """The browser session is gone and cannot be recovered."""


class BrowserUnavailableError(RuntimeError):
    """No browser engine can be launched on this host."""


def denormalize(value: float, dimension: int) -> int:
    """Map a 0-999 grid coordinate onto a pixel axis of ``dimension`` pixels."""
    return round(value / GRID_MAX * dimension)


def to_pixel(value: float, dimension: int) -> int:
    """Denormalize and clamp to the nearest in-bounds pixel."""
    value = min(max(float(value), 0.0), float(GRID_MAX))
    return min(max(denormalize(value, dimension), 0), dimension - 1)


def is_crash_error(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _CRASH_MARKERS)


class ActionExecutor:
    """Executes abstract actions against a single Playwright page."""

    def __init__(self, page: Page, width: int, height: int):
        self.page = page
        self.width = width
        self.height = height

    def point(self, args: dict, x_key: str = "x", y_key: str = "y"):
        return to_pixel(args.get(x_key, 0), self.width), to_pixel(args.get(y_key, 0), self.height)

    async def open(self, url: str) -> ActionOutcome:
        """Navigate to the entry url and observe the landing page."""
        return await self.execute(Action(name=ActionName.NAVIGATE, args={"url": url}))

    async def execute(self, action: Action) -> ActionOutcome:
        """Run one action and return the page state afterwards.

        Timeouts and ordinary Playwright failures come back as a recoverable
        outcome. A dead page or browser raises BrowserCrashedError.
        """
        error = None
        try:
            await asyncio.wait_for(self._dispatch(action), timeout=NAVIGATION_TIMEOUT_MS / 1000 + 5)
            await self._settle()
        except (PlaywrightTimeoutError, asyncio.TimeoutError) as e:
            error = f"{action.name} timed out: {e}" if str(e) else f"{action.name} timed out"
        except PlaywrightError as e:
            if is_crash_error(e):
                raise BrowserCrashedError(str(e)) from e
            error = f"{action.name} failed: {e}"
        except ValueError as e:
            error = f"{action.name} rejected: {e}"

        observation, capture_error = await self._observe()
        error = error or capture_error
        if error:
            logger.warning(error)
        return ActionOutcome(ok=error is None, observation=observation, error=error)

    async def observe(self) -> PageObservation:
        """Screenshot the viewport and read url, title and links."""
        observation, _ = await self._observe()
        return observation

    async def _observe(self):
        try:
            screenshot, error = await self._screenshot()
            title = await self._title()
            links = await self._links()
        except PlaywrightError as e:
            if is_crash_error(e):
                raise BrowserCrashedError(str(e)) from e
            raise
        observation = PageObservation(url=self.page.url, title=title, screenshot_base64=screenshot, links=links)
        return observation, error

    async def _screenshot(self):
        """Base64 JPEG of the viewport, retried once on timeout.

        A second timeout yields an empty screenshot and an error message.
        """
        error = None
        for attempt in range(2):
            try:
                raw = await self.page.screenshot(
                    type="jpeg", quality=SCREENSHOT_QUALITY, timeout=SCREENSHOT_TIMEOUT_MS
                )
                return base64.b64encode(raw).decode("ascii"), None
            except PlaywrightTimeoutError as e:
                logger.warning(f"Screenshot timed out (attempt {attempt + 1}/2): {e}")
                error = e
        return "", f"screenshot timed out: {error}"

    async def _title(self) -> str:
        try:
            return await self.page.title()
        except PlaywrightError as e:
            if is_crash_error(e):
                raise
            # Title is unavailable while a navigation is in flight
            return ""

    async def _links(self) -> List[str]:
        try:
            hrefs = await self.page.eval_on_selector_all(
                "a[href]", "els => els.map(e => e.href).filter(h => h.startsWith('http'))"
            )
        except PlaywrightError as e:
            if is_crash_error(e):
                raise
            return []
        seen = []
        for href in hrefs:
            if href not in seen:
                seen.append(href)
            if len(seen) >= MAX_LINKS_PER_STEP:
                break
        return seen

    async def _settle(self) -> None:
        try:
            await self.page.wait_for_load_state("domcontentloaded", timeout=SETTLE_TIMEOUT_MS)
        except PlaywrightTimeoutError:
            pass
        await self.page.wait_for_timeout(POST_ACTION_WAIT_MS)

    async def _dispatch(self, action: Action) -> None:
        page = self.page
        args = action.args
        name = action.name

        if name == ActionName.NAVIGATE:
            url = args.get("url")
            if not url:
                raise ValueError("navigate requires a url")
            await page.goto(url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)
            try:
                await page.wait_for_load_state("networkidle", timeout=SETTLE_TIMEOUT_MS)
            except PlaywrightTimeoutError:
                pass

        elif name == ActionName.CLICK_AT:
            x, y = self.point(args)
            await page.mouse.click(x, y)

        elif name == ActionName.TYPE_TEXT_AT:
            x, y = self.point(args)
            await page.mouse.click(x, y)
            await page.wait_for_timeout(200)
            if args.get("clear_before_typing", True):
                await page.keyboard.press("Control+A")
                await page.keyboard.press("Backspace")
            await page.keyboard.type(str(args.get("text", "")), delay=30)
            if args.get("press_enter", False):
                await page.keyboard.press("Enter")

        elif name == ActionName.HOVER_AT:
            x, y = self.point(args)
            await page.mouse.move(x, y)

        elif name == ActionName.SCROLL_DOCUMENT:
            dx, dy = _scroll_delta(args.get("direction", "down"), SCROLL_AMOUNT_PX)
            await page.mouse.wheel(dx, dy)

        elif name == ActionName.SCROLL_AT:
            x, y = self.point(args)
            magnitude = float(args.get("magnitude", 800))
            amount = round(min(max(magnitude, 0), GRID_MAX) / GRID_MAX * self.height)
            dx, dy = _scroll_delta(args.get("direction", "down"), amount)
            await page.mouse.move(x, y)
            await page.mouse.wheel(dx, dy)

        elif name == ActionName.KEY_COMBINATION:
            keys = args.get("keys")
            if keys:
                await page.keyboard.press(keys)

        elif name == ActionName.GO_BACK:
            await page.go_back(wait_until="domcontentloaded", timeout=ACTION_TIMEOUT_MS)

        elif name == ActionName.GO_FORWARD:
            await page.go_forward(wait_until="domcontentloaded", timeout=ACTION_TIMEOUT_MS)

        elif name == ActionName.WAIT:
            ms = int(args.get("ms", 5000))
            await page.wait_for_timeout(min(max(ms, 0), ACTION_TIMEOUT_MS))


def _scroll_delta(direction: str, amount: int):
    return {
        "up": (0, -amount),
        "down": (0, amount),
        "left": (-amount, 0),
        "right": (amount, 0),
    }.get(direction, (0, amount))


_engine_checked = False


async def ensure_browser_engine() -> None:
    """Fail fast when the Chromium build Playwright drives is missing.

    A successful check is remembered for the life of the process.
    """
    global _engine_checked
    if _engine_checked:
        return
    try:
        async with async_playwright() as p:
            executable = p.chromium.executable_path
    except (PlaywrightError, OSError) as e:
        raise BrowserUnavailableError(f"Playwright driver failed to start: {e}") from e
    if not Path(executable).exists():
        raise BrowserUnavailableError(
            f"Chromium is not installed at {executable}; run `playwright install chromium`"
        )
    _engine_checked = True


@asynccontextmanager
async def browser_session(width: int, height: int, headless: bool = True) -> AsyncIterator[ActionExecutor]:
    """Launch a private Chromium session and yield an executor bound to it.

    The browser is closed on every exit path.
    """
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=headless, args=LAUNCH_ARGS)
        try:
            context = await browser.new_context(
                viewport={"width": width, "height": height},
                user_agent=USER_AGENT,
                ignore_https_errors=True,
            )
            page = await context.new_page()
            page.set_default_timeout(ACTION_TIMEOUT_MS)
            yield ActionExecutor(page, width, height)
        finally:
            try:
                await browser.close()
            except PlaywrightError:
                logger.warning("Browser was already gone at close time")
            logger.info("Browser session closed")
