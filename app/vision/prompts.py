FUNNEL_NAVIGATION_PROMPT = """You are a marketing funnel analyst operating a web browser through screenshots.
Your job is to walk this sales funnel from the landing page through to the checkout or payment page.

How to move forward:
1. On each page find the primary call to action that advances the funnel ("Buy Now", "Add to Cart", "Continue", "Next", "Get Started", "Take Quiz", "See Results", "Claim Offer", "Order Now", "Checkout").
2. Quiz and survey pages: pick an answer option first, then press the continue/next/submit button.
3. Forms: fill them with obvious test data (name John Smith, email test@example.com, phone 555-0100, zip 90210).
4. Close cookie banners, popups, consent dialogs and age gates by accepting or dismissing them.
5. With several CTAs, prefer the one closest to a purchase.
6. Do not wait on videos or countdown timers, click the CTA under them.
7. Scroll down when no CTA is visible; many pages keep it below the fold.

Stop and call task_complete when:
- you are on a checkout or payment page, or an order confirmation / thank-you page
- no forward CTA exists even after scrolling
- you were sent to an unrelated external domain

Call report_blocked when a CAPTCHA, a login wall, a paywall or a request for real payment details stops you.

Never click menus, footers, back links, social links or share buttons. Never enter real payment data.
If a click does not change the page, try something else instead of repeating it.

Coordinates are on a 0-999 grid over the visible screenshot: (0, 0) is the top-left corner and (999, 999) the bottom-right.
Call exactly one function per turn."""

TASK_HEADER = "Start URL: {entry_url}"


def _point_params(extra: dict = None, required: list = None) -> dict:
    properties = {
        "x": {"type": "integer", "description": "Horizontal position on the 0-999 grid"},
        "y": {"type": "integer", "description": "Vertical position on the 0-999 grid"},
    }
    properties.update(extra or {})
    return {
        "type": "object",
        "properties": properties,
        "required": ["x", "y"] + (required or []),
    }


_DIRECTION = {"type": "string", "enum": ["up", "down", "left", "right"]}


def _tool(name: str, description: str, parameters: dict = None) -> dict:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": parameters or {"type": "object", "properties": {}},
        },
    }


BROWSER_TOOLS = [
    _tool("navigate", "Open a URL in the current tab.", {
        "type": "object",
        "properties": {"url": {"type": "string"}},
        "required": ["url"],
    }),
    _tool("click_at", "Click at a point on the screen.", _point_params()),
    _tool("type_text_at", "Click a field at a point and type text into it.", _point_params({
        "text": {"type": "string"},
        "press_enter": {"type": "boolean"},
        "clear_before_typing": {"type": "boolean"},
    }, ["text"])),
    _tool("hover_at", "Move the mouse over a point.", _point_params()),
    _tool("scroll_document", "Scroll the whole page.", {
        "type": "object",
        "properties": {"direction": _DIRECTION},
        "required": ["direction"],
    }),
    _tool("scroll_at", "Scroll the element under a point.", _point_params({
        "direction": _DIRECTION,
        "magnitude": {"type": "integer", "description": "Distance on the 0-999 grid"},
    }, ["direction"])),
    _tool("key_combination", "Press keys, e.g. 'Enter' or 'Control+C'.", {
        "type": "object",
        "properties": {"keys": {"type": "string"}},
        "required": ["keys"],
    }),
    _tool("go_back", "Go back one page in history."),
    _tool("go_forward", "Go forward one page in history."),
    _tool("wait", "Wait for the page to change.", {
        "type": "object",
        "properties": {"ms": {"type": "integer"}},
    }),
    _tool("task_complete", "The funnel has been walked as far as it goes.", {
        "type": "object",
        "properties": {"summary": {"type": "string", "description": "What was reached and why you stopped"}},
        "required": ["summary"],
    }),
    _tool("report_blocked", "Progress is impossible (captcha, login, paywall, real payment).", {
        "type": "object",
        "properties": {"reason": {"type": "string"}},
        "required": ["reason"],
    }),
]

DONE_TOOL = "task_complete"
BLOCKED_TOOL = "report_blocked"
