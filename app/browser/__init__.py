from .executor import (
    ActionExecutor,
    BrowserCrashedError,
    BrowserUnavailableError,
    browser_session,
    denormalize,
    ensure_browser_engine,
    to_pixel,
)
from .inspector import PageInspector, PageVisitError

__all__ = [
    'ActionExecutor',
    'BrowserCrashedError',
    'BrowserUnavailableError',
    'PageInspector',
    'PageVisitError',
    'browser_session',
    'denormalize',
    'ensure_browser_engine',
    'to_pixel',
]
