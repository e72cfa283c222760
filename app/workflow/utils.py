import logging
from typing import List, Optional
from urllib.parse import urldefrag, urljoin, urlsplit
from app.core.config import CHECKOUT_PATTERN, CTA_PATTERN
from app.models.actions import Exchange

def trim_history(history: List[Exchange], max_exchanges: int) -> List[Exchange]:
    """Keep only the most recent exchanges.

    The task framing is not part of this list; it is rebuilt at the head of
    every request, so trimming never drops it.
    """
    if max_exchanges <= 0:
        return []
    return list(history[-max_exchanges:])

def is_checkout_page(url: str, title: Optional[str] = None) -> bool:
    """Whether a url/title pair looks like a cart, checkout or payment page."""
    return bool(CHECKOUT_PATTERN.search(f"{url} {title or ''}"))

def url_origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}".lower()

def page_key(url: str) -> str:
    """Origin, path and query of a url; two links with the same key are the same page."""
    parts = urlsplit(url)
    key = url_origin(url) + (parts.path or "/")
    return f"{key}?{parts.query}" if parts.query else key

def absolute_link(href: str, base: str) -> Optional[str]:
    """Resolve an href against the page url; None for anything that is not http(s)."""
    if not href:
        return None
    full, _ = urldefrag(urljoin(base, href.strip()))
    if urlsplit(full).scheme not in ("http", "https"):
        return None
    return full

def is_cta_text(text: str) -> bool:
    """Call-to-action wording, or any short link label."""
    text = (text or "").strip()
    return bool(text) and (bool(CTA_PATTERN.search(text)) or len(text) < 50)

def backoff_seconds(attempt: int, base: float) -> float:
    # attempt is 0-based
    return base * (2 ** attempt)

def short_error(exc: Exception, limit: int = 500) -> str:
    """One-line, bounded description of an exception for job records."""
    text = str(exc).strip().splitlines()[0] if str(exc).strip() else type(exc).__name__
    return text[:limit]

def log_transition(logger: logging.Logger, node_name: str, **changes):
    """Log what a node changed, eliding screenshots."""
    parts = []
    for k, v in changes.items():
        if isinstance(v, str) and len(v) > 200:
            v = f"<{len(v)} chars>"
        parts.append(f"{k}={v}")
    logger.info(f"Node: {node_name} | " + ", ".join(parts))
