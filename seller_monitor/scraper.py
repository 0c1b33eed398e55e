"""Page fetching and result-card extraction for eBay seller searches.

The fetcher renders a search page in Chromium (Playwright) with a few
anti-detection tweaks and returns its HTML; the extractor turns that HTML
into RawItem records and finds the "next page" link.  Neither knows about
recency windows, known items or retries; that policy lives in crawler.py.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional
from urllib.parse import parse_qs, urlencode, urljoin, urlparse

from bs4 import BeautifulSoup
from bs4.element import Tag

from .config import (
    BASE_URL,
    BROWSER_HEADLESS,
    BROWSER_TIMEOUT_MS,
)
from .models import MonitorKind, RawItem

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Raised when a page could not be loaded."""


_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

_LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-setuid-sandbox",
]

_EXTRA_HEADERS = {
    "Accept-Language": "en-US,en;q=0.9",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Cache-Control": "max-age=0",
}

# Hide the usual automation fingerprints before any page script runs.
_STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
window.chrome = { runtime: {} };
"""


# ---- URLs --------------------------------------------------------------------

def search_url(store_identifier: str, seller_handle: str, kind: MonitorKind, base_url: str = BASE_URL) -> str:
    """Build the store search URL for one seller and monitor kind."""
    params = {
        "_dkr": "1",
        "iconV2Request": "true",
        "_blrs": "recall_filtering",
        "_ssn": seller_handle,
        "store_cat": "0",
        "store_name": store_identifier,
        "_oac": "1",
    }
    if kind is MonitorKind.SALES:
        params["LH_Sold"] = "1"
        params["LH_Complete"] = "1"
    else:
        # newly listed first
        params["_sop"] = "10"
    return f"{base_url.rstrip('/')}/sch/i.html?{urlencode(params)}"


def absolute_url(href: Optional[str], base_url: str = BASE_URL) -> Optional[str]:
    if not href:
        return None
    href = href.strip()
    if href.startswith("http://") or href.startswith("https://"):
        return href
    return urljoin(base_url.rstrip("/") + "/", href.lstrip("/"))


def canonical_link(url: str) -> str:
    """Drop the query string and fragment, keeping scheme, host and path."""
    return url.split("?", 1)[0].split("#", 1)[0]


_ITEM_PATH_RE = re.compile(r"/itm/(\d+)")


def extract_item_id(url: Optional[str], base_url: str = BASE_URL) -> Optional[str]:
    """Return the eBay item number from an item URL, or None."""
    if not url:
        return None
    m = _ITEM_PATH_RE.search(url)
    if m:
        return m.group(1)
    full = absolute_url(url, base_url) or ""
    try:
        params = parse_qs(urlparse(full).query)
    except ValueError:
        return None
    for name in ("_id", "item", "itm"):
        values = params.get(name)
        if values and values[0]:
            return values[0]
    return None


# ---- Extraction --------------------------------------------------------------

_LISTED_DATE_RE = re.compile(r"^(Today|Yesterday|[A-Za-z]{3}-\d+\s+\d{2}:\d{2})")


def _text(tag: Optional[Tag]) -> str:
    return tag.get_text(" ", strip=True) if tag is not None else ""


def _card_title(card: Tag) -> str:
    for sel in (
        ".s-card__title .su-styled-text.primary",
        ".s-card__title .su-styled-text:not(.clipped)",
        ".s-card__title",
        ".s-item__title",
    ):
        title = _text(card.select_one(sel))
        if title:
            return title
    return ""


def _card_link(card: Tag) -> Optional[str]:
    for sel in ("a.s-card__link", ".s-card__link", ".su-link", ".s-item__link"):
        tag = card.select_one(sel)
        if tag is not None and tag.get("href"):
            return str(tag["href"])
    return None


def _card_image(card: Tag) -> Optional[str]:
    for sel in (".s-card__image", ".s-item__image-img"):
        tag = card.select_one(sel)
        if tag is not None and tag.get("src"):
            return str(tag["src"])
    return None


def _card_listed_date(card: Tag) -> Optional[str]:
    for row in card.select(".s-card__attribute-row"):
        text = _text(row.select_one(".su-styled-text.secondary.bold.large"))
        if text and _LISTED_DATE_RE.match(text):
            return text
    return None


class ResultPageExtractor:
    """Reads result cards and the pagination control off a search page."""

    def __init__(self, base_url: str = BASE_URL):
        self.base_url = base_url

    def extract_items(self, html: str, kind: MonitorKind) -> List[RawItem]:
        soup = BeautifulSoup(html, "html.parser")
        items: List[RawItem] = []
        for card in soup.select(".s-item, .s-card"):
            price = _text(card.select_one(".s-card__price")) or _text(card.select_one(".s-item__price"))
            raw = RawItem(
                title=_card_title(card),
                link=absolute_url(_card_link(card), self.base_url) or "",
                price=price,
                image_url=_card_image(card),
                new_listing=card.select_one(".s-card__new-listing") is not None,
            )
            if kind is MonitorKind.SALES:
                sold_text = _text(card.select_one(".su-styled-text.positive.default"))
                if not sold_text or "Sold" not in sold_text:
                    continue
                raw.date_text = sold_text
            else:
                raw.date_text = _card_listed_date(card)
            items.append(raw)
        return items

    def next_page_url(self, html: str) -> Optional[str]:
        soup = BeautifulSoup(html, "html.parser")
        nxt = soup.select_one("a.pagination__next")
        if nxt is None or not nxt.get("href"):
            return None
        if str(nxt.get("aria-disabled", "")).lower() == "true":
            return None
        return absolute_url(str(nxt["href"]), self.base_url)


# ---- Fetching ----------------------------------------------------------------

class BrowserPageFetcher:
    """Render pages with headless Chromium and return their HTML.

    A fresh browser is launched per fetch, so instances are safe to share
    between the monitor thread and admin request threads.
    """

    def __init__(
        self,
        *,
        headless: bool = BROWSER_HEADLESS,
        timeout_ms: int = BROWSER_TIMEOUT_MS,
    ):
        self.headless = headless
        self.timeout_ms = timeout_ms

    def fetch(self, url: str, wait_ms: int = 0) -> str:
        # local import so the extractor can be used without Playwright installed
        from playwright.sync_api import Error as PWError
        from playwright.sync_api import sync_playwright

        logger.debug("Loading %s (wait=%dms)", url, wait_ms)
        try:
            with sync_playwright() as p:
                browser = p.chromium.launch(headless=self.headless, args=_LAUNCH_ARGS)
                try:
                    ctx = browser.new_context(
                        viewport={"width": 1920, "height": 1080},
                        user_agent=_USER_AGENT,
                        locale="en-US",
                        timezone_id="America/New_York",
                        color_scheme="light",
                        extra_http_headers=_EXTRA_HEADERS,
                    )
                    ctx.add_init_script(_STEALTH_SCRIPT)
                    page = ctx.new_page()
                    page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
                    if wait_ms > 0:
                        page.wait_for_timeout(wait_ms)
                    html = page.content()
                    ctx.close()
                finally:
                    browser.close()
        except PWError as e:
            raise FetchError(f"Failed to load {url}: {e}") from e

        if not html:
            raise FetchError(f"Empty page for {url}")
        return html


__all__ = [
    "FetchError",
    "search_url",
    "absolute_url",
    "canonical_link",
    "extract_item_id",
    "ResultPageExtractor",
    "BrowserPageFetcher",
]
