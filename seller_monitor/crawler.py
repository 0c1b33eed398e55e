"""Seller crawler.

Produces the current set of relevant items for one tracked seller:
new listings from a single result page, or recently sold items gathered
across result pages until the recency window is left behind.
"""

from __future__ import annotations

import datetime as _dt
import logging
import re
import time
from typing import Callable, List, Optional, Protocol

from . import config
from .models import Item, MonitorKind, RawItem, TrackedSeller
from .scraper import (FetchError, ResultPageExtractor, canonical_link,
                      extract_item_id, search_url)
from .utils import fixed_retrying, utcnow

logger = logging.getLogger(__name__)


class PageFetcher(Protocol):
    def fetch(self, url: str, wait_ms: int = 0) -> str: ...


class CrawlFailed(Exception):
    """Raised when a seller could not be crawled after all attempts."""

    def __init__(self, seller: TrackedSeller, cause: BaseException):
        self.seller = seller
        self.cause = cause
        super().__init__(
            f"Crawl failed for {seller.seller_handle} ({seller.kind.value}): {cause}"
        )


_SOLD_DATE_RE = re.compile(r"Sold\s+([A-Za-z]+)\.?\s+(\d{1,2}),\s+(\d{4})")


def parse_sold_date(text: Optional[str]) -> Optional[_dt.datetime]:
    """Parse eBay's "Sold  Nov 2, 2025" text. Returns None when it doesn't match."""
    if not text:
        return None
    m = _SOLD_DATE_RE.search(text)
    if not m:
        return None
    month, day, year = m.groups()
    try:
        return _dt.datetime.strptime(f"{month[:3].title()} {day} {year}", "%b %d %Y")
    except ValueError:
        return None


def is_recent(date_text: Optional[str], now: _dt.datetime, window_days: float) -> bool:
    """True if the sold date is within `window_days` of `now`.

    Text that cannot be parsed counts as recent, so a markup change never
    silently hides sales.
    """
    sold = parse_sold_date(date_text)
    if sold is None:
        return True
    if now.tzinfo is not None:
        now = now.astimezone(_dt.timezone.utc).replace(tzinfo=None)
    age_days = (now - sold).total_seconds() / 86400.0
    return age_days <= window_days


class Crawler:
    """Crawls one seller per call; see `crawl`."""

    def __init__(
        self,
        fetcher: PageFetcher,
        extractor: Optional[ResultPageExtractor] = None,
        *,
        base_url: str = config.BASE_URL,
        window_days: float = config.SOLD_WINDOW_DAYS,
        max_pages: int = config.MAX_SOLD_PAGES,
        max_attempts: int = config.CRAWL_MAX_ATTEMPTS,
        retry_delay: float = config.CRAWL_RETRY_DELAY_SECONDS,
        listings_wait_ms: int = config.LISTINGS_PAGE_WAIT_MS,
        sold_wait_ms: int = config.SOLD_PAGE_WAIT_MS,
        clock: Callable[[], _dt.datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.fetcher = fetcher
        self.extractor = extractor or ResultPageExtractor(base_url)
        self.base_url = base_url
        self.window_days = window_days
        self.max_pages = max(1, max_pages)
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.listings_wait_ms = listings_wait_ms
        self.sold_wait_ms = sold_wait_ms
        self._clock = clock
        self._sleep = sleep

    def crawl(self, seller: TrackedSeller) -> List[Item]:
        """Return the seller's current items in page order.

        The whole crawl is retried with a fixed delay; once attempts run out
        CrawlFailed is raised and no items are produced.
        """
        retrying = fixed_retrying(self.max_attempts, self.retry_delay, sleep=self._sleep)
        try:
            return retrying(self._crawl_once, seller)
        except Exception as e:
            logger.error(
                "Crawl of %s (%s) failed after %d attempt(s): %s",
                seller.seller_handle, seller.kind.value, self.max_attempts, e,
            )
            raise CrawlFailed(seller, e) from e

    def _crawl_once(self, seller: TrackedSeller) -> List[Item]:
        if seller.kind is MonitorKind.LISTINGS:
            return self._crawl_listings(seller)
        return self._crawl_sold(seller)

    def _crawl_listings(self, seller: TrackedSeller) -> List[Item]:
        url = search_url(seller.store_identifier, seller.seller_handle, MonitorKind.LISTINGS, self.base_url)
        logger.info("Checking listings for seller %s: %s", seller.seller_handle, url)
        html = self.fetcher.fetch(url, wait_ms=self.listings_wait_ms)

        listings: List[Item] = []
        for raw in self.extractor.extract_items(html, MonitorKind.LISTINGS):
            if not raw.new_listing:
                continue
            item = self._to_item(raw, seller)
            if item is not None:
                listings.append(item)

        logger.info("Found %d new-listing item(s) for seller %s", len(listings), seller.seller_handle)
        return listings

    def _crawl_sold(self, seller: TrackedSeller) -> List[Item]:
        url = search_url(seller.store_identifier, seller.seller_handle, MonitorKind.SALES, self.base_url)
        logger.info("Checking sold items for seller %s: %s", seller.seller_handle, url)
        html = self.fetcher.fetch(url, wait_ms=self.sold_wait_ms)
        now = self._clock()

        sold: List[Item] = []
        page_num = 1
        while True:
            page_items = [
                item
                for item in (self._to_item(raw, seller) for raw in self.extractor.extract_items(html, MonitorKind.SALES))
                if item is not None
            ]
            logger.debug("Sold page %d for %s: %d item(s)", page_num, seller.seller_handle, len(page_items))

            # Results are newest first, so only an in-window tail can have
            # more in-window items after it.
            last_in_window = False
            for item in page_items:
                last_in_window = is_recent(item.sold_at, now, self.window_days)
                if last_in_window:
                    sold.append(item)

            if not last_in_window:
                logger.info(
                    "Stopped pagination for %s on page %d: reached items older than %s day(s)",
                    seller.seller_handle, page_num, self.window_days,
                )
                break
            if page_num >= self.max_pages:
                logger.warning(
                    "Stopped pagination for %s at the %d page limit", seller.seller_handle, self.max_pages
                )
                break

            next_url = self.extractor.next_page_url(html)
            if not next_url:
                break
            try:
                html = self.fetcher.fetch(next_url, wait_ms=self.sold_wait_ms)
            except FetchError as e:
                logger.warning(
                    "Could not load page %d for %s, keeping %d item(s): %s",
                    page_num + 1, seller.seller_handle, len(sold), e,
                )
                break
            page_num += 1

        logger.info("Found %d recently sold item(s) for seller %s", len(sold), seller.seller_handle)
        return sold

    def _to_item(self, raw: RawItem, seller: TrackedSeller) -> Optional[Item]:
        title = (raw.title or "").strip()
        link = raw.link or ""
        item_id = extract_item_id(link, self.base_url)
        if not (title and link and item_id):
            return None
        item = Item(
            item_id=item_id,
            title=title,
            price=raw.price or "",
            link=canonical_link(link),
            seller_handle=seller.seller_handle,
            store_identifier=seller.store_identifier,
            image_url=raw.image_url or None,
        )
        if seller.kind is MonitorKind.SALES:
            item.sold_at = raw.date_text
        else:
            item.listed_at = raw.date_text
        return item


__all__ = ["Crawler", "CrawlFailed", "PageFetcher", "parse_sold_date", "is_recent"]
