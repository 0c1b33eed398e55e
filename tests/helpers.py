"""Fakes and HTML builders shared by the test modules."""

from __future__ import annotations

import datetime as _dt
from typing import Dict, List, Optional

from seller_monitor.crawler import CrawlFailed
from seller_monitor.models import Item, MonitorKind, TrackedSeller

NOW = _dt.datetime(2025, 11, 3, 12, 0, tzinfo=_dt.timezone.utc)


# ---- result page HTML --------------------------------------------------------

def listing_card(item_id: str, title: str = "Vintage Camera", price: str = "$25.00",
                 new: bool = True, listed: str = "Nov-1 23:24", href: Optional[str] = None) -> str:
    href = href if href is not None else f"https://www.ebay.com/itm/{item_id}?hash=item{item_id}&_trksid=p1"
    badge = '<span class="s-card__new-listing">New Listing</span>' if new else ""
    return f"""
    <li class="s-card">
      <div class="s-card__title"><span class="su-styled-text primary">{title}</span></div>
      <a class="su-link s-card__link" href="{href}">View</a>
      <span class="s-card__price">{price}</span>
      <img class="s-card__image" src="https://i.ebayimg.com/images/{item_id}.jpg">
      {badge}
      <div class="s-card__attribute-row">
        <span class="su-styled-text secondary bold large">{listed}</span>
      </div>
    </li>"""


def sold_card(item_id: str, sold: str = "Sold  Nov 2, 2025", title: str = "Sold Lens",
              price: str = "$99.00") -> str:
    return f"""
    <li class="s-card">
      <div class="s-card__title"><span class="su-styled-text primary">{title}</span></div>
      <a class="su-link s-card__link" href="/itm/{item_id}?nordt=true">View</a>
      <span class="s-card__price">{price}</span>
      <span class="su-styled-text positive default">{sold}</span>
    </li>"""


def page(cards: List[str], next_href: Optional[str] = None) -> str:
    nxt = ""
    if next_href:
        nxt = (
            '<a class="pagination__next icon-link" aria-label="Go to next search page" '
            f'href="{next_href}">Next</a>'
        )
    return f"<html><body><ul class='srp-results'>{''.join(cards)}</ul>{nxt}</body></html>"


# ---- fakes -------------------------------------------------------------------

class FakeFetcher:
    """Serves canned HTML. Unknown URLs get `first` (the search page).

    A value may be a string, an exception (raised), or a list of those
    consumed in order with the last one repeating.
    """

    def __init__(self, first, pages: Optional[Dict[str, object]] = None):
        self.first = first
        self.pages = dict(pages or {})
        self.calls: List[str] = []

    def _resolve(self, value):
        if isinstance(value, list):
            return value.pop(0) if len(value) > 1 else value[0]
        return value

    def fetch(self, url: str, wait_ms: int = 0) -> str:
        self.calls.append(url)
        value = self._resolve(self.pages[url] if url in self.pages else self.first)
        if isinstance(value, BaseException):
            raise value
        return value


class Timeline:
    """A fake clock; sleeping advances it."""

    def __init__(self, start: _dt.datetime = NOW):
        self.start = start
        self.offset = 0.0
        self.sleeps: List[float] = []

    def now(self) -> _dt.datetime:
        return self.start + _dt.timedelta(seconds=self.offset)

    def monotonic(self) -> float:
        return self.offset

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.offset += seconds


class FakeCrawler:
    def __init__(self, results: Dict[str, object]):
        self.results = results
        self.crawled: List[str] = []

    def crawl(self, seller: TrackedSeller) -> List[Item]:
        self.crawled.append(seller.seller_handle)
        result = self.results.get(seller.seller_handle, [])
        if callable(result):
            result = result(seller)
        if isinstance(result, BaseException):
            raise CrawlFailed(seller, result)
        return list(result)


class FakeNotifier:
    def __init__(self, timeline: Timeline, failing: Optional[set] = None):
        self.timeline = timeline
        self.failing = set(failing or ())
        self.sent: List[tuple] = []

    def notify(self, webhook_url: str, item: Item, kind: MonitorKind) -> bool:
        self.sent.append((webhook_url, item.item_id, self.timeline.offset))
        return item.item_id not in self.failing


def make_item(item_id: str, handle: str = "seller1", kind: MonitorKind = MonitorKind.LISTINGS) -> Item:
    item = Item(
        item_id=item_id,
        title=f"Item {item_id}",
        price="$10.00",
        link=f"https://www.ebay.com/itm/{item_id}",
        seller_handle=handle,
        store_identifier=f"{handle}-store",
    )
    if kind is MonitorKind.SALES:
        item.sold_at = "Sold  Nov 2, 2025"
    else:
        item.listed_at = "Nov-1 23:24"
    return item


def make_seller(handle: str = "seller1", kind: MonitorKind = MonitorKind.LISTINGS,
                known=(), store: Optional[str] = None) -> TrackedSeller:
    return TrackedSeller(
        store_identifier=store or f"{handle}-store",
        seller_handle=handle,
        kind=kind,
        known_item_ids=set(known),
        added_at=NOW - _dt.timedelta(days=1),
    )
