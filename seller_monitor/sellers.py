"""Administrative operations on tracked sellers.

Adding or removing a seller fires the on-change callback (normally the
scheduler's `trigger`).  `check_seller` is a read-only probe: it crawls and
diffs but neither notifies nor persists.  `fetch_items` crawls an arbitrary
storefront and returns what it found.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .crawler import CrawlFailed, Crawler
from .db import PersistenceFailed, SellerStore
from .diff import diff_items
from .models import MonitorKind, TrackedSeller
from .utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class AdminResult:
    success: bool
    message: str
    seller: Optional[TrackedSeller] = None
    not_found: bool = False
    data: Dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict:
        out: dict = {"success": self.success, "message": self.message}
        if self.seller is not None:
            out["seller"] = self.seller.to_dict()
        out.update(self.data)
        return out


class SellerManager:
    def __init__(
        self,
        store: SellerStore,
        crawler: Optional[Crawler] = None,
        on_change: Optional[Callable[[str], object]] = None,
    ):
        self.store = store
        self.crawler = crawler
        self.on_change = on_change

    def _changed(self, reason: str) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(reason)
        except Exception:
            logger.exception("On-change hook failed (%s)", reason)

    def add_seller(self, store_identifier: str, seller_handle: str, kind) -> AdminResult:
        try:
            kind = MonitorKind.parse(kind)
        except ValueError:
            return AdminResult(False, "Type must be either 'listings' or 'sold'")

        store_identifier = (store_identifier or "").strip()
        seller_handle = (seller_handle or "").strip()
        if not store_identifier or not seller_handle:
            return AdminResult(False, "Both storeName and ssn are required and cannot be empty")

        seller = TrackedSeller(
            store_identifier=store_identifier,
            seller_handle=seller_handle,
            kind=kind,
            added_at=utcnow(),
        )
        try:
            added = self.store.add_seller(seller)
        except PersistenceFailed as e:
            logger.error("Failed to save seller %s: %s", seller_handle, e)
            return AdminResult(False, f"Failed to save seller: {e}")

        if not added:
            return AdminResult(
                False,
                f'Seller with SSN "{seller_handle}" is already being monitored for {kind.value}',
            )

        logger.info("Added seller %s (%s) for %s monitoring", seller_handle, store_identifier, kind.value)
        self._changed(f"seller {seller_handle} added")
        return AdminResult(
            True,
            f'Seller "{seller_handle}" added successfully for {kind.value} monitoring',
            seller=seller,
        )

    def remove_seller(self, seller_handle: str, kind) -> AdminResult:
        try:
            kind = MonitorKind.parse(kind)
        except ValueError:
            return AdminResult(False, "Type must be either 'listings' or 'sold'")
        seller_handle = (seller_handle or "").strip()

        try:
            removed = self.store.remove_seller(seller_handle, kind)
        except PersistenceFailed as e:
            logger.error("Failed to remove seller %s: %s", seller_handle, e)
            return AdminResult(False, f"Failed to remove seller: {e}")

        if not removed:
            return AdminResult(
                False,
                f'Seller with SSN "{seller_handle}" not found for {kind.value} monitoring',
                not_found=True,
            )

        logger.info("Removed seller %s from %s monitoring", seller_handle, kind.value)
        self._changed(f"seller {seller_handle} removed")
        return AdminResult(True, f'Seller "{seller_handle}" removed successfully from {kind.value} monitoring')

    def list_sellers(self, kind=None) -> List[TrackedSeller]:
        if kind is not None and kind != "":
            kind = MonitorKind.parse(kind)
        else:
            kind = None
        return self.store.load_sellers(kind)

    def fetch_items(self, store_identifier: str, seller_handle: str, kind) -> AdminResult:
        """Crawl any storefront, tracked or not, and return its current items.

        Nothing is diffed, notified or stored.
        """
        kind = MonitorKind.parse(kind)
        store_identifier = (store_identifier or "").strip()
        seller_handle = (seller_handle or "").strip()
        if not store_identifier or not seller_handle:
            return AdminResult(False, "Both storeName and ssn are required and cannot be empty")
        if self.crawler is None:
            return AdminResult(False, "No crawler configured")

        transient = TrackedSeller(
            store_identifier=store_identifier, seller_handle=seller_handle, kind=kind
        )
        try:
            items = self.crawler.crawl(transient)
        except CrawlFailed as e:
            return AdminResult(False, str(e.cause))

        key = "listings" if kind is MonitorKind.LISTINGS else "soldItems"
        data: Dict[str, object] = {"count": len(items)}
        if kind is MonitorKind.SALES:
            data["sellerUsername"] = seller_handle
            data["storeName"] = store_identifier
        data[key] = [it.to_dict() for it in items]
        return AdminResult(True, f'Fetched {len(items)} item(s) for "{seller_handle}"', data=data)

    def check_seller(self, seller_handle: str, kind=None) -> AdminResult:
        """Crawl and diff one seller (each tracked kind, or just `kind`) without side effects."""
        if self.crawler is None:
            return AdminResult(False, "No crawler configured")
        kinds = [MonitorKind.parse(kind)] if kind else list(MonitorKind)

        targets = []
        for k in kinds:
            seller = self.store.get_seller(seller_handle, k)
            if seller is not None:
                targets.append(seller)
        if not targets:
            return AdminResult(False, "Seller not found", not_found=True)

        counts: Dict[str, object] = {}
        for seller in targets:
            try:
                items = self.crawler.crawl(seller)
            except CrawlFailed as e:
                return AdminResult(False, f"Failed to check seller: {e.cause}")
            new_items, _ = diff_items(seller.known_item_ids, items)
            key = "listings" if seller.kind is MonitorKind.LISTINGS else "soldItems"
            counts[key] = {"total": len(items), "new": len(new_items)}

        logger.info("Manual check for %s: %s", seller_handle, counts)
        return AdminResult(True, f'Checked seller "{seller_handle}"', data=counts)


__all__ = ["SellerManager", "AdminResult"]
