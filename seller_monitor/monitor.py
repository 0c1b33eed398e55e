"""Monitoring cycle.

One cycle walks every tracked seller, kind by kind and seller by seller:
crawl, diff against the known items, notify each new item, then write the
seller's state back.  Everything is sequential so the marketplace and the
webhook both see a gentle, steady request rate.
"""

from __future__ import annotations

import datetime as _dt
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from . import config
from .config import ConfigurationMissing
from .crawler import CrawlFailed, Crawler
from .db import PersistenceFailed, SellerStore
from .diff import diff_items
from .models import Item, MonitorKind, TrackedSeller
from .notifier import DiscordNotifier
from .utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    started_at: _dt.datetime
    finished_at: Optional[_dt.datetime] = None
    sellers_checked: int = 0
    sellers_failed: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    cancelled: bool = False
    skipped_reason: Optional[str] = None
    new_items: Dict[str, List[str]] = field(default_factory=dict)


class MonitoringCycle:
    """Runs one monitoring pass over all tracked sellers per `run_cycle` call."""

    def __init__(
        self,
        store: SellerStore,
        crawler: Crawler,
        notifier: DiscordNotifier,
        *,
        listings_webhook: Optional[str] = None,
        sold_webhook: Optional[str] = None,
        inter_item_delay: float = config.INTER_ITEM_DELAY_SECONDS,
        inter_seller_delay: float = config.INTER_SELLER_DELAY_SECONDS,
        max_notify_failures: int = config.MAX_NOTIFY_FAILURES,
        cancel_event: Optional[threading.Event] = None,
        clock: Callable[[], _dt.datetime] = utcnow,
        sleep: Callable[[float], object] = time.sleep,
    ):
        self.store = store
        self.crawler = crawler
        self.notifier = notifier
        self.listings_webhook = listings_webhook
        self.sold_webhook = sold_webhook
        self.inter_item_delay = inter_item_delay
        self.inter_seller_delay = inter_seller_delay
        self.max_notify_failures = max_notify_failures
        self.cancel_event = cancel_event
        self._clock = clock
        self._sleep = sleep

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _webhooks(self) -> Dict[MonitorKind, str]:
        hooks: Dict[MonitorKind, str] = {}
        for kind in MonitorKind:
            try:
                hooks[kind] = config.webhook_for(kind, self.listings_webhook, self.sold_webhook)
            except ConfigurationMissing as e:
                logger.info("%s; %s sellers will be skipped.", e, kind.value)
        return hooks

    def run_cycle(self) -> CycleReport:
        cycle_ts = self._clock()
        report = CycleReport(started_at=cycle_ts)
        logger.info("[%s] Starting seller monitoring...", cycle_ts.isoformat())

        try:
            sellers = self.store.load_sellers()
        except PersistenceFailed as e:
            logger.error("Could not load sellers, skipping this cycle: %s", e)
            report.skipped_reason = "store unavailable"
            return self._finish(report)

        if not sellers:
            logger.info("No sellers to monitor")
            report.skipped_reason = "no sellers"
            return self._finish(report)

        webhooks = self._webhooks()
        if not webhooks:
            logger.info(
                "No webhooks configured. Please set WEBHOOK_URL_LISTINGS and/or WEBHOOK_URL_SOLD environment variables."
            )
            report.skipped_reason = "no webhooks"
            return self._finish(report)

        by_kind: Dict[MonitorKind, List[TrackedSeller]] = {kind: [] for kind in MonitorKind}
        for s in sellers:
            by_kind[s.kind].append(s)
        logger.info(
            "Monitoring %d listing seller(s) and %d sold seller(s)...",
            len(by_kind[MonitorKind.LISTINGS]), len(by_kind[MonitorKind.SALES]),
        )

        for kind in MonitorKind:
            webhook_url = webhooks.get(kind)
            if not webhook_url:
                continue
            for seller in by_kind[kind]:
                if self._cancelled():
                    report.cancelled = True
                    logger.info("Monitoring cycle cancelled before seller %s", seller.seller_handle)
                    return self._finish(report)
                try:
                    self._process_seller(seller, webhook_url, cycle_ts, report)
                except Exception:
                    report.sellers_failed += 1
                    logger.exception("Error monitoring %s seller %s", kind.value, seller.seller_handle)
                self._sleep(self.inter_seller_delay)

        return self._finish(report)

    def _finish(self, report: CycleReport) -> CycleReport:
        report.finished_at = self._clock()
        logger.info(
            "[%s] Monitoring cycle complete: %d checked, %d failed, %d notification(s) sent, %d failed",
            report.finished_at.isoformat(),
            report.sellers_checked, report.sellers_failed,
            report.notifications_sent, report.notifications_failed,
        )
        return report

    def _process_seller(
        self,
        seller: TrackedSeller,
        webhook_url: str,
        cycle_ts: _dt.datetime,
        report: CycleReport,
    ) -> None:
        handle, kind = seller.seller_handle, seller.kind

        # Re-read so admin changes made earlier in the cycle are respected.
        try:
            current = self.store.get_seller(handle, kind)
        except PersistenceFailed as e:
            logger.error("Could not read seller %s (%s), skipping: %s", handle, kind.value, e)
            report.sellers_failed += 1
            return
        if current is None:
            logger.info("Seller %s (%s) was removed during the cycle; skipping.", handle, kind.value)
            return

        try:
            items = self.crawler.crawl(current)
        except CrawlFailed as e:
            logger.error("Skipping seller %s this cycle: %s", handle, e.cause)
            report.sellers_failed += 1
            return
        report.sellers_checked += 1

        new_items, _ = diff_items(current.known_item_ids, items)
        if new_items:
            logger.info("Found %d new %s item(s) for %s", len(new_items), kind.value, handle)
            report.new_items[handle] = [it.item_id for it in new_items]

        recorded = self._notify_all(current, new_items, webhook_url, report)

        _, current.known_item_ids = diff_items(current.known_item_ids, recorded)
        current.last_checked_at = cycle_ts
        try:
            if not self.store.update_seller(current):
                logger.info("Seller %s (%s) no longer tracked; state not saved.", handle, kind.value)
        except PersistenceFailed as e:
            logger.error("Could not save state for seller %s (%s): %s", handle, kind.value, e)

    def _notify_all(
        self,
        seller: TrackedSeller,
        new_items: List[Item],
        webhook_url: str,
        report: CycleReport,
    ) -> List[Item]:
        """Send each new item and return those that may be recorded as known."""
        recorded: List[Item] = []
        pending_ids = {it.item_id for it in new_items}
        failures = {k: v for k, v in seller.notify_failures.items() if k in pending_ids}

        for idx, item in enumerate(new_items):
            if idx > 0:
                self._sleep(self.inter_item_delay)
            if self._cancelled():
                logger.info("Cancelled with %d notification(s) left for %s", len(new_items) - idx, seller.seller_handle)
                break

            if self.notifier.notify(webhook_url, item, seller.kind):
                report.notifications_sent += 1
                failures.pop(item.item_id, None)
                recorded.append(item)
                continue

            report.notifications_failed += 1
            count = failures.get(item.item_id, 0) + 1
            if self.max_notify_failures > 0 and count >= self.max_notify_failures:
                logger.warning(
                    "Giving up on item %s for %s after %d failed cycle(s); marking it known",
                    item.item_id, seller.seller_handle, count,
                )
                failures.pop(item.item_id, None)
                recorded.append(item)
            else:
                # left out of the known set so the next cycle retries it
                failures[item.item_id] = count

        seller.notify_failures = failures
        return recorded


__all__ = ["MonitoringCycle", "CycleReport"]
