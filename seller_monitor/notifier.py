"""Discord webhook notifier.

Sends one embed per new listing or sale to the webhook configured for its
monitor kind.  Each webhook has its own rate-limit state: after a 429 the
notifier blocks sends to that webhook until the advertised reset time, and
retries up to a fixed number of attempts.  `notify` never raises;
`rate_limited_until` reports the reset time currently held for a webhook.
"""
from __future__ import annotations

import datetime as _dt
import logging
import threading
import time
from typing import Callable, Dict, Optional

import requests
from tenacity import (RetryCallState, Retrying, before_sleep_log,
                      retry_if_exception, stop_after_attempt)

from .config import NOTIFY_MAX_ATTEMPTS
from .models import Item, MonitorKind
from .utils import get_http_session

logger = logging.getLogger(__name__)

EMBED_COLOR = 0x0251BC
STORE_URL = "https://www.ebay.com/str/{store}"


class NotifyFailed(Exception):
    """A webhook send was rejected or could not be delivered."""

    def __init__(self, message: str, status: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.status = status
        self.retry_after = retry_after

    @property
    def rate_limited(self) -> bool:
        return self.status == 429

    @property
    def server_error(self) -> bool:
        return self.status is not None and self.status >= 500


def _seller_field(item: Item, display_name: str) -> str:
    if item.store_identifier:
        return f"[{display_name or item.store_identifier}]({STORE_URL.format(store=item.store_identifier)})"
    return display_name or "N/A"


def _build_embed(item: Item, kind: MonitorKind) -> dict:
    handle = item.seller_handle
    if kind is MonitorKind.SALES:
        title = f"💰 New Item Sold by {handle}"
        date_field = {"name": "Sold Date", "value": item.sold_at or "N/A", "inline": True}
        seller_field = {"name": "Seller Name", "value": _seller_field(item, handle), "inline": True}
    else:
        title = "🆕 New Listing by Seller"
        date_field = {"name": "Listed Date", "value": item.listed_at or "N/A", "inline": True}
        seller_field = {"name": "Seller", "value": _seller_field(item, handle), "inline": True}

    embed = {
        "title": title,
        "color": EMBED_COLOR,
        "fields": [
            {"name": "Item Name", "value": item.title or "N/A", "inline": False},
            {"name": "Price", "value": item.price or "N/A", "inline": True},
            date_field,
            seller_field,
            {"name": "Link", "value": f"[View Item]({item.link})", "inline": False},
        ],
        "timestamp": _dt.datetime.now(_dt.timezone.utc).isoformat(),
    }
    if item.image_url:
        embed["image"] = {"url": item.image_url}
    return embed


def build_payload(item: Item, kind: MonitorKind) -> dict:
    payload = {"embeds": [_build_embed(item, kind)]}
    if kind is MonitorKind.SALES:
        payload["content"] = "**New Item Sold by Competitor Seller**"
    return payload


def parse_retry_after(value) -> Optional[float]:
    """Convert a retry directive to seconds.

    Values above 1000 are taken as milliseconds, anything else as seconds.
    """
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number < 0:
        return None
    return number / 1000.0 if number > 1000 else number


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, NotifyFailed) and (exc.rate_limited or exc.server_error)


class DiscordNotifier:
    """Rate-limit aware webhook sender. Safe to share between threads."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        max_attempts: int = NOTIFY_MAX_ATTEMPTS,
        timeout: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session or get_http_session()
        self.max_attempts = max(1, max_attempts)
        self.timeout = timeout
        self._clock = clock
        self._sleep = sleep
        self._reset_at: Dict[str, float] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def rate_limited_until(self, webhook_url: str) -> Optional[float]:
        return self._reset_at.get(webhook_url)

    def notify(self, webhook_url: str, item: Item, kind: MonitorKind) -> bool:
        """Send one notification. Returns False (and logs) on any failure."""
        try:
            payload = build_payload(item, kind)
            logger.info(
                "Sending %s notification for %s (id=%s)", kind.value, item.title, item.item_id
            )
            with self._lock_for(webhook_url):
                return self._send_with_rate_limit(webhook_url, payload)
        except Exception:
            logger.exception("Unexpected error sending notification for item %s", item.item_id)
            return False

    def _lock_for(self, webhook_url: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(webhook_url)
            if lock is None:
                lock = self._locks[webhook_url] = threading.Lock()
            return lock

    def _wait_for_reset(self, webhook_url: str) -> None:
        reset_at = self._reset_at.get(webhook_url)
        if reset_at is None:
            return
        wait = reset_at - self._clock()
        if wait > 0:
            logger.info("Rate limited for webhook. Waiting %.1f seconds...", wait)
            self._sleep(wait)

    def _post(self, webhook_url: str, payload: dict) -> None:
        try:
            resp = self.session.post(webhook_url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise NotifyFailed(f"Request failed: {e}") from e

        if 200 <= resp.status_code < 300:
            return

        retry_after = None
        if resp.status_code == 429:
            retry_after = resp.headers.get("Retry-After")
            if retry_after is None:
                try:
                    body = resp.json()
                except ValueError:
                    body = None
                if isinstance(body, dict):
                    retry_after = body.get("retry_after")
        raise NotifyFailed(
            f"Webhook returned status {resp.status_code}",
            status=resp.status_code,
            retry_after=parse_retry_after(retry_after),
        )

    def _attempt(self, webhook_url: str, payload: dict, attempt_number: int) -> None:
        self._wait_for_reset(webhook_url)
        try:
            self._post(webhook_url, payload)
        except NotifyFailed as e:
            if e.rate_limited:
                wait = e.retry_after
                if wait is None:
                    wait = min(30.0, float(2 ** (attempt_number - 1)))
                self._reset_at[webhook_url] = self._clock() + wait
            raise

    def _backoff(self, webhook_url: str) -> Callable[[RetryCallState], float]:
        def wait(retry_state: RetryCallState) -> float:
            exc = retry_state.outcome.exception()
            if isinstance(exc, NotifyFailed) and exc.rate_limited:
                # sleep until the reset time recorded by the failed attempt
                reset_at = self._reset_at.get(webhook_url)
                return max(0.0, reset_at - self._clock()) if reset_at is not None else 0.0
            return min(10.0, float(2 ** (retry_state.attempt_number - 1)))

        return wait

    def _send_with_rate_limit(self, webhook_url: str, payload: dict) -> bool:
        retrying = Retrying(
            reraise=True,
            stop=stop_after_attempt(self.max_attempts),
            retry=retry_if_exception(_is_retryable),
            wait=self._backoff(webhook_url),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
        )
        try:
            for attempt in retrying:
                with attempt:
                    self._attempt(webhook_url, payload, attempt.retry_state.attempt_number)
        except NotifyFailed as e:
            if e.rate_limited:
                logger.error(
                    "Failed to send webhook after %d attempts due to rate limiting", self.max_attempts
                )
            else:
                logger.error("Error sending webhook: %s", e)
            return False

        self._reset_at.pop(webhook_url, None)
        return True


__all__ = ["DiscordNotifier", "NotifyFailed", "build_payload", "parse_retry_after"]
