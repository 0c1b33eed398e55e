"""Helper utilities.

This module centralises common helper functions such as creating a
configured HTTP session, building retry policies and reading the clock.
"""

from __future__ import annotations

import datetime as _dt
import logging
import time
from typing import Callable, Tuple, Type

import requests
from tenacity import (Retrying, before_sleep_log, retry_if_exception_type,
                      stop_after_attempt, wait_fixed)


logger = logging.getLogger(__name__)


def get_http_session() -> requests.Session:
    """Return a new HTTP session with sensible defaults.

    Caller is responsible for closing the session or letting it be
    garbage collected.
    """
    session = requests.Session()
    session.headers.update(
        {
            "User-Agent": "Mozilla/5.0 (compatible; SellerMonitor/1.0; +https://github.com/)",
            "Content-Type": "application/json",
        }
    )
    return session


def fixed_retrying(
    max_attempts: int,
    delay_seconds: float,
    *,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> Retrying:
    """Build a bounded tenacity retry policy with a fixed delay between attempts.

    The last exception is re-raised once `max_attempts` have failed.
    """
    return Retrying(
        reraise=True,
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_fixed(max(0.0, delay_seconds)),
        retry=retry_if_exception_type(retry_on),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
    )


def utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def format_ts(ts: _dt.datetime | None) -> str | None:
    return ts.isoformat() if ts else None


def parse_ts(value: str | None) -> _dt.datetime | None:
    if not value:
        return None
    try:
        parsed = _dt.datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Ignoring unparseable timestamp %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_dt.timezone.utc)
    return parsed


__all__ = ["get_http_session", "fixed_retrying", "utcnow", "format_ts", "parse_ts"]
