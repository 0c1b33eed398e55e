"""Configuration loader.

Reads environment variables and `.env` to configure the service.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load variables from a .env file if present (project root).
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")


class ConfigurationMissing(Exception):
    """Raised when a required setting (e.g. a webhook URL) is not configured."""


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _parse_float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value is not None else default
    except ValueError:
        return default


# ---- Notification destinations ---------------------------------------------

# One Discord webhook per monitor kind. A kind without a webhook is skipped.
WEBHOOK_URL_LISTINGS: str = (_get_env("WEBHOOK_URL_LISTINGS", "") or "").strip()
WEBHOOK_URL_SOLD: str = (_get_env("WEBHOOK_URL_SOLD", "") or "").strip()

# ---- Scheduling --------------------------------------------------------------

# Interval between periodic cycles, in milliseconds (default 12 hours).
MONITOR_INTERVAL_MS: int = _parse_int(_get_env("MONITOR_INTERVAL"), 43_200_000)
MONITOR_INTERVAL_SECONDS: float = MONITOR_INTERVAL_MS / 1000.0

# Delay before an on-change run, so the seller write lands first.
CHANGE_DELAY_SECONDS: float = _parse_float(_get_env("CHANGE_DELAY_SECONDS"), 2.0)

# ---- Pacing ----------------------------------------------------------------

# Spacing between two notifications to the same webhook (Discord allows ~30/min).
INTER_ITEM_DELAY_SECONDS: float = _parse_float(_get_env("INTER_ITEM_DELAY_SECONDS"), 2.5)

# Pause after each seller, to stay under eBay's crawl limits.
INTER_SELLER_DELAY_SECONDS: float = _parse_float(_get_env("INTER_SELLER_DELAY_SECONDS"), 5.0)

# ---- Crawling ----------------------------------------------------------------

BASE_URL: str = (_get_env("BASE_URL", "https://www.ebay.com") or "https://www.ebay.com").rstrip("/")

CRAWL_MAX_ATTEMPTS: int = _parse_int(_get_env("CRAWL_MAX_ATTEMPTS"), 3)
CRAWL_RETRY_DELAY_SECONDS: float = _parse_float(_get_env("CRAWL_RETRY_DELAY_SECONDS"), 5.0)

# Sold items older than this are outside the recency window.
SOLD_WINDOW_DAYS: float = _parse_float(_get_env("SOLD_WINDOW_DAYS"), 2.0)

# Hard upper bound on result pages followed for one sold crawl.
MAX_SOLD_PAGES: int = _parse_int(_get_env("MAX_SOLD_PAGES"), 50)

# Browser settings for the page fetcher.
BROWSER_HEADLESS: bool = _parse_bool(_get_env("BROWSER_HEADLESS", "true"), True)
BROWSER_TIMEOUT_MS: int = _parse_int(_get_env("BROWSER_TIMEOUT_MS"), 60_000)
LISTINGS_PAGE_WAIT_MS: int = _parse_int(_get_env("LISTINGS_PAGE_WAIT_MS"), 8000)
SOLD_PAGE_WAIT_MS: int = _parse_int(_get_env("SOLD_PAGE_WAIT_MS"), 10_000)

# ---- Notifications -----------------------------------------------------------

NOTIFY_MAX_ATTEMPTS: int = _parse_int(_get_env("NOTIFY_MAX_ATTEMPTS"), 5)

# Cycles an item may fail to notify before it is recorded as known anyway.
# 0 keeps retrying forever.
MAX_NOTIFY_FAILURES: int = _parse_int(_get_env("MAX_NOTIFY_FAILURES"), 5)

# ---- Storage / process -------------------------------------------------------

SQLITE_DB_PATH: str = _get_env("SQLITE_DB_PATH", "data/sellers.db") or "data/sellers.db"

# Logging level: DEBUG, INFO, WARNING, ERROR.
LOG_LEVEL: str = _get_env("LOG_LEVEL", "INFO") or "INFO"

ADMIN_HOST: str = _get_env("ADMIN_HOST", "0.0.0.0") or "0.0.0.0"
ADMIN_PORT: int = _parse_int(_get_env("PORT"), 4000)
ENABLE_ADMIN_SERVER: bool = _parse_bool(_get_env("ENABLE_ADMIN_SERVER", "true"), True)


def webhook_for(kind: str, listings_url: Optional[str] = None, sold_url: Optional[str] = None) -> str:
    """Return the webhook URL configured for a monitor kind.

    Raises ConfigurationMissing when none is set.
    """
    kind = getattr(kind, "value", kind)
    if kind == "listings":
        url = WEBHOOK_URL_LISTINGS if listings_url is None else listings_url
    elif kind == "sold":
        url = WEBHOOK_URL_SOLD if sold_url is None else sold_url
    else:
        raise ValueError(f"Unknown monitor kind: {kind!r}")
    if not url:
        raise ConfigurationMissing(f"No webhook configured for {kind}")
    return url


def validate() -> list[str]:
    """Return warnings about incomplete configuration. Never raises."""
    warnings = []
    if not WEBHOOK_URL_LISTINGS and not WEBHOOK_URL_SOLD:
        warnings.append(
            "No webhooks configured. Set WEBHOOK_URL_LISTINGS and/or WEBHOOK_URL_SOLD."
        )
    if MONITOR_INTERVAL_MS <= 0:
        warnings.append("MONITOR_INTERVAL must be positive; periodic runs are disabled.")
    return warnings


__all__ = [
    "ConfigurationMissing",
    "WEBHOOK_URL_LISTINGS",
    "WEBHOOK_URL_SOLD",
    "MONITOR_INTERVAL_MS",
    "MONITOR_INTERVAL_SECONDS",
    "CHANGE_DELAY_SECONDS",
    "INTER_ITEM_DELAY_SECONDS",
    "INTER_SELLER_DELAY_SECONDS",
    "BASE_URL",
    "CRAWL_MAX_ATTEMPTS",
    "CRAWL_RETRY_DELAY_SECONDS",
    "SOLD_WINDOW_DAYS",
    "MAX_SOLD_PAGES",
    "BROWSER_HEADLESS",
    "BROWSER_TIMEOUT_MS",
    "LISTINGS_PAGE_WAIT_MS",
    "SOLD_PAGE_WAIT_MS",
    "NOTIFY_MAX_ATTEMPTS",
    "MAX_NOTIFY_FAILURES",
    "SQLITE_DB_PATH",
    "LOG_LEVEL",
    "ADMIN_HOST",
    "ADMIN_PORT",
    "ENABLE_ADMIN_SERVER",
    "webhook_for",
    "validate",
]
