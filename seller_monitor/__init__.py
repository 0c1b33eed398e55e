"""
eBay seller monitor package.

This package contains modules for crawling tracked eBay storefronts for new
listings and recent sales, diffing them against the items already notified,
posting Discord webhook notifications and scheduling the monitoring cycle.
See README.md for details.
"""

__all__ = [
    "admin",
    "config",
    "crawler",
    "db",
    "diff",
    "main",
    "models",
    "monitor",
    "notifier",
    "scheduler",
    "scraper",
    "sellers",
    "utils",
]
