from __future__ import annotations

import logging
import signal
import threading

from . import config
from .admin import AdminServer
from .crawler import Crawler
from .db import SellerStore
from .monitor import MonitoringCycle
from .notifier import DiscordNotifier
from .scheduler import CycleScheduler
from .scraper import BrowserPageFetcher
from .sellers import SellerManager


def setup_logging() -> None:
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def main() -> None:
    """Initialise the store, start the scheduler and the admin server."""
    setup_logging()
    logger = logging.getLogger(__name__)

    for warning in config.validate():
        logger.warning(warning)

    logger.info("Initializing database at %s…", config.SQLITE_DB_PATH)
    store = SellerStore(config.SQLITE_DB_PATH)
    store.init_db()

    stop_event = threading.Event()
    crawler = Crawler(BrowserPageFetcher())
    cycle = MonitoringCycle(
        store,
        crawler,
        DiscordNotifier(),
        cancel_event=stop_event,
        # pauses end early on shutdown
        sleep=stop_event.wait,
    )
    scheduler = CycleScheduler(cycle.run_cycle, stop_event=stop_event)
    manager = SellerManager(store, crawler, on_change=scheduler.trigger)

    admin = None
    if config.ENABLE_ADMIN_SERVER:
        admin = AdminServer(manager)
        if not admin.start():
            logger.warning("⚠️ Admin server failed to start - sellers can only be changed in the database")
    else:
        logger.info("Admin server disabled.")

    shutdown = threading.Event()

    def _handle_signal(signum, frame):
        logger.info("Received signal %s, shutting down…", signum)
        shutdown.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    scheduler.start()
    try:
        shutdown.wait()
    finally:
        scheduler.stop(timeout=30)
        if admin is not None:
            admin.stop()


if __name__ == "__main__":
    main()
