import threading

from seller_monitor.db import SellerStore
from seller_monitor.models import MonitorKind
from seller_monitor.monitor import MonitoringCycle

from .helpers import NOW, FakeCrawler, FakeNotifier, make_item, make_seller

LISTINGS_HOOK = "https://discord.com/api/webhooks/1/listings"
SOLD_HOOK = "https://discord.com/api/webhooks/2/sold"


def make_cycle(store, crawler, notifier, timeline, **kwargs):
    kwargs.setdefault("listings_webhook", LISTINGS_HOOK)
    kwargs.setdefault("sold_webhook", SOLD_HOOK)
    return MonitoringCycle(
        store, crawler, notifier, clock=timeline.now, sleep=timeline.sleep, **kwargs
    )


def test_new_items_are_notified_and_recorded(store, timeline):
    store.add_seller(make_seller("seller1", known={"111"}))
    crawler = FakeCrawler({"seller1": [make_item("111"), make_item("222"), make_item("333")]})
    notifier = FakeNotifier(timeline)

    report = make_cycle(store, crawler, notifier, timeline).run_cycle()

    assert [(url, iid) for url, iid, _ in notifier.sent] == [
        (LISTINGS_HOOK, "222"),
        (LISTINGS_HOOK, "333"),
    ]
    assert notifier.sent[1][2] - notifier.sent[0][2] >= 2.5
    saved = store.get_seller("seller1", MonitorKind.LISTINGS)
    assert saved.known_item_ids == {"111", "222", "333"}
    assert saved.last_checked_at == NOW
    assert report.sellers_checked == 1
    assert report.notifications_sent == 2
    assert report.new_items == {"seller1": ["222", "333"]}
    assert report.finished_at is not None


def test_second_cycle_sends_nothing_new(store, timeline):
    store.add_seller(make_seller("seller1"))
    crawler = FakeCrawler({"seller1": [make_item("1"), make_item("2")]})
    notifier = FakeNotifier(timeline)
    cycle = make_cycle(store, crawler, notifier, timeline)

    cycle.run_cycle()
    cycle.run_cycle()

    assert [iid for _, iid, _ in notifier.sent] == ["1", "2"]


def test_sold_sellers_use_the_sold_webhook(store, timeline):
    store.add_seller(make_seller("listing_guy"))
    store.add_seller(make_seller("sold_guy", kind=MonitorKind.SALES))
    crawler = FakeCrawler({
        "listing_guy": [make_item("1", "listing_guy")],
        "sold_guy": [make_item("2", "sold_guy", MonitorKind.SALES)],
    })
    notifier = FakeNotifier(timeline)

    make_cycle(store, crawler, notifier, timeline).run_cycle()

    assert crawler.crawled == ["listing_guy", "sold_guy"]
    assert [(url, iid) for url, iid, _ in notifier.sent] == [(LISTINGS_HOOK, "1"), (SOLD_HOOK, "2")]


def test_crawl_failure_only_skips_that_seller(store, timeline):
    store.add_seller(make_seller("alpha", known={"a0"}))
    store.add_seller(make_seller("bravo"))
    crawler = FakeCrawler({
        "alpha": RuntimeError("blocked"),
        "bravo": [make_item("b1", "bravo")],
    })
    notifier = FakeNotifier(timeline)

    report = make_cycle(store, crawler, notifier, timeline).run_cycle()

    assert crawler.crawled == ["alpha", "bravo"]
    assert [iid for _, iid, _ in notifier.sent] == ["b1"]
    alpha = store.get_seller("alpha", MonitorKind.LISTINGS)
    assert alpha.known_item_ids == {"a0"}
    assert alpha.last_checked_at is None
    assert store.get_seller("bravo", MonitorKind.LISTINGS).known_item_ids == {"b1"}
    assert report.sellers_failed == 1
    assert report.sellers_checked == 1


def test_unexpected_error_does_not_abort_the_cycle(store, timeline):
    store.add_seller(make_seller("alpha"))
    store.add_seller(make_seller("bravo"))

    def explode(seller):
        raise KeyError("bad markup")

    crawler = FakeCrawler({"alpha": explode, "bravo": [make_item("b1", "bravo")]})
    report = make_cycle(store, crawler, FakeNotifier(timeline), timeline).run_cycle()

    assert report.sellers_failed == 1
    assert store.get_seller("bravo", MonitorKind.LISTINGS).known_item_ids == {"b1"}


def test_no_webhooks_skips_the_cycle(store, timeline):
    store.add_seller(make_seller("seller1"))
    crawler = FakeCrawler({"seller1": [make_item("1")]})

    report = make_cycle(
        store, crawler, FakeNotifier(timeline), timeline, listings_webhook="", sold_webhook=""
    ).run_cycle()

    assert report.skipped_reason == "no webhooks"
    assert crawler.crawled == []
    assert store.get_seller("seller1", MonitorKind.LISTINGS).last_checked_at is None


def test_no_sellers_skips_the_cycle(store, timeline):
    crawler = FakeCrawler({})
    report = make_cycle(store, crawler, FakeNotifier(timeline), timeline).run_cycle()
    assert report.skipped_reason == "no sellers"
    assert crawler.crawled == []


def test_unavailable_store_skips_the_cycle(tmp_path, timeline):
    broken = SellerStore(str(tmp_path))  # a directory is not a database
    crawler = FakeCrawler({})
    report = make_cycle(broken, crawler, FakeNotifier(timeline), timeline).run_cycle()
    assert report.skipped_reason == "store unavailable"


def test_kind_without_webhook_is_left_untouched(store, timeline):
    store.add_seller(make_seller("lister"))
    store.add_seller(make_seller("seller", kind=MonitorKind.SALES))
    crawler = FakeCrawler({
        "lister": [make_item("1", "lister")],
        "seller": [make_item("2", "seller", MonitorKind.SALES)],
    })

    make_cycle(store, crawler, FakeNotifier(timeline), timeline, sold_webhook="").run_cycle()

    assert crawler.crawled == ["lister"]
    sold = store.get_seller("seller", MonitorKind.SALES)
    assert sold.known_item_ids == set()
    assert sold.last_checked_at is None


def test_failed_notification_is_retried_next_cycle(store, timeline):
    store.add_seller(make_seller("seller1"))
    crawler = FakeCrawler({"seller1": [make_item("1"), make_item("2")]})
    notifier = FakeNotifier(timeline, failing={"2"})
    cycle = make_cycle(store, crawler, notifier, timeline, max_notify_failures=0)

    cycle.run_cycle()
    saved = store.get_seller("seller1", MonitorKind.LISTINGS)
    assert saved.known_item_ids == {"1"}
    assert saved.notify_failures == {"2": 1}

    notifier.failing.clear()
    cycle.run_cycle()

    assert [iid for _, iid, _ in notifier.sent] == ["1", "2", "2"]
    saved = store.get_seller("seller1", MonitorKind.LISTINGS)
    assert saved.known_item_ids == {"1", "2"}
    assert saved.notify_failures == {}


def test_repeatedly_failing_item_is_given_up(store, timeline):
    store.add_seller(make_seller("seller1"))
    crawler = FakeCrawler({"seller1": [make_item("1")]})
    notifier = FakeNotifier(timeline, failing={"1"})
    cycle = make_cycle(store, crawler, notifier, timeline, max_notify_failures=3)

    for _ in range(4):
        cycle.run_cycle()

    assert len(notifier.sent) == 3
    saved = store.get_seller("seller1", MonitorKind.LISTINGS)
    assert saved.known_item_ids == {"1"}
    assert saved.notify_failures == {}


def test_known_set_never_shrinks(store, timeline):
    store.add_seller(make_seller("seller1", known={"old"}))
    results = {"seller1": [make_item("new")]}
    crawler = FakeCrawler(results)
    cycle = make_cycle(store, crawler, FakeNotifier(timeline), timeline)

    cycle.run_cycle()
    results["seller1"] = []
    cycle.run_cycle()

    saved = store.get_seller("seller1", MonitorKind.LISTINGS)
    assert saved.known_item_ids == {"old", "new"}
    assert saved.last_checked_at > NOW


def test_cancellation_stops_between_items_and_sellers(store, timeline):
    store.add_seller(make_seller("alpha"))
    store.add_seller(make_seller("bravo"))
    cancel = threading.Event()

    class CancellingNotifier(FakeNotifier):
        def notify(self, webhook_url, item, kind):
            cancel.set()
            return super().notify(webhook_url, item, kind)

    crawler = FakeCrawler({
        "alpha": [make_item("a1", "alpha"), make_item("a2", "alpha")],
        "bravo": [make_item("b1", "bravo")],
    })
    notifier = CancellingNotifier(timeline)

    report = make_cycle(store, crawler, notifier, timeline, cancel_event=cancel).run_cycle()

    assert report.cancelled is True
    assert [iid for _, iid, _ in notifier.sent] == ["a1"]
    assert crawler.crawled == ["alpha"]
    assert store.get_seller("alpha", MonitorKind.LISTINGS).known_item_ids == {"a1"}


def test_seller_removed_mid_cycle_is_skipped(store, timeline):
    store.add_seller(make_seller("alpha"))
    store.add_seller(make_seller("bravo"))

    def remove_bravo(seller):
        store.remove_seller("bravo", MonitorKind.LISTINGS)
        return []

    crawler = FakeCrawler({"alpha": remove_bravo, "bravo": [make_item("b1", "bravo")]})
    make_cycle(store, crawler, FakeNotifier(timeline), timeline).run_cycle()

    assert crawler.crawled == ["alpha"]
    assert store.get_seller("bravo", MonitorKind.LISTINGS) is None


def test_seller_removed_while_crawling_is_not_resurrected(store, timeline):
    store.add_seller(make_seller("alpha"))

    def remove_self(seller):
        store.remove_seller("alpha", MonitorKind.LISTINGS)
        return [make_item("a1", "alpha")]

    crawler = FakeCrawler({"alpha": remove_self})
    make_cycle(store, crawler, FakeNotifier(timeline), timeline).run_cycle()

    assert store.get_seller("alpha", MonitorKind.LISTINGS) is None
    assert store.load_sellers() == []


def test_seller_removed_while_being_read_is_not_renotified(store, timeline):
    store.add_seller(make_seller("alpha", known={"1", "2"}))
    other = SellerStore(store.path)
    hydrate = store._hydrate
    calls = []

    def hydrate_removing_on_second_read(conn, rows):
        calls.append(rows)
        # the first read is load_sellers, the second the per-seller re-read
        if len(calls) == 2:
            other.remove_seller("alpha", MonitorKind.LISTINGS)
        return hydrate(conn, rows)

    store._hydrate = hydrate_removing_on_second_read
    crawler = FakeCrawler({"alpha": [make_item("1", "alpha"), make_item("2", "alpha")]})
    notifier = FakeNotifier(timeline)

    make_cycle(store, crawler, notifier, timeline).run_cycle()

    assert notifier.sent == []
    assert other.load_sellers() == []


def test_pause_follows_every_seller_whatever_the_outcome(store, timeline):
    store.add_seller(make_seller("alpha"))
    store.add_seller(make_seller("bravo"))
    crawler = FakeCrawler({"alpha": RuntimeError("blocked"), "bravo": [make_item("b1", "bravo")]})

    make_cycle(
        store, crawler, FakeNotifier(timeline), timeline, inter_seller_delay=5.0, inter_item_delay=2.5
    ).run_cycle()

    assert timeline.sleeps == [5.0, 5.0]
