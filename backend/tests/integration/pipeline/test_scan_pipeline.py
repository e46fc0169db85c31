"""Integration tests for the concurrent scan pipeline.

A FakeMailClient stands in for Gmail; backoff sleeps are recorded instead
of waited so retry tests run instantly.
"""

import logging
import threading
from datetime import datetime, timezone

import pytest

from order_checker.error_tracking import (
    CacheError,
    ListingError,
    PermanentMailError,
    ScanCancelledError,
    TransientMailError,
)
from order_checker.ledger import OrderLedger
from order_checker.models import OrderStatus
from order_checker.pipeline import ScanPipeline


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def pipeline(sleeps):
    return ScanPipeline(workers=8, sleep=sleeps.append)


# ============================================================================
# HAPPY PATH
# ============================================================================


def test_hundred_messages_with_transient_failures(pipeline, sleeps, emails, fake_client_factory):
    """Message #50 fails twice with a rate limit and still lands in the ledger."""
    messages = [emails.confirmation(f"msg-{i:03d}", f"2000{i:03d}") for i in range(100)]
    client = fake_client_factory(
        messages,
        failures={"msg-050": [TransientMailError("rate limited", status_code=429)] * 2},
    )
    ledger = OrderLedger()
    progress = []

    result = pipeline.run(client, "me", 10, ledger, on_progress=lambda p, t: progress.append((p, t)))

    assert result.total == 100
    assert result.processed == 100
    assert result.failed == 0
    assert len(result.orders) == 100
    assert "2000050" in result.orders
    assert client.fetch_counts["msg-050"] == 3
    assert sleeps == [1.0, 2.0]
    assert progress[0] == (0, 100)
    assert sorted(p for p, _ in progress[1:]) == list(range(1, 101))


def test_listing_uses_scan_query(pipeline, fake_client_factory):
    client = fake_client_factory([])
    result = pipeline.run(client, "me", 45, OrderLedger())

    assert result.total == 0
    assert client.queries[0].startswith("from:help@walmart.com subject:(")
    assert client.queries[0].endswith("newer_than:45d")


def test_confirmation_and_cancellation_in_either_order(pipeline, emails, fake_client_factory):
    for order in (("confirm", "cancel"), ("cancel", "confirm")):
        built = {
            "confirm": emails.confirmation("m-confirm", "2000131-89912005", total="$20.00"),
            "cancel": emails.canceled("m-cancel", "2000131-89912005"),
        }
        client = fake_client_factory([built[name] for name in order])
        result = ScanPipeline(workers=1).run(client, "me", 10, OrderLedger())

        merged = result.orders["200013189912005"]
        assert merged.status == OrderStatus.CANCELED
        assert merged.total == "$20.00"


def test_shipments_and_deliveries(pipeline, emails, fake_client_factory):
    client = fake_client_factory(
        [
            emails.confirmation("m1", "2000131-1"),
            emails.shipped("m2", "2000131-1", "T1"),
            emails.shipped("m3", "2000131-1", "T1"),
            emails.delivered("m4", "2000129-05242992"),
        ]
    )
    result = pipeline.run(client, "me", 10, OrderLedger())

    assert sorted(s.tracking_number for s in result.shipped) == ["DELIVERED", "T1"]


def test_duplicate_listing_ids_processed_once(pipeline, emails, fake_client_factory):
    class DuplicatingClient(fake_client_factory):
        def list_message_ids(self, query):
            return super().list_message_ids(query) * 2

    client = DuplicatingClient([emails.confirmation("m1", "1")])
    result = pipeline.run(client, "me", 10, OrderLedger())

    assert result.total == 1
    assert client.fetch_counts["m1"] == 1


def test_message_cap(emails, fake_client_factory):
    client = fake_client_factory([emails.confirmation(f"m{i}", f"{i}") for i in range(10)])
    result = ScanPipeline(max_messages=4).run(client, "me", 10, OrderLedger())

    assert result.total == 4
    assert len(result.orders) == 4


# ============================================================================
# FAILURES
# ============================================================================


def test_permanent_failure_is_counted_not_fatal(pipeline, sleeps, emails, fake_client_factory):
    client = fake_client_factory(
        [emails.confirmation("m1", "1"), emails.confirmation("m2", "2")],
        failures={"m1": [PermanentMailError("not found", status_code=404)]},
    )
    result = pipeline.run(client, "me", 10, OrderLedger())

    assert result.processed == 2
    assert result.failed == 1
    assert list(result.orders) == ["2"]
    assert client.fetch_counts["m1"] == 1
    assert sleeps == []


def test_retries_exhausted(sleeps, emails, fake_client_factory):
    client = fake_client_factory(
        [emails.confirmation("m1", "1")],
        failures={"m1": [TransientMailError("backend")] * 5},
    )
    result = ScanPipeline(max_attempts=5, sleep=sleeps.append).run(client, "me", 10, OrderLedger())

    assert result.failed == 1
    assert client.fetch_counts["m1"] == 5
    assert sleeps == [1.0, 2.0, 4.0, 8.0]


def test_unparseable_message_is_skipped(pipeline, fake_client_factory):
    from order_checker.gmail_client import MailMessage

    client = fake_client_factory([MailMessage(id="m1", subject="Thanks for your order", html_body="<p>hi</p>")])
    result = pipeline.run(client, "me", 10, OrderLedger())

    assert result.failed == 1
    assert result.orders == {}


def test_received_date_is_logged(pipeline, emails, fake_client_factory):
    message = emails.confirmation("m1", "1")
    message.received_at = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
    records = []
    handler = logging.Handler(level=logging.DEBUG)
    handler.emit = records.append
    pipeline_logger = logging.getLogger("order_checker.pipeline")
    pipeline_logger.addHandler(handler)
    try:
        pipeline.run(fake_client_factory([message]), "me", 10, OrderLedger())
    finally:
        pipeline_logger.removeHandler(handler)

    fetched = [r for r in records if r.getMessage().startswith("Fetched message")]
    assert fetched[0].getMessage() == "Fetched message received 2024-01-15T10:00:00+00:00"
    assert fetched[0].message_id == "m1"
    assert fetched[0].kind == "order_confirmation"


def test_listing_failure_is_fatal(pipeline, fake_client_factory):
    client = fake_client_factory(list_error=PermanentMailError("forbidden", status_code=403))

    with pytest.raises(ListingError):
        pipeline.run(client, "me", 10, OrderLedger())


def test_listing_retries_transient_errors(sleeps, emails, fake_client_factory):
    class FlakyListing(fake_client_factory):
        calls = 0

        def list_message_ids(self, query):
            FlakyListing.calls += 1
            if FlakyListing.calls == 1:
                raise TransientMailError("backend")
            return super().list_message_ids(query)

    client = FlakyListing([emails.confirmation("m1", "1")])
    result = ScanPipeline(sleep=sleeps.append).run(client, "me", 10, OrderLedger())

    assert result.processed == 1
    assert sleeps == [1.0]


# ============================================================================
# CACHE
# ============================================================================


def test_second_scan_served_from_cache(message_cache, emails, fake_client_factory):
    client = fake_client_factory([emails.confirmation("m1", "1"), emails.shipped("m2", "1", "T1")])
    pipeline = ScanPipeline(cache=message_cache)

    first = pipeline.run(client, "me", 10, OrderLedger())
    second = pipeline.run(client, "me", 10, OrderLedger())

    assert first.cache_hits == 0
    assert second.cache_hits == 2
    assert client.fetch_counts == {"m1": 1, "m2": 1}
    assert second.orders == first.orders
    assert second.shipped == first.shipped


def test_unparseable_message_cached_as_empty(message_cache, fake_client_factory):
    from order_checker.gmail_client import MailMessage

    client = fake_client_factory([MailMessage(id="m1", subject="Thanks for your order", html_body="<p>hi</p>")])
    ScanPipeline(cache=message_cache).run(client, "me", 10, OrderLedger())

    assert message_cache.get("m1").is_empty


def test_cache_write_failure_does_not_stop_scan(message_cache, monkeypatch, emails, fake_client_factory):
    def broken_set(message_id, result):
        raise CacheError("database is locked")

    monkeypatch.setattr(message_cache, "set", broken_set)
    client = fake_client_factory([emails.confirmation("m1", "1"), emails.shipped("m2", "1", "T1")])
    ledger = OrderLedger()

    result = ScanPipeline(cache=message_cache).run(client, "me", 10, ledger)

    assert result.processed == result.total == 2
    assert result.failed == 0
    assert "1" in result.orders
    assert "1" in ledger.snapshot()[0]
    assert message_cache.get("m1") is None


# ============================================================================
# CANCELLATION
# ============================================================================


def test_cancel_stops_scan_and_keeps_partial_results(emails, fake_client_factory):
    release = threading.Event()
    cancel_event = threading.Event()
    messages = [emails.confirmation(f"m{i}", f"{i}") for i in range(5)]
    client = fake_client_factory(messages, block=release, blocked_ids={"m3"})
    ledger = OrderLedger()

    def on_progress(processed, total):
        if processed == 3:
            cancel_event.set()

    try:
        with pytest.raises(ScanCancelledError):
            ScanPipeline(workers=1).run(client, "me", 10, ledger, on_progress=on_progress, cancel_event=cancel_event)
    finally:
        release.set()

    assert set(ledger.snapshot()[0]) == {"0", "1", "2"}


def test_invalid_pool_settings():
    with pytest.raises(ValueError):
        ScanPipeline(workers=0)
    with pytest.raises(ValueError):
        ScanPipeline(max_attempts=0)
