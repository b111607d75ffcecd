"""
Tests for CommitFanout and the in-memory cache and sink.
"""

from datetime import datetime, timezone

import pytest

from ledger_kernel.domain.change_events import (
    INVENTORY_CHANGED,
    ChangeEvent,
    inventory_cache_keys,
)
from ledger_kernel.services.fanout import CommitFanout, InMemoryCache, InMemoryEventSink


def _event(**overrides):
    fields = dict(
        event_type=INVENTORY_CHANGED,
        action="outbound",
        entity_type="inventory_lot",
        entity_id="lot-1",
        actor_id="user-test",
        occurred_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        product_id="SKU-1",
        cache_keys=inventory_cache_keys("SKU-1"),
    )
    fields.update(overrides)
    return ChangeEvent(**fields)


class BrokenCache:
    def invalidate(self, pattern):
        raise ConnectionError("cache down")


class BrokenSink:
    def __init__(self):
        self.calls = 0

    def publish(self, event_type, payload):
        self.calls += 1
        raise ConnectionError("broker down")


@pytest.fixture
def warm_cache():
    cache = InMemoryCache()
    cache.set("inventory:summary:SKU-1", {"total": 5})
    cache.set("inventory:availability:SKU-1:3", True)
    cache.set("inventory:summary:SKU-2", {"total": 9})
    cache.set("finance:statistics", {})
    return cache


class TestInMemoryCache:
    def test_glob_invalidation(self, warm_cache):
        assert warm_cache.invalidate("inventory:availability:SKU-1:*") == 1
        assert warm_cache.invalidate("inventory:summary:SKU-1") == 1
        assert warm_cache.keys() == ["finance:statistics", "inventory:summary:SKU-2"]


class TestCommitFanout:
    def test_invalidates_and_publishes(self, warm_cache):
        sink = InMemoryEventSink()
        fanout = CommitFanout(warm_cache, sink)
        event = _event()

        report = fanout.on_committed(event)

        assert report.ok and report.published
        assert warm_cache.get("inventory:summary:SKU-1") is None
        assert warm_cache.get("inventory:summary:SKU-2") == {"total": 9}
        assert sink.published == [(INVENTORY_CHANGED, event.to_payload())]

    def test_redelivery_is_deduplicated(self):
        sink = InMemoryEventSink()
        fanout = CommitFanout(InMemoryCache(), sink)
        event = _event()

        fanout.on_committed(event)
        report = fanout.on_committed(event)

        assert report.duplicate
        assert len(sink.published) == 1

    def test_dedupe_window_is_bounded(self):
        sink = InMemoryEventSink()
        fanout = CommitFanout(None, sink, dedupe_window=2)
        first, second, third = _event(), _event(), _event()

        for event in (first, second, third, first):
            fanout.on_committed(event)

        assert len(sink.published) == 4

    def test_cache_failure_does_not_stop_publish(self, captured_logs):
        sink = InMemoryEventSink()
        report = CommitFanout(BrokenCache(), sink).on_committed(_event())

        assert not report.ok
        assert report.published
        assert len(report.failures) == 3
        errors = [r for r in captured_logs() if r["message"] == "cache_invalidation_failed"]
        assert len(errors) == 3
        assert errors[0]["level"] == "ERROR"

    def test_failed_publish_is_retried_on_redelivery(self):
        sink = BrokenSink()
        fanout = CommitFanout(None, sink)
        event = _event()

        first = fanout.on_committed(event)
        second = fanout.on_committed(event)

        assert not first.published and not second.duplicate
        assert sink.calls == 2

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            CommitFanout(dedupe_window=0)
