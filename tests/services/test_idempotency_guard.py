"""
Tests for IdempotencyGuard over both stores.

Covers:
- First execution stores a canonical result; repeats replay it
- Key reuse with another payload or actor
- In-flight duplicates and abandoned claims
- Failed executions release the key
- Completion and release bound to the claim that made them
- Retention purge
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from ledger_kernel.exceptions import (
    IdempotencyKeyReuseError,
    RequestInFlightError,
    ValidationError,
)
from ledger_kernel.services.idempotency_guard import (
    IdempotencyGuard,
    InMemoryIdempotencyStore,
    SqlIdempotencyStore,
)


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        return InMemoryIdempotencyStore()
    return SqlIdempotencyStore(request.getfixturevalue("session_factory"))


@pytest.fixture
def guard(store, deterministic_clock):
    return IdempotencyGuard(store, clock=deterministic_clock, pending_timeout_seconds=60)


class Counter:
    def __init__(self, result=None):
        self.calls = 0
        self.result = result

    def __call__(self):
        self.calls += 1
        return self.result


PAYLOAD = {"amount": Decimal("600.00"), "payable_id": "p-1"}


class TestReplay:
    def test_second_call_replays_without_executing(self, guard):
        fn = Counter({"paid": Decimal("600.00"), "status": "partial"})

        first = guard.run("k-1", "payment_out_record", "p-1", "u-1", PAYLOAD, fn)
        second = guard.run("k-1", "payment_out_record", "p-1", "u-1", PAYLOAD, fn)

        assert fn.calls == 1
        assert first == second == {"paid": "600", "status": "partial"}

    def test_equal_decimal_payload_is_the_same_request(self, guard):
        fn = Counter({"ok": True})
        guard.run("k-1", "op", "r", "u-1", {"amount": Decimal("600")}, fn)
        guard.run("k-1", "op", "r", "u-1", {"amount": Decimal("600.00")}, fn)
        assert fn.calls == 1

    def test_same_key_different_resource_is_independent(self, guard):
        fn = Counter({"ok": True})
        guard.run("k-1", "op", "r-1", "u-1", PAYLOAD, fn)
        guard.run("k-1", "op", "r-2", "u-1", PAYLOAD, fn)
        assert fn.calls == 2

    def test_none_result_replays_as_none(self, guard):
        fn = Counter(None)
        assert guard.run("k-1", "op", None, "u-1", PAYLOAD, fn) is None
        assert guard.run("k-1", "op", None, "u-1", PAYLOAD, fn) is None
        assert fn.calls == 1

    def test_replay_is_logged(self, guard, captured_logs):
        fn = Counter({"ok": True})
        guard.run("k-1", "op", "r", "u-1", PAYLOAD, fn)
        guard.run("k-1", "op", "r", "u-1", PAYLOAD, fn)

        replayed = [r for r in captured_logs() if r["message"] == "idempotency_replayed"]
        assert len(replayed) == 1
        assert replayed[0]["idempotency_key"] == "k-1"


class TestConflicts:
    def test_different_payload_rejected(self, guard):
        guard.run("k-1", "op", "r", "u-1", PAYLOAD, Counter({"ok": True}))

        with pytest.raises(IdempotencyKeyReuseError):
            guard.run(
                "k-1", "op", "r", "u-1", {**PAYLOAD, "amount": Decimal("601")}, Counter()
            )

    def test_different_actor_rejected(self, guard):
        guard.run("k-1", "op", "r", "u-1", PAYLOAD, Counter({"ok": True}))

        with pytest.raises(IdempotencyKeyReuseError):
            guard.run("k-1", "op", "r", "u-2", PAYLOAD, Counter())

    def test_in_flight_duplicate_rejected(self, guard):
        inner = Counter({"ok": True})

        def outer():
            return guard.run("k-1", "op", "r", "u-1", PAYLOAD, inner)

        with pytest.raises(RequestInFlightError):
            guard.run("k-1", "op", "r", "u-1", PAYLOAD, outer)
        assert inner.calls == 0

    def test_abandoned_claim_is_taken_over(self, store, guard, deterministic_clock):
        store.claim("op", "r", "k-1", "u-1", "stale-fingerprint", deterministic_clock.now())
        deterministic_clock.advance(120)

        fn = Counter({"ok": True})
        assert guard.run("k-1", "op", "r", "u-1", PAYLOAD, fn) == {"ok": True}
        assert fn.calls == 1

    def test_blank_key_rejected(self, guard):
        with pytest.raises(ValidationError):
            guard.run("  ", "op", "r", "u-1", PAYLOAD, Counter())


class TestRelease:
    def test_failure_releases_key(self, guard):
        def boom():
            raise RuntimeError("downstream failed")

        with pytest.raises(RuntimeError):
            guard.run("k-1", "op", "r", "u-1", PAYLOAD, boom)

        fn = Counter({"ok": True})
        assert guard.run("k-1", "op", "r", "u-1", PAYLOAD, fn) == {"ok": True}
        assert fn.calls == 1


class TestClaimOwnership:
    def _supersede(self, store, deterministic_clock):
        first = store.claim("op", "r", "k-1", "u-1", "fp", deterministic_clock.now())
        deterministic_clock.advance(61)
        stale_before = deterministic_clock.now() - timedelta(seconds=60)
        assert store.discard_stale("op", "r", "k-1", stale_before)
        second = store.claim("op", "r", "k-1", "u-1", "fp", deterministic_clock.now())
        assert second.claimed
        assert second.token != first.token
        return first.token, second.token

    def test_stale_owner_cannot_release_new_claim(self, store, deterministic_clock):
        stale, _ = self._supersede(store, deterministic_clock)

        assert store.release("op", "r", "k-1", stale) is False

        again = store.claim("op", "r", "k-1", "u-1", "fp", deterministic_clock.now())
        assert not again.claimed
        assert again.existing.status == "pending"

    def test_stale_owner_cannot_complete_new_claim(self, store, deterministic_clock):
        stale, live = self._supersede(store, deterministic_clock)
        now = deterministic_clock.now()

        assert store.complete("op", "r", "k-1", stale, '{"n": 1}', now) is False
        assert store.complete("op", "r", "k-1", live, '{"n": 2}', now) is True

        done = store.claim("op", "r", "k-1", "u-1", "fp", now)
        assert done.existing.result == '{"n": 2}'

    def test_late_completion_does_not_overwrite_takeover(
        self, guard, deterministic_clock, captured_logs
    ):
        takeover = Counter({"n": 2})

        def slow_original():
            deterministic_clock.advance(61)
            guard.run("k-1", "op", "r", "u-1", PAYLOAD, takeover)
            return {"n": 1}

        assert guard.run("k-1", "op", "r", "u-1", PAYLOAD, slow_original) == {"n": 1}

        replay = Counter({"n": 3})
        assert guard.run("k-1", "op", "r", "u-1", PAYLOAD, replay) == {"n": 2}
        assert takeover.calls == 1
        assert replay.calls == 0
        messages = [r["message"] for r in captured_logs()]
        assert "idempotency_claim_superseded" in messages


class TestPurge:
    def test_purges_only_expired_completed(self, guard, deterministic_clock):
        guard.run("old", "op", "r", "u-1", PAYLOAD, Counter({"n": 1}))
        deterministic_clock.advance(timedelta(hours=30).total_seconds())
        guard.run("new", "op", "r", "u-1", PAYLOAD, Counter({"n": 2}))

        assert guard.purge_expired(timedelta(hours=24)) == 1

        fresh = Counter({"n": 3})
        assert guard.run("old", "op", "r", "u-1", PAYLOAD, fresh) == {"n": 3}
        assert guard.run("new", "op", "r", "u-1", PAYLOAD, fresh) == {"n": 2}
        assert fresh.calls == 1
