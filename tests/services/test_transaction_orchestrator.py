"""
Tests for TransactionOrchestrator.

Covers:
- Commit and after-commit callbacks
- Retry of retryable failures, then RetryExhaustedError
- Non-retryable failures propagate on the first attempt
- Time bound enforced before commit
- Driver lock errors translated to retryable conflicts
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from ledger_kernel.exceptions import (
    OptimisticLockError,
    RetryExhaustedError,
    TransactionTimeoutError,
    ValidationError,
)
from ledger_kernel.models.refund import RefundRecord
from ledger_kernel.services.refund_service import RefundService


def _create_refund(ctx, amount="10"):
    return RefundService(ctx.session, ctx.clock).create_refund("C-1", amount, "user-test")


def _refund_count(session_factory):
    with session_factory() as session:
        return session.scalar(select(func.count()).select_from(RefundRecord))


class TestCommit:
    def test_commits_and_runs_callbacks(self, orchestrator, session_factory):
        fired = []

        def body(ctx):
            refund = _create_refund(ctx)
            ctx.after_commit(lambda: fired.append(refund.refund_number))
            return refund.refund_number

        number = orchestrator.run(body, operation="refund_create")

        assert fired == [number]
        assert _refund_count(session_factory) == 1

    def test_rollback_skips_callbacks(self, orchestrator, session_factory):
        fired = []

        def body(ctx):
            _create_refund(ctx)
            ctx.after_commit(lambda: fired.append("x"))
            raise ValidationError("nope", "amount")

        with pytest.raises(ValidationError):
            orchestrator.run(body, operation="refund_create")

        assert fired == []
        assert _refund_count(session_factory) == 0

    def test_callback_failure_is_logged_not_raised(self, orchestrator, captured_logs):
        def body(ctx):
            ctx.after_commit(lambda: 1 / 0)
            return "done"

        assert orchestrator.run(body, operation="noop") == "done"
        failed = [
            r for r in captured_logs() if r["message"] == "after_commit_callback_failed"
        ]
        assert failed and failed[0]["exc_type"] == "ZeroDivisionError"


class TestRetry:
    def test_retryable_error_then_success(self, orchestrator, session_factory):
        attempts = []

        def body(ctx):
            attempts.append(ctx.attempt)
            _create_refund(ctx)
            if ctx.attempt < 3:
                raise OptimisticLockError("refund", "r-1")
            return ctx.attempt

        assert orchestrator.run(body, operation="refund_create") == 3
        assert attempts == [1, 2, 3]
        assert _refund_count(session_factory) == 1

    def test_retries_exhausted(self, orchestrator):
        calls = []

        def body(ctx):
            calls.append(ctx.transaction_id)
            raise OptimisticLockError("refund", "r-1")

        with pytest.raises(RetryExhaustedError) as exc_info:
            orchestrator.run(body, operation="refund_process", max_retries=2)

        assert exc_info.value.attempts == 3
        assert len(set(calls)) == 3
        assert isinstance(exc_info.value.last_error, OptimisticLockError)

    def test_non_retryable_propagates_immediately(self, orchestrator):
        calls = []

        def body(ctx):
            calls.append(1)
            raise ValidationError("bad", "amount")

        with pytest.raises(ValidationError):
            orchestrator.run(body, operation="refund_process")
        assert calls == [1]

    def test_backoff_is_linear(self, session_factory, deterministic_clock):
        from ledger_kernel.services.transaction_orchestrator import TransactionOrchestrator

        sleeps = []
        orchestrator = TransactionOrchestrator(
            session_factory,
            clock=deterministic_clock,
            retry_backoff_ms=10,
            max_retries=2,
            sleep=sleeps.append,
        )

        def body(ctx):
            raise OptimisticLockError("refund", "r-1")

        with pytest.raises(RetryExhaustedError):
            orchestrator.run(body, operation="refund_process")
        assert sleeps == [0.01, 0.02]

    def test_database_lock_translated(self, orchestrator):
        def body(ctx):
            if ctx.attempt == 1:
                raise OperationalError("UPDATE x", {}, Exception("database is locked"))
            return "ok"

        assert orchestrator.run(body, operation="refund_process") == "ok"

    def test_unknown_driver_error_propagates(self, orchestrator):
        def body(ctx):
            raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

        with pytest.raises(OperationalError):
            orchestrator.run(body, operation="refund_process")


class TestDeadline:
    def test_overrun_is_rolled_back_and_retried(self, orchestrator, deterministic_clock, session_factory):
        def body(ctx):
            _create_refund(ctx)
            deterministic_clock.advance(ctx.timeout_ms / 1000 + 1)

        with pytest.raises(RetryExhaustedError) as exc_info:
            orchestrator.run(body, operation="refund_create", timeout_ms=500, max_retries=1)

        assert isinstance(exc_info.value.last_error, TransactionTimeoutError)
        assert _refund_count(session_factory) == 0

    def test_services_check_deadline_between_steps(self, orchestrator, deterministic_clock):
        def body(ctx):
            service = RefundService(
                ctx.session, ctx.clock, check_deadline=ctx.check_deadline
            )
            refund = service.create_refund("C-1", "10", "user-test")
            deterministic_clock.advance(5)
            service.process_refund(refund.id, "1", "user-test")

        with pytest.raises(RetryExhaustedError) as exc_info:
            orchestrator.run(body, operation="refund_process", timeout_ms=1000, max_retries=0)
        assert isinstance(exc_info.value.last_error, TransactionTimeoutError)
