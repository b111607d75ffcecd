"""
Tests for the exception hierarchy: codes, retryability and API payloads.
"""

from decimal import Decimal

import pytest

from ledger_kernel.exceptions import (
    ConcurrencyError,
    ConflictError,
    IdempotencyKeyReuseError,
    InsufficientBalanceError,
    InsufficientStockError,
    InvariantViolationError,
    LedgerKernelError,
    OptimisticLockError,
    PermissionDeniedError,
    RemainingAmountExceededError,
    RequestInFlightError,
    RetryExhaustedError,
    SerializationConflictError,
    TransactionTimeoutError,
    ValidationError,
)


class TestRetryability:
    @pytest.mark.parametrize(
        "error",
        [
            OptimisticLockError("payable", "p-1"),
            SerializationConflictError("record_payment", "40001"),
            TransactionTimeoutError("record_payment", 100, 250.0),
        ],
    )
    def test_transient_errors_are_retryable(self, error):
        assert error.retryable is True

    @pytest.mark.parametrize(
        "error",
        [
            ValidationError("bad", "amount"),
            InsufficientStockError("SKU-1", 3, 5),
            RemainingAmountExceededError("payable", "p-1", Decimal("400"), Decimal("500")),
            IdempotencyKeyReuseError("k", "op", "a", "b"),
            RequestInFlightError("k", "op", 1.0),
            InvariantViolationError("paid_within_amount", "payable", "p-1", "detail"),
        ],
    )
    def test_business_errors_are_not_retryable(self, error):
        assert error.retryable is False


class TestHierarchy:
    def test_balance_errors_are_concurrency_errors(self):
        assert issubclass(InsufficientStockError, InsufficientBalanceError)
        assert issubclass(RemainingAmountExceededError, InsufficientBalanceError)
        assert issubclass(InsufficientBalanceError, ConcurrencyError)

    def test_idempotency_conflicts(self):
        assert issubclass(IdempotencyKeyReuseError, ConflictError)
        assert issubclass(RequestInFlightError, ConflictError)

    def test_everything_is_a_kernel_error(self):
        for cls in (ValidationError, PermissionDeniedError, TransactionTimeoutError):
            assert issubclass(cls, LedgerKernelError)


class TestToDict:
    def test_remaining_amount_payload(self):
        data = RemainingAmountExceededError(
            "payable", "p-1", Decimal("400.00"), Decimal("500.00")
        ).to_dict()

        assert data["code"] == "REMAINING_AMOUNT_EXCEEDED"
        assert data["remaining_amount"] == "400.00"
        assert data["requested_amount"] == "500.00"
        assert data["entity_id"] == "p-1"
        assert "500.00" in data["message"]

    def test_retry_exhausted_reports_last_error_code(self):
        last = OptimisticLockError("inventory_lot", "lot-1")
        data = RetryExhaustedError("inventory_outbound", 4, last).to_dict()

        assert data["code"] == "RETRY_EXHAUSTED"
        assert data["attempts"] == 4
        assert data["last_error"] == "OPTIMISTIC_LOCK_CONFLICT"

    def test_permission_denied(self):
        data = PermissionDeniedError("u-1", "finance:manage").to_dict()
        assert data == {
            "code": "PERMISSION_DENIED",
            "message": "Actor u-1 lacks permission finance:manage",
            "actor_id": "u-1",
            "permission": "finance:manage",
        }
