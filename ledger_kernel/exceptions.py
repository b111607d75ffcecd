"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Route handlers map kernel failures to user-facing responses.  They must do
so by TYPE and by machine-readable CODE, never by parsing message text.
Every exception below:
  1. Has a ``code`` class attribute (machine-readable, API-safe)
  2. Carries structured attributes (ids, amounts, quantities)
  3. Declares whether the transaction orchestrator may retry it

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- ValidationError
    +-- PermissionDeniedError
    +-- NotFoundError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError            (retryable)
    |   +-- SerializationConflictError     (retryable)
    |   +-- InsufficientBalanceError       (not retried)
    |   |   +-- RemainingAmountExceededError
    |   |   +-- InsufficientStockError
    |   +-- RetryExhaustedError
    |
    +-- ConflictError
    |   +-- IdempotencyKeyReuseError
    |   +-- RequestInFlightError
    |
    +-- TransactionTimeoutError            (retryable)
    +-- InvariantViolationError            (fatal)

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                        | When Raised
----------------------------|-------------------------------------------------
VALIDATION_ERROR            | Malformed or out-of-range input, before any tx
PERMISSION_DENIED           | Actor lacks the permission for the mutation
NOT_FOUND                   | Referenced payable / lot / order does not exist
OPTIMISTIC_LOCK_CONFLICT    | Conditional update matched zero rows
SERIALIZATION_CONFLICT      | Database aborted the tx (40001 / 40P01 / busy)
REMAINING_AMOUNT_EXCEEDED   | Payment larger than the remaining balance
INSUFFICIENT_STOCK          | Requested quantity exceeds available stock
RETRY_EXHAUSTED             | Retryable failure persisted past max_retries
IDEMPOTENCY_KEY_REUSE       | Same key, different payload or actor
REQUEST_IN_FLIGHT           | Same key still pending in another request
TRANSACTION_TIMEOUT         | Transaction exceeded its time bound
INVARIANT_VIOLATION         | Post-condition failed inside the transaction

===============================================================================
RETRY POLICY
===============================================================================

The orchestrator consults ``retryable`` on the raised instance.  Conflicts
are never retried: they signal caller misuse or an in-flight duplicate.
``InsufficientBalanceError`` is a concurrency outcome (the losing side of a
race) but the row has already been read under the transaction's isolation,
so re-running the body would observe the same state.
"""

from decimal import Decimal
from typing import Any


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"
    retryable: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Structured representation for API error bodies."""
        data: dict[str, Any] = {"code": self.code, "message": str(self)}
        for key, value in vars(self).items():
            if key.startswith("_"):
                continue
            if isinstance(value, Decimal):
                value = str(value)
            elif isinstance(value, BaseException):
                value = getattr(value, "code", type(value).__name__)
            data[key] = value
        return data


class ValidationError(LedgerKernelError):
    """Malformed or out-of-range input; rejected before any transaction opens."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class PermissionDeniedError(LedgerKernelError):
    """Actor lacks the permission required for a mutation."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor_id: str, permission: str):
        self.actor_id = actor_id
        self.permission = permission
        super().__init__(f"Actor {actor_id} lacks permission {permission}")


class NotFoundError(LedgerKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} not found: {entity_id}")


# Concurrency-related exceptions


class ConcurrencyError(LedgerKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """A conditional update matched no row: another writer got there first."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"
    retryable = True

    def __init__(self, entity_type: str, entity_id: Any, predicate: str = ""):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.predicate = predicate
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}"
            + (f" (predicate: {predicate})" if predicate else "")
        )


class SerializationConflictError(ConcurrencyError):
    """The database aborted the transaction to preserve serializability."""

    code: str = "SERIALIZATION_CONFLICT"
    retryable = True

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Serialization conflict in {operation}: {detail}")


class InsufficientBalanceError(ConcurrencyError):
    """Requested amount or quantity exceeds what is left on the row."""

    code: str = "INSUFFICIENT_BALANCE"


class RemainingAmountExceededError(InsufficientBalanceError):
    """Payment or refund larger than the remaining balance."""

    code: str = "REMAINING_AMOUNT_EXCEEDED"

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        remaining_amount: Decimal,
        requested_amount: Decimal,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.remaining_amount = remaining_amount
        self.requested_amount = requested_amount
        super().__init__(
            f"Amount {requested_amount} exceeds remaining {remaining_amount} "
            f"on {entity_type} {entity_id}"
        )


class InsufficientStockError(InsufficientBalanceError):
    """Requested quantity exceeds available (unreserved) stock."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, available: int, requested: int):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"available {available}, requested {requested}"
        )


class RetryExhaustedError(ConcurrencyError):
    """A retryable failure persisted after the bounded number of attempts."""

    code: str = "RETRY_EXHAUSTED"

    def __init__(self, operation: str, attempts: int, last_error: LedgerKernelError):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {last_error}"
        )


# Idempotency conflicts


class ConflictError(LedgerKernelError):
    """Base exception for idempotency conflicts.  Never auto-retried."""

    code: str = "CONFLICT"


class IdempotencyKeyReuseError(ConflictError):
    """Idempotency key reused with a different payload or actor."""

    code: str = "IDEMPOTENCY_KEY_REUSE"

    def __init__(
        self,
        idempotency_key: str,
        operation_type: str,
        expected_fingerprint: str,
        received_fingerprint: str,
    ):
        self.idempotency_key = idempotency_key
        self.operation_type = operation_type
        self.expected_fingerprint = expected_fingerprint
        self.received_fingerprint = received_fingerprint
        super().__init__(
            f"Idempotency key {idempotency_key} for {operation_type} "
            f"was already used with a different request"
        )


class RequestInFlightError(ConflictError):
    """An identical request with the same key is still being processed."""

    code: str = "REQUEST_IN_FLIGHT"

    def __init__(self, idempotency_key: str, operation_type: str, age_seconds: float):
        self.idempotency_key = idempotency_key
        self.operation_type = operation_type
        self.age_seconds = age_seconds
        super().__init__(
            f"Request with idempotency key {idempotency_key} for "
            f"{operation_type} is already in flight ({age_seconds:.1f}s)"
        )


class TransactionTimeoutError(LedgerKernelError):
    """Transaction exceeded its time bound and was rolled back."""

    code: str = "TRANSACTION_TIMEOUT"
    retryable = True

    def __init__(self, operation: str, timeout_ms: int, elapsed_ms: float):
        self.operation = operation
        self.timeout_ms = timeout_ms
        self.elapsed_ms = elapsed_ms
        super().__init__(
            f"{operation} exceeded {timeout_ms}ms (elapsed {elapsed_ms:.0f}ms)"
        )


class InvariantViolationError(LedgerKernelError):
    """
    A post-condition check inside a transaction failed.

    Indicates a logic bug, not a transient race.  Fatal: the transaction is
    aborted and the failure is logged at CRITICAL.
    """

    code: str = "INVARIANT_VIOLATION"

    def __init__(self, invariant: str, entity_type: str, entity_id: Any, detail: str):
        self.invariant = invariant
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.detail = detail
        super().__init__(
            f"Invariant {invariant} violated on {entity_type} {entity_id}: {detail}"
        )
