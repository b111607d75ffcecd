"""
Kernel services: the imperative shell around the pure domain layer.

Every balance-mutating service flushes inside a transaction opened by the
TransactionOrchestrator and hands its ChangeEvents to an ``emit`` callable.
"""

from ledger_kernel.services.base import BaseService
from ledger_kernel.services.conditional_update import (
    conditional_update,
    require_conditional_update,
)
from ledger_kernel.services.fanout import (
    CommitFanout,
    FanoutReport,
    InMemoryCache,
    InMemoryEventSink,
    LoggingEventSink,
)
from ledger_kernel.services.idempotency_guard import (
    IdempotencyGuard,
    InMemoryIdempotencyStore,
    SqlIdempotencyStore,
)
from ledger_kernel.services.inventory_service import InventoryService, ProductSummary
from ledger_kernel.services.payable_service import PayableService, PaymentOutcome
from ledger_kernel.services.receivable_service import ReceiptOutcome, ReceivableService
from ledger_kernel.services.refund_service import RefundService
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.services.transaction_orchestrator import (
    TransactionContext,
    TransactionOrchestrator,
)

__all__ = [
    "BaseService",
    "conditional_update",
    "require_conditional_update",
    "CommitFanout",
    "FanoutReport",
    "InMemoryCache",
    "InMemoryEventSink",
    "LoggingEventSink",
    "IdempotencyGuard",
    "InMemoryIdempotencyStore",
    "SqlIdempotencyStore",
    "InventoryService",
    "ProductSummary",
    "PayableService",
    "PaymentOutcome",
    "ReceiptOutcome",
    "ReceivableService",
    "RefundService",
    "SequenceService",
    "TransactionContext",
    "TransactionOrchestrator",
]
