"""
Pure domain layer.

Status derivation, FIFO allocation planning, change events, clocks and the
actor context.  No dependencies on the ORM, the database, or I/O (except
SystemClock).  All domain objects are immutable and deterministic.
"""

from ledger_kernel.domain.actor import ActorContext, Permission
from ledger_kernel.domain.allocation import (
    AllocationLine,
    AvailabilityResult,
    LotSnapshot,
    plan_fifo_allocation,
)
from ledger_kernel.domain.change_events import ChangeEvent
from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.status import (
    PayableStatus,
    PaymentStatus,
    ReceivableStatus,
    RefundStatus,
    SalesOrderStatus,
    StockStatus,
    age_in_days,
    derive_inventory_status,
    derive_payable_status,
    derive_receivable_status,
    derive_refund_status,
)

__all__ = [
    "ActorContext",
    "Permission",
    "AllocationLine",
    "AvailabilityResult",
    "LotSnapshot",
    "plan_fifo_allocation",
    "ChangeEvent",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "PayableStatus",
    "PaymentStatus",
    "ReceivableStatus",
    "RefundStatus",
    "SalesOrderStatus",
    "StockStatus",
    "age_in_days",
    "derive_inventory_status",
    "derive_payable_status",
    "derive_receivable_status",
    "derive_refund_status",
]
