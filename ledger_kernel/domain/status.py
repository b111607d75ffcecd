"""
Status derivation engine -- the only place ledger statuses are computed.

Responsibility:
    Maps persisted primary fields (amounts, quantities, age) to the derived
    status of payables, receivables, refunds and inventory lots.  Every
    service re-invokes these functions after any numeric change: create,
    payment, edit, cancel, delete, reversal, and the overdue sweep.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Time enters only as
    the explicit ``age_days`` argument; callers compute it from their Clock.

Invariants enforced:
    - Deterministic: the same inputs always produce the same status.
    - Precedence for balances: settled > overdue > partially settled > open.
      A fully paid record is never overdue.
    - Manual terminal states (``cancelled``) are never produced here; the
      services that set them stop calling the engine for that record.

Failure modes:
    - ValueError on negative amounts or a negative threshold.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

DEFAULT_OVERDUE_THRESHOLD_DAYS = 30
DEFAULT_LOW_STOCK_THRESHOLD = 10


class PayableStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class ReceivableStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


class RefundStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class StockStatus(str, Enum):
    NORMAL = "normal"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class PaymentStatus(str, Enum):
    """Status of a single outgoing payment or incoming receipt."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class SalesOrderStatus(str, Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def _check_amounts(total: Decimal, settled: Decimal) -> None:
    if total < 0 or settled < 0:
        raise ValueError(
            f"Amounts must be non-negative (total={total}, settled={settled})"
        )


def _is_overdue(age_days: int | None, threshold: int) -> bool:
    if threshold < 0:
        raise ValueError(f"Overdue threshold must be non-negative: {threshold}")
    return age_days is not None and age_days > threshold


def derive_payable_status(
    payable_amount: Decimal,
    paid_amount: Decimal,
    *,
    age_days: int | None = None,
    overdue_threshold_days: int = DEFAULT_OVERDUE_THRESHOLD_DAYS,
) -> PayableStatus:
    """
    Derive the status of a payable from its amounts and age.

    remaining <= 0 -> paid; age over threshold -> overdue;
    anything paid -> partial; otherwise pending.
    """
    _check_amounts(payable_amount, paid_amount)
    if payable_amount - paid_amount <= 0:
        return PayableStatus.PAID
    if _is_overdue(age_days, overdue_threshold_days):
        return PayableStatus.OVERDUE
    if paid_amount > 0:
        return PayableStatus.PARTIAL
    return PayableStatus.PENDING


def derive_receivable_status(
    total_amount: Decimal,
    paid_amount: Decimal,
    *,
    age_days: int | None = None,
    overdue_threshold_days: int = DEFAULT_OVERDUE_THRESHOLD_DAYS,
) -> ReceivableStatus:
    """Same rule as payables, with ``unpaid`` as the open state."""
    _check_amounts(total_amount, paid_amount)
    if total_amount - paid_amount <= 0:
        return ReceivableStatus.PAID
    if _is_overdue(age_days, overdue_threshold_days):
        return ReceivableStatus.OVERDUE
    if paid_amount > 0:
        return ReceivableStatus.PARTIAL
    return ReceivableStatus.UNPAID


def derive_refund_status(
    refund_amount: Decimal,
    processed_amount: Decimal,
) -> RefundStatus:
    _check_amounts(refund_amount, processed_amount)
    if refund_amount - processed_amount <= 0:
        return RefundStatus.COMPLETED
    if processed_amount > 0:
        return RefundStatus.PROCESSING
    return RefundStatus.PENDING


def derive_inventory_status(
    quantity: int,
    reserved_quantity: int,
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
) -> StockStatus:
    """
    Derive a lot's stock status from its unreserved quantity.

    available <= 0 -> out_of_stock; available <= threshold -> low_stock;
    otherwise normal.
    """
    if low_stock_threshold < 0:
        raise ValueError(f"Low stock threshold must be non-negative: {low_stock_threshold}")
    available = quantity - reserved_quantity
    if available <= 0:
        return StockStatus.OUT_OF_STOCK
    if available <= low_stock_threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.NORMAL


def age_in_days(created_at: datetime, as_of: datetime) -> int:
    """
    Whole days elapsed between ``created_at`` and ``as_of``.

    Naive datetimes are treated as UTC (SQLite returns stored timestamps
    without tzinfo).  Never negative.
    """
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=timezone.utc)
    return max((as_of - created_at).days, 0)
