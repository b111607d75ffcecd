"""
ReceivableService -- sales orders as receivables and the receipts against them.

Responsibility:
    Creates and confirms sales orders, applies customer receipts to them,
    reverses receipts, and runs the receivable overdue sweep.

Architecture position:
    Kernel > Services.  Runs inside a transaction opened by the
    TransactionOrchestrator; flushes only.

Invariants enforced:
    - remaining_amount = total_amount - paid_amount, with
      0 <= paid_amount <= total_amount, via conditional updates.
    - payment_status is re-derived by the status engine after every change.

Failure modes:
    - RemainingAmountExceededError: receipt larger than the open balance.
    - OptimisticLockError (retryable), NotFoundError, ValidationError.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO, to_money
from ledger_kernel.domain.change_events import (
    RECEIVABLE_CHANGED,
    BalanceState,
    ChangeEvent,
    receivable_cache_keys,
)
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.status import (
    DEFAULT_OVERDUE_THRESHOLD_DAYS,
    PaymentStatus,
    SalesOrderStatus,
    age_in_days,
    derive_receivable_status,
)
from ledger_kernel.exceptions import (
    InvariantViolationError,
    NotFoundError,
    RemainingAmountExceededError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.payable import PaymentMethod
from ledger_kernel.models.receivable import ReceiptRecord, SalesOrder
from ledger_kernel.selectors.finance import FinanceSelector
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.conditional_update import require_conditional_update
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.receivable")

_PAYMENT_METHODS = frozenset(m.value for m in PaymentMethod)


@dataclass
class ReceiptOutcome:
    receipt: ReceiptRecord
    sales_order: SalesOrder


def _balance_state(order: SalesOrder) -> BalanceState:
    return BalanceState(order.payment_status, order.paid_amount, order.remaining_amount)


class ReceivableService(BaseService):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        emit: Callable[[ChangeEvent], None] | None = None,
        check_deadline: Callable[[], None] | None = None,
        overdue_threshold_days: int = DEFAULT_OVERDUE_THRESHOLD_DAYS,
    ):
        super().__init__(session, clock, emit, check_deadline)
        self.overdue_threshold_days = overdue_threshold_days
        self._sequences = SequenceService(session)
        self._selector = FinanceSelector(session)

    def create_sales_order(
        self,
        customer_id: str,
        total_amount: Any,
        actor_id: str,
    ) -> SalesOrder:
        if not customer_id:
            raise ValidationError("customer_id is required", "customer_id")
        total = to_money(total_amount, "total_amount")
        now = self._now()

        order = SalesOrder(
            order_number=self._sequences.next_number(SequenceService.SALES_ORDER, now),
            customer_id=customer_id,
            total_amount=total,
            paid_amount=ZERO,
            remaining_amount=total,
            status=SalesOrderStatus.DRAFT.value,
            payment_status=derive_receivable_status(
                total,
                ZERO,
                age_days=0,
                overdue_threshold_days=self.overdue_threshold_days,
            ).value,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
        )
        self.session.add(order)
        self.session.flush()
        self._emit_order_change("sales_order_created", order, None, actor_id, now)
        logger.info(
            "sales_order_created",
            extra={
                "sales_order_id": str(order.id),
                "order_number": order.order_number,
                "total_amount": total,
            },
        )
        return order

    def confirm_sales_order(self, sales_order_id: UUID, actor_id: str) -> SalesOrder:
        """Move a draft order to confirmed."""
        order = self._get_order(sales_order_id)
        if order.status != SalesOrderStatus.DRAFT.value:
            raise ValidationError(
                f"Sales order {order.order_number} is {order.status}; "
                "only drafts can be confirmed",
                "sales_order_id",
            )
        now = self._now()
        before = _balance_state(order)
        require_conditional_update(
            self.session,
            SalesOrder,
            order.id,
            SalesOrder.status == SalesOrderStatus.DRAFT.value,
            {
                SalesOrder.status: SalesOrderStatus.CONFIRMED.value,
                SalesOrder.updated_at: now,
                SalesOrder.updated_by_id: actor_id,
            },
        )
        self.session.refresh(order)
        self._emit_order_change("sales_order_confirmed", order, before, actor_id, now)
        logger.info("sales_order_confirmed", extra={"sales_order_id": str(order.id)})
        return order

    def record_receipt(
        self,
        sales_order_id: UUID,
        amount: Any,
        actor_id: str,
        payment_method: str = PaymentMethod.BANK_TRANSFER.value,
        receipt_date: datetime | None = None,
        notes: str | None = None,
    ) -> ReceiptOutcome:
        """
        Apply a customer receipt to a sales order.

        Raises:
            RemainingAmountExceededError: Amount exceeds the open balance.
        """
        value = to_money(amount, "amount")
        if payment_method not in _PAYMENT_METHODS:
            raise ValidationError(f"Unknown payment_method: {payment_method}", "payment_method")
        order = self._get_order(sales_order_id)
        if order.status in (SalesOrderStatus.DRAFT.value, SalesOrderStatus.CANCELLED.value):
            raise ValidationError(
                f"Sales order {order.order_number} is {order.status}; "
                "receipts need a confirmed order",
                "sales_order_id",
            )
        remaining = order.total_amount - order.paid_amount
        if value > remaining:
            raise RemainingAmountExceededError("sales_order", order.id, remaining, value)
        now = self._now()

        receipt = ReceiptRecord(
            receipt_number=self._sequences.next_number(SequenceService.RECEIPT, now),
            sales_order_id=order.id,
            customer_id=order.customer_id,
            amount=value,
            payment_method=payment_method,
            receipt_date=receipt_date or now,
            status=PaymentStatus.CONFIRMED.value,
            notes=notes,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
        )
        self.session.add(receipt)
        self.session.flush()

        self._apply_paid_delta(order, value, "receipt_recorded", actor_id, now)
        logger.info(
            "receipt_recorded",
            extra={
                "receipt_id": str(receipt.id),
                "sales_order_id": str(order.id),
                "amount": value,
            },
        )
        return ReceiptOutcome(receipt=receipt, sales_order=order)

    def cancel_receipt(self, receipt_id: UUID, actor_id: str) -> ReceiptOutcome:
        receipt = self.session.get(ReceiptRecord, receipt_id)
        if receipt is None:
            raise NotFoundError("receipt", receipt_id)
        if receipt.status == PaymentStatus.CANCELLED.value:
            raise ValidationError(
                f"Receipt {receipt.receipt_number} is already cancelled", "receipt_id"
            )
        now = self._now()
        order = self._get_order(receipt.sales_order_id)
        self._apply_paid_delta(order, -receipt.amount, "receipt_cancelled", actor_id, now)

        receipt.status = PaymentStatus.CANCELLED.value
        receipt.updated_at = now
        receipt.updated_by_id = actor_id
        self.session.flush()
        logger.info("receipt_cancelled", extra={"receipt_id": str(receipt.id)})
        return ReceiptOutcome(receipt=receipt, sales_order=order)

    def refresh_overdue(
        self,
        as_of: datetime | None = None,
        overdue_threshold_days: int | None = None,
        actor_id: str = "system",
    ) -> list[SalesOrder]:
        """Re-derive payment_status for every open receivable."""
        as_of = as_of or self._now()
        threshold = (
            self.overdue_threshold_days
            if overdue_threshold_days is None
            else overdue_threshold_days
        )
        changed = []
        for order in self._selector.open_receivables():
            status = derive_receivable_status(
                order.total_amount,
                order.paid_amount,
                age_days=age_in_days(order.created_at, as_of),
                overdue_threshold_days=threshold,
            ).value
            if status == order.payment_status:
                continue
            before = _balance_state(order)
            order.payment_status = status
            order.updated_at = as_of
            order.updated_by_id = actor_id
            changed.append(order)
            self._emit_order_change("receivable_status_refreshed", order, before, actor_id, as_of)
        self.session.flush()
        logger.info(
            "receivables_overdue_refreshed",
            extra={"changed": len(changed), "threshold_days": threshold},
        )
        return changed

    def _get_order(self, sales_order_id: Any) -> SalesOrder:
        order = self.session.get(SalesOrder, sales_order_id)
        if order is None:
            raise NotFoundError("sales_order", sales_order_id)
        return order

    def _apply_paid_delta(
        self,
        order: SalesOrder,
        delta: Decimal,
        action: str,
        actor_id: str,
        now: datetime,
    ) -> None:
        before = _balance_state(order)
        if delta > 0:
            predicate = SalesOrder.paid_amount + delta <= SalesOrder.total_amount
        else:
            predicate = SalesOrder.paid_amount >= -delta
        require_conditional_update(
            self.session,
            SalesOrder,
            order.id,
            predicate,
            {
                SalesOrder.paid_amount: SalesOrder.paid_amount + delta,
                SalesOrder.updated_at: now,
                SalesOrder.updated_by_id: actor_id,
            },
        )
        self.session.refresh(order)

        remaining = order.total_amount - order.paid_amount
        if remaining < 0 or order.paid_amount < 0:
            logger.critical(
                "receivable_invariant_violated",
                extra={"sales_order_id": str(order.id)},
            )
            raise InvariantViolationError(
                "paid_within_total_amount",
                "sales_order",
                order.id,
                f"paid {order.paid_amount} of {order.total_amount}",
            )

        order.remaining_amount = remaining
        order.payment_status = derive_receivable_status(
            order.total_amount,
            order.paid_amount,
            age_days=age_in_days(order.created_at, now),
            overdue_threshold_days=self.overdue_threshold_days,
        ).value
        order.updated_at = now
        order.updated_by_id = actor_id
        self.session.flush()
        self._step()

        self._emit_order_change(action, order, before, actor_id, now)

    def _emit_order_change(
        self,
        action: str,
        order: SalesOrder,
        before: BalanceState | None,
        actor_id: str,
        now: datetime,
    ) -> None:
        self._emit(
            ChangeEvent(
                event_type=RECEIVABLE_CHANGED,
                action=action,
                entity_type="sales_order",
                entity_id=str(order.id),
                **self._balance_fields(before, _balance_state(order)),
                actor_id=actor_id,
                occurred_at=now,
                cache_keys=receivable_cache_keys(),
            )
        )
