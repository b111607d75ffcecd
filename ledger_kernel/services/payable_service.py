"""
PayableService -- supplier payables and the payments applied to them.

Responsibility:
    Creates payables, records outgoing payments against them, and edits,
    cancels or deletes those payments, keeping ``paid_amount``,
    ``remaining_amount`` and ``status`` consistent.  Also runs the overdue
    sweep.

Architecture position:
    Kernel > Services.  Runs inside a transaction opened by the
    TransactionOrchestrator; flushes only.

Invariants enforced:
    - remaining_amount = payable_amount - paid_amount, with
      0 <= paid_amount <= payable_amount.  Every change to paid_amount is a
      conditional update whose predicate forbids overpayment (or, for a
      reversal, going below zero).
    - Status is always re-derived by the status engine from the persisted
      amounts after the write; no inlined status logic.
    - Every path that changes a payment's effect (edit, cancel, delete)
      reapplies the exact delta or inverse.

Failure modes:
    - RemainingAmountExceededError: payment larger than the remaining balance.
    - OptimisticLockError (retryable): payable moved under us.
    - InvariantViolationError: post-write amounts inconsistent (logic bug).
    - NotFoundError / ValidationError.

Audit relevance:
    Payments are never silently rewritten: amount edits are only allowed
    while the payment is pending, and confirmed payments are only undone by
    an explicit cancellation.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO, format_money, to_money
from ledger_kernel.domain.change_events import (
    PAYABLE_CHANGED,
    BalanceState,
    ChangeEvent,
    payable_cache_keys,
)
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.status import (
    DEFAULT_OVERDUE_THRESHOLD_DAYS,
    PayableStatus,
    PaymentStatus,
    age_in_days,
    derive_payable_status,
)
from ledger_kernel.exceptions import (
    InvariantViolationError,
    NotFoundError,
    RemainingAmountExceededError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.payable import (
    PayableRecord,
    PayableSourceType,
    PaymentMethod,
    PaymentOutRecord,
)
from ledger_kernel.selectors.finance import FinanceSelector
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.conditional_update import require_conditional_update
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.payable")

_SOURCE_TYPES = frozenset(t.value for t in PayableSourceType)
_PAYMENT_METHODS = frozenset(m.value for m in PaymentMethod)
_NEW_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.PENDING.value, PaymentStatus.CONFIRMED.value}
)


@dataclass
class PaymentOutcome:
    payment: PaymentOutRecord
    payable: PayableRecord | None = None


def _balance_state(payable: PayableRecord) -> BalanceState:
    return BalanceState(payable.status, payable.paid_amount, payable.remaining_amount)


class PayableService(BaseService):
    """
    Accounts payable ledger.

    Contract:
        Amounts are Decimal (str and int accepted; float rejected).
        Every method takes the acting ``actor_id`` explicitly.

    Guarantees:
        - After any method returns, the touched payable's remaining_amount
          and status match its persisted payable_amount and paid_amount.

    Non-goals:
        - Does NOT post journal entries or touch bank balances.
    """

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

    # ------------------------------------------------------------------
    # Payables
    # ------------------------------------------------------------------

    def create_payable(
        self,
        supplier_id: str,
        payable_amount: Any,
        source_type: str,
        actor_id: str,
        source_id: str | None = None,
        source_number: str | None = None,
        due_date: date | None = None,
        description: str | None = None,
    ) -> PayableRecord:
        """
        Open a payable.  Also used when a factory shipment is confirmed
        (``source_type="factory_shipment"``).
        """
        if not supplier_id:
            raise ValidationError("supplier_id is required", "supplier_id")
        amount = to_money(payable_amount, "payable_amount")
        if source_type not in _SOURCE_TYPES:
            raise ValidationError(f"Unknown source_type: {source_type}", "source_type")
        now = self._now()

        payable = PayableRecord(
            payable_number=self._sequences.next_number(SequenceService.PAYABLE, now),
            supplier_id=supplier_id,
            source_type=source_type,
            source_id=source_id,
            source_number=source_number,
            payable_amount=amount,
            paid_amount=ZERO,
            remaining_amount=amount,
            status=derive_payable_status(
                amount,
                ZERO,
                age_days=0,
                overdue_threshold_days=self.overdue_threshold_days,
            ).value,
            due_date=due_date,
            description=description,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
        )
        self.session.add(payable)
        self.session.flush()

        self._emit_payable_change("payable_created", payable, None, actor_id, now)
        logger.info(
            "payable_created",
            extra={
                "payable_id": str(payable.id),
                "payable_number": payable.payable_number,
                "supplier_id": supplier_id,
                "payable_amount": amount,
                "source_type": source_type,
            },
        )
        return payable

    def cancel_payable(self, payable_id: UUID, actor_id: str) -> PayableRecord:
        """Cancel a payable that has nothing paid against it."""
        payable = self._get_payable(payable_id)
        if payable.status == PayableStatus.CANCELLED.value:
            raise ValidationError(
                f"Payable {payable.payable_number} is already cancelled", "payable_id"
            )
        if payable.paid_amount != 0:
            raise ValidationError(
                f"Payable {payable.payable_number} has payments; cancel them first",
                "payable_id",
            )
        now = self._now()
        before = _balance_state(payable)
        require_conditional_update(
            self.session,
            PayableRecord,
            payable.id,
            (PayableRecord.paid_amount == 0)
            & (PayableRecord.status != PayableStatus.CANCELLED.value),
            {
                PayableRecord.status: PayableStatus.CANCELLED.value,
                PayableRecord.updated_at: now,
                PayableRecord.updated_by_id: actor_id,
            },
        )
        self.session.refresh(payable)
        self._emit_payable_change("payable_cancelled", payable, before, actor_id, now)
        logger.info("payable_cancelled", extra={"payable_id": str(payable.id)})
        return payable

    def refresh_overdue(
        self,
        as_of: datetime | None = None,
        overdue_threshold_days: int | None = None,
        actor_id: str = "system",
    ) -> list[PayableRecord]:
        """
        Re-derive the status of every open payable as of ``as_of``.

        Returns:
            The payables whose status changed.
        """
        as_of = as_of or self._now()
        threshold = (
            self.overdue_threshold_days
            if overdue_threshold_days is None
            else overdue_threshold_days
        )
        changed = []
        for payable in self._selector.open_payables():
            status = derive_payable_status(
                payable.payable_amount,
                payable.paid_amount,
                age_days=age_in_days(payable.created_at, as_of),
                overdue_threshold_days=threshold,
            ).value
            if status == payable.status:
                continue
            before = _balance_state(payable)
            payable.status = status
            payable.updated_at = as_of
            payable.updated_by_id = actor_id
            changed.append(payable)
            self._emit_payable_change("payable_status_refreshed", payable, before, actor_id, as_of)
            self._step()
        self.session.flush()
        logger.info(
            "payables_overdue_refreshed",
            extra={"changed": len(changed), "threshold_days": threshold},
        )
        return changed

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def record_payment(
        self,
        supplier_id: str,
        payment_amount: Any,
        payment_method: str,
        actor_id: str,
        payable_id: UUID | None = None,
        payment_date: datetime | None = None,
        voucher_number: str | None = None,
        notes: str | None = None,
        status: str = PaymentStatus.CONFIRMED.value,
    ) -> PaymentOutcome:
        """
        Record an outgoing payment, applying it to ``payable_id`` if given.

        Raises:
            RemainingAmountExceededError: Amount exceeds the remaining balance.
        """
        if not supplier_id:
            raise ValidationError("supplier_id is required", "supplier_id")
        amount = to_money(payment_amount, "payment_amount")
        self._check_method(payment_method)
        if status not in _NEW_PAYMENT_STATUSES:
            raise ValidationError(f"Invalid payment status: {status}", "status")
        now = self._now()

        payable = None
        if payable_id is not None:
            payable = self._get_open_payable(payable_id)
            if payable.supplier_id != supplier_id:
                raise ValidationError(
                    f"Payable {payable.payable_number} belongs to another supplier",
                    "supplier_id",
                )
            self._precheck_remaining(payable, amount)
        self._step()

        payment = PaymentOutRecord(
            payment_number=self._sequences.next_number(SequenceService.PAYMENT_OUT, now),
            payable_record_id=payable.id if payable is not None else None,
            supplier_id=supplier_id,
            payment_amount=amount,
            payment_method=payment_method,
            payment_date=payment_date or now,
            status=status,
            voucher_number=voucher_number,
            notes=notes,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
        )
        self.session.add(payment)
        self.session.flush()

        if payable is not None:
            self._apply_paid_delta(payable, amount, "payment_recorded", actor_id, now)
        else:
            self._emit(
                ChangeEvent(
                    event_type=PAYABLE_CHANGED,
                    action="payment_recorded",
                    entity_type="payment_out",
                    entity_id=str(payment.id),
                    after=format_money(amount),
                    actor_id=actor_id,
                    occurred_at=now,
                    cache_keys=payable_cache_keys(),
                )
            )

        logger.info(
            "payment_out_recorded",
            extra={
                "payment_id": str(payment.id),
                "payment_number": payment.payment_number,
                "payable_id": str(payable.id) if payable is not None else None,
                "payment_amount": amount,
            },
        )
        return PaymentOutcome(payment=payment, payable=payable)

    def update_payment(
        self,
        payment_id: UUID,
        actor_id: str,
        payment_amount: Any = None,
        payment_method: str | None = None,
        payment_date: datetime | None = None,
        voucher_number: str | None = None,
        notes: str | None = None,
        confirm: bool = False,
    ) -> PaymentOutcome:
        """
        Edit a payment.  The amount may only change while it is pending;
        the linked payable is moved by exactly the difference.
        """
        payment = self._get_payment(payment_id)
        if payment.status == PaymentStatus.CANCELLED.value:
            raise ValidationError(
                f"Payment {payment.payment_number} is cancelled", "payment_id"
            )
        now = self._now()

        payable = None
        if payment_amount is not None:
            amount = to_money(payment_amount, "payment_amount")
            delta = amount - payment.payment_amount
            if delta != 0:
                if payment.status == PaymentStatus.CONFIRMED.value:
                    raise ValidationError(
                        f"Payment {payment.payment_number} is confirmed; "
                        "its amount cannot change",
                        "payment_amount",
                    )
                if payment.payable_record_id is not None:
                    payable = self._get_open_payable(payment.payable_record_id)
                    if delta > 0:
                        self._precheck_remaining(payable, delta)
                    self._apply_paid_delta(payable, delta, "payment_updated", actor_id, now)
                payment.payment_amount = amount

        if payment_method is not None:
            self._check_method(payment_method)
            payment.payment_method = payment_method
        if payment_date is not None:
            payment.payment_date = payment_date
        if voucher_number is not None:
            payment.voucher_number = voucher_number
        if notes is not None:
            payment.notes = notes
        if confirm:
            payment.status = PaymentStatus.CONFIRMED.value
        payment.updated_at = now
        payment.updated_by_id = actor_id
        self.session.flush()

        if payable is None and payment.payable_record_id is not None:
            payable = self.session.get(PayableRecord, payment.payable_record_id)
        logger.info(
            "payment_out_updated",
            extra={"payment_id": str(payment.id), "status": payment.status},
        )
        return PaymentOutcome(payment=payment, payable=payable)

    def cancel_payment(self, payment_id: UUID, actor_id: str) -> PaymentOutcome:
        """Cancel a payment and reverse its effect on the payable."""
        payment = self._get_payment(payment_id)
        if payment.status == PaymentStatus.CANCELLED.value:
            raise ValidationError(
                f"Payment {payment.payment_number} is already cancelled", "payment_id"
            )
        now = self._now()
        payable = self._reverse_payment(payment, "payment_cancelled", actor_id, now)

        payment.status = PaymentStatus.CANCELLED.value
        payment.updated_at = now
        payment.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "payment_out_cancelled",
            extra={"payment_id": str(payment.id), "payment_amount": payment.payment_amount},
        )
        return PaymentOutcome(payment=payment, payable=payable)

    def delete_payment(self, payment_id: UUID, actor_id: str) -> PayableRecord | None:
        """
        Delete a payment that was never confirmed.

        A pending payment is reversed first; a cancelled one has already
        been reversed.
        """
        payment = self._get_payment(payment_id)
        if payment.status == PaymentStatus.CONFIRMED.value:
            raise ValidationError(
                f"Payment {payment.payment_number} is confirmed; cancel it instead",
                "payment_id",
            )
        now = self._now()
        payable = None
        if payment.status == PaymentStatus.PENDING.value:
            payable = self._reverse_payment(payment, "payment_deleted", actor_id, now)
        elif payment.payable_record_id is not None:
            payable = self.session.get(PayableRecord, payment.payable_record_id)

        self.session.delete(payment)
        self.session.flush()
        logger.info("payment_out_deleted", extra={"payment_id": str(payment_id)})
        return payable

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _check_method(payment_method: str) -> None:
        if payment_method not in _PAYMENT_METHODS:
            raise ValidationError(
                f"Unknown payment_method: {payment_method}", "payment_method"
            )

    def _get_payable(self, payable_id: Any) -> PayableRecord:
        payable = self.session.get(PayableRecord, payable_id)
        if payable is None:
            raise NotFoundError("payable", payable_id)
        return payable

    def _get_open_payable(self, payable_id: Any) -> PayableRecord:
        payable = self._get_payable(payable_id)
        if payable.status == PayableStatus.CANCELLED.value:
            raise ValidationError(
                f"Payable {payable.payable_number} is cancelled", "payable_id"
            )
        return payable

    def _get_payment(self, payment_id: Any) -> PaymentOutRecord:
        payment = self.session.get(PaymentOutRecord, payment_id)
        if payment is None:
            raise NotFoundError("payment_out", payment_id)
        return payment

    @staticmethod
    def _precheck_remaining(payable: PayableRecord, amount: Decimal) -> None:
        remaining = payable.payable_amount - payable.paid_amount
        if amount > remaining:
            logger.warning(
                "payment_exceeds_remaining",
                extra={
                    "payable_id": str(payable.id),
                    "remaining_amount": remaining,
                    "requested_amount": amount,
                },
            )
            raise RemainingAmountExceededError("payable", payable.id, remaining, amount)

    def _reverse_payment(
        self,
        payment: PaymentOutRecord,
        action: str,
        actor_id: str,
        now: datetime,
    ) -> PayableRecord | None:
        if payment.payable_record_id is None:
            return None
        payable = self._get_payable(payment.payable_record_id)
        self._apply_paid_delta(payable, -payment.payment_amount, action, actor_id, now)
        return payable

    def _apply_paid_delta(
        self,
        payable: PayableRecord,
        delta: Decimal,
        action: str,
        actor_id: str,
        now: datetime,
    ) -> None:
        """
        Move paid_amount by ``delta`` and re-derive remaining and status.

        Positive deltas are guarded by ``paid_amount + delta <= payable_amount``,
        negative ones by ``paid_amount >= -delta``.
        """
        before = _balance_state(payable)
        if delta > 0:
            predicate = PayableRecord.paid_amount + delta <= PayableRecord.payable_amount
        else:
            predicate = PayableRecord.paid_amount >= -delta
        require_conditional_update(
            self.session,
            PayableRecord,
            payable.id,
            predicate,
            {
                PayableRecord.paid_amount: PayableRecord.paid_amount + delta,
                PayableRecord.updated_at: now,
                PayableRecord.updated_by_id: actor_id,
            },
        )
        self.session.refresh(payable)

        remaining = payable.payable_amount - payable.paid_amount
        if remaining < 0 or payable.paid_amount < 0:
            logger.critical(
                "payable_invariant_violated",
                extra={
                    "payable_id": str(payable.id),
                    "payable_amount": payable.payable_amount,
                    "paid_amount": payable.paid_amount,
                },
            )
            raise InvariantViolationError(
                "paid_within_payable_amount",
                "payable",
                payable.id,
                f"paid {payable.paid_amount} of {payable.payable_amount}",
            )

        payable.remaining_amount = remaining
        payable.status = derive_payable_status(
            payable.payable_amount,
            payable.paid_amount,
            age_days=age_in_days(payable.created_at, now),
            overdue_threshold_days=self.overdue_threshold_days,
        ).value
        payable.updated_at = now
        payable.updated_by_id = actor_id
        self.session.flush()
        self._step()

        self._emit_payable_change(action, payable, before, actor_id, now)

    def _emit_payable_change(
        self,
        action: str,
        payable: PayableRecord,
        before: BalanceState | None,
        actor_id: str,
        now: datetime,
    ) -> None:
        self._emit(
            ChangeEvent(
                event_type=PAYABLE_CHANGED,
                action=action,
                entity_type="payable",
                entity_id=str(payable.id),
                **self._balance_fields(before, _balance_state(payable)),
                actor_id=actor_id,
                occurred_at=now,
                cache_keys=payable_cache_keys(str(payable.id)),
            )
        )
