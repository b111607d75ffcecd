"""
RefundService -- customer refunds and their processing.

Responsibility:
    Creates refunds, applies processed amounts to them and cancels
    refunds that were never processed.

Architecture position:
    Kernel > Services.  Flushes only.

Invariants enforced:
    - 0 <= processed_amount <= refund_amount, guarded by a conditional
      update so concurrent processing never over-refunds.
    - status is pending / processing / completed as derived by the status
      engine; cancelled is terminal.
"""

from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO, to_money
from ledger_kernel.domain.change_events import (
    REFUND_CHANGED,
    BalanceState,
    ChangeEvent,
    refund_cache_keys,
)
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.status import RefundStatus, derive_refund_status
from ledger_kernel.exceptions import (
    InvariantViolationError,
    NotFoundError,
    RemainingAmountExceededError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.refund import RefundRecord
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.conditional_update import require_conditional_update
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.refund")


def _balance_state(refund: RefundRecord) -> BalanceState:
    return BalanceState(refund.status, refund.processed_amount, refund.remaining_amount)


class RefundService(BaseService):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        emit: Callable[[ChangeEvent], None] | None = None,
        check_deadline: Callable[[], None] | None = None,
    ):
        super().__init__(session, clock, emit, check_deadline)
        self._sequences = SequenceService(session)

    def create_refund(
        self,
        customer_id: str,
        refund_amount: Any,
        actor_id: str,
        return_order_id: str | None = None,
        reason: str | None = None,
    ) -> RefundRecord:
        if not customer_id:
            raise ValidationError("customer_id is required", "customer_id")
        amount = to_money(refund_amount, "refund_amount")
        now = self._now()

        refund = RefundRecord(
            refund_number=self._sequences.next_number(SequenceService.REFUND, now),
            customer_id=customer_id,
            return_order_id=return_order_id,
            refund_amount=amount,
            processed_amount=ZERO,
            remaining_amount=amount,
            status=derive_refund_status(amount, ZERO).value,
            reason=reason,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
        )
        self.session.add(refund)
        self.session.flush()
        self._emit_refund_change("refund_created", refund, None, actor_id, now)
        logger.info(
            "refund_created",
            extra={
                "refund_id": str(refund.id),
                "refund_number": refund.refund_number,
                "refund_amount": amount,
            },
        )
        return refund

    def process_refund(self, refund_id: UUID, amount: Any, actor_id: str) -> RefundRecord:
        """
        Apply ``amount`` to the refund's processed total.

        Raises:
            RemainingAmountExceededError: More than the unprocessed remainder.
            ValidationError: Refund is cancelled.
        """
        value = to_money(amount, "amount")
        refund = self._get(refund_id)
        if refund.status == RefundStatus.CANCELLED.value:
            raise ValidationError(
                f"Refund {refund.refund_number} is cancelled", "refund_id"
            )
        remaining = refund.refund_amount - refund.processed_amount
        if value > remaining:
            raise RemainingAmountExceededError("refund", refund.id, remaining, value)

        now = self._now()
        before = _balance_state(refund)
        require_conditional_update(
            self.session,
            RefundRecord,
            refund.id,
            (RefundRecord.processed_amount + value <= RefundRecord.refund_amount)
            & (RefundRecord.status != RefundStatus.CANCELLED.value),
            {
                RefundRecord.processed_amount: RefundRecord.processed_amount + value,
                RefundRecord.updated_at: now,
                RefundRecord.updated_by_id: actor_id,
            },
        )
        self.session.refresh(refund)

        if refund.processed_amount > refund.refund_amount:
            logger.critical("refund_invariant_violated", extra={"refund_id": str(refund.id)})
            raise InvariantViolationError(
                "processed_within_refund_amount",
                "refund",
                refund.id,
                f"processed {refund.processed_amount} of {refund.refund_amount}",
            )

        refund.remaining_amount = refund.refund_amount - refund.processed_amount
        refund.status = derive_refund_status(
            refund.refund_amount, refund.processed_amount
        ).value
        refund.updated_at = now
        refund.updated_by_id = actor_id
        self.session.flush()
        self._step()

        self._emit_refund_change("refund_processed", refund, before, actor_id, now)
        logger.info(
            "refund_processed",
            extra={
                "refund_id": str(refund.id),
                "amount": value,
                "status": refund.status,
            },
        )
        return refund

    def cancel_refund(self, refund_id: UUID, actor_id: str) -> RefundRecord:
        refund = self._get(refund_id)
        if refund.status == RefundStatus.CANCELLED.value:
            raise ValidationError(
                f"Refund {refund.refund_number} is already cancelled", "refund_id"
            )
        if refund.processed_amount > 0:
            raise ValidationError(
                f"Refund {refund.refund_number} has processed amounts and "
                "cannot be cancelled",
                "refund_id",
            )
        now = self._now()
        before = _balance_state(refund)
        require_conditional_update(
            self.session,
            RefundRecord,
            refund.id,
            RefundRecord.processed_amount == 0,
            {
                RefundRecord.status: RefundStatus.CANCELLED.value,
                RefundRecord.updated_at: now,
                RefundRecord.updated_by_id: actor_id,
            },
        )
        self.session.refresh(refund)
        self._emit_refund_change("refund_cancelled", refund, before, actor_id, now)
        logger.info("refund_cancelled", extra={"refund_id": str(refund.id)})
        return refund

    def _get(self, refund_id: Any) -> RefundRecord:
        refund = self.session.get(RefundRecord, refund_id)
        if refund is None:
            raise NotFoundError("refund", refund_id)
        return refund

    def _emit_refund_change(
        self,
        action: str,
        refund: RefundRecord,
        before: BalanceState | None,
        actor_id: str,
        now: datetime,
    ) -> None:
        self._emit(
            ChangeEvent(
                event_type=REFUND_CHANGED,
                action=action,
                entity_type="refund",
                entity_id=str(refund.id),
                **self._balance_fields(before, _balance_state(refund)),
                actor_id=actor_id,
                occurred_at=now,
                cache_keys=refund_cache_keys(),
            )
        )
