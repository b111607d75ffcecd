"""
Module: ledger_kernel.models.refund
Responsibility: ORM persistence for customer refunds.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - remaining_amount = refund_amount - processed_amount,
      0 <= processed_amount <= refund_amount (CHECK constraints).
"""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase
from ledger_kernel.db.types import format_money
from ledger_kernel.domain.status import RefundStatus


class RefundRecord(TrackedBase):
    __tablename__ = "refund_records"

    __table_args__ = (
        CheckConstraint("refund_amount > 0", name="ck_refund_amount_positive"),
        CheckConstraint(
            "processed_amount >= 0", name="ck_refund_processed_non_negative"
        ),
        CheckConstraint(
            "processed_amount <= refund_amount",
            name="ck_refund_processed_within_amount",
        ),
        Index("idx_refund_customer", "customer_id"),
    )

    refund_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)

    return_order_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    refund_amount: Mapped[Decimal] = mapped_column(nullable=False)

    processed_amount: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )

    remaining_amount: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RefundStatus.PENDING.value
    )

    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)


def refund_to_dict(refund: RefundRecord) -> dict:
    return {
        "id": str(refund.id),
        "refund_number": refund.refund_number,
        "customer_id": refund.customer_id,
        "return_order_id": refund.return_order_id,
        "refund_amount": format_money(refund.refund_amount),
        "processed_amount": format_money(refund.processed_amount),
        "remaining_amount": format_money(refund.remaining_amount),
        "status": refund.status,
        "reason": refund.reason,
    }
