"""
Module: ledger_kernel.models.payable
Responsibility: ORM persistence for accounts payable and outgoing payments.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - remaining_amount = payable_amount - paid_amount, and
      0 <= paid_amount <= payable_amount (CHECK constraints).
    - payable_amount > 0, payment_amount > 0.
    - payable_number / payment_number unique (from the sequence service).

Audit relevance:
    A payable's paid_amount is only ever moved by the conditional update
    primitive, and every move has a matching PaymentOutRecord.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.db.types import format_money
from ledger_kernel.domain.status import PayableStatus, PaymentStatus


class PayableSourceType(str, Enum):
    PURCHASE_ORDER = "purchase_order"
    FACTORY_SHIPMENT = "factory_shipment"
    SERVICE = "service"
    OTHER = "other"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    OTHER = "other"


class PayableRecord(TrackedBase):
    """
    Amount owed to a supplier.

    Guarantees:
        - status is always the output of derive_payable_status() for the
          persisted amounts, except for the manual ``cancelled`` state.
    """

    __tablename__ = "payable_records"

    __table_args__ = (
        CheckConstraint("payable_amount > 0", name="ck_payable_amount_positive"),
        CheckConstraint("paid_amount >= 0", name="ck_payable_paid_non_negative"),
        CheckConstraint(
            "paid_amount <= payable_amount", name="ck_payable_paid_within_amount"
        ),
        Index("idx_payable_supplier", "supplier_id"),
        Index("idx_payable_status", "status"),
    )

    payable_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    supplier_id: Mapped[str] = mapped_column(String(100), nullable=False)

    source_type: Mapped[str] = mapped_column(String(30), nullable=False)

    source_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    source_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    payable_amount: Mapped[Decimal] = mapped_column(nullable=False)

    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    remaining_amount: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PayableStatus.PENDING.value
    )

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<PayableRecord {self.payable_number}: {self.paid_amount}/"
            f"{self.payable_amount} {self.status}>"
        )


class PaymentOutRecord(TrackedBase):
    """Outgoing payment, optionally applied to one payable."""

    __tablename__ = "payment_out_records"

    __table_args__ = (
        CheckConstraint("payment_amount > 0", name="ck_payment_amount_positive"),
        Index("idx_payment_out_payable", "payable_record_id"),
        Index("idx_payment_out_supplier", "supplier_id"),
    )

    payment_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    payable_record_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("payable_records.id"), nullable=True
    )

    supplier_id: Mapped[str] = mapped_column(String(100), nullable=False)

    payment_amount: Mapped[Decimal] = mapped_column(nullable=False)

    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)

    payment_date: Mapped[datetime] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.CONFIRMED.value
    )

    voucher_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)


def payable_to_dict(payable: PayableRecord) -> dict:
    return {
        "id": str(payable.id),
        "payable_number": payable.payable_number,
        "supplier_id": payable.supplier_id,
        "source_type": payable.source_type,
        "source_id": payable.source_id,
        "source_number": payable.source_number,
        "payable_amount": format_money(payable.payable_amount),
        "paid_amount": format_money(payable.paid_amount),
        "remaining_amount": format_money(payable.remaining_amount),
        "status": payable.status,
        "due_date": payable.due_date.isoformat() if payable.due_date else None,
        "description": payable.description,
    }


def payment_to_dict(payment: PaymentOutRecord) -> dict:
    return {
        "id": str(payment.id),
        "payment_number": payment.payment_number,
        "payable_record_id": (
            str(payment.payable_record_id) if payment.payable_record_id else None
        ),
        "supplier_id": payment.supplier_id,
        "payment_amount": format_money(payment.payment_amount),
        "payment_method": payment.payment_method,
        "payment_date": payment.payment_date.isoformat(),
        "status": payment.status,
        "voucher_number": payment.voucher_number,
        "notes": payment.notes,
    }
