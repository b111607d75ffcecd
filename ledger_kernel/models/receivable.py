"""
Module: ledger_kernel.models.receivable
Responsibility: ORM persistence for sales orders (the receivable view) and
    the customer receipts applied against them.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - remaining_amount = total_amount - paid_amount,
      0 <= paid_amount <= total_amount (CHECK constraints).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.db.types import format_money
from ledger_kernel.domain.status import (
    PaymentStatus,
    ReceivableStatus,
    SalesOrderStatus,
)


class SalesOrder(TrackedBase):
    __tablename__ = "sales_orders"

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_sales_order_total_positive"),
        CheckConstraint("paid_amount >= 0", name="ck_sales_order_paid_non_negative"),
        CheckConstraint(
            "paid_amount <= total_amount", name="ck_sales_order_paid_within_total"
        ),
        Index("idx_sales_order_customer", "customer_id"),
    )

    order_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(nullable=False)

    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    remaining_amount: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SalesOrderStatus.DRAFT.value
    )

    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ReceivableStatus.UNPAID.value
    )

    def __repr__(self) -> str:
        return (
            f"<SalesOrder {self.order_number}: {self.status} "
            f"{self.paid_amount}/{self.total_amount} {self.payment_status}>"
        )


class ReceiptRecord(TrackedBase):
    """Customer payment applied to one sales order."""

    __tablename__ = "receipt_records"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_receipt_amount_positive"),
    )

    receipt_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    sales_order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("sales_orders.id"), nullable=False, index=True
    )

    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)

    receipt_date: Mapped[datetime] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.CONFIRMED.value
    )

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)


def sales_order_to_dict(order: SalesOrder) -> dict:
    return {
        "id": str(order.id),
        "order_number": order.order_number,
        "customer_id": order.customer_id,
        "total_amount": format_money(order.total_amount),
        "paid_amount": format_money(order.paid_amount),
        "remaining_amount": format_money(order.remaining_amount),
        "status": order.status,
        "payment_status": order.payment_status,
    }


def receipt_to_dict(receipt: ReceiptRecord) -> dict:
    return {
        "id": str(receipt.id),
        "receipt_number": receipt.receipt_number,
        "sales_order_id": str(receipt.sales_order_id),
        "customer_id": receipt.customer_id,
        "amount": format_money(receipt.amount),
        "payment_method": receipt.payment_method,
        "receipt_date": receipt.receipt_date.isoformat(),
        "status": receipt.status,
    }
