"""
Module: ledger_kernel.selectors.finance
Responsibility: Read paths over payables, outgoing payments, sales-order
    receivables and refunds.
Architecture position: Kernel > Selectors.  Read-only.
"""

from sqlalchemy import select

from ledger_kernel.domain.status import (
    PayableStatus,
    ReceivableStatus,
    SalesOrderStatus,
)
from ledger_kernel.models.payable import PayableRecord, PaymentOutRecord
from ledger_kernel.models.receivable import SalesOrder
from ledger_kernel.selectors.base import BaseSelector
from ledger_kernel.selectors.filters import PayableFilter, PaymentOutFilter

OPEN_PAYABLE_STATUSES = (
    PayableStatus.PENDING.value,
    PayableStatus.PARTIAL.value,
    PayableStatus.OVERDUE.value,
)


class FinanceSelector(BaseSelector):
    def payables(self, payable_filter: PayableFilter | None = None) -> list[PayableRecord]:
        stmt = select(PayableRecord).order_by(
            PayableRecord.created_at.desc(), PayableRecord.id.asc()
        )
        if payable_filter is not None:
            stmt = stmt.where(*payable_filter.criteria())
        return list(self.session.execute(stmt).scalars())

    def open_payables(self) -> list[PayableRecord]:
        return self.payables(PayableFilter(statuses=OPEN_PAYABLE_STATUSES))

    def payments(
        self, payment_filter: PaymentOutFilter | None = None
    ) -> list[PaymentOutRecord]:
        stmt = select(PaymentOutRecord).order_by(
            PaymentOutRecord.payment_date.desc(), PaymentOutRecord.id.asc()
        )
        if payment_filter is not None:
            stmt = stmt.where(*payment_filter.criteria())
        return list(self.session.execute(stmt).scalars())

    def open_receivables(self) -> list[SalesOrder]:
        """Orders that still carry an unpaid balance."""
        return list(
            self.session.execute(
                select(SalesOrder)
                .where(SalesOrder.status != SalesOrderStatus.CANCELLED.value)
                .where(SalesOrder.payment_status != ReceivableStatus.PAID.value)
                .order_by(SalesOrder.created_at.asc(), SalesOrder.id.asc())
            ).scalars()
        )
