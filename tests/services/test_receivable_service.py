"""
Tests for ReceivableService: sales orders, receipts and the overdue sweep.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from ledger_kernel.domain.change_events import RECEIVABLE_CHANGED
from ledger_kernel.domain.status import (
    PaymentStatus,
    ReceivableStatus,
    SalesOrderStatus,
)
from ledger_kernel.exceptions import RemainingAmountExceededError, ValidationError


@pytest.fixture
def order(receivables, test_actor_id):
    order = receivables.create_sales_order("C-1", "800.00", test_actor_id)
    return receivables.confirm_sales_order(order.id, test_actor_id)


class TestSalesOrders:
    def test_create_draft(self, receivables, test_actor_id):
        order = receivables.create_sales_order("C-1", "120", test_actor_id)

        assert order.order_number == "SO-20240101-000001"
        assert order.status == SalesOrderStatus.DRAFT.value
        assert order.payment_status == ReceivableStatus.UNPAID.value
        assert order.remaining_amount == Decimal("120")

    def test_confirm_only_once(self, receivables, order, test_actor_id):
        assert order.status == SalesOrderStatus.CONFIRMED.value
        with pytest.raises(ValidationError):
            receivables.confirm_sales_order(order.id, test_actor_id)


class TestReceipts:
    def test_partial_then_paid(self, receivables, order, test_actor_id):
        first = receivables.record_receipt(order.id, "300", test_actor_id)

        assert first.receipt.receipt_number == "RCV-20240101-000001"
        assert first.receipt.status == PaymentStatus.CONFIRMED.value
        assert first.sales_order.payment_status == ReceivableStatus.PARTIAL.value
        assert first.sales_order.remaining_amount == Decimal("500")

        last = receivables.record_receipt(order.id, "500", test_actor_id, payment_method="cash")
        assert last.sales_order.payment_status == ReceivableStatus.PAID.value
        assert last.sales_order.remaining_amount == Decimal("0")

    def test_over_receipt_rejected(self, receivables, order, test_actor_id):
        receivables.record_receipt(order.id, "700", test_actor_id)

        with pytest.raises(RemainingAmountExceededError) as exc_info:
            receivables.record_receipt(order.id, "100.01", test_actor_id)
        assert exc_info.value.remaining_amount == Decimal("100")
        assert order.paid_amount == Decimal("700")

    def test_draft_order_rejects_receipt(self, receivables, test_actor_id):
        draft = receivables.create_sales_order("C-1", "10", test_actor_id)
        with pytest.raises(ValidationError):
            receivables.record_receipt(draft.id, "5", test_actor_id)

    def test_unknown_method(self, receivables, order, test_actor_id):
        with pytest.raises(ValidationError):
            receivables.record_receipt(order.id, "5", test_actor_id, payment_method="barter")

    def test_cancel_reverses_once(self, receivables, order, emitted, test_actor_id):
        receipt = receivables.record_receipt(order.id, "800", test_actor_id).receipt

        outcome = receivables.cancel_receipt(receipt.id, test_actor_id)

        assert outcome.receipt.status == PaymentStatus.CANCELLED.value
        assert outcome.sales_order.paid_amount == Decimal("0")
        assert outcome.sales_order.payment_status == ReceivableStatus.UNPAID.value
        assert emitted[-1].event_type == RECEIVABLE_CHANGED
        assert (emitted[-1].before, emitted[-1].after) == ("800.00", "0.00")
        assert emitted[-1].status_before == ReceivableStatus.PAID.value

        with pytest.raises(ValidationError):
            receivables.cancel_receipt(receipt.id, test_actor_id)


class TestOverdueSweep:
    def test_open_orders_go_overdue(self, receivables, order, deterministic_clock, test_actor_id):
        settled = receivables.confirm_sales_order(
            receivables.create_sales_order("C-2", "40", test_actor_id).id, test_actor_id
        )
        receivables.record_receipt(settled.id, "40", test_actor_id)

        changed = receivables.refresh_overdue(
            as_of=deterministic_clock.now() + timedelta(days=45)
        )

        assert [o.id for o in changed] == [order.id]
        assert order.payment_status == ReceivableStatus.OVERDUE.value
        assert settled.payment_status == ReceivableStatus.PAID.value

    def test_nothing_changes_inside_threshold(self, receivables, order, deterministic_clock):
        assert receivables.refresh_overdue(
            as_of=deterministic_clock.now() + timedelta(days=2)
        ) == []
