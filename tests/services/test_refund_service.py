"""
Tests for RefundService.
"""

from decimal import Decimal

import pytest

from ledger_kernel.domain.change_events import REFUND_CHANGED
from ledger_kernel.domain.status import RefundStatus
from ledger_kernel.exceptions import (
    NotFoundError,
    RemainingAmountExceededError,
    ValidationError,
)


@pytest.fixture
def refund(refunds, test_actor_id):
    return refunds.create_refund("C-1", "200.00", test_actor_id, return_order_id="RMA-1")


class TestRefunds:
    def test_create(self, refund):
        assert refund.refund_number == "RF-20240101-000001"
        assert refund.status == RefundStatus.PENDING.value
        assert refund.remaining_amount == Decimal("200")

    def test_process_in_steps(self, refunds, refund, emitted, test_actor_id):
        refunds.process_refund(refund.id, "50", test_actor_id)
        assert refund.status == RefundStatus.PROCESSING.value
        assert refund.remaining_amount == Decimal("150")

        refunds.process_refund(refund.id, "150", test_actor_id)
        assert refund.status == RefundStatus.COMPLETED.value
        assert refund.remaining_amount == Decimal("0")

        event = emitted[-1]
        assert event.event_type == REFUND_CHANGED
        assert (event.before, event.after) == ("50.00", "200.00")
        assert event.remaining_after == "0.00"
        assert (event.status_before, event.status_after) == (
            RefundStatus.PROCESSING.value,
            RefundStatus.COMPLETED.value,
        )

    def test_over_processing_rejected(self, refunds, refund, test_actor_id):
        refunds.process_refund(refund.id, "150", test_actor_id)
        with pytest.raises(RemainingAmountExceededError):
            refunds.process_refund(refund.id, "60", test_actor_id)
        assert refund.processed_amount == Decimal("150")

    def test_cancel_untouched_refund(self, refunds, refund, test_actor_id):
        refunds.cancel_refund(refund.id, test_actor_id)
        assert refund.status == RefundStatus.CANCELLED.value

        with pytest.raises(ValidationError):
            refunds.process_refund(refund.id, "10", test_actor_id)
        with pytest.raises(ValidationError):
            refunds.cancel_refund(refund.id, test_actor_id)

    def test_cannot_cancel_after_processing(self, refunds, refund, test_actor_id):
        refunds.process_refund(refund.id, "1", test_actor_id)
        with pytest.raises(ValidationError):
            refunds.cancel_refund(refund.id, test_actor_id)

    def test_unknown_refund(self, refunds, test_actor_id):
        from uuid import uuid4

        with pytest.raises(NotFoundError):
            refunds.process_refund(uuid4(), "1", test_actor_id)
