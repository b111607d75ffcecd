"""
Tests for status derivation.

Covers:
- Payable / receivable / refund status from amounts and age
- Inventory status from unreserved quantity and the low-stock threshold
- Age calculation with naive and aware timestamps
- Property: derived status always agrees with the remaining amount
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from ledger_kernel.domain.status import (
    PayableStatus,
    ReceivableStatus,
    RefundStatus,
    StockStatus,
    age_in_days,
    derive_inventory_status,
    derive_payable_status,
    derive_receivable_status,
    derive_refund_status,
)

amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("1000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


class TestPayableStatus:
    def test_nothing_paid_is_pending(self):
        assert derive_payable_status(Decimal("1000"), Decimal("0")) == PayableStatus.PENDING

    def test_partially_paid(self):
        assert derive_payable_status(Decimal("1000"), Decimal("600")) == PayableStatus.PARTIAL

    def test_fully_paid(self):
        assert derive_payable_status(Decimal("1000"), Decimal("1000")) == PayableStatus.PAID

    def test_overdue_beats_partial(self):
        status = derive_payable_status(
            Decimal("1000"), Decimal("600"), age_days=31, overdue_threshold_days=30
        )
        assert status == PayableStatus.OVERDUE

    def test_threshold_day_itself_is_not_overdue(self):
        status = derive_payable_status(
            Decimal("1000"), Decimal("0"), age_days=30, overdue_threshold_days=30
        )
        assert status == PayableStatus.PENDING

    def test_paid_never_overdue(self):
        status = derive_payable_status(
            Decimal("1000"), Decimal("1000"), age_days=400, overdue_threshold_days=30
        )
        assert status == PayableStatus.PAID

    def test_unknown_age_is_never_overdue(self):
        assert derive_payable_status(Decimal("5"), Decimal("0"), age_days=None) == (
            PayableStatus.PENDING
        )

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            derive_payable_status(Decimal("-1"), Decimal("0"))

    def test_negative_threshold_rejected(self):
        with pytest.raises(ValueError):
            derive_payable_status(
                Decimal("10"), Decimal("0"), age_days=1, overdue_threshold_days=-1
            )

    @given(total=amounts, fraction=st.integers(min_value=0, max_value=100))
    def test_status_agrees_with_remaining(self, total, fraction):
        paid = (total * fraction / 100).quantize(Decimal("0.01"))
        status = derive_payable_status(total, paid)
        if paid >= total:
            assert status == PayableStatus.PAID
        elif paid > 0:
            assert status == PayableStatus.PARTIAL
        else:
            assert status == PayableStatus.PENDING


class TestReceivableStatus:
    def test_open_state_is_unpaid(self):
        assert derive_receivable_status(Decimal("50"), Decimal("0")) == (
            ReceivableStatus.UNPAID
        )

    def test_partial_and_paid(self):
        assert derive_receivable_status(Decimal("50"), Decimal("20")) == (
            ReceivableStatus.PARTIAL
        )
        assert derive_receivable_status(Decimal("50"), Decimal("50")) == (
            ReceivableStatus.PAID
        )

    def test_overdue(self):
        status = derive_receivable_status(
            Decimal("50"), Decimal("0"), age_days=8, overdue_threshold_days=7
        )
        assert status == ReceivableStatus.OVERDUE


class TestRefundStatus:
    @pytest.mark.parametrize(
        "processed, expected",
        [
            (Decimal("0"), RefundStatus.PENDING),
            (Decimal("30"), RefundStatus.PROCESSING),
            (Decimal("100"), RefundStatus.COMPLETED),
        ],
    )
    def test_status_by_processed_amount(self, processed, expected):
        assert derive_refund_status(Decimal("100"), processed) == expected


class TestInventoryStatus:
    @pytest.mark.parametrize(
        "quantity, reserved, expected",
        [
            (0, 0, StockStatus.OUT_OF_STOCK),
            (5, 5, StockStatus.OUT_OF_STOCK),
            (10, 0, StockStatus.LOW_STOCK),
            (15, 5, StockStatus.LOW_STOCK),
            (11, 0, StockStatus.NORMAL),
        ],
    )
    def test_status_uses_unreserved_quantity(self, quantity, reserved, expected):
        assert derive_inventory_status(quantity, reserved, 10) == expected

    def test_custom_threshold(self):
        assert derive_inventory_status(3, 0, low_stock_threshold=2) == StockStatus.NORMAL

    def test_negative_threshold_rejected(self):
        with pytest.raises(ValueError):
            derive_inventory_status(3, 0, low_stock_threshold=-1)

    @given(
        quantity=st.integers(min_value=0, max_value=10_000),
        reserved=st.integers(min_value=0, max_value=10_000),
        threshold=st.integers(min_value=0, max_value=100),
    )
    def test_out_of_stock_iff_nothing_available(self, quantity, reserved, threshold):
        status = derive_inventory_status(quantity, reserved, threshold)
        assert (status == StockStatus.OUT_OF_STOCK) == (quantity - reserved <= 0)


class TestAgeInDays:
    def test_whole_days(self):
        created = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert age_in_days(created, created + timedelta(days=3, hours=23)) == 3

    def test_naive_treated_as_utc(self):
        created = datetime(2024, 1, 1, 12, 0)
        as_of = datetime(2024, 1, 11, 12, 0, tzinfo=timezone.utc)
        assert age_in_days(created, as_of) == 10

    def test_never_negative(self):
        created = datetime(2024, 1, 10, tzinfo=timezone.utc)
        assert age_in_days(created, datetime(2024, 1, 1, tzinfo=timezone.utc)) == 0
