"""
Tests for the pure FIFO allocation planner.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from ledger_kernel.domain.allocation import LotSnapshot, plan_fifo_allocation


def _lot(lot_id, quantity, reserved=0, batch=None):
    return LotSnapshot(
        lot_id=lot_id,
        quantity=quantity,
        reserved_quantity=reserved,
        batch_number=batch,
        location=None,
    )


class TestPlanFifoAllocation:
    def test_consumes_lots_in_order(self):
        result = plan_fifo_allocation([_lot("L1", 5), _lot("L2", 10)], 7)

        assert result.available is True
        assert result.shortfall == 0
        assert [(line.lot_id, line.quantity) for line in result.allocation_plan] == [
            ("L1", 5),
            ("L2", 2),
        ]

    def test_reserved_units_are_skipped(self):
        result = plan_fifo_allocation([_lot("L1", 5, reserved=5), _lot("L2", 10)], 4)

        assert [(line.lot_id, line.quantity) for line in result.allocation_plan] == [
            ("L2", 4)
        ]
        assert result.total_quantity == 15
        assert result.reserved_quantity == 5
        assert result.available_quantity == 10

    def test_shortfall_returns_empty_plan(self):
        result = plan_fifo_allocation([_lot("L1", 3), _lot("L2", 2, reserved=1)], 10)

        assert result.available is False
        assert result.available_quantity == 4
        assert result.shortfall == 6
        assert result.allocation_plan == ()

    def test_no_lots(self):
        result = plan_fifo_allocation([], 1)
        assert result.available is False
        assert result.shortfall == 1

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity_rejected(self, quantity):
        with pytest.raises(ValueError):
            plan_fifo_allocation([_lot("L1", 5)], quantity)

    def test_to_dict_is_json_ready(self):
        data = plan_fifo_allocation([_lot("L1", 5, batch="B-7")], 2).to_dict()

        assert data["allocation_plan"] == [
            {"lot_id": "L1", "quantity": 2, "batch_number": "B-7", "location": None}
        ]
        assert data["requested"] == 2

    @given(
        lots=st.lists(
            st.tuples(
                st.integers(min_value=0, max_value=50),
                st.integers(min_value=0, max_value=50),
            ),
            max_size=8,
        ),
        quantity=st.integers(min_value=1, max_value=200),
    )
    def test_plan_never_over_allocates(self, lots, quantity):
        snapshots = [
            _lot(f"L{i}", qty, reserved=min(res, qty)) for i, (qty, res) in enumerate(lots)
        ]
        result = plan_fifo_allocation(snapshots, quantity)

        free = {s.lot_id: s.available_quantity for s in snapshots}
        if result.available:
            assert sum(line.quantity for line in result.allocation_plan) == quantity
            for line in result.allocation_plan:
                assert 0 < line.quantity <= free[line.lot_id]
        else:
            assert result.shortfall == quantity - sum(free.values())
