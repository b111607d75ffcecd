"""
Tests for amount parsing and the scaled decimal column type.

Covers:
- to_money: exact parsing, scale normalization, rejection of finer input
- format_money renders what was parsed
- ScaledDecimal: integer minor units on SQLite, NUMERIC elsewhere
"""

from decimal import Decimal

import pytest
from sqlalchemy.dialects import postgresql, sqlite

from ledger_kernel.db.base import ScaledDecimal
from ledger_kernel.db.types import UNIT_COST_DECIMAL_PLACES, format_money, to_money
from ledger_kernel.exceptions import ValidationError


class TestToMoney:
    @pytest.mark.parametrize("raw", ["600", "600.0", "600.00", 600, Decimal("600")])
    def test_normalizes_to_two_places(self, raw):
        amount = to_money(raw)
        assert amount == Decimal("600.00")
        assert str(amount) == "600.00"

    def test_trailing_zeros_beyond_scale_accepted(self):
        assert to_money("1.500") == Decimal("1.50")

    @pytest.mark.parametrize("raw", ["0.004", "10.001", "0.125"])
    def test_sub_cent_rejected(self, raw):
        with pytest.raises(ValidationError, match="decimal places"):
            to_money(raw)

    @pytest.mark.parametrize("raw", [0.1, True, "abc", "NaN", "Infinity"])
    def test_non_amounts_rejected(self, raw):
        with pytest.raises(ValidationError):
            to_money(raw)

    def test_zero_allowed_when_not_positive(self):
        assert to_money("0", positive=False) == Decimal("0.00")
        with pytest.raises(ValidationError):
            to_money("0")

    def test_unit_cost_scale(self):
        cost = to_money("0.125", positive=False, places=UNIT_COST_DECIMAL_PLACES)
        assert str(cost) == "0.1250"

    def test_format_is_lossless_for_parsed_amounts(self):
        assert format_money(to_money("1234.5")) == "1234.50"
        assert format_money(None) is None


class TestScaledDecimal:
    def test_sqlite_stores_minor_units(self):
        column = ScaledDecimal()
        dialect = sqlite.dialect()

        assert column.process_bind_param(Decimal("600.10"), dialect) == 60010
        assert column.process_bind_param(Decimal("0.30"), dialect) == 30
        assert column.process_result_value(60010, dialect) == Decimal("600.10")
        assert str(column.process_result_value(0, dialect)) == "0.00"

    def test_sqlite_sum_of_cents_is_exact(self):
        column = ScaledDecimal()
        dialect = sqlite.dialect()
        stored = column.process_bind_param(Decimal("0.1"), dialect) + column.process_bind_param(
            Decimal("0.2"), dialect
        )
        assert stored == column.process_bind_param(Decimal("0.3"), dialect)

    def test_sqlite_unit_cost_places(self):
        column = ScaledDecimal(UNIT_COST_DECIMAL_PLACES)
        dialect = sqlite.dialect()
        assert column.process_bind_param(Decimal("12.3456"), dialect) == 123456
        assert column.process_result_value(123456, dialect) == Decimal("12.3456")

    def test_postgres_passes_decimal_through(self):
        column = ScaledDecimal()
        dialect = postgresql.dialect()

        assert column.process_bind_param(Decimal("600.10"), dialect) == Decimal("600.10")
        result = column.process_result_value(Decimal("600.100000000"), dialect)
        assert str(result) == "600.10"

    def test_none_passes_through(self):
        column = ScaledDecimal()
        assert column.process_bind_param(None, sqlite.dialect()) is None
        assert column.process_result_value(None, sqlite.dialect()) is None
