"""Read-only selectors and typed query specifications."""

from ledger_kernel.selectors.base import BaseSelector
from ledger_kernel.selectors.filters import LotFilter, PayableFilter, PaymentOutFilter
from ledger_kernel.selectors.finance import FinanceSelector
from ledger_kernel.selectors.inventory import InventorySelector

__all__ = [
    "BaseSelector",
    "FinanceSelector",
    "InventorySelector",
    "LotFilter",
    "PayableFilter",
    "PaymentOutFilter",
]
