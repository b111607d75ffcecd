"""
Typed query specifications.

Filters are frozen value objects that compile to SQLAlchemy criteria, so
selectors never build WHERE clauses from loose dicts of user input.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ledger_kernel.models.inventory import InventoryLot
from ledger_kernel.models.payable import PayableRecord, PaymentOutRecord


@dataclass(frozen=True)
class LotFilter:
    """Narrows the lots of one product.  None means "any"."""

    variant_id: str | None = None
    batch_number: str | None = None
    location: str | None = None

    def criteria(self) -> list[Any]:
        clauses = []
        if self.variant_id is not None:
            clauses.append(InventoryLot.variant_id == self.variant_id)
        if self.batch_number is not None:
            clauses.append(InventoryLot.batch_number == self.batch_number)
        if self.location is not None:
            clauses.append(InventoryLot.location == self.location)
        return clauses

    def to_dict(self) -> dict[str, Any]:
        return {
            "variant_id": self.variant_id,
            "batch_number": self.batch_number,
            "location": self.location,
        }


@dataclass(frozen=True)
class PayableFilter:
    supplier_id: str | None = None
    statuses: tuple[str, ...] = ()
    source_type: str | None = None
    source_id: str | None = None

    def criteria(self) -> list[Any]:
        clauses = []
        if self.supplier_id is not None:
            clauses.append(PayableRecord.supplier_id == self.supplier_id)
        if self.statuses:
            clauses.append(PayableRecord.status.in_(self.statuses))
        if self.source_type is not None:
            clauses.append(PayableRecord.source_type == self.source_type)
        if self.source_id is not None:
            clauses.append(PayableRecord.source_id == self.source_id)
        return clauses


@dataclass(frozen=True)
class PaymentOutFilter:
    payable_id: Any = None
    supplier_id: str | None = None
    statuses: tuple[str, ...] = ()
    payment_method: str | None = None
    paid_from: datetime | None = None
    paid_to: datetime | None = None

    def criteria(self) -> list[Any]:
        clauses = []
        if self.payable_id is not None:
            clauses.append(PaymentOutRecord.payable_record_id == self.payable_id)
        if self.supplier_id is not None:
            clauses.append(PaymentOutRecord.supplier_id == self.supplier_id)
        if self.statuses:
            clauses.append(PaymentOutRecord.status.in_(self.statuses))
        if self.payment_method is not None:
            clauses.append(PaymentOutRecord.payment_method == self.payment_method)
        if self.paid_from is not None:
            clauses.append(PaymentOutRecord.payment_date >= self.paid_from)
        if self.paid_to is not None:
            clauses.append(PaymentOutRecord.payment_date <= self.paid_to)
        return clauses
