"""
Module: ledger_kernel.selectors.inventory
Responsibility: Read paths over inventory lots: FIFO candidate lists, lot
    identity lookup, and per-product totals.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - FIFO order is ``updated_at ASC, id ASC``; the id tie-break makes the
      order total and therefore the allocation plan deterministic.
"""

from sqlalchemy import func, select

from ledger_kernel.domain.allocation import LotSnapshot
from ledger_kernel.models.inventory import InventoryLot
from ledger_kernel.selectors.base import BaseSelector
from ledger_kernel.selectors.filters import LotFilter


def lot_snapshot(lot: InventoryLot) -> LotSnapshot:
    return LotSnapshot(
        lot_id=lot.id,
        quantity=lot.quantity,
        reserved_quantity=lot.reserved_quantity,
        batch_number=lot.batch_number or None,
        location=lot.location or None,
    )


class InventorySelector(BaseSelector):
    def fifo_lots(
        self,
        product_id: str,
        lot_filter: LotFilter | None = None,
    ) -> list[InventoryLot]:
        """Lots with stock on hand, oldest update first, freshly loaded."""
        stmt = (
            select(InventoryLot)
            .execution_options(populate_existing=True)
            .where(InventoryLot.product_id == product_id)
            .where(InventoryLot.quantity > 0)
            .order_by(InventoryLot.updated_at.asc(), InventoryLot.id.asc())
        )
        if lot_filter is not None:
            stmt = stmt.where(*lot_filter.criteria())
        return list(self.session.execute(stmt).scalars())

    def fifo_snapshots(
        self,
        product_id: str,
        lot_filter: LotFilter | None = None,
    ) -> list[LotSnapshot]:
        return [lot_snapshot(lot) for lot in self.fifo_lots(product_id, lot_filter)]

    def find_lot(
        self,
        product_id: str,
        variant_id: str = "",
        batch_number: str = "",
        location: str = "",
    ) -> InventoryLot | None:
        return self.session.execute(
            select(InventoryLot).where(
                InventoryLot.product_id == product_id,
                InventoryLot.variant_id == variant_id,
                InventoryLot.batch_number == batch_number,
                InventoryLot.location == location,
            )
        ).scalar_one_or_none()

    def lots_for_product(self, product_id: str) -> list[InventoryLot]:
        return list(
            self.session.execute(
                select(InventoryLot)
                .where(InventoryLot.product_id == product_id)
                .order_by(InventoryLot.updated_at.asc(), InventoryLot.id.asc())
            ).scalars()
        )

    def product_totals(self, product_id: str) -> tuple[int, int, int]:
        """(total_quantity, reserved_quantity, lot_count) for a product."""
        row = self.session.execute(
            select(
                func.coalesce(func.sum(InventoryLot.quantity), 0),
                func.coalesce(func.sum(InventoryLot.reserved_quantity), 0),
                func.count(InventoryLot.id),
            ).where(InventoryLot.product_id == product_id)
        ).one()
        return int(row[0]), int(row[1]), int(row[2])
