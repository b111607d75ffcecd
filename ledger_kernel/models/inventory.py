"""
Module: ledger_kernel.models.inventory
Responsibility: ORM persistence for inventory lots and the append-only stock
    movement records (inbound, outbound, adjustment) that explain every
    change to a lot's quantity.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - quantity >= 0, reserved_quantity >= 0, reserved_quantity <= quantity
      (CHECK constraints; a violating write fails rather than clamps).
    - One lot per (product_id, variant_id, batch_number, location).  The
      optional identity parts are stored as "" rather than NULL so the unique
      constraint also covers lots without a batch or location.

Failure modes:
    - IntegrityError on a CHECK or unique violation.  Services pre-check and
      use conditional updates so this only fires on a logic bug or a lost
      find-or-create race (handled by a savepoint).

Audit relevance:
    Movement records carry before/after quantities and the operator, so the
    current lot quantity can be reconstructed from its movement history.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import ScaledDecimal, TrackedBase, UUIDString
from ledger_kernel.db.types import UNIT_COST_DECIMAL_PLACES
from ledger_kernel.domain.status import StockStatus


class InventoryLot(TrackedBase):
    """
    One stock lot of a product.

    Contract:
        Created on first inbound (or positive adjustment) of a combination;
        mutated by inbound, outbound, adjustment, reserve and release; never
        deleted.  ``stock_status`` is derived, never written by callers.

    Guarantees:
        - 0 <= reserved_quantity <= quantity at commit.
    """

    __tablename__ = "inventory_lots"

    __table_args__ = (
        UniqueConstraint(
            "product_id",
            "variant_id",
            "batch_number",
            "location",
            name="uq_inventory_lot_identity",
        ),
        CheckConstraint("quantity >= 0", name="ck_lot_quantity_non_negative"),
        CheckConstraint(
            "reserved_quantity >= 0", name="ck_lot_reserved_non_negative"
        ),
        CheckConstraint(
            "reserved_quantity <= quantity", name="ck_lot_reserved_within_quantity"
        ),
        Index("idx_lot_product_fifo", "product_id", "updated_at"),
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    variant_id: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    batch_number: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    location: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    quantity: Mapped[int] = mapped_column(nullable=False, default=0)

    reserved_quantity: Mapped[int] = mapped_column(nullable=False, default=0)

    stock_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=StockStatus.OUT_OF_STOCK.value,
    )

    unit_cost: Mapped[Decimal | None] = mapped_column(
        ScaledDecimal(UNIT_COST_DECIMAL_PLACES), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<InventoryLot {self.product_id} batch={self.batch_number!r} "
            f"qty={self.quantity} reserved={self.reserved_quantity}>"
        )

    @property
    def available_quantity(self) -> int:
        return self.quantity - self.reserved_quantity


class _StockMovement(TrackedBase):
    """Columns shared by every append-only movement record."""

    __abstract__ = True

    record_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity: Mapped[int] = mapped_column(nullable=False)

    before_quantity: Mapped[int] = mapped_column(nullable=False)

    after_quantity: Mapped[int] = mapped_column(nullable=False)

    reason: Mapped[str | None] = mapped_column(String(200), nullable=True)

    operator_id: Mapped[str] = mapped_column(String(100), nullable=False)


class InboundRecord(_StockMovement):
    __tablename__ = "inbound_records"

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("inventory_lots.id"), nullable=False, index=True
    )

    unit_cost: Mapped[Decimal | None] = mapped_column(
        ScaledDecimal(UNIT_COST_DECIMAL_PLACES), nullable=True
    )


class OutboundRecord(_StockMovement):
    __tablename__ = "outbound_records"

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("inventory_lots.id"), nullable=False, index=True
    )

    # Portion of ``quantity`` that was taken from the lot's reservation
    reserved_consumed: Mapped[int] = mapped_column(nullable=False, default=0)

    customer_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    sales_order_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)


class InventoryAdjustment(_StockMovement):
    """Signed stock correction; ``quantity`` holds the signed delta."""

    __tablename__ = "inventory_adjustments"

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("inventory_lots.id"), nullable=False, index=True
    )


def lot_to_dict(lot: InventoryLot) -> dict:
    return {
        "id": str(lot.id),
        "product_id": lot.product_id,
        "variant_id": lot.variant_id or None,
        "batch_number": lot.batch_number or None,
        "location": lot.location or None,
        "quantity": lot.quantity,
        "reserved_quantity": lot.reserved_quantity,
        "available_quantity": lot.available_quantity,
        "stock_status": lot.stock_status,
    }


def movement_to_dict(record: _StockMovement) -> dict:
    data = {
        "id": str(record.id),
        "record_number": record.record_number,
        "lot_id": str(record.lot_id),
        "product_id": record.product_id,
        "quantity": record.quantity,
        "before_quantity": record.before_quantity,
        "after_quantity": record.after_quantity,
        "reason": record.reason,
        "operator_id": record.operator_id,
    }
    if isinstance(record, OutboundRecord):
        data["reserved_consumed"] = record.reserved_consumed
        data["sales_order_id"] = (
            str(record.sales_order_id) if record.sales_order_id else None
        )
    return data
