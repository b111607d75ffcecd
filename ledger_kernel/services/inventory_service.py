"""
InventoryService -- every mutation of lot quantity and reservation.

Responsibility:
    Inbound, outbound (FIFO), adjustment, reserve and release of inventory
    lots, each appending its movement record and re-deriving the lot's
    stock status.  Also the read-only availability check and product
    summary.

Architecture position:
    Kernel > Services.  Runs inside a transaction opened by the
    TransactionOrchestrator; flushes only.

Invariants enforced:
    - 0 <= reserved_quantity <= quantity on every lot, enforced by the
      conditional update predicates (and CHECK constraints as backstop).
      Nothing is ever clamped: a write that would break the invariant is
      rejected.
    - reserved_quantity changes only by the amount explicitly reserved,
      released, or consumed by the same operation.
    - Outbound never trusts an advisory plan: it re-reads the lots and
      re-plans inside its own transaction.
    - stock_status is recomputed from the persisted row after every write.

Failure modes:
    - InsufficientStockError: requested quantity exceeds unreserved stock.
    - OptimisticLockError (retryable): a lot moved between read and write.
    - NotFoundError: lot or sales order does not exist.
    - ValidationError: malformed input, zero adjustment, unshippable order.

Audit relevance:
    Every quantity change appends an InboundRecord, OutboundRecord or
    InventoryAdjustment with before/after quantities and the operator.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.db.types import UNIT_COST_DECIMAL_PLACES, to_money, to_quantity
from ledger_kernel.domain.allocation import AvailabilityResult, plan_fifo_allocation
from ledger_kernel.domain.change_events import (
    INVENTORY_CHANGED,
    ChangeEvent,
    inventory_cache_keys,
)
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.status import (
    DEFAULT_LOW_STOCK_THRESHOLD,
    SalesOrderStatus,
    derive_inventory_status,
)
from ledger_kernel.exceptions import (
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.inventory import (
    InboundRecord,
    InventoryAdjustment,
    InventoryLot,
    OutboundRecord,
    lot_to_dict,
)
from ledger_kernel.models.receivable import SalesOrder
from ledger_kernel.selectors.filters import LotFilter
from ledger_kernel.selectors.inventory import InventorySelector, lot_snapshot
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.conditional_update import require_conditional_update
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.inventory")


@dataclass
class InboundOutcome:
    lot: InventoryLot
    record: InboundRecord


@dataclass
class OutboundOutcome:
    records: list[OutboundRecord]
    lots: list[InventoryLot]
    sales_order: SalesOrder | None = None


@dataclass
class AdjustmentOutcome:
    lot: InventoryLot
    record: InventoryAdjustment


@dataclass
class _LotTouch:
    lot: InventoryLot
    before: int
    taken: int = 0
    reserved_consumed: int = 0


@dataclass(frozen=True)
class ProductSummary:
    product_id: str
    total_quantity: int
    reserved_quantity: int
    available_quantity: int
    lot_count: int
    stock_status: str
    lots: tuple[dict[str, Any], ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "total_quantity": self.total_quantity,
            "reserved_quantity": self.reserved_quantity,
            "available_quantity": self.available_quantity,
            "lot_count": self.lot_count,
            "stock_status": self.stock_status,
            "lots": list(self.lots),
        }


def _identity(value: str | None) -> str:
    return (value or "").strip()


class InventoryService(BaseService):
    """
    Stock lot mutations.

    Contract:
        Every method takes the acting ``actor_id`` explicitly and returns
        the touched ORM rows, refreshed from the database.

    Guarantees:
        - One ChangeEvent per touched lot is emitted per mutation.

    Non-goals:
        - Does NOT check permissions; the request layer gates first.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        emit: Callable[[ChangeEvent], None] | None = None,
        check_deadline: Callable[[], None] | None = None,
        low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
    ):
        super().__init__(session, clock, emit, check_deadline)
        self.low_stock_threshold = low_stock_threshold
        self._lots = InventorySelector(session)
        self._sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def check_availability(
        self,
        product_id: str,
        quantity: int,
        lot_filter: LotFilter | None = None,
    ) -> AvailabilityResult:
        """
        Advisory FIFO plan for ``quantity`` units of ``product_id``.

        Read-only.  The plan is a snapshot; outbound re-plans for itself.
        """
        product_id = self._require_product(product_id)
        quantity = to_quantity(quantity)
        return plan_fifo_allocation(
            self._lots.fifo_snapshots(product_id, lot_filter), quantity
        )

    def product_summary(self, product_id: str) -> ProductSummary:
        product_id = self._require_product(product_id)
        total, reserved, count = self._lots.product_totals(product_id)
        lots = self._lots.lots_for_product(product_id)
        return ProductSummary(
            product_id=product_id,
            total_quantity=total,
            reserved_quantity=reserved,
            available_quantity=total - reserved,
            lot_count=count,
            stock_status=derive_inventory_status(
                total, reserved, self.low_stock_threshold
            ).value,
            lots=tuple(lot_to_dict(lot) for lot in lots),
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record_inbound(
        self,
        product_id: str,
        quantity: int,
        actor_id: str,
        variant_id: str | None = None,
        batch_number: str | None = None,
        location: str | None = None,
        unit_cost: Decimal | None = None,
        reason: str = "purchase_inbound",
    ) -> InboundOutcome:
        product_id = self._require_product(product_id)
        quantity = to_quantity(quantity)
        cost = (
            to_money(unit_cost, "unit_cost", positive=False, places=UNIT_COST_DECIMAL_PLACES)
            if unit_cost is not None
            else None
        )
        now = self._now()

        lot = self._find_or_create_lot(
            product_id, variant_id, batch_number, location, actor_id, now
        )
        before = lot.quantity
        self._step()

        values = {
            InventoryLot.quantity: InventoryLot.quantity + quantity,
            InventoryLot.updated_at: now,
            InventoryLot.updated_by_id: actor_id,
        }
        if cost is not None:
            values[InventoryLot.unit_cost] = cost
        require_conditional_update(self.session, InventoryLot, lot.id, None, values)
        self._refresh_status(lot, actor_id, now)

        record = InboundRecord(
            record_number=self._sequences.next_number(SequenceService.INBOUND, now),
            lot_id=lot.id,
            product_id=product_id,
            quantity=quantity,
            before_quantity=before,
            after_quantity=lot.quantity,
            reason=reason,
            operator_id=actor_id,
            unit_cost=cost,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
        )
        self.session.add(record)
        self.session.flush()

        self._emit_lot_change("inbound", lot, before, actor_id, now, reason)
        logger.info(
            "inventory_inbound_recorded",
            extra={
                "product_id": product_id,
                "lot_id": str(lot.id),
                "quantity": quantity,
                "before_quantity": before,
                "after_quantity": lot.quantity,
            },
        )
        return InboundOutcome(lot=lot, record=record)

    def record_outbound(
        self,
        product_id: str,
        quantity: int,
        actor_id: str,
        lot_filter: LotFilter | None = None,
        consume_reserved: int = 0,
        reserved_lot_id: UUID | None = None,
        reason: str = "manual_outbound",
        customer_id: str | None = None,
        sales_order_id: UUID | None = None,
    ) -> OutboundOutcome:
        """
        Ship ``quantity`` units of ``product_id``.

        ``consume_reserved`` units come out of the reservation on
        ``reserved_lot_id``; the rest is allocated FIFO from unreserved
        stock.  When ``sales_order_id`` is given the order moves from
        confirmed to shipped in the same transaction.
        """
        product_id = self._require_product(product_id)
        quantity = to_quantity(quantity)
        consume_reserved = to_quantity(consume_reserved, "consume_reserved", positive=False)
        if consume_reserved < 0:
            raise ValidationError("consume_reserved must not be negative", "consume_reserved")
        if consume_reserved > quantity:
            raise ValidationError(
                "consume_reserved cannot exceed the shipped quantity", "consume_reserved"
            )
        if consume_reserved and reserved_lot_id is None:
            raise ValidationError(
                "reserved_lot_id is required when consuming a reservation",
                "reserved_lot_id",
            )
        now = self._now()

        order = None
        if sales_order_id is not None:
            order = self._load_shippable_order(sales_order_id)

        touched: dict[Any, _LotTouch] = {}
        reserved_lot = None

        if consume_reserved:
            lot = reserved_lot = self._get_lot(reserved_lot_id)
            if lot.product_id != product_id:
                raise ValidationError(
                    f"Lot {reserved_lot_id} does not hold product {product_id}",
                    "reserved_lot_id",
                )
            if lot.reserved_quantity < consume_reserved:
                raise InsufficientStockError(
                    product_id, lot.reserved_quantity, consume_reserved
                )
            touched[lot.id] = _LotTouch(lot=lot, before=lot.quantity)
            require_conditional_update(
                self.session,
                InventoryLot,
                lot.id,
                InventoryLot.reserved_quantity >= consume_reserved,
                {
                    InventoryLot.quantity: InventoryLot.quantity - consume_reserved,
                    InventoryLot.reserved_quantity: (
                        InventoryLot.reserved_quantity - consume_reserved
                    ),
                    InventoryLot.updated_at: now,
                    InventoryLot.updated_by_id: actor_id,
                },
            )
            touched[lot.id].taken += consume_reserved
            touched[lot.id].reserved_consumed += consume_reserved
            self._step()

        free_quantity = quantity - consume_reserved
        if free_quantity:
            if reserved_lot is not None:
                self.session.refresh(reserved_lot)
            candidates = self._lots.fifo_lots(product_id, lot_filter)
            lots = {lot.id: lot for lot in candidates}
            plan = plan_fifo_allocation(
                [lot_snapshot(lot) for lot in candidates], free_quantity
            )
            if not plan.available:
                logger.warning(
                    "inventory_outbound_insufficient",
                    extra={
                        "product_id": product_id,
                        "requested": free_quantity,
                        "available": plan.available_quantity,
                    },
                )
                raise InsufficientStockError(
                    product_id, plan.available_quantity, free_quantity
                )

            for line in plan.allocation_plan:
                lot = lots[line.lot_id]
                touch = touched.get(lot.id)
                if touch is None:
                    touch = touched[lot.id] = _LotTouch(lot=lot, before=lot.quantity)
                require_conditional_update(
                    self.session,
                    InventoryLot,
                    lot.id,
                    InventoryLot.quantity - InventoryLot.reserved_quantity >= line.quantity,
                    {
                        InventoryLot.quantity: InventoryLot.quantity - line.quantity,
                        InventoryLot.updated_at: now,
                        InventoryLot.updated_by_id: actor_id,
                    },
                )
                touch.taken += line.quantity
                self._step()

        records = []
        for touch in touched.values():
            lot = touch.lot
            self._refresh_status(lot, actor_id, now)
            record = OutboundRecord(
                record_number=self._sequences.next_number(SequenceService.OUTBOUND, now),
                lot_id=lot.id,
                product_id=product_id,
                quantity=touch.taken,
                before_quantity=touch.before,
                after_quantity=lot.quantity,
                reserved_consumed=touch.reserved_consumed,
                reason=reason,
                operator_id=actor_id,
                customer_id=customer_id,
                sales_order_id=sales_order_id,
                created_at=now,
                updated_at=now,
                created_by_id=actor_id,
            )
            self.session.add(record)
            records.append(record)
            self._emit_lot_change("outbound", lot, touch.before, actor_id, now, reason)
        self.session.flush()

        if order is not None:
            self._mark_shipped(order, actor_id, now)

        logger.info(
            "inventory_outbound_recorded",
            extra={
                "product_id": product_id,
                "quantity": quantity,
                "reserved_consumed": consume_reserved,
                "lots_touched": len(records),
                "sales_order_id": str(sales_order_id) if sales_order_id else None,
            },
        )
        return OutboundOutcome(
            records=records,
            lots=[touch.lot for touch in touched.values()],
            sales_order=order,
        )

    def adjust(
        self,
        product_id: str,
        adjust_quantity: int,
        reason: str,
        actor_id: str,
        variant_id: str | None = None,
        batch_number: str | None = None,
        location: str | None = None,
    ) -> AdjustmentOutcome:
        """
        Apply a signed stock correction to one lot.

        A positive delta on a missing lot creates it; a negative delta may
        not take the lot below its reserved quantity.
        """
        product_id = self._require_product(product_id)
        delta = to_quantity(adjust_quantity, "adjust_quantity", positive=False)
        if delta == 0:
            raise ValidationError("adjust_quantity must not be zero", "adjust_quantity")
        if not reason or not reason.strip():
            raise ValidationError("reason is required for an adjustment", "reason")
        now = self._now()

        if delta > 0:
            lot = self._find_or_create_lot(
                product_id, variant_id, batch_number, location, actor_id, now
            )
            predicate = None
        else:
            lot = self._lots.find_lot(
                product_id,
                _identity(variant_id),
                _identity(batch_number),
                _identity(location),
            )
            if lot is None:
                raise InsufficientStockError(product_id, 0, -delta)
            if lot.quantity + delta < lot.reserved_quantity:
                raise InsufficientStockError(product_id, lot.available_quantity, -delta)
            predicate = InventoryLot.quantity + delta >= InventoryLot.reserved_quantity

        before = lot.quantity
        require_conditional_update(
            self.session,
            InventoryLot,
            lot.id,
            predicate,
            {
                InventoryLot.quantity: InventoryLot.quantity + delta,
                InventoryLot.updated_at: now,
                InventoryLot.updated_by_id: actor_id,
            },
        )
        self._refresh_status(lot, actor_id, now)
        self._step()

        record = InventoryAdjustment(
            record_number=self._sequences.next_number(SequenceService.ADJUSTMENT, now),
            lot_id=lot.id,
            product_id=product_id,
            quantity=delta,
            before_quantity=before,
            after_quantity=lot.quantity,
            reason=reason,
            operator_id=actor_id,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
        )
        self.session.add(record)
        self.session.flush()

        self._emit_lot_change("adjust", lot, before, actor_id, now, reason)
        logger.info(
            "inventory_adjusted",
            extra={
                "product_id": product_id,
                "lot_id": str(lot.id),
                "adjust_quantity": delta,
                "before_quantity": before,
                "after_quantity": lot.quantity,
            },
        )
        return AdjustmentOutcome(lot=lot, record=record)

    def reserve(self, lot_id: UUID, quantity: int, actor_id: str) -> InventoryLot:
        quantity = to_quantity(quantity)
        now = self._now()
        lot = self._get_lot(lot_id)
        if lot.available_quantity < quantity:
            raise InsufficientStockError(lot.product_id, lot.available_quantity, quantity)
        before = lot.reserved_quantity

        require_conditional_update(
            self.session,
            InventoryLot,
            lot.id,
            InventoryLot.quantity - InventoryLot.reserved_quantity >= quantity,
            {
                InventoryLot.reserved_quantity: InventoryLot.reserved_quantity + quantity,
                InventoryLot.updated_at: now,
                InventoryLot.updated_by_id: actor_id,
            },
        )
        self._refresh_status(lot, actor_id, now)
        self._emit_reservation_change("reserve", lot, before, actor_id, now)
        logger.info(
            "inventory_reserved",
            extra={"lot_id": str(lot.id), "quantity": quantity},
        )
        return lot

    def release(self, lot_id: UUID, quantity: int, actor_id: str) -> InventoryLot:
        quantity = to_quantity(quantity)
        now = self._now()
        lot = self._get_lot(lot_id)
        if lot.reserved_quantity < quantity:
            raise ValidationError(
                f"Cannot release {quantity}: only {lot.reserved_quantity} reserved",
                "quantity",
            )
        before = lot.reserved_quantity

        require_conditional_update(
            self.session,
            InventoryLot,
            lot.id,
            InventoryLot.reserved_quantity >= quantity,
            {
                InventoryLot.reserved_quantity: InventoryLot.reserved_quantity - quantity,
                InventoryLot.updated_at: now,
                InventoryLot.updated_by_id: actor_id,
            },
        )
        self._refresh_status(lot, actor_id, now)
        self._emit_reservation_change("release", lot, before, actor_id, now)
        logger.info(
            "inventory_released",
            extra={"lot_id": str(lot.id), "quantity": quantity},
        )
        return lot

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _require_product(product_id: str) -> str:
        if not product_id or not str(product_id).strip():
            raise ValidationError("product_id is required", "product_id")
        return str(product_id).strip()

    def _get_lot(self, lot_id: Any) -> InventoryLot:
        lot = self.session.get(InventoryLot, lot_id)
        if lot is None:
            raise NotFoundError("inventory_lot", lot_id)
        return lot

    def _find_or_create_lot(
        self,
        product_id: str,
        variant_id: str | None,
        batch_number: str | None,
        location: str | None,
        actor_id: str,
        now: datetime,
    ) -> InventoryLot:
        ident = (_identity(variant_id), _identity(batch_number), _identity(location))
        lot = self._lots.find_lot(product_id, *ident)
        if lot is not None:
            return lot

        # A concurrent inbound may create the same lot; the savepoint keeps
        # the rest of the transaction if we lose the unique-constraint race.
        savepoint = self.session.begin_nested()
        try:
            lot = InventoryLot(
                product_id=product_id,
                variant_id=ident[0],
                batch_number=ident[1],
                location=ident[2],
                quantity=0,
                reserved_quantity=0,
                stock_status=derive_inventory_status(0, 0, self.low_stock_threshold).value,
                created_at=now,
                updated_at=now,
                created_by_id=actor_id,
            )
            self.session.add(lot)
            self.session.flush()
            savepoint.commit()
            logger.debug(
                "inventory_lot_created",
                extra={"product_id": product_id, "lot_id": str(lot.id)},
            )
            return lot
        except IntegrityError:
            savepoint.rollback()
            logger.debug("inventory_lot_create_race", extra={"product_id": product_id})
            lot = self._lots.find_lot(product_id, *ident)
            if lot is None:
                raise
            return lot

    def _refresh_status(self, lot: InventoryLot, actor_id: str, now: datetime) -> None:
        self.session.refresh(lot)
        status = derive_inventory_status(
            lot.quantity, lot.reserved_quantity, self.low_stock_threshold
        ).value
        if status != lot.stock_status:
            lot.stock_status = status
            lot.updated_at = now
            lot.updated_by_id = actor_id
            self.session.flush()

    def _load_shippable_order(self, sales_order_id: Any) -> SalesOrder:
        order = self.session.get(SalesOrder, sales_order_id)
        if order is None:
            raise NotFoundError("sales_order", sales_order_id)
        if order.status != SalesOrderStatus.CONFIRMED.value:
            raise ValidationError(
                f"Sales order {order.order_number} is {order.status}; "
                "only confirmed orders can be shipped",
                "sales_order_id",
            )
        return order

    def _mark_shipped(self, order: SalesOrder, actor_id: str, now: datetime) -> None:
        require_conditional_update(
            self.session,
            SalesOrder,
            order.id,
            SalesOrder.status == SalesOrderStatus.CONFIRMED.value,
            {
                SalesOrder.status: SalesOrderStatus.SHIPPED.value,
                SalesOrder.updated_at: now,
                SalesOrder.updated_by_id: actor_id,
            },
        )
        self.session.refresh(order)

    def _emit_lot_change(
        self,
        action: str,
        lot: InventoryLot,
        before: int,
        actor_id: str,
        now: datetime,
        reason: str | None,
    ) -> None:
        self._emit(
            ChangeEvent(
                event_type=INVENTORY_CHANGED,
                action=action,
                entity_type="inventory_lot",
                entity_id=str(lot.id),
                product_id=lot.product_id,
                before=before,
                after=lot.quantity,
                actor_id=actor_id,
                reason=reason,
                occurred_at=now,
                cache_keys=inventory_cache_keys(lot.product_id),
            )
        )

    def _emit_reservation_change(
        self,
        action: str,
        lot: InventoryLot,
        before: int,
        actor_id: str,
        now: datetime,
    ) -> None:
        self._emit(
            ChangeEvent(
                event_type=INVENTORY_CHANGED,
                action=action,
                entity_type="inventory_lot",
                entity_id=str(lot.id),
                product_id=lot.product_id,
                before=before,
                after=lot.reserved_quantity,
                actor_id=actor_id,
                occurred_at=now,
                cache_keys=inventory_cache_keys(lot.product_id),
            )
        )
