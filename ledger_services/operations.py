"""
ledger_services.operations -- request-level entrypoint for ledger mutations.

Responsibility:
    Wires the permission gate, the idempotency guard, the transaction
    orchestrator and the commit fanout around the kernel services.  Every
    mutating method returns a JSON-ready dict, which is also the value the
    idempotency guard stores and replays.

Architecture position:
    Services -- above ``ledger_kernel`` and ``ledger_config``.  This is the
    only module that translates ``LedgerSettings`` into kernel constructor
    arguments (``LedgerOperations.from_settings``).

Invariants enforced:
    - Permission is checked before any idempotency or transaction work.
    - Kernel services are constructed fresh for every transaction attempt,
      so a retried attempt never sees state from a rolled-back one.
    - Change events reach the fanout only through ``after_commit``; a
      rolled-back attempt publishes nothing.

Failure modes:
    - Typed ``LedgerKernelError`` subclasses propagate unchanged to the
      caller (route handler), which maps them with ``to_dict()``.

Usage:
    settings = get_active_settings()
    ops = LedgerOperations.from_settings(settings)
    ops.record_payment(actor, "req-123", supplier_id="S-1",
                       payment_amount="600.00", payment_method="bank_transfer",
                       payable_id=payable_id)
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from functools import partial
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from ledger_config.schema import LedgerSettings
from ledger_kernel.db.engine import get_session_factory, init_engine_from_url
from ledger_kernel.domain.actor import ActorContext, Permission
from ledger_kernel.domain.change_events import ChangeEvent
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.status import (
    DEFAULT_LOW_STOCK_THRESHOLD,
    DEFAULT_OVERDUE_THRESHOLD_DAYS,
)
from ledger_kernel.logging_config import LogContext, configure_logging, get_logger
from ledger_kernel.models.inventory import lot_to_dict, movement_to_dict
from ledger_kernel.models.payable import payable_to_dict, payment_to_dict
from ledger_kernel.models.receivable import receipt_to_dict, sales_order_to_dict
from ledger_kernel.models.refund import refund_to_dict
from ledger_kernel.selectors.filters import LotFilter, PayableFilter, PaymentOutFilter
from ledger_kernel.selectors.finance import FinanceSelector
from ledger_kernel.services.fanout import (
    CacheAdapter,
    CommitFanout,
    EventSink,
    LoggingEventSink,
)
from ledger_kernel.services.idempotency_guard import (
    IdempotencyGuard,
    SqlIdempotencyStore,
)
from ledger_kernel.services.inventory_service import InventoryService
from ledger_kernel.services.payable_service import PayableService, PaymentOutcome
from ledger_kernel.services.receivable_service import ReceiptOutcome, ReceivableService
from ledger_kernel.services.refund_service import RefundService
from ledger_kernel.services.transaction_orchestrator import (
    TransactionContext,
    TransactionOrchestrator,
)

logger = get_logger("services.operations")

DEFAULT_IDEMPOTENCY_RETENTION = timedelta(hours=24)


def _payment_result(outcome: PaymentOutcome) -> dict[str, Any]:
    return {
        "payment": payment_to_dict(outcome.payment),
        "payable": payable_to_dict(outcome.payable) if outcome.payable else None,
    }


def _receipt_result(outcome: ReceiptOutcome) -> dict[str, Any]:
    return {
        "receipt": receipt_to_dict(outcome.receipt),
        "sales_order": sales_order_to_dict(outcome.sales_order),
    }


class LedgerOperations:
    """
    Facade over the kernel services for request handlers.

    Contract:
        Mutators take ``(actor, idempotency_key, ...)``.  Reads take no key.

    Guarantees:
        - A repeated call with the same key and payload returns the stored
          result without touching balances again.
        - Results are plain dicts of str / int / bool / None / lists.

    Non-goals:
        - Does NOT authenticate; ``ActorContext`` is built upstream.
        - Does NOT catch kernel errors.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        orchestrator: TransactionOrchestrator | None = None,
        guard: IdempotencyGuard | None = None,
        fanout: CommitFanout | None = None,
        clock: Clock | None = None,
        overdue_threshold_days: int = DEFAULT_OVERDUE_THRESHOLD_DAYS,
        low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
        idempotency_retention: timedelta = DEFAULT_IDEMPOTENCY_RETENTION,
    ) -> None:
        self._session_factory = session_factory
        self.clock = clock or SystemClock()
        self.orchestrator = orchestrator or TransactionOrchestrator(
            session_factory, clock=self.clock
        )
        self.guard = guard or IdempotencyGuard(
            SqlIdempotencyStore(session_factory), clock=self.clock
        )
        self.fanout = fanout or CommitFanout()
        self.overdue_threshold_days = overdue_threshold_days
        self.low_stock_threshold = low_stock_threshold
        self.idempotency_retention = idempotency_retention

    @classmethod
    def from_settings(
        cls,
        settings: LedgerSettings,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        cache: CacheAdapter | None = None,
        sink: EventSink | None = None,
    ) -> LedgerOperations:
        """Build a fully wired facade from effective settings."""
        configure_logging(level=settings.logging.level)
        if session_factory is None:
            init_engine_from_url(settings.database_url)
            session_factory = get_session_factory()
        clock = clock or SystemClock()
        tx = settings.transaction
        orchestrator = TransactionOrchestrator(
            session_factory,
            clock=clock,
            isolation_level=tx.isolation_level,
            timeout_ms=tx.timeout_ms,
            max_retries=tx.max_retries,
            retry_backoff_ms=tx.retry_backoff_ms,
        )
        guard = IdempotencyGuard(
            SqlIdempotencyStore(session_factory),
            clock=clock,
            pending_timeout_seconds=settings.idempotency.pending_timeout_seconds,
        )
        fanout = CommitFanout(
            cache=cache,
            sink=sink or LoggingEventSink(),
            dedupe_window=settings.fanout.dedupe_window,
        )
        logger.info(
            "ledger_operations_configured",
            extra={"settings_checksum": settings.checksum},
        )
        return cls(
            session_factory,
            orchestrator=orchestrator,
            guard=guard,
            fanout=fanout,
            clock=clock,
            overdue_threshold_days=settings.status.overdue_threshold_days,
            low_stock_threshold=settings.status.low_stock_threshold,
            idempotency_retention=timedelta(hours=settings.idempotency.retention_hours),
        )

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _mutate(
        self,
        actor: ActorContext,
        permission: str,
        idempotency_key: str,
        operation: str,
        resource_id: Any,
        payload: dict[str, Any],
        body: Callable[[TransactionContext], dict[str, Any]],
    ) -> Any:
        actor.require(permission)
        with LogContext.bind(actor_id=actor.actor_id):
            return self.guard.run(
                idempotency_key,
                operation,
                resource_id,
                actor.actor_id,
                payload,
                lambda: self.orchestrator.run(body, operation=operation),
            )

    def _emitter(self, ctx: TransactionContext) -> Callable[[ChangeEvent], None]:
        def emit(event: ChangeEvent) -> None:
            ctx.after_commit(partial(self.fanout.on_committed, event))

        return emit

    def _inventory(self, ctx: TransactionContext) -> InventoryService:
        return InventoryService(
            ctx.session,
            clock=self.clock,
            emit=self._emitter(ctx),
            check_deadline=ctx.check_deadline,
            low_stock_threshold=self.low_stock_threshold,
        )

    def _payables(self, ctx: TransactionContext) -> PayableService:
        return PayableService(
            ctx.session,
            clock=self.clock,
            emit=self._emitter(ctx),
            check_deadline=ctx.check_deadline,
            overdue_threshold_days=self.overdue_threshold_days,
        )

    def _receivables(self, ctx: TransactionContext) -> ReceivableService:
        return ReceivableService(
            ctx.session,
            clock=self.clock,
            emit=self._emitter(ctx),
            check_deadline=ctx.check_deadline,
            overdue_threshold_days=self.overdue_threshold_days,
        )

    def _refunds(self, ctx: TransactionContext) -> RefundService:
        return RefundService(
            ctx.session,
            clock=self.clock,
            emit=self._emitter(ctx),
            check_deadline=ctx.check_deadline,
        )

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def check_availability(
        self,
        product_id: str,
        quantity: int,
        lot_filter: LotFilter | None = None,
    ) -> dict[str, Any]:
        with self._session_factory() as session:
            result = InventoryService(
                session, clock=self.clock, low_stock_threshold=self.low_stock_threshold
            ).check_availability(product_id, quantity, lot_filter)
            session.rollback()
        return result.to_dict()

    def product_summary(self, product_id: str) -> dict[str, Any]:
        with self._session_factory() as session:
            summary = InventoryService(
                session, clock=self.clock, low_stock_threshold=self.low_stock_threshold
            ).product_summary(product_id)
            session.rollback()
        return summary.to_dict()

    def record_inbound(
        self,
        actor: ActorContext,
        idempotency_key: str,
        product_id: str,
        quantity: int,
        variant_id: str | None = None,
        batch_number: str | None = None,
        location: str | None = None,
        unit_cost: Any = None,
        reason: str = "purchase_inbound",
    ) -> dict[str, Any]:
        payload = {
            "product_id": product_id,
            "quantity": quantity,
            "variant_id": variant_id,
            "batch_number": batch_number,
            "location": location,
            "unit_cost": unit_cost,
            "reason": reason,
        }

        def body(ctx: TransactionContext) -> dict[str, Any]:
            outcome = self._inventory(ctx).record_inbound(
                product_id,
                quantity,
                actor.actor_id,
                variant_id=variant_id,
                batch_number=batch_number,
                location=location,
                unit_cost=unit_cost,
                reason=reason,
            )
            return {
                "lot": lot_to_dict(outcome.lot),
                "record": movement_to_dict(outcome.record),
            }

        return self._mutate(
            actor, Permission.INVENTORY_INBOUND, idempotency_key,
            "inventory_inbound", product_id, payload, body,
        )

    def record_outbound(
        self,
        actor: ActorContext,
        idempotency_key: str,
        product_id: str,
        quantity: int,
        lot_filter: LotFilter | None = None,
        consume_reserved: int = 0,
        reserved_lot_id: UUID | None = None,
        reason: str = "manual_outbound",
        customer_id: str | None = None,
        sales_order_id: UUID | None = None,
    ) -> dict[str, Any]:
        payload = {
            "product_id": product_id,
            "quantity": quantity,
            "lot_filter": lot_filter.to_dict() if lot_filter else None,
            "consume_reserved": consume_reserved,
            "reserved_lot_id": reserved_lot_id,
            "reason": reason,
            "customer_id": customer_id,
            "sales_order_id": sales_order_id,
        }

        def body(ctx: TransactionContext) -> dict[str, Any]:
            outcome = self._inventory(ctx).record_outbound(
                product_id,
                quantity,
                actor.actor_id,
                lot_filter=lot_filter,
                consume_reserved=consume_reserved,
                reserved_lot_id=reserved_lot_id,
                reason=reason,
                customer_id=customer_id,
                sales_order_id=sales_order_id,
            )
            return {
                "records": [movement_to_dict(r) for r in outcome.records],
                "lots": [lot_to_dict(lot) for lot in outcome.lots],
                "sales_order": (
                    sales_order_to_dict(outcome.sales_order)
                    if outcome.sales_order is not None
                    else None
                ),
            }

        return self._mutate(
            actor, Permission.INVENTORY_OUTBOUND, idempotency_key,
            "inventory_outbound", product_id, payload, body,
        )

    def adjust_inventory(
        self,
        actor: ActorContext,
        idempotency_key: str,
        product_id: str,
        adjust_quantity: int,
        reason: str,
        variant_id: str | None = None,
        batch_number: str | None = None,
        location: str | None = None,
    ) -> dict[str, Any]:
        payload = {
            "product_id": product_id,
            "adjust_quantity": adjust_quantity,
            "reason": reason,
            "variant_id": variant_id,
            "batch_number": batch_number,
            "location": location,
        }

        def body(ctx: TransactionContext) -> dict[str, Any]:
            outcome = self._inventory(ctx).adjust(
                product_id,
                adjust_quantity,
                reason,
                actor.actor_id,
                variant_id=variant_id,
                batch_number=batch_number,
                location=location,
            )
            return {
                "lot": lot_to_dict(outcome.lot),
                "record": movement_to_dict(outcome.record),
            }

        return self._mutate(
            actor, Permission.INVENTORY_ADJUST, idempotency_key,
            "inventory_adjust", product_id, payload, body,
        )

    def reserve_stock(
        self, actor: ActorContext, idempotency_key: str, lot_id: UUID, quantity: int
    ) -> dict[str, Any]:
        def body(ctx: TransactionContext) -> dict[str, Any]:
            return lot_to_dict(self._inventory(ctx).reserve(lot_id, quantity, actor.actor_id))

        return self._mutate(
            actor, Permission.INVENTORY_RESERVE, idempotency_key,
            "inventory_reserve", lot_id, {"lot_id": lot_id, "quantity": quantity}, body,
        )

    def release_stock(
        self, actor: ActorContext, idempotency_key: str, lot_id: UUID, quantity: int
    ) -> dict[str, Any]:
        def body(ctx: TransactionContext) -> dict[str, Any]:
            return lot_to_dict(self._inventory(ctx).release(lot_id, quantity, actor.actor_id))

        return self._mutate(
            actor, Permission.INVENTORY_RESERVE, idempotency_key,
            "inventory_release", lot_id, {"lot_id": lot_id, "quantity": quantity}, body,
        )

    # ------------------------------------------------------------------
    # Payables
    # ------------------------------------------------------------------

    def create_payable(
        self,
        actor: ActorContext,
        idempotency_key: str,
        supplier_id: str,
        payable_amount: Any,
        source_type: str,
        source_id: str | None = None,
        source_number: str | None = None,
        due_date: date | None = None,
        description: str | None = None,
    ) -> dict[str, Any]:
        payload = {
            "supplier_id": supplier_id,
            "payable_amount": payable_amount,
            "source_type": source_type,
            "source_id": source_id,
            "source_number": source_number,
            "due_date": due_date,
            "description": description,
        }

        def body(ctx: TransactionContext) -> dict[str, Any]:
            payable = self._payables(ctx).create_payable(
                supplier_id,
                payable_amount,
                source_type,
                actor.actor_id,
                source_id=source_id,
                source_number=source_number,
                due_date=due_date,
                description=description,
            )
            return payable_to_dict(payable)

        return self._mutate(
            actor, Permission.FINANCE_MANAGE, idempotency_key,
            "payable_create", source_id, payload, body,
        )

    def cancel_payable(
        self, actor: ActorContext, idempotency_key: str, payable_id: UUID
    ) -> dict[str, Any]:
        def body(ctx: TransactionContext) -> dict[str, Any]:
            return payable_to_dict(
                self._payables(ctx).cancel_payable(payable_id, actor.actor_id)
            )

        return self._mutate(
            actor, Permission.FINANCE_MANAGE, idempotency_key,
            "payable_cancel", payable_id, {"payable_id": payable_id}, body,
        )

    def record_payment(
        self,
        actor: ActorContext,
        idempotency_key: str,
        supplier_id: str,
        payment_amount: Any,
        payment_method: str,
        payable_id: UUID | None = None,
        payment_date: datetime | None = None,
        voucher_number: str | None = None,
        notes: str | None = None,
        status: str = "confirmed",
    ) -> dict[str, Any]:
        payload = {
            "supplier_id": supplier_id,
            "payment_amount": payment_amount,
            "payment_method": payment_method,
            "payable_id": payable_id,
            "payment_date": payment_date,
            "voucher_number": voucher_number,
            "notes": notes,
            "status": status,
        }

        def body(ctx: TransactionContext) -> dict[str, Any]:
            outcome = self._payables(ctx).record_payment(
                supplier_id,
                payment_amount,
                payment_method,
                actor.actor_id,
                payable_id=payable_id,
                payment_date=payment_date,
                voucher_number=voucher_number,
                notes=notes,
                status=status,
            )
            return _payment_result(outcome)

        return self._mutate(
            actor, Permission.FINANCE_MANAGE, idempotency_key,
            "payment_out_record", payable_id, payload, body,
        )

    def update_payment(
        self,
        actor: ActorContext,
        idempotency_key: str,
        payment_id: UUID,
        payment_amount: Any = None,
        payment_method: str | None = None,
        payment_date: datetime | None = None,
        voucher_number: str | None = None,
        notes: str | None = None,
        confirm: bool = False,
    ) -> dict[str, Any]:
        payload = {
            "payment_id": payment_id,
            "payment_amount": payment_amount,
            "payment_method": payment_method,
            "payment_date": payment_date,
            "voucher_number": voucher_number,
            "notes": notes,
            "confirm": confirm,
        }

        def body(ctx: TransactionContext) -> dict[str, Any]:
            outcome = self._payables(ctx).update_payment(
                payment_id,
                actor.actor_id,
                payment_amount=payment_amount,
                payment_method=payment_method,
                payment_date=payment_date,
                voucher_number=voucher_number,
                notes=notes,
                confirm=confirm,
            )
            return _payment_result(outcome)

        return self._mutate(
            actor, Permission.FINANCE_MANAGE, idempotency_key,
            "payment_out_update", payment_id, payload, body,
        )

    def cancel_payment(
        self, actor: ActorContext, idempotency_key: str, payment_id: UUID
    ) -> dict[str, Any]:
        def body(ctx: TransactionContext) -> dict[str, Any]:
            return _payment_result(
                self._payables(ctx).cancel_payment(payment_id, actor.actor_id)
            )

        return self._mutate(
            actor, Permission.FINANCE_MANAGE, idempotency_key,
            "payment_out_cancel", payment_id, {"payment_id": payment_id}, body,
        )

    def delete_payment(
        self, actor: ActorContext, idempotency_key: str, payment_id: UUID
    ) -> dict[str, Any]:
        def body(ctx: TransactionContext) -> dict[str, Any]:
            payable = self._payables(ctx).delete_payment(payment_id, actor.actor_id)
            return {
                "deleted_payment_id": str(payment_id),
                "payable": payable_to_dict(payable) if payable is not None else None,
            }

        return self._mutate(
            actor, Permission.FINANCE_MANAGE, idempotency_key,
            "payment_out_delete", payment_id, {"payment_id": payment_id}, body,
        )

    def refresh_payables_overdue(
        self,
        actor: ActorContext,
        idempotency_key: str,
        as_of: datetime | None = None,
        overdue_threshold_days: int | None = None,
    ) -> dict[str, Any]:
        payload = {"as_of": as_of, "overdue_threshold_days": overdue_threshold_days}

        def body(ctx: TransactionContext) -> dict[str, Any]:
            changed = self._payables(ctx).refresh_overdue(
                as_of=as_of,
                overdue_threshold_days=overdue_threshold_days,
                actor_id=actor.actor_id,
            )
            return {"changed": [payable_to_dict(p) for p in changed]}

        return self._mutate(
            actor, Permission.FINANCE_MANAGE, idempotency_key,
            "payables_refresh_overdue", None, payload, body,
        )

    def list_payables(self, payable_filter: PayableFilter | None = None) -> list[dict[str, Any]]:
        with self._session_factory() as session:
            rows = [payable_to_dict(p) for p in FinanceSelector(session).payables(payable_filter)]
            session.rollback()
        return rows

    def list_payments(
        self, payment_filter: PaymentOutFilter | None = None
    ) -> list[dict[str, Any]]:
        with self._session_factory() as session:
            rows = [payment_to_dict(p) for p in FinanceSelector(session).payments(payment_filter)]
            session.rollback()
        return rows

    # ------------------------------------------------------------------
    # Sales orders and receipts
    # ------------------------------------------------------------------

    def create_sales_order(
        self,
        actor: ActorContext,
        idempotency_key: str,
        customer_id: str,
        total_amount: Any,
    ) -> dict[str, Any]:
        def body(ctx: TransactionContext) -> dict[str, Any]:
            return sales_order_to_dict(
                self._receivables(ctx).create_sales_order(
                    customer_id, total_amount, actor.actor_id
                )
            )

        return self._mutate(
            actor, Permission.SALES_MANAGE, idempotency_key,
            "sales_order_create", customer_id,
            {"customer_id": customer_id, "total_amount": total_amount}, body,
        )

    def confirm_sales_order(
        self, actor: ActorContext, idempotency_key: str, sales_order_id: UUID
    ) -> dict[str, Any]:
        def body(ctx: TransactionContext) -> dict[str, Any]:
            return sales_order_to_dict(
                self._receivables(ctx).confirm_sales_order(sales_order_id, actor.actor_id)
            )

        return self._mutate(
            actor, Permission.SALES_MANAGE, idempotency_key,
            "sales_order_confirm", sales_order_id,
            {"sales_order_id": sales_order_id}, body,
        )

    def record_receipt(
        self,
        actor: ActorContext,
        idempotency_key: str,
        sales_order_id: UUID,
        amount: Any,
        payment_method: str = "bank_transfer",
        receipt_date: datetime | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        payload = {
            "sales_order_id": sales_order_id,
            "amount": amount,
            "payment_method": payment_method,
            "receipt_date": receipt_date,
            "notes": notes,
        }

        def body(ctx: TransactionContext) -> dict[str, Any]:
            outcome = self._receivables(ctx).record_receipt(
                sales_order_id,
                amount,
                actor.actor_id,
                payment_method=payment_method,
                receipt_date=receipt_date,
                notes=notes,
            )
            return _receipt_result(outcome)

        return self._mutate(
            actor, Permission.FINANCE_MANAGE, idempotency_key,
            "receipt_record", sales_order_id, payload, body,
        )

    def cancel_receipt(
        self, actor: ActorContext, idempotency_key: str, receipt_id: UUID
    ) -> dict[str, Any]:
        def body(ctx: TransactionContext) -> dict[str, Any]:
            return _receipt_result(
                self._receivables(ctx).cancel_receipt(receipt_id, actor.actor_id)
            )

        return self._mutate(
            actor, Permission.FINANCE_MANAGE, idempotency_key,
            "receipt_cancel", receipt_id, {"receipt_id": receipt_id}, body,
        )

    def refresh_receivables_overdue(
        self,
        actor: ActorContext,
        idempotency_key: str,
        as_of: datetime | None = None,
        overdue_threshold_days: int | None = None,
    ) -> dict[str, Any]:
        payload = {"as_of": as_of, "overdue_threshold_days": overdue_threshold_days}

        def body(ctx: TransactionContext) -> dict[str, Any]:
            changed = self._receivables(ctx).refresh_overdue(
                as_of=as_of,
                overdue_threshold_days=overdue_threshold_days,
                actor_id=actor.actor_id,
            )
            return {"changed": [sales_order_to_dict(o) for o in changed]}

        return self._mutate(
            actor, Permission.FINANCE_MANAGE, idempotency_key,
            "receivables_refresh_overdue", None, payload, body,
        )

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    def create_refund(
        self,
        actor: ActorContext,
        idempotency_key: str,
        customer_id: str,
        refund_amount: Any,
        return_order_id: str | None = None,
        reason: str | None = None,
    ) -> dict[str, Any]:
        payload = {
            "customer_id": customer_id,
            "refund_amount": refund_amount,
            "return_order_id": return_order_id,
            "reason": reason,
        }

        def body(ctx: TransactionContext) -> dict[str, Any]:
            return refund_to_dict(
                self._refunds(ctx).create_refund(
                    customer_id,
                    refund_amount,
                    actor.actor_id,
                    return_order_id=return_order_id,
                    reason=reason,
                )
            )

        return self._mutate(
            actor, Permission.FINANCE_MANAGE, idempotency_key,
            "refund_create", return_order_id, payload, body,
        )

    def process_refund(
        self, actor: ActorContext, idempotency_key: str, refund_id: UUID, amount: Any
    ) -> dict[str, Any]:
        def body(ctx: TransactionContext) -> dict[str, Any]:
            return refund_to_dict(
                self._refunds(ctx).process_refund(refund_id, amount, actor.actor_id)
            )

        return self._mutate(
            actor, Permission.FINANCE_MANAGE, idempotency_key,
            "refund_process", refund_id, {"refund_id": refund_id, "amount": amount}, body,
        )

    def cancel_refund(
        self, actor: ActorContext, idempotency_key: str, refund_id: UUID
    ) -> dict[str, Any]:
        def body(ctx: TransactionContext) -> dict[str, Any]:
            return refund_to_dict(
                self._refunds(ctx).cancel_refund(refund_id, actor.actor_id)
            )

        return self._mutate(
            actor, Permission.FINANCE_MANAGE, idempotency_key,
            "refund_cancel", refund_id, {"refund_id": refund_id}, body,
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired_idempotency(self, retention: timedelta | None = None) -> int:
        return self.guard.purge_expired(retention or self.idempotency_retention)
