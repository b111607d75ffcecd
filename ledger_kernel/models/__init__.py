"""ORM models for the ledger store."""

from ledger_kernel.models.idempotency import IdempotencyRecord
from ledger_kernel.models.inventory import (
    InboundRecord,
    InventoryAdjustment,
    InventoryLot,
    OutboundRecord,
)
from ledger_kernel.models.payable import (
    PayableRecord,
    PayableSourceType,
    PaymentMethod,
    PaymentOutRecord,
)
from ledger_kernel.models.receivable import ReceiptRecord, SalesOrder
from ledger_kernel.models.refund import RefundRecord
from ledger_kernel.models.sequence import SequenceCounter

__all__ = [
    "IdempotencyRecord",
    "InboundRecord",
    "InventoryAdjustment",
    "InventoryLot",
    "OutboundRecord",
    "PayableRecord",
    "PayableSourceType",
    "PaymentMethod",
    "PaymentOutRecord",
    "ReceiptRecord",
    "SalesOrder",
    "RefundRecord",
    "SequenceCounter",
]
