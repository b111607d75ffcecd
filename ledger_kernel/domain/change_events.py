"""
Change events -- what a committed mutation tells the outside world.

Responsibility:
    Immutable description of one committed ledger or stock change, plus the
    cache key spaces that change invalidates.  Built inside the transaction
    body, handed to the fanout only after commit.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - ``event_id`` is unique per committed change, so redelivery can be
      de-duplicated downstream.
    - ``to_payload()`` is flat JSON of scalars.  ``before`` / ``after`` are
      always numeric: a stock quantity, or the paid / processed amount of a
      finance row rendered as a plain decimal string.  Finance rows also
      carry ``remaining_*`` amounts and ``status_*`` labels.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

INVENTORY_CHANGED = "inventory.changed"
PAYABLE_CHANGED = "finance.payable.changed"
RECEIVABLE_CHANGED = "finance.receivable.changed"
REFUND_CHANGED = "finance.refund.changed"


@dataclass(frozen=True)
class BalanceState:
    """Status and amounts of a finance row at one side of a change."""

    status: str
    settled: Decimal
    remaining: Decimal


@dataclass(frozen=True)
class ChangeEvent:
    """One committed change to a balance row."""

    event_type: str
    action: str
    entity_type: str
    entity_id: str
    actor_id: str
    occurred_at: datetime
    before: Any = None
    after: Any = None
    remaining_before: str | None = None
    remaining_after: str | None = None
    status_before: str | None = None
    status_after: str | None = None
    product_id: str | None = None
    reason: str | None = None
    cache_keys: tuple[str, ...] = ()
    event_id: str = field(default_factory=lambda: str(uuid4()))

    def to_payload(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "product_id": self.product_id,
            "before": self.before,
            "after": self.after,
            "remaining_before": self.remaining_before,
            "remaining_after": self.remaining_after,
            "status_before": self.status_before,
            "status_after": self.status_after,
            "actor_id": self.actor_id,
            "reason": self.reason,
            "occurred_at": self.occurred_at.isoformat(),
        }


# Cache key spaces.  Patterns use glob syntax.


def inventory_cache_keys(product_id: str) -> tuple[str, ...]:
    return (
        f"inventory:summary:{product_id}",
        f"inventory:availability:{product_id}:*",
        "inventory:list:*",
    )


def payable_cache_keys(payable_id: str | None = None) -> tuple[str, ...]:
    keys = ["finance:payables:*", "finance:payments-out:*", "finance:statistics"]
    if payable_id is not None:
        keys.insert(1, f"finance:payable:{payable_id}")
    return tuple(keys)


def receivable_cache_keys() -> tuple[str, ...]:
    return ("finance:receivables:*", "finance:statistics")


def refund_cache_keys() -> tuple[str, ...]:
    return ("finance:refunds:*", "finance:statistics")
