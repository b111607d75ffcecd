"""
Availability / allocation calculator -- pure FIFO planner.

Responsibility:
    Given an ordered list of lot snapshots and a requested quantity, compute
    aggregate stock figures and the first-in-first-out allocation plan.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The inventory
    service is responsible for reading lots in FIFO order
    (``updated_at ASC, id ASC``) and for re-planning inside the outbound
    transaction; this module never decides ordering.

Invariants enforced:
    - When ``available`` is true the plan's quantities sum to exactly the
      requested quantity; otherwise the plan is empty.
    - No line takes more than the lot's unreserved quantity.
    - Lots with nothing unreserved are skipped, never planned at zero.

Failure modes:
    - ValueError on a non-positive requested quantity.
"""

from dataclasses import dataclass
from typing import Any, Iterable


@dataclass(frozen=True)
class LotSnapshot:
    """Read-only view of an inventory lot as seen by the planner."""

    lot_id: Any
    quantity: int
    reserved_quantity: int
    batch_number: str | None = None
    location: str | None = None

    @property
    def available_quantity(self) -> int:
        return max(self.quantity - self.reserved_quantity, 0)


@dataclass(frozen=True)
class AllocationLine:
    lot_id: Any
    quantity: int
    batch_number: str | None = None
    location: str | None = None


@dataclass(frozen=True)
class AvailabilityResult:
    """Aggregate availability plus the FIFO allocation plan."""

    available: bool
    total_quantity: int
    reserved_quantity: int
    available_quantity: int
    requested: int
    shortfall: int
    allocation_plan: tuple[AllocationLine, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "available": self.available,
            "total_quantity": self.total_quantity,
            "reserved_quantity": self.reserved_quantity,
            "available_quantity": self.available_quantity,
            "requested": self.requested,
            "shortfall": self.shortfall,
            "allocation_plan": [
                {
                    "lot_id": str(line.lot_id),
                    "quantity": line.quantity,
                    "batch_number": line.batch_number,
                    "location": line.location,
                }
                for line in self.allocation_plan
            ],
        }


def plan_fifo_allocation(
    lots: Iterable[LotSnapshot],
    quantity: int,
) -> AvailabilityResult:
    """
    Plan a FIFO allocation of ``quantity`` units across ``lots``.

    Lots are consumed in the order given.

    Example:
        lots [(L1, 5 free), (L2, 10 free)], quantity 7
        -> plan [(L1, 5), (L2, 2)], available=True, shortfall=0
    """
    if quantity <= 0:
        raise ValueError(f"Requested quantity must be positive: {quantity}")

    lots = list(lots)
    total = sum(lot.quantity for lot in lots)
    reserved = sum(lot.reserved_quantity for lot in lots)
    free = sum(lot.available_quantity for lot in lots)

    if free < quantity:
        return AvailabilityResult(
            available=False,
            total_quantity=total,
            reserved_quantity=reserved,
            available_quantity=free,
            requested=quantity,
            shortfall=quantity - free,
            allocation_plan=(),
        )

    plan: list[AllocationLine] = []
    remaining = quantity
    for lot in lots:
        if remaining == 0:
            break
        take = min(lot.available_quantity, remaining)
        if take <= 0:
            continue
        plan.append(
            AllocationLine(
                lot_id=lot.lot_id,
                quantity=take,
                batch_number=lot.batch_number,
                location=lot.location,
            )
        )
        remaining -= take

    return AvailabilityResult(
        available=True,
        total_quantity=total,
        reserved_quantity=reserved,
        available_quantity=free,
        requested=quantity,
        shortfall=0,
        allocation_plan=tuple(plan),
    )
