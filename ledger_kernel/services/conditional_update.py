"""
Conditional update -- the optimistic concurrency primitive.

Responsibility:
    Applies a write to one row only if a predicate over its current
    persisted state still holds, in a single
    ``UPDATE ... WHERE id = :id AND <predicate>`` statement, and reports how
    many rows matched.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Every balance
    mutation (lot decrement, reservation, paid / processed increments,
    reversals, adjustments) goes through here.

Invariants enforced:
    - Check and write are one statement; there is no read-then-write gap.
    - Callers never fall back to an unconditional write when the predicate
      fails: ``require_conditional_update`` raises instead.
    - Dependent fields (remaining amounts, statuses) are not written here;
      callers re-read the row and re-derive them.

Failure modes:
    - OptimisticLockError (retryable) when the predicate matched no row.
      Existence is the caller's job (NotFoundError) so a zero count always
      means "the state moved under us".
"""

from typing import Any

from sqlalchemy import and_, update
from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base
from ledger_kernel.exceptions import OptimisticLockError
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.conditional_update")


def conditional_update(
    session: Session,
    model: type[Base],
    row_id: Any,
    predicate: Any,
    values: dict[Any, Any],
) -> int:
    """
    Update one row of ``model`` when ``predicate`` holds; return the rowcount.

    ``predicate`` is a SQL boolean expression over the model's columns (or
    None for an unconditional single-row write).  ``values`` may reference
    current column values, e.g. ``{Lot.quantity: Lot.quantity - 3}``.
    Session identity-map objects for the row are NOT refreshed; call
    ``session.refresh(obj)`` before reading them again.
    """
    criteria = model.id == row_id
    if predicate is not None:
        criteria = and_(criteria, predicate)
    stmt = (
        update(model)
        .where(criteria)
        .values(values)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    return result.rowcount


def require_conditional_update(
    session: Session,
    model: type[Base],
    row_id: Any,
    predicate: Any,
    values: dict[Any, Any],
) -> None:
    """
    Like ``conditional_update`` but a zero count raises OptimisticLockError.

    Raises:
        OptimisticLockError: The predicate no longer holds for the row.
    """
    updated = conditional_update(session, model, row_id, predicate, values)
    if updated == 0:
        logger.warning(
            "conditional_update_conflict",
            extra={
                "entity_type": model.__tablename__,
                "entity_id": str(row_id),
                "predicate": str(predicate),
            },
        )
        raise OptimisticLockError(model.__tablename__, row_id, str(predicate))
