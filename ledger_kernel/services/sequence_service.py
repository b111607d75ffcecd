"""
SequenceService -- document numbers via locked counter rows.

Responsibility:
    Provides strictly monotonically increasing sequence values and the
    human-readable document numbers built on them
    (``{PREFIX}-{YYYYMMDD}-{value:06d}``).  Uses a dedicated counter table
    with row-level locking (``SELECT ... FOR UPDATE``) to guarantee
    uniqueness under concurrent access.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by every service that creates a numbered record.

Invariants enforced:
    - Monotonicity: the SQL aggregate-max-plus-one anti-pattern is
      FORBIDDEN -- the locked counter row is the sole source of truth for
      the next value.
    - Transactional: the increment is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and re-read).
    - ValidationError: unknown series name.

Audit relevance:
    Sequence allocation is logged at DEBUG level with sequence_name
    and value.
"""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.exceptions import ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly-monotonic
        integer value.  The increment is committed with the caller's
        transaction.

    Guarantees:
        - ``SELECT ... FOR UPDATE`` serializes concurrent allocations for
          the same sequence (on SQLite the database-level write lock taken
          by ``BEGIN IMMEDIATE`` does the same job).
        - Document numbers are unique: the counter is scoped to series and
          day, and both are part of the number.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.

    Usage:
        number = SequenceService(session).next_number(SequenceService.PAYABLE)
        # "AP-20240101-000001"
    """

    PAYABLE = "payable"
    PAYMENT_OUT = "payment_out"
    RECEIPT = "receipt"
    REFUND = "refund"
    INBOUND = "inbound"
    OUTBOUND = "outbound"
    ADJUSTMENT = "adjustment"
    SALES_ORDER = "sales_order"

    PREFIXES: dict[str, str] = {
        PAYABLE: "AP",
        PAYMENT_OUT: "PMT",
        RECEIPT: "RCV",
        REFUND: "RF",
        INBOUND: "IN",
        OUTBOUND: "OUT",
        ADJUSTMENT: "ADJ",
        SALES_ORDER: "SO",
    }

    def __init__(self, session: Session):
        self._session = session

    def _lock_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        1. Locks the sequence row (or creates it if not exists)
        2. Increments the counter
        3. Returns the new value

        Postconditions:
            - Returns an integer > 0 that is strictly greater than any
              previously committed value for this sequence name.
            - The counter row is locked until the transaction completes.
        """
        counter = self._lock_counter(sequence_name)

        if counter is None:
            # Another transaction may create the same counter concurrently;
            # the savepoint keeps the caller's work intact if we lose.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._lock_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def next_number(self, series: str, on: datetime) -> str:
        """
        Allocate the next document number of ``series`` for the day of ``on``.

        Raises:
            ValidationError: If ``series`` is not a known series.
        """
        prefix = self.PREFIXES.get(series)
        if prefix is None:
            raise ValidationError(f"Unknown sequence series: {series}", "series")
        day = on.strftime("%Y%m%d")
        value = self.next_value(f"{series}:{day}")
        return f"{prefix}-{day}-{value:06d}"

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

        return counter.current_value if counter else None
