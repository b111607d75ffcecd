"""
Module: ledger_kernel.models.sequence
Responsibility: Counter rows behind human-readable document numbers.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One row per series name; values only ever move through a locked
      read-increment-write (never aggregate MAX()+1).
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    Row-level locking ensures monotonicity under concurrency.
    """

    __tablename__ = "sequence_counters"

    # Series name, optionally date-scoped (e.g. "payable:20240101")
    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
