"""
Module: ledger_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.  Provides
    the UUID primary key convention, type annotation map for consistent column
    types, and the TrackedBase mixin for actor and timestamp tracking.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - UUID primary keys: every model inherits a uuid4-generated primary key.
    - Decimal precision: type_annotation_map maps Python Decimal to
      ScaledDecimal for every balance column.  NEVER use float for amounts.
      On SQLite amounts are integer minor units, so conditional predicates
      such as ``paid_amount + delta <= payable_amount`` compare exactly.
    - Tracking: TrackedBase provides created_at, updated_at, created_by_id
      and updated_by_id on every ledger and stock row.

Failure modes:
    - IntegrityError if a model attempts to INSERT a duplicate UUID.

Audit relevance:
    created_by_id / updated_by_id carry the actor of the last mutation, so
    every balance row can be traced to the request that last moved it.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Guarantees:
        - process_bind_param: UUID -> str on INSERT/UPDATE.
        - process_result_value: str -> UUID on SELECT.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


MONEY_DECIMAL_PLACES = 2


class ScaledDecimal(TypeDecorator):
    """
    Decimal stored at a fixed number of decimal places.

    PostgreSQL keeps NUMERIC(38, 9).  SQLite has no exact decimal storage
    (NUMERIC affinity is REAL there), so values are stored as BIGINT minor
    units and every comparison and increment in SQL is integer arithmetic.

    Guarantees:
        - process_result_value always returns a Decimal quantized to
          ``places``.
        - Bind values must already be at ``places`` (see ``to_money``).
    """

    impl = Numeric(38, 9)
    cache_ok = True

    def __init__(self, places: int = MONEY_DECIMAL_PLACES):
        super().__init__()
        self.places = places

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(BigInteger())
        return dialect.type_descriptor(Numeric(38, 9))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = Decimal(value)
        if dialect.name == "sqlite":
            return int(value.scaleb(self.places).to_integral_value(ROUND_HALF_UP))
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "sqlite":
            return Decimal(int(value)).scaleb(-self.places)
        return Decimal(value).quantize(Decimal(1).scaleb(-self.places))


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Contract:
        Every ORM model in the ledger inherits from Base (or TrackedBase).

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - Decimal maps to ScaledDecimal (two places).
        - datetime maps to DateTime(timezone=True).
        - int maps to BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: ScaledDecimal(),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with timestamp and actor tracking.

    Contract:
        Services set created_at / updated_at from their injected Clock so
        ordering by updated_at is deterministic under test.  The server
        defaults only cover rows written outside a service.

    Guarantees:
        - created_by_id is required (NOT NULL).  Actor ids are opaque strings
          supplied by the authentication layer.
        - updated_by_id is nullable until the first mutation.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    updated_by_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )


UUID = PyUUID
