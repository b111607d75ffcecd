"""
Module: ledger_kernel.models.idempotency
Responsibility: ORM persistence for idempotency records -- one row per
    (operation_type, resource_id, idempotency_key) claim.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Unique on (operation_type, resource_id, idempotency_key): the database
      decides which of two concurrent first requests wins the claim.
    - ``result`` holds the canonical JSON of the first successful result.
    - ``claim_token`` identifies the claim that wrote the row; only that
      claim may complete or release it.

Failure modes:
    - IntegrityError on a duplicate claim; the store converts it into a
      lookup of the winning record.
"""

from datetime import datetime

from sqlalchemy import Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.db.types import PayloadHash


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"

    __table_args__ = (
        UniqueConstraint(
            "operation_type",
            "resource_id",
            "idempotency_key",
            name="uq_idempotency_claim",
        ),
        Index("idx_idempotency_created", "status", "created_at"),
    )

    operation_type: Mapped[str] = mapped_column(String(100), nullable=False)

    # "" when the operation is not scoped to an existing resource
    resource_id: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False)

    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)

    request_fingerprint: Mapped[PayloadHash] = mapped_column(nullable=False)

    # pending | completed
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    claim_token: Mapped[str] = mapped_column(String(36), nullable=False)

    result: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<IdempotencyRecord {self.operation_type}/{self.resource_id}/"
            f"{self.idempotency_key}: {self.status}>"
        )
