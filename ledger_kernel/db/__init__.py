"""Database layer - engine, base classes, and column types."""

from ledger_kernel.db.base import UUID, Base, ScaledDecimal, TrackedBase, UUIDString
from ledger_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
)
from ledger_kernel.db.types import PayloadHash

__all__ = [
    "build_engine",
    "init_engine_from_url",
    "get_session_factory",
    "create_tables",
    "drop_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "ScaledDecimal",
    "UUID",
    "PayloadHash",
]
