"""
LedgerSettings schema.

Frozen dataclasses describing the effective runtime settings.  Every
section validates itself in ``__post_init__`` so an invalid value fails at
load time instead of deep inside a transaction.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

ISOLATION_LEVELS = frozenset(
    {"SERIALIZABLE", "REPEATABLE READ", "READ COMMITTED", "READ UNCOMMITTED"}
)
LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def _require_positive(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value!r}")


def _require_non_negative(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{name} must be a non-negative integer, got {value!r}")


@dataclass(frozen=True)
class TransactionSettings:
    isolation_level: str = "SERIALIZABLE"
    timeout_ms: int = 10_000
    max_retries: int = 3
    retry_backoff_ms: int = 25

    def __post_init__(self) -> None:
        if self.isolation_level not in ISOLATION_LEVELS:
            raise ValueError(
                f"transaction.isolation_level must be one of "
                f"{sorted(ISOLATION_LEVELS)}, got {self.isolation_level!r}"
            )
        _require_positive("transaction.timeout_ms", self.timeout_ms)
        _require_non_negative("transaction.max_retries", self.max_retries)
        _require_non_negative("transaction.retry_backoff_ms", self.retry_backoff_ms)


@dataclass(frozen=True)
class IdempotencySettings:
    pending_timeout_seconds: int = 60
    retention_hours: int = 24

    def __post_init__(self) -> None:
        _require_positive(
            "idempotency.pending_timeout_seconds", self.pending_timeout_seconds
        )
        _require_positive("idempotency.retention_hours", self.retention_hours)


@dataclass(frozen=True)
class StatusSettings:
    overdue_threshold_days: int = 30
    low_stock_threshold: int = 10

    def __post_init__(self) -> None:
        _require_non_negative(
            "status.overdue_threshold_days", self.overdue_threshold_days
        )
        _require_non_negative("status.low_stock_threshold", self.low_stock_threshold)


@dataclass(frozen=True)
class FanoutSettings:
    dedupe_window: int = 1024

    def __post_init__(self) -> None:
        _require_positive("fanout.dedupe_window", self.dedupe_window)


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"

    def __post_init__(self) -> None:
        if self.level not in LOG_LEVELS:
            raise ValueError(
                f"logging.level must be one of {sorted(LOG_LEVELS)}, got {self.level!r}"
            )


@dataclass(frozen=True)
class LedgerSettings:
    """
    Effective runtime settings.

    Contract:
        Produced only by ``ledger_config.get_active_settings()``.

    Guarantees:
        - Immutable; every field has passed validation.
        - ``checksum`` identifies the effective values, not their source.
    """

    database_url: str
    transaction: TransactionSettings = field(default_factory=TransactionSettings)
    idempotency: IdempotencySettings = field(default_factory=IdempotencySettings)
    status: StatusSettings = field(default_factory=StatusSettings)
    fanout: FanoutSettings = field(default_factory=FanoutSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    checksum: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.database_url, str) or not self.database_url.strip():
            raise ValueError("database_url is required")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("checksum")
        return data
