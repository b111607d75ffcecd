"""
IdempotencyGuard -- at-most-once execution per (operation, resource, key).

Responsibility:
    Ensures that a mutation submitted twice with the same idempotency key
    executes at most once and that every repeat receives the original
    result.  Rejects reuse of a key with a different request.

Architecture position:
    Kernel > Services.  Wraps the transaction orchestrator: the guard
    claims the key, the orchestrator runs (and retries) the business
    transaction, then the guard records the result.  Claim, completion and
    release are their own short transactions so a pending claim is visible
    to concurrent duplicates while the business transaction is running.

Invariants enforced:
    - Unique claim per (operation_type, resource_id, idempotency_key); the
      store (database unique constraint or a lock) decides races.
    - Fingerprint = SHA-256 of the canonical JSON request payload; the
      actor is part of the identity check.
    - Fresh and replayed results pass through the same canonical JSON
      normalization, so both are structurally identical.
    - A failed execution releases its claim; the caller may retry with the
      same key.
    - Completion and release are bound to the claim token, so an owner
      whose claim was discarded as abandoned cannot overwrite or delete the
      claim that replaced it.

Failure modes:
    - IdempotencyKeyReuseError: completed record, different payload or actor.
    - RequestInFlightError: pending record younger than the pending timeout.
    - Whatever ``fn`` raises, after the claim has been released.

Audit relevance:
    Replays and conflicts are logged with the key and operation, so a
    duplicate submission is distinguishable from a second real mutation.
"""

import json
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol
from uuid import uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import (
    IdempotencyKeyReuseError,
    RequestInFlightError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.idempotency import IdempotencyRecord
from ledger_kernel.utils.hashing import canonicalize_json, hash_payload, normalize_result

logger = get_logger("services.idempotency")

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"

DEFAULT_PENDING_TIMEOUT_SECONDS = 60


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class IdempotencySnapshot:
    """Detached view of a stored idempotency record."""

    status: str
    request_fingerprint: str
    actor_id: str
    created_at: datetime
    result: str | None = None


@dataclass(frozen=True)
class ClaimOutcome:
    """Result of a claim attempt: either we own the key or someone else does."""

    claimed: bool
    existing: IdempotencySnapshot | None = None
    token: str | None = None


class IdempotencyStore(Protocol):
    """Persistence behind the guard."""

    def claim(
        self,
        operation_type: str,
        resource_id: str,
        key: str,
        actor_id: str,
        fingerprint: str,
        now: datetime,
    ) -> ClaimOutcome:
        ...

    def complete(
        self,
        operation_type: str,
        resource_id: str,
        key: str,
        token: str,
        result: str,
        now: datetime,
    ) -> bool:
        ...

    def release(
        self, operation_type: str, resource_id: str, key: str, token: str
    ) -> bool:
        ...

    def discard_stale(
        self,
        operation_type: str,
        resource_id: str,
        key: str,
        stale_before: datetime,
    ) -> bool:
        ...

    def purge_completed_before(self, cutoff: datetime) -> int:
        ...


class SqlIdempotencyStore:
    """
    Idempotency records in the ledger database.

    Contract:
        Each method runs in its own short transaction drawn from
        ``session_factory``; none of them shares the business transaction.

    Guarantees:
        - Concurrent first claims are decided by the unique constraint on
          (operation_type, resource_id, idempotency_key).
    """

    _CLAIM_ATTEMPTS = 3

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    @staticmethod
    def _where(operation_type: str, resource_id: str, key: str):
        return (
            IdempotencyRecord.operation_type == operation_type,
            IdempotencyRecord.resource_id == resource_id,
            IdempotencyRecord.idempotency_key == key,
        )

    def _find(
        self, session: Session, operation_type: str, resource_id: str, key: str
    ) -> IdempotencySnapshot | None:
        record = session.execute(
            select(IdempotencyRecord).where(
                *self._where(operation_type, resource_id, key)
            )
        ).scalar_one_or_none()
        if record is None:
            return None
        return IdempotencySnapshot(
            status=record.status,
            request_fingerprint=record.request_fingerprint,
            actor_id=record.actor_id,
            created_at=_as_utc(record.created_at),
            result=record.result,
        )

    def claim(self, operation_type, resource_id, key, actor_id, fingerprint, now):
        token = str(uuid4())
        for _ in range(self._CLAIM_ATTEMPTS):
            with self._session_factory() as session:
                try:
                    with session.begin():
                        existing = self._find(session, operation_type, resource_id, key)
                        if existing is not None:
                            return ClaimOutcome(claimed=False, existing=existing)
                        session.add(
                            IdempotencyRecord(
                                operation_type=operation_type,
                                resource_id=resource_id,
                                idempotency_key=key,
                                actor_id=actor_id,
                                request_fingerprint=fingerprint,
                                status=STATUS_PENDING,
                                claim_token=token,
                                created_at=now,
                            )
                        )
                    return ClaimOutcome(claimed=True, token=token)
                except IntegrityError:
                    logger.debug(
                        "idempotency_claim_race",
                        extra={"operation_type": operation_type, "idempotency_key": key},
                    )
                with session.begin():
                    existing = self._find(session, operation_type, resource_id, key)
                if existing is not None:
                    return ClaimOutcome(claimed=False, existing=existing)
            # The winner released its claim between our insert and re-read.
        raise RequestInFlightError(key, operation_type, 0.0)

    def complete(self, operation_type, resource_id, key, token, result, now):
        with self._session_factory() as session, session.begin():
            updated = session.execute(
                update(IdempotencyRecord)
                .where(*self._where(operation_type, resource_id, key))
                .where(IdempotencyRecord.status == STATUS_PENDING)
                .where(IdempotencyRecord.claim_token == token)
                .values(status=STATUS_COMPLETED, result=result, completed_at=now)
            )
            return updated.rowcount > 0

    def release(self, operation_type, resource_id, key, token):
        with self._session_factory() as session, session.begin():
            deleted = session.execute(
                delete(IdempotencyRecord)
                .where(*self._where(operation_type, resource_id, key))
                .where(IdempotencyRecord.status == STATUS_PENDING)
                .where(IdempotencyRecord.claim_token == token)
            )
            return deleted.rowcount > 0

    def discard_stale(self, operation_type, resource_id, key, stale_before):
        with self._session_factory() as session, session.begin():
            result = session.execute(
                delete(IdempotencyRecord)
                .where(*self._where(operation_type, resource_id, key))
                .where(IdempotencyRecord.status == STATUS_PENDING)
                .where(IdempotencyRecord.created_at <= stale_before)
            )
            return result.rowcount > 0

    def purge_completed_before(self, cutoff):
        with self._session_factory() as session, session.begin():
            result = session.execute(
                delete(IdempotencyRecord)
                .where(IdempotencyRecord.status == STATUS_COMPLETED)
                .where(IdempotencyRecord.completed_at < cutoff)
            )
            return result.rowcount


class InMemoryIdempotencyStore:
    """
    Process-local store for single-process deployments and tests.

    Guarantees:
        - Same semantics as SqlIdempotencyStore; a lock stands in for the
          unique constraint.

    Non-goals:
        - Does NOT survive a restart or coordinate across processes.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._records: dict[tuple[str, str, str], dict[str, Any]] = {}

    def _snapshot(self, record: dict[str, Any]) -> IdempotencySnapshot:
        return IdempotencySnapshot(
            status=record["status"],
            request_fingerprint=record["request_fingerprint"],
            actor_id=record["actor_id"],
            created_at=record["created_at"],
            result=record["result"],
        )

    @staticmethod
    def _owned(record: dict[str, Any] | None, token: str) -> bool:
        return (
            record is not None
            and record["status"] == STATUS_PENDING
            and record["claim_token"] == token
        )

    def claim(self, operation_type, resource_id, key, actor_id, fingerprint, now):
        ident = (operation_type, resource_id, key)
        token = str(uuid4())
        with self._lock:
            record = self._records.get(ident)
            if record is not None:
                return ClaimOutcome(claimed=False, existing=self._snapshot(record))
            self._records[ident] = {
                "status": STATUS_PENDING,
                "request_fingerprint": fingerprint,
                "actor_id": actor_id,
                "created_at": _as_utc(now),
                "completed_at": None,
                "result": None,
                "claim_token": token,
            }
            return ClaimOutcome(claimed=True, token=token)

    def complete(self, operation_type, resource_id, key, token, result, now):
        with self._lock:
            record = self._records.get((operation_type, resource_id, key))
            if not self._owned(record, token):
                return False
            record.update(status=STATUS_COMPLETED, result=result, completed_at=now)
            return True

    def release(self, operation_type, resource_id, key, token):
        ident = (operation_type, resource_id, key)
        with self._lock:
            if not self._owned(self._records.get(ident), token):
                return False
            del self._records[ident]
            return True

    def discard_stale(self, operation_type, resource_id, key, stale_before):
        ident = (operation_type, resource_id, key)
        with self._lock:
            record = self._records.get(ident)
            if (
                record is not None
                and record["status"] == STATUS_PENDING
                and record["created_at"] <= _as_utc(stale_before)
            ):
                del self._records[ident]
                return True
            return False

    def purge_completed_before(self, cutoff):
        cutoff = _as_utc(cutoff)
        with self._lock:
            expired = [
                ident
                for ident, record in self._records.items()
                if record["status"] == STATUS_COMPLETED
                and _as_utc(record["completed_at"]) < cutoff
            ]
            for ident in expired:
                del self._records[ident]
            return len(expired)


class IdempotencyGuard:
    """
    Executes a function at most once per idempotency key.

    Contract:
        ``run(key, operation_type, resource_id, actor_id, payload, fn)``
        returns the canonical result of the first successful ``fn()`` for
        that key, calling ``fn`` only when no completed record exists.

    Guarantees:
        - A completed key with the same fingerprint and actor replays the
          stored result without calling ``fn``.
        - A pending key older than ``pending_timeout_seconds`` is treated
          as abandoned: discarded and executed fresh.

    Non-goals:
        - Does NOT retry ``fn``; the orchestrator inside ``fn`` does.
    """

    def __init__(
        self,
        store: IdempotencyStore,
        clock: Clock | None = None,
        pending_timeout_seconds: int = DEFAULT_PENDING_TIMEOUT_SECONDS,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self.pending_timeout_seconds = pending_timeout_seconds

    def run(
        self,
        key: str,
        operation_type: str,
        resource_id: Any,
        actor_id: str,
        payload: dict[str, Any],
        fn: Callable[[], Any],
    ) -> Any:
        """
        Run ``fn`` under the idempotency key and return its canonical result.

        Raises:
            ValidationError: Empty idempotency key.
            IdempotencyKeyReuseError: Key already used for another request.
            RequestInFlightError: Same key is being processed right now.
        """
        if not key or not key.strip():
            raise ValidationError("idempotency_key is required", "idempotency_key")
        resource = "" if resource_id is None else str(resource_id)
        fingerprint = hash_payload(payload)

        with LogContext.bind(idempotency_key=key, operation=operation_type):
            outcome = self._claim(key, operation_type, resource, actor_id, fingerprint)
            if not outcome.claimed:
                existing = outcome.existing
                logger.info(
                    "idempotency_replayed",
                    extra={"operation_type": operation_type, "resource_id": resource},
                )
                return json.loads(existing.result) if existing.result else None

            try:
                result = fn()
            except Exception:
                self._store.release(operation_type, resource, key, outcome.token)
                logger.info(
                    "idempotency_claim_released",
                    extra={"operation_type": operation_type},
                )
                raise

            normalized = normalize_result(result)
            completed = self._store.complete(
                operation_type,
                resource,
                key,
                outcome.token,
                canonicalize_json(normalized),
                self._clock.now(),
            )
            if not completed:
                # Our claim was discarded as abandoned; the newer claim owns the key.
                logger.warning(
                    "idempotency_claim_superseded",
                    extra={"operation_type": operation_type, "resource_id": resource},
                )
                return normalized
            logger.debug(
                "idempotency_completed",
                extra={"operation_type": operation_type, "fingerprint": fingerprint},
            )
            return normalized

    def _claim(
        self,
        key: str,
        operation_type: str,
        resource: str,
        actor_id: str,
        fingerprint: str,
    ) -> ClaimOutcome:
        """
        Claim the key, or return the completed record to replay.

        The returned outcome either carries our claim token or, when
        ``claimed`` is false, the completed snapshot.

        Raises:
            IdempotencyKeyReuseError: Completed with another payload or actor.
            RequestInFlightError: Pending and not yet abandoned.
        """
        # Second pass only happens after discarding an abandoned claim.
        for _ in range(2):
            now = self._clock.now()
            outcome = self._store.claim(
                operation_type, resource, key, actor_id, fingerprint, now
            )
            if outcome.claimed:
                return outcome

            existing = outcome.existing
            if existing.status == STATUS_COMPLETED:
                if (
                    existing.request_fingerprint != fingerprint
                    or existing.actor_id != actor_id
                ):
                    logger.warning(
                        "idempotency_key_reuse_rejected",
                        extra={
                            "operation_type": operation_type,
                            "resource_id": resource,
                            "expected_fingerprint": existing.request_fingerprint,
                            "received_fingerprint": fingerprint,
                        },
                    )
                    raise IdempotencyKeyReuseError(
                        key, operation_type, existing.request_fingerprint, fingerprint
                    )
                return outcome

            age = (_as_utc(now) - existing.created_at).total_seconds()
            if age < self.pending_timeout_seconds:
                logger.warning(
                    "idempotency_request_in_flight",
                    extra={"operation_type": operation_type, "age_seconds": age},
                )
                raise RequestInFlightError(key, operation_type, age)

            stale_before = now - timedelta(seconds=self.pending_timeout_seconds)
            if self._store.discard_stale(operation_type, resource, key, stale_before):
                logger.warning(
                    "idempotency_stale_claim_discarded",
                    extra={"operation_type": operation_type, "age_seconds": age},
                )

        raise RequestInFlightError(key, operation_type, 0.0)

    def purge_expired(self, retention: timedelta) -> int:
        """
        Drop completed records whose completion is older than ``retention``.

        Returns:
            Number of records removed.
        """
        cutoff = self._clock.now() - retention
        removed = self._store.purge_completed_before(cutoff)
        logger.info(
            "idempotency_records_purged",
            extra={"removed": removed, "cutoff": cutoff},
        )
        return removed
