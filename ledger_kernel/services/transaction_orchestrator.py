"""
TransactionOrchestrator -- bounded, retried transactions with post-commit hooks.

Responsibility:
    Runs a mutation body inside one database transaction with a declared
    isolation level and time bound, retries it on retryable concurrency
    failures, and runs after-commit callbacks only once the transaction
    has committed.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Owns the only
    ``session.commit()`` on the mutation path.  Kernel services running in
    the body only flush.

Invariants enforced:
    - One fresh Session per attempt; nothing from a failed attempt leaks
      into the next.
    - After-commit callbacks never run for a rolled-back attempt.
    - The deadline is checked by services between steps and once more
      before commit; on PostgreSQL it is also pushed down as
      ``SET LOCAL statement_timeout``.
    - Only errors whose ``retryable`` flag is set are retried.  Conflicts,
      validation errors, not-found and invariant violations propagate on
      the first occurrence.

Failure modes:
    - TransactionTimeoutError: body overran its time bound (retryable).
    - SerializationConflictError: database aborted the transaction
      (SQLSTATE 40001 / 40P01, SQLite busy) (retryable).
    - RetryExhaustedError: a retryable failure persisted past max_retries.
    - Any non-retryable LedgerKernelError from the body, unchanged.

Audit relevance:
    Every attempt gets a transaction_id bound into LogContext, so all log
    lines of one attempt (including the rollback warning) correlate.
"""

import time
from typing import Any, Callable
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import (
    LedgerKernelError,
    RetryExhaustedError,
    SerializationConflictError,
    TransactionTimeoutError,
)
from ledger_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.transaction")

DEFAULT_ISOLATION_LEVEL = "SERIALIZABLE"
DEFAULT_TIMEOUT_MS = 10_000
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF_MS = 25

_SERIALIZATION_SQLSTATES = frozenset({"40001", "40P01"})
_QUERY_CANCELED_SQLSTATE = "57014"
_SQLITE_BUSY_MARKERS = ("database is locked", "database is busy")


class TransactionContext:
    """
    Handle passed to a transaction body.

    Contract:
        Valid only for the duration of one attempt.  ``session`` must not
        be committed or rolled back by the body.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        operation: str,
        attempt: int,
        timeout_ms: int,
    ):
        self.session = session
        self.clock = clock
        self.operation = operation
        self.attempt = attempt
        self.timeout_ms = timeout_ms
        self.transaction_id = str(uuid4())
        self._started = clock.monotonic()
        self._callbacks: list[Callable[[], Any]] = []

    def now(self):
        return self.clock.now()

    def elapsed_ms(self) -> float:
        return (self.clock.monotonic() - self._started) * 1000

    def check_deadline(self) -> None:
        """
        Raise TransactionTimeoutError if the time bound has passed.

        Raises:
            TransactionTimeoutError: Elapsed time exceeds ``timeout_ms``.
        """
        elapsed = self.elapsed_ms()
        if elapsed > self.timeout_ms:
            raise TransactionTimeoutError(self.operation, self.timeout_ms, elapsed)

    def after_commit(self, callback: Callable[[], Any]) -> None:
        """Register a callback to run after this attempt commits."""
        self._callbacks.append(callback)

    @property
    def callbacks(self) -> tuple[Callable[[], Any], ...]:
        return tuple(self._callbacks)


class TransactionOrchestrator:
    """
    Runs transaction bodies with isolation, a deadline, and bounded retries.

    Contract:
        ``run(body, operation=...)`` calls ``body(ctx)`` inside a fresh
        transaction and returns its result after commit.

    Guarantees:
        - At most ``max_retries + 1`` attempts.
        - Linear backoff between attempts (``retry_backoff_ms * attempt``).
        - After-commit callback failures are logged and never change the
          result of a committed transaction.

    Non-goals:
        - Does NOT deduplicate requests; that is the idempotency guard's job
          and it wraps this orchestrator, not the other way round.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        isolation_level: str = DEFAULT_ISOLATION_LEVEL,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff_ms: int = DEFAULT_RETRY_BACKOFF_MS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self.isolation_level = isolation_level
        self.timeout_ms = timeout_ms
        self.max_retries = max_retries
        self.retry_backoff_ms = retry_backoff_ms
        self._sleep = sleep

    def run(
        self,
        body: Callable[[TransactionContext], Any],
        *,
        operation: str,
        isolation_level: str | None = None,
        timeout_ms: int | None = None,
        max_retries: int | None = None,
    ) -> Any:
        """
        Execute ``body`` transactionally and return its result.

        Raises:
            RetryExhaustedError: Retryable failures on every attempt.
            LedgerKernelError: Any non-retryable failure from the body.
        """
        isolation_level = isolation_level or self.isolation_level
        timeout_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        max_retries = self.max_retries if max_retries is None else max_retries
        attempts = max_retries + 1

        last_error: LedgerKernelError | None = None
        for attempt in range(1, attempts + 1):
            try:
                result, callbacks = self._attempt(
                    body, operation, attempt, isolation_level, timeout_ms
                )
            except LedgerKernelError as exc:
                if not exc.retryable:
                    raise
                last_error = exc
                logger.warning(
                    "transaction_retry",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "error_code": exc.code,
                    },
                )
                if attempt < attempts:
                    self._sleep(self.retry_backoff_ms * attempt / 1000)
                continue

            self._run_callbacks(operation, callbacks)
            return result

        logger.error(
            "transaction_retries_exhausted",
            extra={
                "operation": operation,
                "attempts": attempts,
                "error_code": last_error.code if last_error else None,
            },
        )
        raise RetryExhaustedError(operation, attempts, last_error) from last_error

    def _attempt(
        self,
        body: Callable[[TransactionContext], Any],
        operation: str,
        attempt: int,
        isolation_level: str,
        timeout_ms: int,
    ) -> tuple[Any, tuple[Callable[[], Any], ...]]:
        session = self._session_factory()
        ctx = TransactionContext(session, self._clock, operation, attempt, timeout_ms)
        try:
            with LogContext.bind(
                operation=operation, transaction_id=ctx.transaction_id
            ):
                try:
                    self._begin(session, isolation_level, timeout_ms)
                    result = body(ctx)
                    session.flush()
                    ctx.check_deadline()
                    session.commit()
                except DBAPIError as exc:
                    session.rollback()
                    translated = self._translate(exc, operation, ctx)
                    if translated is None:
                        logger.warning(
                            "transaction_rolled_back",
                            extra={"attempt": attempt},
                            exc_info=True,
                        )
                        raise
                    logger.warning(
                        "transaction_rolled_back",
                        extra={"attempt": attempt, "error_code": translated.code},
                    )
                    raise translated from exc
                except LedgerKernelError as exc:
                    session.rollback()
                    logger.warning(
                        "transaction_rolled_back",
                        extra={"attempt": attempt, "error_code": exc.code},
                    )
                    raise
                except Exception:
                    session.rollback()
                    logger.warning(
                        "transaction_rolled_back",
                        extra={"attempt": attempt},
                        exc_info=True,
                    )
                    raise
                logger.debug(
                    "transaction_committed",
                    extra={"attempt": attempt, "elapsed_ms": ctx.elapsed_ms()},
                )
        finally:
            session.close()
        return result, ctx.callbacks

    def _begin(self, session: Session, isolation_level: str, timeout_ms: int) -> None:
        bind = session.get_bind()
        if bind.dialect.name != "postgresql":
            return
        session.connection(execution_options={"isolation_level": isolation_level})
        session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))

    def _translate(
        self, exc: DBAPIError, operation: str, ctx: TransactionContext
    ) -> LedgerKernelError | None:
        """Map a driver error to a typed retryable error, or None to re-raise."""
        orig = exc.orig
        sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if sqlstate in _SERIALIZATION_SQLSTATES:
            return SerializationConflictError(operation, str(orig).strip())
        if sqlstate == _QUERY_CANCELED_SQLSTATE:
            return TransactionTimeoutError(operation, ctx.timeout_ms, ctx.elapsed_ms())
        message = str(orig).lower()
        if any(marker in message for marker in _SQLITE_BUSY_MARKERS):
            return SerializationConflictError(operation, str(orig))
        return None

    def _run_callbacks(
        self, operation: str, callbacks: tuple[Callable[[], Any], ...]
    ) -> None:
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception(
                    "after_commit_callback_failed",
                    extra={"operation": operation},
                )
