"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  All concrete services inherit
    from BaseService, receiving a SQLAlchemy ``Session`` that they use
    via ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Every balance-mutating service in ``ledger_kernel/services/`` extends
    this class and runs inside a transaction opened by the
    TransactionOrchestrator.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.
    - Side effects leave only through ``emit``; the caller decides when
      (after commit) they reach the outside world.

Failure modes:
    - If a subclass calls ``session.commit()``, the orchestrator's
      deadline check and retry loop no longer cover the whole mutation.
"""

from abc import ABC
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.orm import Session

from ledger_kernel.db.types import format_money
from ledger_kernel.domain.change_events import BalanceState, ChangeEvent
from ledger_kernel.domain.clock import Clock, SystemClock


def _discard(event: ChangeEvent) -> None:
    return None


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
        - Every committed-state change is described by a ChangeEvent
          passed to ``emit``.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT deliver events; ``emit`` only hands them over.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        emit: Callable[[ChangeEvent], None] | None = None,
        check_deadline: Callable[[], None] | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self._emit = emit or _discard
        self._check_deadline = check_deadline

    def _now(self) -> datetime:
        return self.clock.now()

    def _step(self) -> None:
        """Deadline checkpoint between service steps."""
        if self._check_deadline is not None:
            self._check_deadline()

    @staticmethod
    def _balance_fields(
        before: BalanceState | None, after: BalanceState
    ) -> dict[str, Any]:
        """ChangeEvent keyword arguments for a move of a finance balance."""
        return {
            "before": format_money(before.settled) if before else None,
            "after": format_money(after.settled),
            "remaining_before": format_money(before.remaining) if before else None,
            "remaining_after": format_money(after.remaining),
            "status_before": before.status if before else None,
            "status_after": after.status,
        }
