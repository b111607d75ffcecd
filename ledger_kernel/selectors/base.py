"""
Module: ledger_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/ and
    models/.  MUST NOT import from services/ or outer layers.
    Selectors NEVER create, modify, or delete data.

Invariants enforced:
    - Read-only access: selectors accept a Session from the caller but MUST
      NOT call session.add(), session.delete(), session.commit(), or
      session.flush().
    - Session ownership: selectors do NOT create or manage their own
      sessions; the caller owns the session and its transaction scope, so a
      selector used inside a mutation sees that transaction's snapshot.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller and perform read-only
        queries.

    Non-goals:
        - BaseSelector does NOT define any query methods.
    """

    def __init__(self, session: Session):
        self.session = session
