"""
ledger_services -- request-level orchestration over the ledger kernel.

Permission gate, idempotency guard, transaction orchestrator and commit
fanout, wired together by ``LedgerOperations``.
"""

from ledger_services.operations import LedgerOperations

__all__ = ["LedgerOperations"]
