"""
Ledger Kernel - inventory and financial-ledger reconciliation core.

Keeps stock lots, payables, receivables and refunds consistent under
concurrent requests, partial failures, and retries:
- Idempotent mutations keyed by caller-supplied idempotency keys
- Conditional (optimistic) balance updates, never clamped
- Bounded, retried transactions with post-commit side effects only
- A single status derivation engine for every ledger state
"""

__version__ = "0.1.0"
