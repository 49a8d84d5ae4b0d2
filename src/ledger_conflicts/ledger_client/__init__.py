"""
Budgeting engine API client.

Provides:
- List transactions grouped by account (GET /api/transactions)
- Resolve one conflict (POST /api/transactions-conflict/resolve)
- Resolve a batch of conflicts (POST /api/transactions-conflict/resolve-batch)

Treats engine errors as loud failures; retries are the recovery manager's job.
"""

from .client import (
    LedgerAPIError,
    LedgerClient,
    LedgerConnectionError,
    LedgerError,
    LedgerTimeoutError,
)

__all__ = [
    "LedgerClient",
    "LedgerError",
    "LedgerAPIError",
    "LedgerConnectionError",
    "LedgerTimeoutError",
]
