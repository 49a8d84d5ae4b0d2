"""
Bank import conflict detection and resolution.

Compares manually entered ledger transactions against transactions imported
from a bank feed, scores likely duplicates, and resolves them with optimistic
updates, rollback, and bounded retry/backoff recovery.
"""

__version__ = "0.1.0"
