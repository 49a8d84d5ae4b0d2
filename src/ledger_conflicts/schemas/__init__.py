"""
Data schemas for transactions and conflict pairs.
"""

from .conflict import ConflictPair, ConflictType, ResolutionAction, ResolutionStatus
from .transaction import Origin, Transaction, flatten_transactions, parse_date

__all__ = [
    "ConflictPair",
    "ConflictType",
    "Origin",
    "ResolutionAction",
    "ResolutionStatus",
    "Transaction",
    "flatten_transactions",
    "parse_date",
]
