"""
Error recovery.

Classifies operational failures into error kinds, selects a recovery
strategy per kind, and runs bounded retries with exponential backoff.
"""

from .classify import ErrorKind, classify_exception, get_error_message, user_friendly_message
from .manager import (
    ErrorRecoveryManager,
    RecoveryError,
    RecoveryState,
    RecoveryStrategy,
    determine_recovery_strategy,
)

__all__ = [
    "ErrorKind",
    "ErrorRecoveryManager",
    "RecoveryError",
    "RecoveryState",
    "RecoveryStrategy",
    "classify_exception",
    "determine_recovery_strategy",
    "get_error_message",
    "user_friendly_message",
]
