"""Optimistic resolution of detected conflicts."""

from ledger_conflicts.resolution.coordinator import (
    ConflictNotFoundError,
    ConflictPersistence,
    ConflictResolutionCoordinator,
    ResolutionError,
)

__all__ = [
    "ConflictNotFoundError",
    "ConflictPersistence",
    "ConflictResolutionCoordinator",
    "ResolutionError",
]
