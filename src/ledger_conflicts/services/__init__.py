"""Service layer orchestrating detection, resolution and recovery."""

from .conflicts import ConflictService

__all__ = ["ConflictService"]
