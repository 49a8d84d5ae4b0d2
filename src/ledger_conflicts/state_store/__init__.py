"""
In-memory state containers.

Provides:
- ObservableStore: keyed collection with explicit mutation operations and
  change subscriptions
"""

from .observable import ObservableStore

__all__ = ["ObservableStore"]
