"""Conflict resolution coordinator.

Owns the active conflict pairs and resolves them with a two-phase,
optimistic protocol:

1. Apply the tentative resolution locally (status RESOLVING) before any
   network call, so the decision is visible immediately.
2. Persist it through the error recovery manager.
3. Commit (pair RESOLVED and removed from the active list) or revert
   (pair back to UNRESOLVED) depending on the outcome.

A pair that is already RESOLVING ignores further resolve requests until
the first one settles. Batch resolution is all-or-nothing, and a cancelled
resolution is reverted like a failed one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Protocol

from ..config import ResolutionConfig
from ..notifications import Notifier
from ..recovery import ErrorKind, ErrorRecoveryManager
from ..schemas.conflict import ConflictPair, ResolutionAction
from ..state_store import ObservableStore

logger = logging.getLogger(__name__)


class ResolutionError(Exception):
    """Base exception for conflict resolution errors."""

    pass


class ConflictNotFoundError(ResolutionError):
    """No active conflict with the given ID."""

    def __init__(self, pair_id: str):
        self.pair_id = pair_id
        super().__init__(f"Conflict not found: {pair_id}")


class ConflictPersistence(Protocol):
    """Remote endpoint that persists conflict resolutions."""

    async def resolve_conflict(
        self,
        transaction_id: str,
        resolution: ResolutionAction,
        imported_transaction_id: str | None = None,
    ) -> bool: ...

    async def resolve_conflicts_batch(
        self,
        transaction_ids: Sequence[str],
        resolution: ResolutionAction,
        imported_transaction_ids: Sequence[str | None] | None = None,
    ) -> bool: ...


class ConflictResolutionCoordinator:
    """
    Resolves conflict pairs with optimistic updates and rollback.

    Usage:
        coordinator = ConflictResolutionCoordinator(client, recovery_manager, notifier)
        coordinator.set_conflicts(detection_result.pairs)
        await coordinator.resolve_one(pair_id, ResolutionAction.KEEP_MANUAL)
    """

    def __init__(
        self,
        persistence: ConflictPersistence,
        recovery: ErrorRecoveryManager,
        notifier: Notifier | None = None,
        config: ResolutionConfig | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            persistence: Endpoint persisting resolutions.
            recovery: Error recovery manager wrapping persistence calls.
            notifier: Destination for status messages (recovery's notifier if None).
            config: Resolution settings.
        """
        self.persistence = persistence
        self.recovery = recovery
        self.notifier = notifier or recovery.notifier
        self.config = config or ResolutionConfig()

        self.conflicts: ObservableStore[str, ConflictPair] = ObservableStore(
            "conflicts", key=lambda p: p.pair_id
        )
        # Confirmed resolutions, by pair ID
        self.resolved: dict[str, ConflictPair] = {}

        # Fresh detection results for pairs that were in flight when they arrived
        # (None: the pair no longer exists)
        self._deferred: dict[str, ConflictPair | None] = {}
        self._in_flight = 0
        self._is_resolving = False
        self._idle_handle: asyncio.TimerHandle | None = None

    # === State ===

    @property
    def is_resolving(self) -> bool:
        """True while a resolution is in flight or within the settle grace period."""
        return self._is_resolving

    @property
    def unresolved(self) -> list[ConflictPair]:
        return [p for p in self.conflicts.values() if p.is_unresolved]

    def get(self, pair_id: str) -> ConflictPair | None:
        return self.conflicts.get(pair_id)

    def get_conflicts_for_transaction(self, transaction_id: str) -> list[ConflictPair]:
        """All active pairs involving a transaction (manual or imported side)."""
        return [p for p in self.conflicts.values() if p.involves(transaction_id)]

    def subscribe(self, callback: Callable[[list[ConflictPair]], None]) -> Callable[[], None]:
        return self.conflicts.subscribe(callback)

    def set_conflicts(self, pairs: Iterable[ConflictPair]) -> None:
        """
        Replace the active pairs with a new detection result.

        Pairs currently being resolved stay until they settle; if their
        resolution then fails they are replaced by the new detection result
        (or dropped when detection no longer reports them).
        """
        incoming = {p.pair_id: p for p in pairs}
        in_flight = {p.pair_id: p for p in self.conflicts.values() if p.is_resolving}

        for pair_id in in_flight:
            self._deferred[pair_id] = incoming.get(pair_id)

        merged = [in_flight.get(pair_id, pair) for pair_id, pair in incoming.items()]
        merged.extend(p for pair_id, p in in_flight.items() if pair_id not in incoming)
        self.conflicts.replace_all(merged)

    # === Resolution ===

    async def resolve_one(self, pair_id: str, action: ResolutionAction | str) -> bool:
        """
        Resolve one conflict.

        Returns:
            True when the resolution was persisted, False when the pair is
            already being resolved

        Raises:
            ConflictNotFoundError: If no active pair has this ID
            Exception: The persistence failure, after the pair was reverted
        """
        action = ResolutionAction(action)
        pair = self.conflicts.get(pair_id)
        if pair is None:
            raise ConflictNotFoundError(pair_id)
        if pair.is_resolving:
            logger.warning("Conflict %s is already being resolved, ignoring %s", pair_id, action.value)
            return False

        # Tentative state must be visible before the call is issued
        self.conflicts.put(pair.tentatively_resolved(action))
        self._begin()
        self.notifier.info(
            "Resolving conflict...",
            f"{pair.manual.display_payee or pair.manual.id}: {action.value}",
        )

        async def persist() -> None:
            ok = await self.persistence.resolve_conflict(pair.manual.id, action, pair.imported.id)
            if not ok:
                raise ResolutionError(f"Ledger rejected resolution of conflict {pair_id}")

        try:
            await self.recovery.with_recovery(
                persist,
                ErrorKind.CONFLICT,
                {"operation": "resolve_conflict", "pair_id": pair_id, "resolution": action.value},
            )
        except asyncio.CancelledError:
            logger.warning("Resolution of conflict %s cancelled, reverting", pair_id)
            self._rollback([pair_id])
            raise
        except Exception:
            self._rollback([pair_id])
            self.notifier.error("Failed to resolve conflict")
            raise
        else:
            self._commit([pair_id])
            logger.info("Resolved conflict %s with %s", pair_id, action.value)
            self.notifier.success("Conflict resolved")
            return True
        finally:
            self._end()

    async def resolve_all(self, action: ResolutionAction | str) -> bool:
        """
        Resolve every unresolved conflict with one batched call.

        A failure reverts the whole batch.

        Returns:
            True when the batch was persisted, False when nothing was unresolved
        """
        action = ResolutionAction(action)
        batch = self.unresolved
        if not batch:
            return False

        pair_ids = [p.pair_id for p in batch]
        self.conflicts.put_many(p.tentatively_resolved(action) for p in batch)
        self._begin()
        self.notifier.info(f"Resolving {len(batch)} conflicts...")

        async def persist() -> None:
            ok = await self.persistence.resolve_conflicts_batch(
                [p.manual.id for p in batch],
                action,
                [p.imported.id for p in batch],
            )
            if not ok:
                raise ResolutionError(f"Ledger rejected batch resolution of {len(batch)} conflicts")

        try:
            await self.recovery.with_recovery(
                persist,
                ErrorKind.CONFLICT,
                {"operation": "resolve_conflicts_batch", "pair_ids": pair_ids, "resolution": action.value},
            )
        except asyncio.CancelledError:
            logger.warning("Batch resolution of %d conflicts cancelled, reverting", len(pair_ids))
            self._rollback(pair_ids)
            raise
        except Exception:
            self._rollback(pair_ids)
            self.notifier.error("Failed to resolve conflicts")
            raise
        else:
            self._commit(pair_ids)
            logger.info("Resolved %d conflicts with %s", len(pair_ids), action.value)
            self.notifier.success(f"Resolved {len(pair_ids)} conflicts")
            return True
        finally:
            self._end()

    def _commit(self, pair_ids: Iterable[str]) -> None:
        confirmed = []
        for pair_id in pair_ids:
            self._deferred.pop(pair_id, None)
            pair = self.conflicts.get(pair_id)
            if pair is not None and pair.is_resolving:
                confirmed.append(pair_id)
                self.resolved[pair_id] = pair.confirmed()
        self.conflicts.remove_many(confirmed)

    def _rollback(self, pair_ids: Iterable[str]) -> None:
        for pair_id in pair_ids:
            if pair_id in self._deferred:
                replacement = self._deferred.pop(pair_id)
                if replacement is None:
                    self.conflicts.remove(pair_id)
                else:
                    self.conflicts.put(replacement.reverted())
                continue

            pair = self.conflicts.get(pair_id)
            if pair is not None and pair.is_resolving:
                self.conflicts.put(pair.reverted())

    def _begin(self) -> None:
        self._in_flight += 1
        self._is_resolving = True
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def _end(self) -> None:
        self._in_flight -= 1
        if self._in_flight > 0:
            return
        grace = self.config.settle_grace_ms / 1000
        if grace <= 0:
            self._set_idle()
        else:
            self._idle_handle = asyncio.get_running_loop().call_later(grace, self._set_idle)

    def _set_idle(self) -> None:
        self._idle_handle = None
        if self._in_flight == 0:
            self._is_resolving = False

    def close(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None
