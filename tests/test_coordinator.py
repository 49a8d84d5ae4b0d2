"""Tests for optimistic conflict resolution."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from ledger_conflicts.config import ResolutionConfig
from ledger_conflicts.ledger_client import LedgerAPIError, LedgerConnectionError
from ledger_conflicts.notifications import Severity
from ledger_conflicts.recovery import ErrorKind, RecoveryState
from ledger_conflicts.resolution import (
    ConflictNotFoundError,
    ConflictResolutionCoordinator,
    ResolutionError,
)
from ledger_conflicts.schemas.conflict import ConflictPair, ResolutionAction, ResolutionStatus
from ledger_conflicts.schemas.transaction import Origin


@pytest.fixture
def persistence() -> AsyncMock:
    client = AsyncMock()
    client.resolve_conflict.return_value = True
    client.resolve_conflicts_batch.return_value = True
    return client


@pytest.fixture
def make_pair(make_tx):
    def _make_pair(manual_id: str, imported_id: str, points: float = 100.0) -> ConflictPair:
        return ConflictPair(
            manual=make_tx(manual_id),
            imported=make_tx(imported_id, origin=Origin.BANK),
            points=points,
        )

    return _make_pair


@pytest.fixture
def coordinator(persistence, recovery, notifier, resolution_config, make_pair):
    coordinator = ConflictResolutionCoordinator(persistence, recovery, notifier, resolution_config)
    coordinator.set_conflicts([make_pair("m1", "b1"), make_pair("m2", "b2", 85.0)])
    return coordinator


class TestConflictState:
    """Tests for the active conflict collection."""

    def test_set_conflicts(self, coordinator):
        assert [p.pair_id for p in coordinator.conflicts.values()] == ["m1", "m2"]
        assert all(p.status == ResolutionStatus.UNRESOLVED for p in coordinator.unresolved)

    def test_conflicts_for_transaction(self, coordinator):
        assert [p.pair_id for p in coordinator.get_conflicts_for_transaction("b2")] == ["m2"]
        assert [p.pair_id for p in coordinator.get_conflicts_for_transaction("m1")] == ["m1"]
        assert coordinator.get_conflicts_for_transaction("nope") == []

    def test_subscribers_notified(self, coordinator, make_pair):
        snapshots = []
        coordinator.subscribe(snapshots.append)

        coordinator.set_conflicts([make_pair("m3", "b3")])

        assert [[p.pair_id for p in s] for s in snapshots] == [["m3"]]


class TestResolveOne:
    """Tests for single conflict resolution."""

    @pytest.mark.asyncio
    async def test_successful_resolution(self, coordinator, persistence, notifier):
        assert await coordinator.resolve_one("m1", ResolutionAction.KEEP_MANUAL) is True

        persistence.resolve_conflict.assert_awaited_once_with(
            "m1", ResolutionAction.KEEP_MANUAL, "b1"
        )
        assert coordinator.get("m1") is None
        assert coordinator.resolved["m1"].status == ResolutionStatus.RESOLVED
        assert coordinator.resolved["m1"].resolution == ResolutionAction.KEEP_MANUAL
        assert notifier.severities() == [Severity.INFO, Severity.SUCCESS]
        assert coordinator.is_resolving is False

    @pytest.mark.asyncio
    async def test_tentative_state_visible_during_call(self, coordinator, persistence):
        seen = {}

        async def resolve_conflict(transaction_id, resolution, imported_transaction_id=None):
            pair = coordinator.get(transaction_id)
            seen["status"] = pair.status
            seen["resolution"] = pair.resolution
            seen["is_resolving"] = coordinator.is_resolving
            return True

        persistence.resolve_conflict.side_effect = resolve_conflict

        await coordinator.resolve_one("m1", "keep-bank")

        assert seen == {
            "status": ResolutionStatus.RESOLVING,
            "resolution": ResolutionAction.KEEP_BANK,
            "is_resolving": True,
        }

    @pytest.mark.asyncio
    async def test_failed_resolution_rolls_back(
        self, coordinator, persistence, notifier, recovery, fake_sleep
    ):
        persistence.resolve_conflict.side_effect = LedgerAPIError(409, "Already resolved")

        with pytest.raises(LedgerAPIError):
            await coordinator.resolve_one("m1", ResolutionAction.KEEP_MANUAL)

        pair = coordinator.get("m1")
        assert pair.status == ResolutionStatus.UNRESOLVED
        assert pair.resolution is None
        assert coordinator.is_resolving is False

        # reported as a conflict error and never retried
        await recovery.drain()
        [error] = recovery.errors.values()
        assert error.kind == ErrorKind.CONFLICT
        assert error.retry_count == 0
        assert error.state == RecoveryState.REPORTED
        assert persistence.resolve_conflict.await_count == 1
        assert fake_sleep.calls == []
        assert notifier.history[-1].severity == Severity.ERROR

    @pytest.mark.asyncio
    async def test_network_failure_not_retried_automatically(
        self, coordinator, persistence, recovery
    ):
        persistence.resolve_conflict.side_effect = LedgerConnectionError("connection refused")

        with pytest.raises(LedgerConnectionError):
            await coordinator.resolve_one("m2", ResolutionAction.KEEP_BOTH)
        await recovery.drain()

        assert persistence.resolve_conflict.await_count == 1
        assert coordinator.get("m2").is_unresolved

    @pytest.mark.asyncio
    async def test_rejected_resolution_rolls_back(self, coordinator, persistence):
        persistence.resolve_conflict.return_value = False

        with pytest.raises(ResolutionError):
            await coordinator.resolve_one("m1", ResolutionAction.LINK)

        assert coordinator.get("m1").is_unresolved

    @pytest.mark.asyncio
    async def test_unknown_pair(self, coordinator, persistence):
        with pytest.raises(ConflictNotFoundError):
            await coordinator.resolve_one("missing", ResolutionAction.KEEP_BOTH)
        persistence.resolve_conflict.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_action(self, coordinator):
        with pytest.raises(ValueError):
            await coordinator.resolve_one("m1", "delete-everything")
        assert coordinator.get("m1").is_unresolved

    @pytest.mark.asyncio
    async def test_concurrent_resolution_ignored(self, coordinator, persistence):
        release = asyncio.Event()

        async def slow_resolve(*args, **kwargs):
            await release.wait()
            return True

        persistence.resolve_conflict.side_effect = slow_resolve

        first = asyncio.ensure_future(coordinator.resolve_one("m1", ResolutionAction.KEEP_MANUAL))
        await asyncio.sleep(0)

        assert await coordinator.resolve_one("m1", ResolutionAction.KEEP_BANK) is False

        release.set()
        assert await first is True
        assert persistence.resolve_conflict.await_count == 1
        assert coordinator.resolved["m1"].resolution == ResolutionAction.KEEP_MANUAL

    @pytest.mark.asyncio
    async def test_cancelled_resolution_rolls_back(self, coordinator, persistence):
        started = asyncio.Event()

        async def hanging_resolve(*args, **kwargs):
            started.set()
            await asyncio.sleep(10)
            return True

        persistence.resolve_conflict.side_effect = hanging_resolve

        task = asyncio.ensure_future(coordinator.resolve_one("m1", ResolutionAction.KEEP_MANUAL))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert coordinator.get("m1").status == ResolutionStatus.UNRESOLVED
        assert coordinator.is_resolving is False

        persistence.resolve_conflict.side_effect = None
        assert await coordinator.resolve_one("m1", ResolutionAction.KEEP_BANK) is True

    @pytest.mark.asyncio
    async def test_is_resolving_clears_after_grace(self, persistence, recovery, make_pair):
        coordinator = ConflictResolutionCoordinator(
            persistence, recovery, config=ResolutionConfig(settle_grace_ms=20)
        )
        coordinator.set_conflicts([make_pair("m1", "b1")])

        await coordinator.resolve_one("m1", ResolutionAction.KEEP_BOTH)
        assert coordinator.is_resolving is True

        await asyncio.sleep(0.1)
        assert coordinator.is_resolving is False


class TestDetectionDuringResolution:
    """Tests for fresh detection results arriving mid-resolution."""

    @pytest.mark.asyncio
    async def test_in_flight_pair_kept(self, coordinator, persistence, make_pair):
        release = asyncio.Event()

        async def slow_resolve(*args, **kwargs):
            await release.wait()
            return True

        persistence.resolve_conflict.side_effect = slow_resolve
        task = asyncio.ensure_future(coordinator.resolve_one("m1", ResolutionAction.KEEP_MANUAL))
        await asyncio.sleep(0)

        coordinator.set_conflicts([make_pair("m2", "b2")])
        assert coordinator.get("m1").is_resolving

        release.set()
        await task
        assert [p.pair_id for p in coordinator.conflicts.values()] == ["m2"]

    @pytest.mark.asyncio
    async def test_vanished_pair_dropped_on_failure(self, coordinator, persistence, make_pair):
        release = asyncio.Event()

        async def failing_resolve(*args, **kwargs):
            await release.wait()
            raise LedgerAPIError(409, "Conflict")

        persistence.resolve_conflict.side_effect = failing_resolve
        task = asyncio.ensure_future(coordinator.resolve_one("m1", ResolutionAction.KEEP_MANUAL))
        await asyncio.sleep(0)

        coordinator.set_conflicts([make_pair("m2", "b2")])
        release.set()

        with pytest.raises(LedgerAPIError):
            await task
        assert coordinator.get("m1") is None
        assert all(p.is_unresolved for p in coordinator.conflicts.values())

    @pytest.mark.asyncio
    async def test_redetected_pair_replaced_on_failure(self, coordinator, persistence, make_pair):
        release = asyncio.Event()

        async def failing_resolve(*args, **kwargs):
            await release.wait()
            raise LedgerAPIError(409, "Conflict")

        persistence.resolve_conflict.side_effect = failing_resolve
        task = asyncio.ensure_future(coordinator.resolve_one("m1", ResolutionAction.KEEP_MANUAL))
        await asyncio.sleep(0)

        coordinator.set_conflicts([make_pair("m1", "b9", 90.0)])
        release.set()

        with pytest.raises(LedgerAPIError):
            await task
        pair = coordinator.get("m1")
        assert pair.is_unresolved
        assert pair.imported.id == "b9"


class TestResolveAll:
    """Tests for batch resolution."""

    @pytest.mark.asyncio
    async def test_batch_success(self, coordinator, persistence, notifier):
        assert await coordinator.resolve_all(ResolutionAction.KEEP_BOTH) is True

        persistence.resolve_conflicts_batch.assert_awaited_once_with(
            ["m1", "m2"], ResolutionAction.KEEP_BOTH, ["b1", "b2"]
        )
        assert len(coordinator.conflicts) == 0
        assert set(coordinator.resolved) == {"m1", "m2"}
        assert notifier.severities() == [Severity.INFO, Severity.SUCCESS]

    @pytest.mark.asyncio
    async def test_batch_failure_reverts_all(self, coordinator, persistence, recovery):
        persistence.resolve_conflicts_batch.side_effect = LedgerAPIError(500, "Server error")

        with pytest.raises(LedgerAPIError):
            await coordinator.resolve_all(ResolutionAction.KEEP_BANK)

        pairs = coordinator.conflicts.values()
        assert [p.pair_id for p in pairs] == ["m1", "m2"]
        assert all(p.is_unresolved and p.resolution is None for p in pairs)
        assert recovery.errors.values()[0].kind == ErrorKind.CONFLICT

    @pytest.mark.asyncio
    async def test_cancelled_batch_reverts_all(self, coordinator, persistence):
        started = asyncio.Event()

        async def hanging_batch(*args, **kwargs):
            started.set()
            await asyncio.sleep(10)
            return True

        persistence.resolve_conflicts_batch.side_effect = hanging_batch

        task = asyncio.ensure_future(coordinator.resolve_all(ResolutionAction.KEEP_BOTH))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert [p.status for p in coordinator.conflicts.values()] == [
            ResolutionStatus.UNRESOLVED,
            ResolutionStatus.UNRESOLVED,
        ]
        assert coordinator.resolved == {}

    @pytest.mark.asyncio
    async def test_nothing_to_resolve(self, persistence, recovery):
        coordinator = ConflictResolutionCoordinator(persistence, recovery)

        assert await coordinator.resolve_all(ResolutionAction.KEEP_BOTH) is False
        persistence.resolve_conflicts_batch.assert_not_awaited()
