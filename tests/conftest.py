"""Test fixtures and utilities."""

from __future__ import annotations

import pytest

from ledger_conflicts.config import RecoveryConfig, ResolutionConfig
from ledger_conflicts.notifications import Notifier
from ledger_conflicts.recovery import ErrorRecoveryManager
from ledger_conflicts.schemas.transaction import Origin, Transaction


def build_transaction(
    tx_id: str,
    amount: int = -7525,
    date: str = "2024-04-15",
    payee: str = "Grocery Store",
    origin: Origin = Origin.MANUAL,
    account_id: str = "checking",
    **kwargs,
) -> Transaction:
    return Transaction(
        id=tx_id,
        date=date,
        account_id=account_id,
        amount=amount,
        payee=payee,
        origin=origin,
        **kwargs,
    )


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def make_tx():
    """Factory for transactions with sensible grocery-store defaults."""
    return build_transaction


@pytest.fixture
def manual_tx() -> Transaction:
    return build_transaction("m1")


@pytest.fixture
def bank_tx() -> Transaction:
    return build_transaction("b1", origin=Origin.BANK, imported_id="bank-ref-1")


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def recovery_config() -> RecoveryConfig:
    return RecoveryConfig(max_retries=3, retry_delay_ms=1000)


@pytest.fixture
def recovery(recovery_config, notifier, fake_sleep) -> ErrorRecoveryManager:
    return ErrorRecoveryManager(recovery_config, notifier, sleep=fake_sleep)


@pytest.fixture
def resolution_config() -> ResolutionConfig:
    return ResolutionConfig(settle_grace_ms=0)
