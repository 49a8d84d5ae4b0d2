"""Conflict orchestration service.

Wires the conflict detector, the resolution coordinator and the error
recovery manager to a transaction source and the budgeting engine:

- Transaction changes are debounced into detection passes
- Published pairs replace the coordinator's active conflicts
- Resolutions are persisted through the ledger client with recovery
- Ledger fetch failures are reported for (automatic) recovery
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from ..config import Config
from ..detection import ConflictDetector, DetectionResult, Scheduler, mark_conflicts
from ..ledger_client import LedgerConnectionError, LedgerError
from ..notifications import Notifier
from ..recovery import ErrorRecoveryManager, RecoveryError
from ..resolution import ConflictResolutionCoordinator
from ..schemas.conflict import ConflictPair, ResolutionAction
from ..schemas.transaction import Transaction, TransactionSource, flatten_transactions

if TYPE_CHECKING:
    from ..ledger_client import LedgerClient

logger = logging.getLogger(__name__)


class ConflictService:
    """Keeps the conflict list in sync with a changing transaction set.

    Usage:
        async with LedgerClient(config.ledger.base_url, config.ledger.token) as client:
            service = ConflictService(client, config)
            await service.refresh_from_ledger()
            await service.resolve_one(pair_id, ResolutionAction.KEEP_MANUAL)
            await service.aclose()
    """

    def __init__(
        self,
        client: LedgerClient,
        config: Config | None = None,
        notifier: Notifier | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            client: Ledger client used for fetching and persistence.
            config: Application configuration (defaults if None).
            notifier: Destination for user-facing messages.
            scheduler: Yield point for detection passes.
        """
        self.client = client
        self.config = config or Config()
        self.notifier = notifier or Notifier()

        self.recovery = ErrorRecoveryManager(
            self.config.recovery,
            self.notifier,
            on_reconnect=self._reconnect,
            on_refresh=self._refresh,
        )
        self.detector = ConflictDetector(self.config.detection, scheduler)
        self.coordinator = ConflictResolutionCoordinator(
            client, self.recovery, self.notifier, self.config.resolution
        )

        self._transactions: TransactionSource = []
        self._account_id: str | None = None
        self._unsubscribe = [
            self.detector.subscribe(self._on_conflicts),
            self.detector.on_error(self._on_detection_error),
        ]

    # === State ===

    @property
    def conflicts(self) -> list[ConflictPair]:
        return self.coordinator.conflicts.values()

    @property
    def is_analyzing(self) -> bool:
        return self.detector.is_analyzing

    @property
    def is_resolving(self) -> bool:
        return self.coordinator.is_resolving

    def marked_transactions(self) -> list[Transaction]:
        """Current transactions with has_conflict set for every active pair member."""
        return mark_conflicts(flatten_transactions(self._transactions), self.conflicts)

    # === Detection ===

    def update_transactions(self, transactions: TransactionSource) -> asyncio.Task:
        """Record a changed transaction set; detection runs after the debounce."""
        self._transactions = transactions
        return self.detector.submit(transactions)

    async def detect(self, transactions: TransactionSource) -> DetectionResult:
        """Run detection immediately on a transaction set."""
        self._transactions = transactions
        return await self.detector.run_pass(transactions)

    def reanalyze(self) -> asyncio.Task | None:
        return self.detector.reanalyze()

    async def refresh_from_ledger(self, account_id: str | None = None) -> DetectionResult:
        """
        Fetch transactions from the ledger and run detection on them.

        A failed fetch is reported to the recovery manager (network errors
        are retried in the background) and re-raised.
        """
        self._account_id = account_id

        async def fetch_and_detect() -> DetectionResult:
            transactions = await self.client.list_transactions(account_id)
            return await self.detect(transactions)

        try:
            return await fetch_and_detect()
        except LedgerError as e:
            self.recovery.report_exception(
                e,
                context={"operation": "list_transactions", "account_id": account_id},
                operation=fetch_and_detect,
            )
            raise

    # === Resolution ===

    async def resolve_one(self, pair_id: str, action: ResolutionAction | str) -> bool:
        return await self.coordinator.resolve_one(pair_id, action)

    async def resolve_all(self, action: ResolutionAction | str) -> bool:
        return await self.coordinator.resolve_all(action)

    # === Callbacks ===

    def _on_conflicts(self, pairs: list[ConflictPair]) -> None:
        self.coordinator.set_conflicts(pairs)
        if pairs:
            self.notifier.warning(
                f"{len(pairs)} potential duplicate transactions found",
                "Review the conflicts before reconciling",
            )

    def _on_detection_error(self, error: BaseException) -> None:
        self.notifier.error("Conflict detection failed", str(error))

    async def _reconnect(self, error: RecoveryError) -> None:
        if not await self.client.test_connection():
            raise LedgerConnectionError("Ledger is still unreachable")

    async def _refresh(self, error: RecoveryError) -> None:
        transactions = await self.client.list_transactions(self._account_id)
        self._transactions = transactions

    async def aclose(self) -> None:
        """Stop detection and recovery; the client is left open."""
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        await self.detector.aclose()
        await self.recovery.aclose()
        self.coordinator.close()
