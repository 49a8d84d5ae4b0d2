"""Conflict detector.

Finds manual transactions that probably duplicate a bank-imported
transaction of the same account.

A pass compares every manual transaction with every bank transaction of
its account, in chunks of ``chunk_size`` manual transactions, yielding to
the scheduler between chunks. ``submit()`` debounces rapid changes: each call
starts a new generation, and a pass whose generation has been superseded
discards its results instead of publishing them.

Errors while scoring a single pair skip that pair. Any other error fails
the pass; it is stored on ``last_error`` and handed to ``on_error``
listeners, never raised to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from ..config import DetectionConfig
from ..matching.similarity import classify_conflict, score_pair
from ..schemas.conflict import ConflictPair
from ..schemas.transaction import Transaction, TransactionSource, flatten_transactions
from .scheduler import EventLoopScheduler, Scheduler

logger = logging.getLogger(__name__)

ConflictListener = Callable[[list[ConflictPair]], None]
ErrorListener = Callable[[BaseException], None]


class DetectionState(str, Enum):
    """Possible states of a detection pass."""

    ANALYZING = "ANALYZING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


@dataclass
class DetectionResult:
    """Result of a detection pass."""

    state: DetectionState
    generation: int
    pairs: list[ConflictPair] = field(default_factory=list)
    manual_count: int = 0
    bank_count: int = 0
    comparisons: int = 0
    pairs_skipped: int = 0
    duration_ms: int = 0
    error: str | None = None

    @property
    def success(self) -> bool:
        """Return True if the pass completed and its pairs were published."""
        return self.state == DetectionState.COMPLETED


def mark_conflicts(
    transactions: Iterable[Transaction], pairs: Iterable[ConflictPair]
) -> list[Transaction]:
    """Return the transactions with has_conflict set for every paired one."""
    conflicted: set[str] = set()
    for pair in pairs:
        conflicted.add(pair.manual.id)
        conflicted.add(pair.imported.id)
    return [tx.with_conflict_flag(tx.id in conflicted) for tx in transactions]


class ConflictDetector:
    """Detects duplicate candidates between manual and bank transactions."""

    def __init__(
        self,
        config: DetectionConfig | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        """Initialize the detector.

        Args:
            config: Detection settings (defaults if None).
            scheduler: Yield point used between chunks.
        """
        self.config = config or DetectionConfig()
        self.scheduler: Scheduler = scheduler or EventLoopScheduler()

        self._generation = 0
        self._running_generation: int | None = None
        self._progress = 0
        self._conflicts: list[ConflictPair] = []
        self._latest: TransactionSource | None = None
        self._task: asyncio.Task | None = None
        self._listeners: list[ConflictListener] = []
        self._error_listeners: list[ErrorListener] = []
        self.last_error: BaseException | None = None

    # === Observation ===

    @property
    def conflicts(self) -> list[ConflictPair]:
        """Pairs published by the most recent completed pass."""
        return list(self._conflicts)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def progress(self) -> int:
        """Progress of the running pass, 0-100."""
        return self._progress

    @property
    def is_analyzing(self) -> bool:
        return self._running_generation is not None

    @property
    def is_pending(self) -> bool:
        """True while a submitted pass is waiting for its debounce or running."""
        return self._task is not None and not self._task.done()

    def subscribe(self, listener: ConflictListener) -> Callable[[], None]:
        """Register a callback receiving every published pair set."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def on_error(self, listener: ErrorListener) -> Callable[[], None]:
        """Register a callback receiving pass-level errors."""
        self._error_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._error_listeners:
                self._error_listeners.remove(listener)

        return unsubscribe

    # === Running passes ===

    async def run_pass(self, transactions: TransactionSource) -> DetectionResult:
        """Run one detection pass immediately, superseding any earlier pass."""
        self._latest = transactions
        self._generation += 1
        generation = self._generation
        self._cancel_task()
        return await self._run(transactions, generation)

    def submit(self, transactions: TransactionSource) -> asyncio.Task:
        """
        Schedule a detection pass after the debounce interval.

        Cancels any pending or running pass. Must be called from a running
        event loop.

        Returns:
            Task resolving to the DetectionResult
        """
        self._latest = transactions
        self._generation += 1
        generation = self._generation
        self._cancel_task()

        self._task = asyncio.get_running_loop().create_task(
            self._debounced(transactions, generation)
        )
        return self._task

    def reanalyze(self) -> asyncio.Task | None:
        """Restart detection immediately with the last submitted transactions."""
        if self._latest is None:
            return None
        self._generation += 1
        generation = self._generation
        self._cancel_task()
        self._task = asyncio.get_running_loop().create_task(self._run(self._latest, generation))
        return self._task

    def cancel(self) -> None:
        """Discard any pending or running pass."""
        self._generation += 1
        self._cancel_task()

    async def wait_idle(self) -> DetectionResult | None:
        """Wait for the current task (and any task replacing it) to finish."""
        result = None
        while self._task is not None and not self._task.done():
            task = self._task
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is None:
                result = task.result()
        return result

    async def aclose(self) -> None:
        self.cancel()
        await self.wait_idle()

    def _cancel_task(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._running_generation = None

    async def _debounced(self, transactions: TransactionSource, generation: int) -> DetectionResult:
        await asyncio.sleep(self.config.debounce_ms / 1000)
        return await self._run(transactions, generation)

    async def _run(self, transactions: TransactionSource, generation: int) -> DetectionResult:
        start_time = time.monotonic()
        result = DetectionResult(state=DetectionState.ANALYZING, generation=generation)
        if generation != self._generation:
            return self._discard(result)

        self._running_generation = generation
        self._progress = 0

        try:
            manual, bank_by_account = self._partition(flatten_transactions(transactions))
            result.manual_count = len(manual)
            result.bank_count = sum(len(v) for v in bank_by_account.values())

            best: dict[str, ConflictPair] = {}
            chunk_size = max(1, self.config.chunk_size)

            for start in range(0, len(manual), chunk_size):
                for tx in manual[start : start + chunk_size]:
                    self._compare(tx, bank_by_account.get(tx.account_id, ()), best, result)

                self._progress = round(min(start + chunk_size, len(manual)) / len(manual) * 100)
                await self.scheduler.pause()

                if generation != self._generation:
                    return self._discard(result)

            if generation != self._generation:
                return self._discard(result)

            # Stable sort: equal scores keep first-encountered order
            pairs = sorted(best.values(), key=lambda p: p.points, reverse=True)
            result.pairs = pairs
            result.state = DetectionState.COMPLETED
            self._progress = 100
            self._publish(pairs)

            logger.info(
                "Detection pass %d: %d manual vs %d bank, %d comparisons, %d conflicts",
                generation,
                result.manual_count,
                result.bank_count,
                result.comparisons,
                len(pairs),
            )

        except Exception as e:
            logger.exception("Detection pass %d failed: %s", generation, e)
            result.state = DetectionState.FAILED
            result.error = str(e)
            self.last_error = e
            self._emit_error(e)

        finally:
            result.duration_ms = int((time.monotonic() - start_time) * 1000)
            if self._running_generation == generation:
                self._running_generation = None

        return result

    @staticmethod
    def _discard(result: DetectionResult) -> DetectionResult:
        result.state = DetectionState.CANCELLED
        logger.debug("Detection pass %d superseded, discarding results", result.generation)
        return result

    @staticmethod
    def _partition(
        transactions: Sequence[Transaction],
    ) -> tuple[list[Transaction], dict[str, list[Transaction]]]:
        """Split into manual transactions and bank transactions by account.

        Manual transactions already linked to an import are left out.
        """
        manual: list[Transaction] = []
        bank_by_account: dict[str, list[Transaction]] = {}
        for tx in transactions:
            if tx.is_bank:
                bank_by_account.setdefault(tx.account_id, []).append(tx)
            elif not tx.imported_id:
                manual.append(tx)
        return manual, bank_by_account

    def _compare(
        self,
        manual_tx: Transaction,
        candidates: Iterable[Transaction],
        best: dict[str, ConflictPair],
        result: DetectionResult,
    ) -> None:
        for candidate in candidates:
            result.comparisons += 1
            try:
                breakdown = score_pair(
                    manual_tx,
                    candidate,
                    amount_threshold=self.config.amount_threshold,
                    date_threshold_days=self.config.date_threshold_days,
                )
                points = breakdown.total
                if points < self.config.acceptance_threshold:
                    continue
                conflict_type = classify_conflict(
                    manual_tx, candidate, date_threshold_days=self.config.date_threshold_days
                )
            except Exception as e:
                result.pairs_skipped += 1
                logger.warning(
                    "Skipping pair %s/%s, scoring failed: %s", manual_tx.id, candidate.id, e
                )
                continue

            current = best.get(manual_tx.id)
            if current is None or points > current.points:
                best[manual_tx.id] = ConflictPair(
                    manual=manual_tx,
                    imported=candidate,
                    points=points,
                    conflict_type=conflict_type,
                    signals=breakdown.signals,
                )

    def _publish(self, pairs: list[ConflictPair]) -> None:
        self._conflicts = list(pairs)
        for listener in list(self._listeners):
            try:
                listener(list(pairs))
            except Exception as e:
                logger.exception("Conflict listener failed: %s", e)

    def _emit_error(self, error: BaseException) -> None:
        for listener in list(self._error_listeners):
            try:
                listener(error)
            except Exception as e:
                logger.exception("Detection error listener failed: %s", e)
