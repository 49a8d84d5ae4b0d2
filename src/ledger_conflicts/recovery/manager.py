"""Error recovery manager.

Classifies failed operations, chooses a recovery strategy per error kind,
runs bounded retries with exponential backoff and keeps the user informed.

Error lifecycle:
    REPORTED -> RECOVERING -> RECOVERED (entry removed)
                           -> EXHAUSTED (retry_count == max_retries, entry kept)

Errors whose strategy is MANUAL or REAUTH stay REPORTED until the user acts
(retry_manually / clear_error).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeVar

from ..config import RecoveryConfig
from ..notifications import Notifier
from ..state_store import ObservableStore
from .classify import ErrorKind, classify_exception, get_error_message, user_friendly_message

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[Any]]


class RecoveryStrategy(str, Enum):
    """How a failed operation is recovered."""

    RETRY = "retry"  # Wait, then re-run the operation
    RECONNECT = "reconnect"  # Re-establish the connection, then re-run
    REFRESH = "refresh"  # Refresh data, then re-run
    REAUTH = "reauth"  # User must authenticate again
    MANUAL = "manual"  # Needs a human decision, no automatic recovery
    IGNORE = "ignore"  # Safe to drop


AUTOMATIC_STRATEGIES = frozenset(
    {RecoveryStrategy.RETRY, RecoveryStrategy.RECONNECT, RecoveryStrategy.REFRESH}
)


class RecoveryState(str, Enum):
    """Possible states of a recovery error."""

    REPORTED = "reported"
    RECOVERING = "recovering"
    RECOVERED = "recovered"
    EXHAUSTED = "exhausted"


@dataclass(eq=False)
class RecoveryError:
    """A failed operation and its retry history."""

    kind: ErrorKind
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    retry_count: int = 0
    recovery_attempted: bool = False
    state: RecoveryState = RecoveryState.REPORTED
    operation: Operation | None = field(default=None, repr=False)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def is_terminal(self) -> bool:
        return self.state in (RecoveryState.RECOVERED, RecoveryState.EXHAUSTED)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "context": {k: repr(v) for k, v in self.context.items()},
            "retry_count": self.retry_count,
            "recovery_attempted": self.recovery_attempted,
            "state": self.state.value,
        }


def determine_recovery_strategy(error: RecoveryError, max_retries: int = 3) -> RecoveryStrategy:
    """
    Choose the recovery strategy for an error.

    Evaluated on the number of attempts already made:
    - network: retry while retries remain, then reconnect
    - sync_failure: retry for up to 2 attempts, then manual
    - validation: manual (never retried)
    - permission: reauth
    - timeout: retry for up to 3 attempts, then manual
    - conflict: manual (never retried)
    - unknown: manual
    """
    count = error.retry_count

    if error.kind == ErrorKind.NETWORK:
        return RecoveryStrategy.RETRY if count < max_retries else RecoveryStrategy.RECONNECT
    if error.kind == ErrorKind.SYNC_FAILURE:
        return RecoveryStrategy.RETRY if count < min(2, max_retries) else RecoveryStrategy.MANUAL
    if error.kind == ErrorKind.PERMISSION:
        return RecoveryStrategy.REAUTH
    if error.kind == ErrorKind.TIMEOUT:
        return RecoveryStrategy.RETRY if count < min(3, max_retries) else RecoveryStrategy.MANUAL
    # validation, conflict and unknown errors need a human decision
    return RecoveryStrategy.MANUAL


class ErrorRecoveryManager:
    """
    Reports, classifies and recovers failed operations.

    Usage:
        manager = ErrorRecoveryManager(config.recovery, notifier)
        await manager.with_recovery(lambda: client.resolve_conflict(...), ErrorKind.CONFLICT)
    """

    def __init__(
        self,
        config: RecoveryConfig | None = None,
        notifier: Notifier | None = None,
        on_recovery_success: Callable[[RecoveryError], None] | None = None,
        on_recovery_failure: Callable[[RecoveryError], None] | None = None,
        on_reconnect: Callable[[RecoveryError], Awaitable[None]] | None = None,
        on_refresh: Callable[[RecoveryError], Awaitable[None]] | None = None,
        on_reauth: Callable[[RecoveryError], Awaitable[None]] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the recovery manager.

        Args:
            config: Recovery settings (defaults if None)
            notifier: Destination for user-facing messages
            on_recovery_success: Called when an error is recovered
            on_recovery_failure: Called when an error is exhausted
            on_reconnect: Re-establishes the connection (reconnect strategy)
            on_refresh: Refreshes stale data (refresh strategy)
            on_reauth: Prompts for re-authentication (reauth strategy)
            sleep: Awaitable delay function (seconds)
        """
        self.config = config or RecoveryConfig()
        self.notifier = notifier or Notifier()
        self.on_recovery_success = on_recovery_success
        self.on_recovery_failure = on_recovery_failure
        self.on_reconnect = on_reconnect
        self.on_refresh = on_refresh
        self.on_reauth = on_reauth
        self._sleep = sleep

        self.errors: ObservableStore[str, RecoveryError] = ObservableStore(
            "recovery_errors", key=lambda e: e.id
        )
        self.current_recovery_error: RecoveryError | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def max_retries(self) -> int:
        return self.config.max_retries

    @property
    def is_recovering(self) -> bool:
        return self.current_recovery_error is not None

    def subscribe(self, callback: Callable[[list[RecoveryError]], None]) -> Callable[[], None]:
        return self.errors.subscribe(callback)

    # === Reporting ===

    def report_error(
        self,
        kind: ErrorKind | str,
        message: str,
        context: dict[str, Any] | None = None,
        operation: Operation | None = None,
        auto_recover: bool = True,
    ) -> RecoveryError:
        """
        Record a failed operation and tell the user.

        Network errors are recovered automatically in the background when
        auto_retry_network_issues is enabled and auto_recover is True.

        Args:
            kind: Error kind
            message: Technical error message
            context: Free-form context (IDs, operation name, ...)
            operation: Async callable re-run by retry strategies
            auto_recover: Allow automatic recovery for this error

        Returns:
            The recorded error
        """
        error = RecoveryError(
            kind=ErrorKind(kind),
            message=message,
            context=dict(context or {}),
            operation=operation,
        )

        if self.config.log_errors:
            logger.error("[Error Recovery] %s: %s %s", error.kind.value, message, error.context)

        self.errors.put(error)
        self.notifier.error(user_friendly_message(error.kind, error.retry_count, self.max_retries))

        if auto_recover and self.config.auto_retry_network_issues and error.kind == ErrorKind.NETWORK:
            self._schedule(self.attempt_recovery(error), error)

        return error

    def report_exception(
        self,
        exc: BaseException,
        context: dict[str, Any] | None = None,
        operation: Operation | None = None,
        kind: ErrorKind | None = None,
        auto_recover: bool = True,
    ) -> RecoveryError:
        """Classify an exception and report it."""
        error_kind = kind or classify_exception(exc)
        return self.report_error(
            error_kind,
            get_error_message(exc),
            {**(context or {}), "original_error": exc},
            operation=operation,
            auto_recover=auto_recover,
        )

    async def with_recovery(
        self,
        operation: Callable[[], Awaitable[T]],
        kind: ErrorKind | None = None,
        context: dict[str, Any] | None = None,
    ) -> T:
        """
        Run an operation and report its failure.

        The exception is always re-raised so the caller's own rollback runs;
        no automatic retry is scheduled for it.

        Args:
            operation: Async callable to run
            kind: Error kind to record (classified from the exception if None)
            context: Free-form context stored with the error
        """
        try:
            return await operation()
        except Exception as exc:
            self.report_exception(exc, context=context, kind=kind, auto_recover=False)
            raise

    # === Recovery ===

    async def attempt_recovery(self, error: RecoveryError) -> bool:
        """
        Recover an error according to its strategy.

        Retries re-run the error's operation (if any). A failed attempt is
        rescheduled with exponential backoff until max_retries attempts have
        been made, after which the error is EXHAUSTED and kept.

        Returns:
            True if the error was recovered
        """
        if error.state == RecoveryState.RECOVERED:
            return True
        if error.state in (RecoveryState.EXHAUSTED, RecoveryState.RECOVERING):
            logger.debug("Skipping recovery of %s error %s (%s)", error.kind.value, error.id, error.state.value)
            return False

        delay_ms = self.config.retry_delay_ms

        while True:
            if error.retry_count >= self.max_retries:
                self._exhaust(error)
                return False

            strategy = determine_recovery_strategy(error, self.max_retries)

            if strategy == RecoveryStrategy.IGNORE:
                self._recovered(error)
                return True
            if strategy == RecoveryStrategy.REAUTH:
                error.recovery_attempted = True
                self.errors.put(error)
                self.notifier.info("Please log in again to continue.")
                if self.on_reauth is not None:
                    await self.on_reauth(error)
                return False
            if strategy == RecoveryStrategy.MANUAL:
                self.notifier.info("This issue requires your attention. Please check the error details.")
                return False

            error.retry_count += 1
            error.recovery_attempted = True
            error.state = RecoveryState.RECOVERING
            self.errors.put(error)
            self.current_recovery_error = error
            self.notifier.info(
                f"Attempting to recover ({error.retry_count}/{self.max_retries})..."
            )

            try:
                await self._run_strategy(strategy, error, delay_ms)
            except asyncio.CancelledError:
                error.state = RecoveryState.REPORTED
                self.errors.put(error)
                raise
            except Exception as exc:
                logger.warning(
                    "Recovery attempt %d/%d for %s error failed: %s",
                    error.retry_count,
                    self.max_retries,
                    error.kind.value,
                    exc,
                )
                error.message = get_error_message(exc)
                error.state = RecoveryState.REPORTED
                self.errors.put(error)
                # Back off exponentially before the next attempt
                delay_ms = self.config.retry_delay_ms * 2**error.retry_count
                continue
            finally:
                self.current_recovery_error = None

            self._recovered(error)
            return True

    async def retry_manually(self, error: RecoveryError) -> bool:
        """
        Run one user-triggered attempt for a retained error.

        Uses the error's current strategy (reconnect for an exhausted network
        error) and never increments retry_count.

        Returns:
            True if the error was recovered
        """
        if error.id not in self.errors or error.state == RecoveryState.RECOVERING:
            return False

        strategy = determine_recovery_strategy(error, self.max_retries)
        previous_state = error.state
        error.recovery_attempted = True
        error.state = RecoveryState.RECOVERING
        self.errors.put(error)
        self.current_recovery_error = error
        self.notifier.info("Retrying operation...")

        try:
            if strategy == RecoveryStrategy.REAUTH:
                if self.on_reauth is not None:
                    await self.on_reauth(error)
                await self._reinvoke(error)
            elif strategy in (RecoveryStrategy.RETRY, RecoveryStrategy.MANUAL):
                await self._reinvoke(error)
            elif strategy != RecoveryStrategy.IGNORE:
                await self._run_strategy(strategy, error, self.config.retry_delay_ms)
        except Exception as exc:
            logger.warning("Manual retry of %s error failed: %s", error.kind.value, exc)
            error.message = get_error_message(exc)
            error.state = previous_state
            self.errors.put(error)
            self.notifier.error(
                user_friendly_message(error.kind, error.retry_count, self.max_retries)
            )
            return False
        finally:
            self.current_recovery_error = None

        self._recovered(error)
        return True

    async def recover_pending(self) -> int:
        """
        Attempt recovery for every error not yet attempted whose strategy is
        automatic (retry, reconnect, refresh).

        Returns:
            Number of errors recovered
        """
        pending = [
            e
            for e in self.errors.values()
            if not e.recovery_attempted
            and determine_recovery_strategy(e, self.max_retries) in AUTOMATIC_STRATEGIES
        ]
        recovered = 0
        for error in pending:
            if await self.attempt_recovery(error):
                recovered += 1
        return recovered

    async def _run_strategy(
        self, strategy: RecoveryStrategy, error: RecoveryError, delay_ms: float
    ) -> None:
        if strategy == RecoveryStrategy.RETRY:
            await self._sleep(delay_ms / 1000)
        elif strategy == RecoveryStrategy.RECONNECT:
            await self._sleep(self.config.retry_delay_ms * self.config.reconnect_delay_multiplier / 1000)
            if self.on_reconnect is not None:
                await self.on_reconnect(error)
        elif strategy == RecoveryStrategy.REFRESH:
            await self._sleep(self.config.retry_delay_ms * self.config.reconnect_delay_multiplier / 1000)
            if self.on_refresh is not None:
                await self.on_refresh(error)
        await self._reinvoke(error)

    async def _reinvoke(self, error: RecoveryError) -> None:
        if error.operation is not None:
            await error.operation()

    def _recovered(self, error: RecoveryError) -> None:
        error.state = RecoveryState.RECOVERED
        self.errors.remove(error.id)
        logger.info("Recovered from %s error after %d attempt(s)", error.kind.value, error.retry_count)
        if self.on_recovery_success is not None:
            self.on_recovery_success(error)
        self.notifier.success("Recovery successful!")

    def _exhaust(self, error: RecoveryError) -> None:
        error.state = RecoveryState.EXHAUSTED
        self.errors.put(error)
        logger.error(
            "Recovery of %s error exhausted after %d attempts: %s",
            error.kind.value,
            error.retry_count,
            error.message,
        )
        if self.on_recovery_failure is not None:
            self.on_recovery_failure(error)
        self.notifier.error(
            f"Recovery failed after {self.max_retries} attempts. Please try again later."
        )

    # === Housekeeping ===

    def clear_error(self, error: RecoveryError | str) -> None:
        error_id = error if isinstance(error, str) else error.id
        self.errors.remove(error_id)

    def clear_errors(self) -> None:
        self.errors.clear()

    def _schedule(self, coro: Coroutine[Any, Any, bool], error: RecoveryError) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning(
                "No running event loop, automatic recovery of %s error skipped", error.kind.value
            )
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait until all scheduled recovery tasks have finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel scheduled recovery tasks."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
