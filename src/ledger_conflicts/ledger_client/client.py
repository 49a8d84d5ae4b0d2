"""
Budgeting engine API client implementation.
"""

import json
import logging
from collections.abc import Sequence

import httpx

from ..schemas.conflict import ResolutionAction
from ..schemas.transaction import Transaction

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base exception for ledger client errors."""

    pass


class LedgerAPIError(LedgerError):
    """API returned an error response."""

    def __init__(
        self,
        status_code: int,
        message: str,
        response_body: str | None = None,
        errors: dict | None = None,
    ):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        self.errors = errors or {}
        super().__init__(f"Ledger API error {status_code}: {self.detail or message}")

    @property
    def detail(self) -> str:
        """Field errors joined as ``field: message`` pairs."""
        parts = []
        for name, messages in self.errors.items():
            if not isinstance(messages, list):
                messages = [messages]
            parts.extend(f"{name}: {m}" for m in messages)
        return "; ".join(parts)


class LedgerConnectionError(LedgerError):
    """Failed to connect to the budgeting engine."""

    pass


class LedgerTimeoutError(LedgerError):
    """Request to the budgeting engine timed out."""

    pass


class LedgerClient:
    """
    Async client for the budgeting engine API.

    Features:
    - List transactions grouped by account
    - Resolve a single conflict or a batch of conflicts

    The client never retries on its own; failed calls raise and are handled
    by the error recovery manager.
    """

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: int = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize ledger client.

        Args:
            base_url: Engine URL (e.g., "http://localhost:5006")
            token: Bearer token (optional)
            timeout: Request timeout in seconds
            transport: Custom httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def __aenter__(self) -> "LedgerClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json_data: dict | None = None,
    ) -> httpx.Response:
        """Make an API request with error handling."""
        url = f"{self.base_url}{endpoint}"

        logger.debug("API Request: %s %s", method, url)
        if json_data:
            logger.debug("Request body: %s", json.dumps(json_data))

        try:
            response = await self._client.request(
                method,
                endpoint,
                params=params,
                json=json_data,
            )
        except httpx.TimeoutException as e:
            logger.error("Timeout for %s: %s", url, e)
            raise LedgerTimeoutError(f"Request to ledger timed out: {e}") from e
        except httpx.ConnectError as e:
            logger.error("Connection error to %s: %s", url, e)
            raise LedgerConnectionError(
                f"Failed to connect to ledger at {self.base_url}: {e}"
            ) from e
        except httpx.NetworkError as e:
            logger.error("Network error for %s: %s", url, e)
            raise LedgerConnectionError(f"Network error talking to ledger: {e}") from e
        except httpx.HTTPError as e:
            logger.error("Request error for %s: %s", url, e)
            raise LedgerError(f"Request failed: {e}") from e

        logger.debug("Response status: %d", response.status_code)

        if not response.is_success:
            error_body = response.text
            errors: dict = {}
            try:
                error_json = response.json()
                errors = error_json.get("errors", {}) or {}
                message = error_json.get("message") or error_json.get("error") or response.reason_phrase
            except (ValueError, AttributeError):
                message = response.reason_phrase

            logger.error("API Error %d: %s", response.status_code, message)
            logger.debug("Full response body: %s", error_body)

            raise LedgerAPIError(
                status_code=response.status_code,
                message=message,
                response_body=error_body,
                errors=errors if isinstance(errors, dict) else {"detail": errors},
            )

        return response

    async def test_connection(self) -> bool:
        """Test connection to the engine."""
        try:
            await self._request("GET", "/api/health")
            return True
        except LedgerError:
            return False

    async def list_transactions(self, account_id: str | None = None) -> dict[str, list[Transaction]]:
        """
        Fetch transactions grouped by account.

        The engine answers either {"data": {account_id: [tx, ...]}} or
        {"data": [tx, ...]}; both are returned as an account mapping with the
        engine's ordering preserved.

        Raises:
            LedgerError: If the request fails
            ValueError: If a record is malformed
        """
        params = {"accountId": account_id} if account_id else None
        response = await self._request("GET", "/api/transactions", params=params)
        data = response.json().get("data", [])

        grouped: dict[str, list[Transaction]] = {}
        if isinstance(data, dict):
            for account, records in data.items():
                grouped[account] = [Transaction.from_dict(r, account_id=account) for r in records]
        else:
            for record in data:
                tx = Transaction.from_dict(record)
                grouped.setdefault(tx.account_id, []).append(tx)

        logger.debug(
            "Fetched %d transactions in %d accounts",
            sum(len(v) for v in grouped.values()),
            len(grouped),
        )
        return grouped

    async def resolve_conflict(
        self,
        transaction_id: str,
        resolution: ResolutionAction,
        imported_transaction_id: str | None = None,
    ) -> bool:
        """
        Persist the resolution of one conflict.

        Args:
            transaction_id: Manual transaction ID
            resolution: Chosen resolution
            imported_transaction_id: Bank transaction the manual one conflicts with

        Returns:
            True on success

        Raises:
            LedgerError: If the engine rejects the resolution
        """
        payload = {
            "manualTransactionId": transaction_id,
            "importedTransactionId": imported_transaction_id,
            "resolution": ResolutionAction(resolution).value,
        }
        response = await self._request(
            "POST", "/api/transactions-conflict/resolve", json_data=payload
        )
        return self._is_success(response)

    async def resolve_conflicts_batch(
        self,
        transaction_ids: Sequence[str],
        resolution: ResolutionAction,
        imported_transaction_ids: Sequence[str | None] | None = None,
    ) -> bool:
        """
        Persist the same resolution for several conflicts in one call.

        Args:
            transaction_ids: Manual transaction IDs
            resolution: Resolution applied to every conflict
            imported_transaction_ids: Matching bank transaction IDs (same order)

        Returns:
            True on success
        """
        if imported_transaction_ids is None:
            imported_transaction_ids = [None] * len(transaction_ids)
        if len(imported_transaction_ids) != len(transaction_ids):
            raise ValueError("transaction_ids and imported_transaction_ids differ in length")

        value = ResolutionAction(resolution).value
        payload = {
            "conflicts": [
                {
                    "manualTransactionId": manual_id,
                    "importedTransactionId": imported_id,
                    "resolution": value,
                }
                for manual_id, imported_id in zip(transaction_ids, imported_transaction_ids)
            ]
        }
        response = await self._request(
            "POST", "/api/transactions-conflict/resolve-batch", json_data=payload
        )
        return self._is_success(response)

    @staticmethod
    def _is_success(response: httpx.Response) -> bool:
        if not response.content:
            return True
        try:
            body = response.json()
        except ValueError:
            return True
        if isinstance(body, dict) and "success" in body:
            return bool(body["success"])
        return True
