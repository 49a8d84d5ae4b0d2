"""Tests for the budgeting engine API client."""

from __future__ import annotations

import json

import httpx
import pytest

from ledger_conflicts.ledger_client import (
    LedgerAPIError,
    LedgerClient,
    LedgerConnectionError,
    LedgerError,
    LedgerTimeoutError,
)
from ledger_conflicts.schemas.conflict import ResolutionAction
from ledger_conflicts.schemas.transaction import Origin

BASE_URL = "http://ledger.test"


def make_client(handler, token: str = "secret-token") -> LedgerClient:
    return LedgerClient(BASE_URL, token=token, transport=httpx.MockTransport(handler))


class TestLedgerClient:
    """Tests for LedgerClient requests and response parsing."""

    @pytest.mark.asyncio
    async def test_test_connection_success(self):
        async with make_client(lambda request: httpx.Response(200, json={"status": "ok"})) as client:
            assert await client.test_connection() is True

    @pytest.mark.asyncio
    async def test_test_connection_failure(self):
        async with make_client(lambda request: httpx.Response(500, text="boom")) as client:
            assert await client.test_connection() is False

    @pytest.mark.asyncio
    async def test_auth_bearer_header_sent(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["authorization"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"data": []})

        async with make_client(handler) as client:
            await client.list_transactions()

        assert seen["authorization"] == "Bearer secret-token"

    @pytest.mark.asyncio
    async def test_no_auth_header_without_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["authorization"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"data": []})

        async with make_client(handler, token="") as client:
            await client.list_transactions()

        assert seen["authorization"] is None

    @pytest.mark.asyncio
    async def test_list_transactions_grouped_by_account(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/transactions"
            return httpx.Response(
                200,
                json={
                    "data": {
                        "checking": [
                            {"id": "m1", "date": "2024-04-15", "amount": -7525, "payee": "Grocery Store"},
                            {
                                "id": "b1",
                                "date": "2024-04-15",
                                "amount": -7525,
                                "payee_name": "Grocery Store",
                                "origin": "bank",
                                "imported_id": "ref-1",
                            },
                        ],
                        "savings": [],
                    }
                },
            )

        async with make_client(handler) as client:
            grouped = await client.list_transactions()

        assert list(grouped) == ["checking", "savings"]
        manual, bank = grouped["checking"]
        assert manual.origin == Origin.MANUAL
        assert manual.account_id == "checking"
        assert bank.origin == Origin.BANK
        assert bank.display_payee == "Grocery Store"

    @pytest.mark.asyncio
    async def test_list_transactions_flat_list_with_account_filter(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["account"] = request.url.params.get("accountId")
            return httpx.Response(
                200,
                json={"data": [{"id": "m1", "accountId": "checking", "date": "2024-04-15", "amount": "-100"}]},
            )

        async with make_client(handler) as client:
            grouped = await client.list_transactions("checking")

        assert seen["account"] == "checking"
        assert grouped["checking"][0].amount == -100

    @pytest.mark.asyncio
    async def test_resolve_conflict_payload(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True})

        async with make_client(handler) as client:
            ok = await client.resolve_conflict("m1", ResolutionAction.KEEP_MANUAL, "b1")

        assert ok is True
        assert seen["method"] == "POST"
        assert seen["path"] == "/api/transactions-conflict/resolve"
        assert seen["body"] == {
            "manualTransactionId": "m1",
            "importedTransactionId": "b1",
            "resolution": "keep-manual",
        }

    @pytest.mark.asyncio
    async def test_resolve_conflict_unsuccessful_body(self):
        async with make_client(lambda r: httpx.Response(200, json={"success": False})) as client:
            assert await client.resolve_conflict("m1", "link", "b1") is False

    @pytest.mark.asyncio
    async def test_resolve_conflicts_batch_payload(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(204)

        async with make_client(handler) as client:
            ok = await client.resolve_conflicts_batch(["m1", "m2"], ResolutionAction.KEEP_BOTH, ["b1", "b2"])

        assert ok is True
        assert seen["path"] == "/api/transactions-conflict/resolve-batch"
        assert seen["body"]["conflicts"] == [
            {"manualTransactionId": "m1", "importedTransactionId": "b1", "resolution": "keep-both"},
            {"manualTransactionId": "m2", "importedTransactionId": "b2", "resolution": "keep-both"},
        ]

    @pytest.mark.asyncio
    async def test_batch_length_mismatch(self):
        async with make_client(lambda r: httpx.Response(200)) as client:
            with pytest.raises(ValueError):
                await client.resolve_conflicts_batch(["m1", "m2"], ResolutionAction.KEEP_BOTH, ["b1"])


class TestClientErrorHandling:
    """Tests for mapping transport and HTTP failures onto client errors."""

    @pytest.mark.asyncio
    async def test_api_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                409,
                json={"message": "Conflict already resolved", "errors": {"resolution": ["stale"]}},
            )

        async with make_client(handler) as client:
            with pytest.raises(LedgerAPIError) as exc_info:
                await client.resolve_conflict("m1", ResolutionAction.KEEP_BOTH, "b1")

        assert exc_info.value.status_code == 409
        assert exc_info.value.message == "Conflict already resolved"
        assert "resolution: stale" in str(exc_info.value)

    def test_api_error_detail(self):
        error = LedgerAPIError(422, "Invalid", errors={"amount": ["required", "numeric"], "date": "bad"})

        assert error.detail == "amount: required; amount: numeric; date: bad"
        assert str(LedgerAPIError(500, "Server error")) == "Ledger API error 500: Server error"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(LedgerConnectionError):
                await client.list_transactions()

    @pytest.mark.asyncio
    async def test_timeout_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        async with make_client(handler) as client:
            with pytest.raises(LedgerTimeoutError):
                await client.list_transactions()

    @pytest.mark.asyncio
    async def test_errors_share_base_class(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="unavailable")

        async with make_client(handler) as client:
            with pytest.raises(LedgerError):
                await client.list_transactions()
