"""Tests for the HTTP surface: envelopes, validation, limits and routing."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

import runeswap
from runeswap.api.app import create_app
from runeswap.api.services import Services
from runeswap.config.loader import ConfigError
from runeswap.errors import AuthExpiredError, AuthRequiredError
from runeswap.execution.rate_limiter import FixedWindowRateLimiter
from runeswap.models.session import SessionToken

OFFER_ID = "8f0c1c55-8f5a-4c39-9d6c-6b1f0c8e2a11"


@pytest.fixture()
def sessions() -> AsyncMock:
    store = AsyncMock()
    store.get_valid_token = AsyncMock(return_value="jwt-live")
    store.issue_token = AsyncMock(
        return_value=SessionToken(wallet_address="bc1pordinals000", token="jwt-new"),
    )
    return store


@pytest.fixture()
def services(
    liquidity_venue: AsyncMock,
    lending_venue: AsyncMock,
    sessions: AsyncMock,
    fee_estimator: AsyncMock,
) -> Services:
    return Services(
        liquidity=liquidity_venue,
        lending=lending_venue,
        sessions=sessions,
        fees=fee_estimator,
        limiter=FixedWindowRateLimiter(),
    )


@pytest.fixture()
def client(services: Services) -> Iterator[TestClient]:
    with TestClient(create_app(services)) as c:
        yield c


def _swap_body(**overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "orders": [{"id": "o1", "market": "MagicEden", "price": "1.5", "formattedAmount": "100"}],
        "address": "bc1pordinals000",
        "publicKey": "02ordinalspub",
        "paymentAddress": "bc1qpayment000",
        "paymentPublicKey": "03paymentpub",
        "runeName": "DOG•GO•TO•THE•MOON",
        "sell": False,
    }
    body.update(overrides)
    return body


def _borrow_body(**overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "instant_offer_id": OFFER_ID,
        "fee_rate": 10,
        "token_amount": "5000",
        "borrower_payment_address": "bc1qpayment000",
        "borrower_payment_pubkey": "03paymentpub",
        "borrower_ordinal_address": "bc1pordinals000",
        "borrower_ordinal_pubkey": "02ordinalspub",
        "address": "bc1pordinals000",
    }
    body.update(overrides)
    return body


class TestQuote:
    def test_quote_envelope(self, client: TestClient, liquidity_venue: AsyncMock) -> None:
        resp = client.post(
            "/quote",
            json={"btcAmount": "0,001", "runeName": "DOG•GO•TO•THE•MOON", "address": " bc1p "},
        )
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "data": liquidity_venue.fetch_quote.return_value}
        payload = liquidity_venue.fetch_quote.call_args.args[0]
        assert payload == {
            "btcAmount": "0.001", "address": "bc1p", "runeName": "DOGGOTOTHEMOON", "sell": False,
        }

    def test_sell_enables_fill(self, client: TestClient, liquidity_venue: AsyncMock) -> None:
        client.post(
            "/quote",
            json={"btcAmount": 1000, "runeName": "DOG", "address": "bc1p", "sell": True},
        )
        assert liquidity_venue.fetch_quote.call_args.args[0]["fill"] is True

    @pytest.mark.parametrize(
        "body",
        [
            {"btcAmount": "-1", "runeName": "DOG", "address": "bc1p"},
            {"btcAmount": "0", "runeName": "DOG", "address": "bc1p"},
            {"btcAmount": "abc", "runeName": "DOG", "address": "bc1p"},
            {"btcAmount": "1", "runeName": "dog", "address": "bc1p"},
            {"btcAmount": "1", "runeName": "DOG", "address": ""},
            {"btcAmount": "1", "runeName": "DOG", "address": "x" * 101},
            {"runeName": "DOG", "address": "bc1p"},
        ],
    )
    def test_invalid_body_never_reaches_venue(
        self, client: TestClient, liquidity_venue: AsyncMock, body: dict[str, Any],
    ) -> None:
        resp = client.post("/quote", json=body)
        assert resp.status_code == 400
        data = resp.json()
        assert data["success"] is False
        assert data["error"]["code"] == "validation_error"
        liquidity_venue.fetch_quote.assert_not_awaited()

    def test_no_liquidity(self, client: TestClient, liquidity_venue: AsyncMock) -> None:
        liquidity_venue.fetch_quote.side_effect = RuntimeError("No valid orders found")
        resp = client.post("/quote", json={"btcAmount": "1", "runeName": "DOG", "address": "bc1p"})
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "No orders available for this trade"

    def test_unclassified_failure_uses_route_message(
        self, client: TestClient, liquidity_venue: AsyncMock,
    ) -> None:
        liquidity_venue.fetch_quote.side_effect = RuntimeError("kaboom")
        resp = client.post("/quote", json={"btcAmount": "1", "runeName": "DOG", "address": "bc1p"})
        assert resp.status_code == 500
        assert resp.json()["error"] == {
            "message": "Failed to fetch quote", "code": "upstream_error", "details": "kaboom",
        }

    def test_missing_api_key(self, client: TestClient, liquidity_venue: AsyncMock) -> None:
        liquidity_venue.fetch_quote.side_effect = ConfigError(
            "Server configuration error: Missing SatsTerminal API Key",
        )
        resp = client.post("/quote", json={"btcAmount": "1", "runeName": "DOG", "address": "bc1p"})
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "config_error"


class TestRateLimit:
    def test_rejects_after_limit(
        self, client: TestClient, services: Services, liquidity_venue: AsyncMock,
    ) -> None:
        services.rate_limit = 2
        body = {"btcAmount": "1", "runeName": "DOG", "address": "bc1p"}
        assert client.post("/quote", json=body).status_code == 200
        assert client.post("/quote", json=body).status_code == 200

        resp = client.post("/quote", json=body)
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "rate_limited"
        assert int(resp.headers["Retry-After"]) >= 1
        assert liquidity_venue.fetch_quote.await_count == 2

    def test_identities_counted_separately(self, client: TestClient, services: Services) -> None:
        services.rate_limit = 1
        body = {"btcAmount": "1", "runeName": "DOG", "address": "bc1p"}
        a = client.post("/quote", json=body, headers={"X-Forwarded-For": "203.0.113.1"})
        b = client.post("/quote", json=body, headers={"X-Forwarded-For": "203.0.113.2"})
        assert (a.status_code, b.status_code) == (200, 200)

    def test_invalid_request_does_not_consume_slot(
        self, client: TestClient, services: Services,
    ) -> None:
        services.rate_limit = 1
        client.post("/quote", json={"btcAmount": "-1", "runeName": "DOG", "address": "bc1p"})
        resp = client.post("/quote", json={"btcAmount": "1", "runeName": "DOG", "address": "bc1p"})
        assert resp.status_code == 200

    def test_departed_clients_do_not_accumulate(
        self, client: TestClient, services: Services,
    ) -> None:
        now = [0.0]
        services.limiter = FixedWindowRateLimiter(clock=lambda: now[0])
        services.rate_window_ms = 1000
        body = {"btcAmount": "1", "runeName": "DOG", "address": "bc1p"}
        for n in range(50):
            client.post("/quote", json=body, headers={"X-Forwarded-For": f"198.51.100.{n}"})
        assert len(services.limiter) == 50

        now[0] = 10_000_000.0
        client.post("/quote", json=body, headers={"X-Forwarded-For": "203.0.113.9"})
        assert len(services.limiter) == 1


class TestPsbt:
    def test_create_uses_recommended_fee(
        self, client: TestClient, liquidity_venue: AsyncMock,
    ) -> None:
        resp = client.post("/psbt/create", json=_swap_body())
        assert resp.status_code == 200
        assert resp.json()["data"]["swapId"] == "swap-1"
        payload = liquidity_venue.get_psbt.call_args.args[0]
        assert payload["feeRate"] == 20
        assert payload["runeName"] == "DOGGOTOTHEMOON"
        assert payload["slippage"] == 0

    def test_create_forced_fee_rate(
        self,
        client: TestClient,
        services: Services,
        liquidity_venue: AsyncMock,
        fee_estimator: AsyncMock,
    ) -> None:
        services.forced_fee_rate = 3.0
        client.post("/psbt/create", json=_swap_body(feeRate=40))
        assert liquidity_venue.get_psbt.call_args.args[0]["feeRate"] == 3.0
        fee_estimator.get_fee_rates.assert_not_awaited()

    def test_create_stale_quote(self, client: TestClient, liquidity_venue: AsyncMock) -> None:
        resp = client.post(
            "/psbt/create", json=_swap_body(quoteFetchedAt="2020-01-01T00:00:00Z"),
        )
        assert resp.status_code == 410
        assert resp.json()["error"]["code"] == "quote_expired"
        liquidity_venue.get_psbt.assert_not_awaited()

    def test_create_fresh_quote(self, client: TestClient, liquidity_venue: AsyncMock) -> None:
        fetched_at = datetime.now(tz=UTC).isoformat()
        resp = client.post("/psbt/create", json=_swap_body(quoteFetchedAt=fetched_at, feeRate=9))
        assert resp.status_code == 200
        assert liquidity_venue.get_psbt.call_args.args[0]["feeRate"] == 9

    def test_create_venue_down(self, client: TestClient, liquidity_venue: AsyncMock) -> None:
        liquidity_venue.get_psbt.side_effect = httpx.ConnectError("refused")
        assert client.post("/psbt/create", json=_swap_body()).status_code == 503

    def test_confirm(self, client: TestClient, liquidity_venue: AsyncMock) -> None:
        body = _swap_body(signedPsbtBase64="c2lnbmVk", swapId="swap-1", signedRbfPsbtBase64="cmJm")
        resp = client.post("/psbt/confirm", json=body)
        assert resp.status_code == 200
        assert resp.json()["data"] == {"txid": "tx-abc"}
        payload = liquidity_venue.confirm_psbt.call_args.args[0]
        assert payload["swapId"] == "swap-1"
        assert payload["signedPsbtBase64"] == "c2lnbmVk"
        assert "signedRbfPsbtBase64" not in payload  # rbfProtection off

    def test_confirm_retransmit_hits_venue_once(
        self, client: TestClient, liquidity_venue: AsyncMock,
    ) -> None:
        body = _swap_body(signedPsbtBase64="c2lnbmVk", swapId="swap-1")
        first = client.post("/psbt/confirm", json=body)
        second = client.post("/psbt/confirm", json=body)
        assert first.json() == second.json()
        liquidity_venue.confirm_psbt.assert_awaited_once()

    def test_confirm_fee_error(self, client: TestClient, liquidity_venue: AsyncMock) -> None:
        liquidity_venue.confirm_psbt.return_value = {"error": "fee rate too low for mempool"}
        resp = client.post("/psbt/confirm", json=_swap_body(signedPsbtBase64="c2ln", swapId="s1"))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "fee_too_low"

    def test_confirm_without_txid(self, client: TestClient, liquidity_venue: AsyncMock) -> None:
        liquidity_venue.confirm_psbt.return_value = {"status": "pending"}
        resp = client.post("/psbt/confirm", json=_swap_body(signedPsbtBase64="c2ln", swapId="s1"))
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "confirmation_failed"

    def test_confirm_requires_swap_id(self, client: TestClient, liquidity_venue: AsyncMock) -> None:
        resp = client.post("/psbt/confirm", json=_swap_body(signedPsbtBase64="c2ln"))
        assert resp.status_code == 400
        liquidity_venue.confirm_psbt.assert_not_awaited()


class TestLiquidium:
    def test_challenge(self, client: TestClient, lending_venue: AsyncMock) -> None:
        resp = client.get(
            "/liquidium/challenge",
            params={"ordinalsAddress": "bc1p", "paymentAddress": "bc1q"},
        )
        assert resp.status_code == 200
        lending_venue.auth_prepare.assert_awaited_once_with("bc1p", "bc1q", "xverse")

    def test_challenge_missing_address(self, client: TestClient, lending_venue: AsyncMock) -> None:
        resp = client.get("/liquidium/challenge", params={"ordinalsAddress": "bc1p"})
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Missing addresses"
        lending_venue.auth_prepare.assert_not_awaited()

    def test_auth(self, client: TestClient, sessions: AsyncMock) -> None:
        resp = client.post(
            "/liquidium/auth",
            json={
                "ordinalsAddress": "bc1pordinals000",
                "paymentAddress": "bc1qpayment000",
                "ordinalsSignature": "sig",
                "ordinalsNonce": "nonce",
            },
        )
        assert resp.status_code == 200
        assert resp.json()["data"] == {"jwt": "jwt-new"}
        submission = sessions.issue_token.call_args.args[0]
        assert submission.ordinals_address == "bc1pordinals000"

    def test_auth_invalid_body_skips_store(self, client: TestClient, sessions: AsyncMock) -> None:
        resp = client.post("/liquidium/auth", json={"ordinalsAddress": "bc1p"})
        assert resp.status_code == 400
        sessions.issue_token.assert_not_awaited()

    def test_borrow_prepare(
        self, client: TestClient, lending_venue: AsyncMock, sessions: AsyncMock,
    ) -> None:
        resp = client.post("/liquidium/borrow/prepare", json=_borrow_body())
        assert resp.status_code == 200
        assert resp.json()["data"]["prepare_offer_id"] == "prep-1"
        sessions.get_valid_token.assert_awaited_once_with("bc1pordinals000")
        token, payload = lending_venue.start_loan_prepare.call_args.args
        assert token == "jwt-live"
        assert payload["instant_offer_id"] == OFFER_ID
        assert "address" not in payload

    @pytest.mark.parametrize(
        ("error", "code"),
        [(AuthRequiredError(), "auth_required"), (AuthExpiredError(), "auth_expired")],
    )
    def test_borrow_prepare_needs_session(
        self,
        client: TestClient,
        lending_venue: AsyncMock,
        sessions: AsyncMock,
        error: Exception,
        code: str,
    ) -> None:
        sessions.get_valid_token.side_effect = error
        resp = client.post("/liquidium/borrow/prepare", json=_borrow_body())
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == code
        lending_venue.start_loan_prepare.assert_not_awaited()

    @pytest.mark.parametrize(
        "overrides",
        [{"instant_offer_id": "not-a-uuid"}, {"fee_rate": 0}, {"token_amount": "12.5"}],
    )
    def test_borrow_prepare_validation(
        self, client: TestClient, sessions: AsyncMock, overrides: dict[str, Any],
    ) -> None:
        resp = client.post("/liquidium/borrow/prepare", json=_borrow_body(**overrides))
        assert resp.status_code == 400
        sessions.get_valid_token.assert_not_awaited()

    def test_borrow_submit(self, client: TestClient, lending_venue: AsyncMock) -> None:
        resp = client.post(
            "/liquidium/borrow/submit",
            json={"signed_psbt_base_64": "c2ln", "prepare_offer_id": OFFER_ID, "address": "bc1p"},
        )
        assert resp.status_code == 200
        assert resp.json()["data"] == {"loan_transaction_id": "loan-tx-1"}
        assert lending_venue.start_loan_submit.call_args.args[1] == {
            "signed_psbt_base_64": "c2ln", "prepare_offer_id": OFFER_ID,
        }

    def test_repay_prepare_default_fee(
        self, client: TestClient, lending_venue: AsyncMock,
    ) -> None:
        resp = client.post("/liquidium/repay", json={"loanId": "loan-9", "address": "bc1p"})
        assert resp.status_code == 200
        assert resp.json()["data"]["psbt"] == "cHNidP8-repay"
        assert lending_venue.repay_prepare.call_args.args[1] == {"offer_id": "loan-9", "fee_rate": 5.0}

    def test_repay_submit(self, client: TestClient, lending_venue: AsyncMock) -> None:
        resp = client.post(
            "/liquidium/repay",
            json={"loanId": "loan-9", "address": "bc1p", "signedPsbt": "c2ln"},
        )
        assert resp.status_code == 200
        assert resp.json()["data"] == {"repayment_transaction_id": "repay-tx-1"}
        lending_venue.repay_prepare.assert_not_awaited()

    def test_repay_missing_loan_id(self, client: TestClient, lending_venue: AsyncMock) -> None:
        resp = client.post("/liquidium/repay", json={"address": "bc1p"})
        assert resp.status_code == 400
        lending_venue.repay_prepare.assert_not_awaited()

    def test_borrow_quotes(self, client: TestClient, lending_venue: AsyncMock) -> None:
        resp = client.get(
            "/liquidium/borrow/quotes",
            params={"runeId": "840000:3", "runeAmount": "5000", "address": "bc1p"},
        )
        assert resp.status_code == 200
        lending_venue.get_borrow_offers.assert_awaited_once_with("jwt-live", "840000:3", "5000")

    def test_borrow_quotes_bad_amount(self, client: TestClient, lending_venue: AsyncMock) -> None:
        resp = client.get(
            "/liquidium/borrow/quotes",
            params={"runeId": "840000:3", "runeAmount": "lots", "address": "bc1p"},
        )
        assert resp.status_code == 400
        lending_venue.get_borrow_offers.assert_not_awaited()

    def test_borrow_ranges(self, client: TestClient, lending_venue: AsyncMock) -> None:
        lending_venue.get_borrow_offers.return_value = {
            "runeDetails": {
                "valid_ranges": {
                    "rune_amount": {
                        "ranges": [{"min": "500", "max": "9000"}, {"min": "100", "max": "700"}],
                    },
                    "loan_term_days": [7, 30],
                },
            },
        }
        resp = client.get(
            "/liquidium/borrow/ranges", params={"runeId": " 840000:3 ", "address": "bc1p"},
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert (data["minAmount"], data["maxAmount"]) == ("100", "9000")
        assert data["loanTermDays"] == [7, 30]
        assert data["cached"] is False
        assert "noOffersAvailable" not in data
        lending_venue.get_borrow_offers.assert_awaited_once_with("jwt-live", "840000:3", "1")

    def test_borrow_ranges_needs_session(
        self, client: TestClient, sessions: AsyncMock, lending_venue: AsyncMock,
    ) -> None:
        sessions.get_valid_token.side_effect = AuthRequiredError()
        resp = client.get("/liquidium/borrow/ranges", params={"runeId": "840000:3", "address": "bc1p"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "auth_required"
        lending_venue.get_borrow_offers.assert_not_awaited()

    def test_borrow_ranges_cached(
        self, client: TestClient, services: Services, sessions: AsyncMock,
    ) -> None:
        sessions.get_valid_token.side_effect = AuthRequiredError()
        services.cache = AsyncMock()
        services.cache.get = AsyncMock(return_value={
            "runeId": "840000:3",
            "minAmount": "100",
            "maxAmount": "9000",
            "updatedAt": datetime.now(tz=UTC).isoformat(),
        })
        resp = client.get("/liquidium/borrow/ranges", params={"runeId": "840000:3", "address": "bc1p"})
        assert resp.status_code == 200
        assert resp.json()["data"]["cached"] is True
        sessions.get_valid_token.assert_not_awaited()

    def test_borrow_ranges_no_offers(self, client: TestClient, lending_venue: AsyncMock) -> None:
        request = httpx.Request("GET", "https://alpha.liquidium.wtf")
        response = httpx.Response(404, json={"error": "Not Found"}, request=request)
        lending_venue.get_borrow_offers.side_effect = httpx.HTTPStatusError(
            "404", request=request, response=response,
        )
        resp = client.get("/liquidium/borrow/ranges", params={"runeId": "840000:3", "address": "bc1p"})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["noOffersAvailable"] is True
        assert (data["minAmount"], data["maxAmount"], data["loanTermDays"]) == ("0", "0", [])

    def test_borrow_ranges_invalid_data(self, client: TestClient) -> None:
        resp = client.get("/liquidium/borrow/ranges", params={"runeId": "840000:3", "address": "bc1p"})
        assert resp.status_code == 500
        assert resp.json()["error"]["message"] == "Invalid range data"

    def test_borrow_ranges_blank_rune(self, client: TestClient, lending_venue: AsyncMock) -> None:
        resp = client.get("/liquidium/borrow/ranges", params={"runeId": "  ", "address": "bc1p"})
        assert resp.status_code == 400
        lending_venue.get_borrow_offers.assert_not_awaited()

    def test_portfolio(self, client: TestClient, lending_venue: AsyncMock) -> None:
        raw = {"borrower": {"runes": {"loans": [{"id": "l1"}]}}}
        lending_venue.get_portfolio.return_value = raw
        resp = client.get("/liquidium/portfolio", params={"address": "bc1p"})
        assert resp.json()["data"] == {"loans": [{"id": "l1"}], "rawPortfolio": raw}

    def test_portfolio_missing_address(self, client: TestClient) -> None:
        resp = client.get("/liquidium/portfolio")
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Missing address"


class TestMisc:
    def test_recommended_fees(self, client: TestClient) -> None:
        data = client.get("/fees/recommended").json()["data"]
        assert data["fastestFee"] == 30
        assert data["priorityFee"] == 39.0

    def test_health(self, client: TestClient) -> None:
        assert client.get("/health").json() == {
            "success": True, "data": {"status": "ok", "version": runeswap.__version__},
        }

    @pytest.mark.parametrize(("reachable", "reported"), [(True, "ok"), (False, "unavailable")])
    def test_health_reports_cache(
        self, client: TestClient, services: Services, reachable: bool, reported: str,
    ) -> None:
        services.cache = AsyncMock()
        services.cache.ping = AsyncMock(return_value=reachable)
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["data"]["cache"] == reported

    def test_unknown_route_enveloped(self, client: TestClient) -> None:
        resp = client.get("/does-not-exist")
        assert resp.status_code == 404
        assert resp.json() == {
            "success": False, "error": {"message": "Not Found", "code": "not_found"},
        }

    def test_wrong_method_enveloped(self, client: TestClient) -> None:
        resp = client.get("/quote")
        assert resp.status_code == 405
        assert resp.json()["success"] is False
        assert resp.json()["error"]["code"] == "method_not_allowed"
        assert "POST" in resp.headers["allow"]

    def test_shutdown_closes_resources(self, services: Services) -> None:
        closeable = AsyncMock()
        services.closeables = [closeable]
        with TestClient(create_app(services)):
            pass
        closeable.close.assert_awaited_once()
