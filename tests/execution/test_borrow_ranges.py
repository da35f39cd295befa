"""Tests for collateral range parsing and the cached range lookup."""

from __future__ import annotations

from datetime import timedelta
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from runeswap.errors import AuthExpiredError, AuthRequiredError, UpstreamError
from runeswap.execution.borrow_ranges import (
    BorrowRangeLookup,
    cache_key,
    collateral_bounds,
)

RUNE_ID = "840000:3"


def _offers(ranges: list[Any], terms: list[Any] | None = None) -> dict[str, Any]:
    return {
        "runeDetails": {
            "valid_ranges": {
                "rune_amount": {"ranges": ranges},
                "loan_term_days": terms if terms is not None else [7, 30],
            },
        },
        "offers": [],
    }


def _status_error(status: int, body: dict[str, Any]) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://alpha.liquidium.wtf/api/v1/offers")
    response = httpx.Response(status, json=body, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


@pytest.fixture()
def sessions() -> AsyncMock:
    store = AsyncMock()
    store.get_valid_token = AsyncMock(return_value="jwt-live")
    return store


@pytest.fixture()
def cache() -> AsyncMock:
    c = AsyncMock()
    c.get = AsyncMock(return_value=None)
    return c


@pytest.fixture()
def lookup(
    lending_venue: AsyncMock, sessions: AsyncMock, cache: AsyncMock, clock: Any,
) -> BorrowRangeLookup:
    return BorrowRangeLookup(lending_venue, sessions, cache, ttl_seconds=300, clock=clock)


class TestCollateralBounds:
    def test_overall_min_and_max(self) -> None:
        response = _offers([
            {"min": "5000", "max": "90000"},
            {"min": "1200", "max": "40000"},
            {"min": "7000", "max": "123456789012345678901234"},
        ])
        low, high, terms = collateral_bounds(response)
        assert low == 1200
        assert high == 123456789012345678901234
        assert terms == [7, 30]

    def test_legacy_top_level_ranges(self) -> None:
        response = {"valid_ranges": {"rune_amount": {"ranges": [{"min": 10, "max": 20}]}}}
        assert collateral_bounds(response) == (10, 20, [])

    def test_incomplete_later_range_skipped(self) -> None:
        low, high, _ = collateral_bounds(_offers([{"min": "10", "max": "20"}, {"min": "1"}]))
        assert (low, high) == (10, 20)

    @pytest.mark.parametrize(
        "response",
        [
            {"runeDetails": {}, "offers": []},
            _offers([]),
            _offers([{"max": "20"}, {"min": "1", "max": "5"}]),
            _offers([{"min": "ten", "max": "20"}]),
        ],
    )
    def test_invalid_range_data(self, response: dict[str, Any]) -> None:
        with pytest.raises(UpstreamError, match="Invalid range data"):
            collateral_bounds(response)


class TestBorrowRangeLookup:
    @pytest.mark.asyncio()
    async def test_fetch_and_store(
        self,
        lookup: BorrowRangeLookup,
        lending_venue: AsyncMock,
        cache: AsyncMock,
        clock: Any,
    ) -> None:
        lending_venue.get_borrow_offers.return_value = _offers([{"min": "100", "max": "900"}])

        result = await lookup.get(RUNE_ID, "bc1pordinals000")

        assert (result.min_amount, result.max_amount) == ("100", "900")
        assert not result.cached
        assert result.updated_at == clock.now
        lending_venue.get_borrow_offers.assert_awaited_once_with("jwt-live", RUNE_ID, "1")
        key, payload = cache.set.call_args.args
        assert key == cache_key(RUNE_ID)
        assert payload["minAmount"] == "100"
        assert cache.set.call_args.kwargs["ttl"] == 300

    @pytest.mark.asyncio()
    async def test_fresh_snapshot_served_without_session(
        self,
        lookup: BorrowRangeLookup,
        lending_venue: AsyncMock,
        sessions: AsyncMock,
        cache: AsyncMock,
        clock: Any,
    ) -> None:
        sessions.get_valid_token.side_effect = AuthRequiredError()
        cache.get.return_value = {
            "runeId": RUNE_ID,
            "minAmount": "100",
            "maxAmount": "900",
            "loanTermDays": [30],
            "cached": False,
            "updatedAt": (clock.now - timedelta(minutes=4)).isoformat(),
        }

        result = await lookup.get(RUNE_ID, "bc1pordinals000")

        assert result.cached
        assert result.max_amount == "900"
        sessions.get_valid_token.assert_not_awaited()
        lending_venue.get_borrow_offers.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_stale_snapshot_discarded(
        self,
        lookup: BorrowRangeLookup,
        lending_venue: AsyncMock,
        cache: AsyncMock,
        clock: Any,
    ) -> None:
        cache.get.return_value = {
            "runeId": RUNE_ID,
            "minAmount": "1",
            "maxAmount": "2",
            "updatedAt": (clock.now - timedelta(minutes=5)).isoformat(),
        }
        lending_venue.get_borrow_offers.return_value = _offers([{"min": "100", "max": "900"}])

        result = await lookup.get(RUNE_ID, "bc1pordinals000")

        assert result.max_amount == "900"
        cache.delete.assert_awaited_once_with(cache_key(RUNE_ID))

    @pytest.mark.asyncio()
    async def test_unreadable_snapshot_discarded(
        self, lookup: BorrowRangeLookup, cache: AsyncMock, lending_venue: AsyncMock,
    ) -> None:
        cache.get.return_value = {"runeId": RUNE_ID}
        lending_venue.get_borrow_offers.return_value = _offers([{"min": "1", "max": "2"}])
        await lookup.get(RUNE_ID, "bc1pordinals000")
        cache.delete.assert_awaited_once_with(cache_key(RUNE_ID))
        lending_venue.get_borrow_offers.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_cache_outage_falls_through(
        self, lookup: BorrowRangeLookup, cache: AsyncMock, lending_venue: AsyncMock,
    ) -> None:
        cache.get.side_effect = OSError("redis down")
        cache.set.side_effect = OSError("redis down")
        lending_venue.get_borrow_offers.return_value = _offers([{"min": "1", "max": "2"}])
        result = await lookup.get(RUNE_ID, "bc1pordinals000")
        assert result.max_amount == "2"

    @pytest.mark.asyncio()
    async def test_no_offers(
        self, lookup: BorrowRangeLookup, lending_venue: AsyncMock, cache: AsyncMock,
    ) -> None:
        lending_venue.get_borrow_offers.side_effect = _status_error(404, {"error": "Not Found"})

        result = await lookup.get(RUNE_ID, "bc1pordinals000")

        assert result.no_offers_available
        assert (result.min_amount, result.max_amount) == ("0", "0")
        assert result.loan_term_days == []
        cache.set.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_venue_error(self, lookup: BorrowRangeLookup, lending_venue: AsyncMock) -> None:
        lending_venue.get_borrow_offers.side_effect = _status_error(400, {"error": "bad rune"})
        with pytest.raises(UpstreamError, match="Liquidium API error"):
            await lookup.get(RUNE_ID, "bc1pordinals000")

    @pytest.mark.asyncio()
    async def test_rejected_token(self, lookup: BorrowRangeLookup, lending_venue: AsyncMock) -> None:
        lending_venue.get_borrow_offers.side_effect = _status_error(401, {"error": "token not found"})
        with pytest.raises(AuthExpiredError):
            await lookup.get(RUNE_ID, "bc1pordinals000")

    @pytest.mark.asyncio()
    async def test_without_cache(
        self, lending_venue: AsyncMock, sessions: AsyncMock, clock: Any,
    ) -> None:
        lending_venue.get_borrow_offers.return_value = _offers([{"min": "3", "max": "4"}])
        lookup = BorrowRangeLookup(lending_venue, sessions, clock=clock)
        result = await lookup.get(RUNE_ID, "bc1pordinals000")
        assert result.to_response() == {
            "runeId": RUNE_ID,
            "minAmount": "3",
            "maxAmount": "4",
            "loanTermDays": [7, 30],
            "cached": False,
            "updatedAt": "2025-03-01T12:00:00Z",
        }
