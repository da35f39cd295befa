"""Collateral ranges for borrowing against a rune.

A snapshot is served from the cache while it is fresh, before any session
lookup, so an unauthenticated wallet can still read recently fetched
bounds. A miss needs a live session token and asks the venue for offers
on a one-unit amount, which carries the rune's valid ranges.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from runeswap.core.logging import get_logger
from runeswap.errors import UpstreamError, classify_venue_error, error_message
from runeswap.execution.quote_window import utc_now
from runeswap.models.loan import BorrowRange

if TYPE_CHECKING:
    from runeswap.execution.session_store import SessionTokenStore
    from runeswap.interfaces import LendingVenue, StateCache

log = get_logger(__name__)

RANGE_QUERY_AMOUNT = "1"
VENUE_ERROR_MESSAGE = "Liquidium API error"
INVALID_RANGES_MESSAGE = "Invalid range data"


def cache_key(rune_id: str) -> str:
    return f"borrow_ranges:{rune_id}"


def _integer(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(str(value))
    except ValueError:
        return None


def collateral_bounds(response: dict[str, Any]) -> tuple[int, int, list[int]]:
    """Overall (min, max, loan terms) across the venue's collateral ranges.

    ``valid_ranges`` sits at the top level on older responses and under
    ``runeDetails`` on current ones. Ranges missing either bound are
    skipped, but the first one must be complete.
    """
    valid = response.get("valid_ranges")
    if not isinstance(valid, dict):
        details = response.get("runeDetails")
        valid = details.get("valid_ranges") if isinstance(details, dict) else None
    if not isinstance(valid, dict):
        raise UpstreamError(INVALID_RANGES_MESSAGE, details="Offers response has no valid_ranges")

    rune_amount = valid.get("rune_amount")
    ranges = rune_amount.get("ranges") if isinstance(rune_amount, dict) else None
    if not isinstance(ranges, list) or not ranges:
        raise UpstreamError(INVALID_RANGES_MESSAGE, details="No rune_amount ranges")

    bounds = []
    for entry in ranges:
        low = _integer(entry.get("min")) if isinstance(entry, dict) else None
        high = _integer(entry.get("max")) if isinstance(entry, dict) else None
        if low is not None and high is not None:
            bounds.append((low, high))
        elif not bounds:
            raise UpstreamError(INVALID_RANGES_MESSAGE, details="First range has no min or max")

    terms = valid.get("loan_term_days")
    loan_terms = [t for t in map(_integer, terms if isinstance(terms, list) else []) if t is not None]
    return min(b[0] for b in bounds), max(b[1] for b in bounds), loan_terms


def _is_not_found(exc: BaseException) -> bool:
    message, _, status = error_message(exc)
    if status is not None:
        return status == 404
    return "not found" in message.lower()


async def _discard(cache: StateCache, key: str) -> None:
    try:
        await cache.delete(key)
    except Exception as exc:  # snapshot cache is best-effort
        log.warning("borrow_ranges.cache_delete_failed", key=key, error=str(exc))


class BorrowRangeLookup:
    def __init__(
        self,
        lending: LendingVenue,
        sessions: SessionTokenStore,
        cache: StateCache | None = None,
        ttl_seconds: int = 300,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._lending = lending
        self._sessions = sessions
        self._cache = cache
        self._ttl = ttl_seconds
        self._clock = clock

    async def get(self, rune_id: str, address: str) -> BorrowRange:
        cached = await self._from_cache(rune_id)
        if cached is not None:
            log.debug("borrow_ranges.cache_hit", rune_id=rune_id)
            return cached.model_copy(update={"cached": True})

        token = await self._sessions.get_valid_token(address)
        try:
            response = await self._lending.get_borrow_offers(token, rune_id, RANGE_QUERY_AMOUNT)
        except Exception as exc:
            if _is_not_found(exc):
                log.info("borrow_ranges.no_offers", rune_id=rune_id)
                return BorrowRange(
                    rune_id=rune_id,
                    min_amount="0",
                    max_amount="0",
                    updated_at=self._clock(),
                    no_offers_available=True,
                )
            raise classify_venue_error(exc, VENUE_ERROR_MESSAGE) from exc

        low, high, terms = collateral_bounds(response)
        result = BorrowRange(
            rune_id=rune_id,
            min_amount=str(low),
            max_amount=str(high),
            loan_term_days=terms,
            updated_at=self._clock(),
        )
        log.info("borrow_ranges.fetched", rune_id=rune_id, min_amount=low, max_amount=high)
        await self._store(result)
        return result

    async def _from_cache(self, rune_id: str) -> BorrowRange | None:
        cache = self._cache
        if cache is None:
            return None
        key = cache_key(rune_id)
        try:
            data = await cache.get(key)
        except Exception as exc:  # snapshot cache is best-effort
            log.warning("borrow_ranges.cache_read_failed", rune_id=rune_id, error=str(exc))
            return None
        if not isinstance(data, dict):
            return None
        try:
            snapshot = BorrowRange.model_validate(data)
        except PydanticValidationError:
            snapshot = None
        if snapshot is None or self._clock() - snapshot.updated_at >= timedelta(seconds=self._ttl):
            await _discard(cache, key)
            return None
        return snapshot

    async def _store(self, result: BorrowRange) -> None:
        if self._cache is None:
            return
        try:
            snapshot = result.model_dump(by_alias=True, mode="json")
            await self._cache.set(cache_key(result.rune_id), snapshot, ttl=self._ttl)
        except Exception as exc:  # snapshot cache is best-effort
            log.warning("borrow_ranges.cache_write_failed", rune_id=result.rune_id, error=str(exc))
