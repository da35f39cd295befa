"""Validity windows for swap quotes and loan offers.

Not a cache: a quote outside its window is discarded and refetched, never
reused or refreshed in place.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from runeswap.errors import QuoteExpiredError
from runeswap.models.loan import LoanOffer
from runeswap.models.quote import SWAP_QUOTE_TTL, Quote


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class QuoteWindow:
    """TTL check for swap quotes and venue-declared expiry for loan offers."""

    def __init__(
        self,
        ttl: timedelta = SWAP_QUOTE_TTL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._ttl = ttl
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def is_valid(self, quote: Quote) -> bool:
        return quote.age(self._clock()) < self._ttl

    def fetched_at_is_valid(self, fetched_at: datetime) -> bool:
        return self._clock() - fetched_at < self._ttl

    def ensure_valid(self, quote: Quote) -> None:
        if not self.is_valid(quote):
            raise QuoteExpiredError(details=f"Quote fetched at {quote.fetched_at.isoformat()}")

    def offer_is_valid(self, offer: LoanOffer) -> bool:
        return offer.is_valid(self._clock())

    def ensure_offer_valid(self, offer: LoanOffer) -> None:
        if not self.offer_is_valid(offer):
            raise QuoteExpiredError(
                "Loan offer expired. Please fetch new offers.",
                details=f"Offer {offer.offer_id} expired",
            )
