"""Recommended fee-rate estimator backed by a mempool.space-style endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from runeswap.core.logging import get_logger
from runeswap.data.transport import VenueTransport
from runeswap.errors import RuneSwapError
from runeswap.models.fees import DEFAULT_FEE_RATES, FeeRates

if TYPE_CHECKING:
    from runeswap.interfaces import StateCache

log = get_logger(__name__)

CACHE_KEY = "fees:recommended"


class MempoolFeeClient:
    """Fetches recommended fee tiers, falling back to fixed defaults.

    A failed fetch never fails the caller: swaps proceed on the default
    ladder and the fee-rate retry covers an undershoot.
    """

    def __init__(
        self,
        url: str = "https://mempool.space/api/v1/fees/recommended",
        cache: StateCache | None = None,
        cache_ttl_seconds: int = 300,
        timeout_seconds: float = 10.0,
        retries: int = 2,
        retry_delay_seconds: float = 1.0,
    ) -> None:
        base, _, path = url.rpartition("/")
        self._path = f"/{path}"
        self._url = url
        self._cache = cache
        self._cache_ttl = cache_ttl_seconds
        self._transport = VenueTransport(
            base,
            timeout_seconds=timeout_seconds,
            retries=retries,
            retry_delay_seconds=retry_delay_seconds,
        )

    async def get_fee_rates(self) -> FeeRates:
        cached = await self._from_cache()
        if cached is not None:
            return cached

        try:
            data: dict[str, Any] = await self._transport.request("GET", self._path)
            rates = FeeRates.model_validate(data)
        except (httpx.HTTPError, RuneSwapError, PydanticValidationError) as exc:
            log.warning("mempool_fees.fetch_failed", url=self._url, error=str(exc))
            return DEFAULT_FEE_RATES

        if self._cache is not None:
            try:
                await self._cache.set(CACHE_KEY, rates.model_dump(by_alias=True), ttl=self._cache_ttl)
            except Exception as exc:  # snapshot cache is best-effort
                log.warning("mempool_fees.cache_write_failed", error=str(exc))
        return rates

    async def _from_cache(self) -> FeeRates | None:
        if self._cache is None:
            return None
        try:
            data = await self._cache.get(CACHE_KEY)
        except Exception as exc:  # snapshot cache is best-effort
            log.warning("mempool_fees.cache_read_failed", error=str(exc))
            return None
        if not isinstance(data, dict):
            return None
        try:
            return FeeRates.model_validate(data)
        except PydanticValidationError:
            return None

    async def close(self) -> None:
        await self._transport.close()
