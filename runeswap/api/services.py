"""Service container shared by the HTTP routes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from fastapi import Request

from runeswap.core.logging import get_logger
from runeswap.data.liquidium_client import LiquidiumClient
from runeswap.data.mempool_client import MempoolFeeClient
from runeswap.data.redis_cache import RedisCache
from runeswap.data.sats_terminal_client import SatsTerminalClient
from runeswap.data.token_repository import PostgresTokenRepository
from runeswap.execution.psbt_exchange import ConfirmationLedger
from runeswap.execution.quote_window import QuoteWindow
from runeswap.execution.rate_limiter import FixedWindowRateLimiter
from runeswap.execution.session_store import SessionTokenStore

if TYPE_CHECKING:
    from runeswap.config.loader import ConfigLoader
    from runeswap.interfaces import (
        AdmissionControl,
        FeeEstimator,
        LendingVenue,
        LiquidityVenue,
    )

log = get_logger(__name__)


@dataclass
class Services:
    """Everything a route needs, built once per process."""

    liquidity: LiquidityVenue
    lending: LendingVenue
    sessions: SessionTokenStore
    fees: FeeEstimator
    limiter: AdmissionControl
    quote_window: QuoteWindow = field(default_factory=QuoteWindow)
    rate_limit: int = 30
    rate_window_ms: int = 60_000
    forced_fee_rate: float | None = None
    default_wallet: str = "xverse"
    default_repay_fee_rate: float = 5.0
    borrow_range_ttl_seconds: int = 300
    ledger: ConfirmationLedger = field(default_factory=ConfirmationLedger)
    repository: PostgresTokenRepository | None = None
    cache: RedisCache | None = None
    closeables: list[Any] = field(default_factory=list)

    async def startup(self) -> None:
        if self.repository is not None:
            await self.repository.open()

    async def shutdown(self) -> None:
        for resource in self.closeables:
            await resource.close()
        if self.cache is not None:
            await self.cache.close()
        if self.repository is not None:
            await self.repository.close()
        log.info("services.shutdown")


def build_services(config: ConfigLoader) -> Services:
    """Wire venue clients, stores and limiter from configuration."""
    transport: dict[str, Any] = {
        "timeout_seconds": float(config.get("transport.timeout_seconds", 10.0)),
        "retries": int(config.get("transport.retries", 2)),
        "retry_delay_seconds": float(config.get("transport.retry_delay_seconds", 1.0)),
    }

    liquidity = SatsTerminalClient(
        base_url=config.get("sats_terminal.base_url", "https://api.satsterminal.com"),
        quote_path=config.get("sats_terminal.quote_path", "/v1/runes/quote"),
        psbt_path=config.get("sats_terminal.psbt_path", "/v1/runes/psbt/create"),
        confirm_path=config.get("sats_terminal.confirm_path", "/v1/runes/psbt/confirm"),
        **transport,
    )
    lending = LiquidiumClient(
        base_url=config.get("liquidium.base_url", "https://alpha.liquidium.wtf"),
        **transport,
    )
    repository = PostgresTokenRepository(
        min_pool=int(config.get("store.min_pool", 1)),
        max_pool=int(config.get("store.max_pool", 5)),
    )
    cache = RedisCache()
    fees = MempoolFeeClient(
        url=config.get("fees.url", "https://mempool.space/api/v1/fees/recommended"),
        cache=cache,
        cache_ttl_seconds=int(config.get("fees.cache_ttl_seconds", 300)),
        **transport,
    )

    services = Services(
        liquidity=liquidity,
        lending=lending,
        sessions=SessionTokenStore(repository, lending),
        fees=fees,
        limiter=FixedWindowRateLimiter(),
        quote_window=QuoteWindow(ttl=_quote_ttl(config)),
        rate_limit=int(config.get("rate_limit.limit", 30)),
        rate_window_ms=int(config.get("rate_limit.window_ms", 60_000)),
        forced_fee_rate=config.forced_fee_rate(),
        default_wallet=str(config.get("liquidium.default_wallet", "xverse")),
        default_repay_fee_rate=float(config.get("liquidium.default_repay_fee_rate", 5)),
        borrow_range_ttl_seconds=int(config.get("liquidium.borrow_range_ttl_seconds", 300)),
        repository=repository,
        cache=cache,
        closeables=[liquidity, lending, fees],
    )
    log.info(
        "services.built",
        env=config.env,
        rate_limit=services.rate_limit,
        forced_fee_rate=services.forced_fee_rate,
    )
    return services


def _quote_ttl(config: ConfigLoader) -> timedelta:
    return timedelta(seconds=float(config.get("swap.quote_ttl_seconds", 60)))


def get_services(request: Request) -> Services:
    services: Services = request.app.state.services
    return services
