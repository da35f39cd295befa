"""Protocol interfaces for RuneSwap components.

Venue clients, the wallet signer, persistence and admission control are
consumed only through these contracts.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime

    from runeswap.execution.rate_limiter import RateLimitDecision
    from runeswap.models.fees import FeeRates
    from runeswap.models.session import SessionToken


@runtime_checkable
class LiquidityVenue(Protocol):
    """Swap venue: quotes and unsigned/confirmed swap PSBTs."""

    async def fetch_quote(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def get_psbt(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def confirm_psbt(self, payload: dict[str, Any]) -> dict[str, Any]: ...


@runtime_checkable
class LendingVenue(Protocol):
    """Lending venue: auth challenges, offers and loan-lifecycle PSBTs."""

    async def auth_prepare(
        self, ordinals_address: str, payment_address: str, wallet: str,
    ) -> dict[str, Any]: ...

    async def auth_submit(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def get_borrow_offers(
        self, token: str, rune_id: str, rune_amount: str,
    ) -> dict[str, Any]: ...

    async def start_loan_prepare(self, token: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def start_loan_submit(self, token: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def repay_prepare(self, token: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def repay_submit(self, token: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def get_portfolio(self, token: str) -> dict[str, Any]: ...


@runtime_checkable
class WalletSigner(Protocol):
    """Out-of-process signer. Returns signed base64, or None if declined."""

    async def sign_psbt(self, psbt_base64: str) -> str | None: ...


@runtime_checkable
class FeeEstimator(Protocol):
    async def get_fee_rates(self) -> FeeRates: ...


@runtime_checkable
class TokenRepository(Protocol):
    """Persistence for session tokens, one row per wallet address."""

    async def fetch(self, wallet_address: str) -> SessionToken | None: ...

    async def upsert(self, token: SessionToken) -> None: ...

    async def touch(self, wallet_address: str, at: datetime) -> None: ...


@runtime_checkable
class AdmissionControl(Protocol):
    """Key-scoped admission; swap for a shared counter service when scaled out."""

    def admit(self, key: str, limit: int, window_ms: int) -> RateLimitDecision: ...

    def count(self, key: str) -> int: ...


@runtime_checkable
class StateCache(Protocol):
    """Snapshot cache (Redis)."""

    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...
