"""Liquidium lending venue REST client."""

from __future__ import annotations

import os
from typing import Any
from urllib.parse import quote

from runeswap.config.loader import ConfigError
from runeswap.core.logging import get_logger, mask_secret
from runeswap.data.transport import VenueTransport

log = get_logger(__name__)


class LiquidiumClient:
    """Async REST client for the Liquidium API.

    Reads the API key from LIQUIDIUM_API_KEY. Calls made on behalf of a
    wallet carry that wallet's session token as the bearer credential.
    """

    def __init__(
        self,
        base_url: str = "https://alpha.liquidium.wtf",
        timeout_seconds: float = 10.0,
        retries: int = 2,
        retry_delay_seconds: float = 1.0,
        api_key: str | None = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else os.environ.get("LIQUIDIUM_API_KEY", "")
        self._transport = VenueTransport(
            base_url,
            headers={"x-api-key": self._api_key} if self._api_key else {},
            timeout_seconds=timeout_seconds,
            retries=retries,
            retry_delay_seconds=retry_delay_seconds,
        )

        if self._api_key:
            log.info("liquidium_client.init", api_key=mask_secret(self._api_key))

    @staticmethod
    def _user_headers(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def _call(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not self._api_key:
            msg = "Server configuration error: Missing Liquidium API Key"
            raise ConfigError(msg)
        result: dict[str, Any] = await self._transport.request(
            method,
            path,
            json=json,
            params=params,
            headers=self._user_headers(token) if token else None,
        )
        return result

    async def auth_prepare(
        self,
        ordinals_address: str,
        payment_address: str,
        wallet: str = "xverse",
    ) -> dict[str, Any]:
        """Fetch the signing challenge (message + nonce per address)."""
        log.info("liquidium_client.auth_prepare", ordinals_address=ordinals_address, wallet=wallet)
        return await self._call(
            "POST",
            "/api/v1/auth/prepare",
            json={
                "payment_address": payment_address,
                "ordinals_address": ordinals_address,
                "wallet": wallet,
            },
        )

    async def auth_submit(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Submit signed challenges; the response carries ``user_jwt``."""
        log.info(
            "liquidium_client.auth_submit",
            ordinals_address=payload.get("ordinals", {}).get("address"),
            with_payment=("payment" in payload),
        )
        return await self._call("POST", "/api/v1/auth/submit", json=payload)

    async def get_borrow_offers(self, token: str, rune_id: str, rune_amount: str) -> dict[str, Any]:
        """Instant loan offers for an amount of Rune collateral."""
        return await self._call(
            "GET",
            f"/api/v1/borrower/collateral/runes/{quote(rune_id, safe='')}/offers",
            token=token,
            params={"rune_amount": rune_amount},
        )

    async def start_loan_prepare(self, token: str, payload: dict[str, Any]) -> dict[str, Any]:
        log.info(
            "liquidium_client.start_loan_prepare",
            instant_offer_id=payload.get("instant_offer_id"),
            fee_rate=payload.get("fee_rate"),
        )
        return await self._call(
            "POST", "/api/v1/borrower/loans/start/prepare", token=token, json=payload,
        )

    async def start_loan_submit(self, token: str, payload: dict[str, Any]) -> dict[str, Any]:
        log.info(
            "liquidium_client.start_loan_submit",
            prepare_offer_id=payload.get("prepare_offer_id"),
        )
        return await self._call(
            "POST", "/api/v1/borrower/loans/start/submit", token=token, json=payload,
        )

    async def repay_prepare(self, token: str, payload: dict[str, Any]) -> dict[str, Any]:
        log.info(
            "liquidium_client.repay_prepare",
            offer_id=payload.get("offer_id"),
            fee_rate=payload.get("fee_rate"),
        )
        return await self._call(
            "POST", "/api/v1/borrower/loans/repay/prepare", token=token, json=payload,
        )

    async def repay_submit(self, token: str, payload: dict[str, Any]) -> dict[str, Any]:
        log.info("liquidium_client.repay_submit", offer_id=payload.get("offer_id"))
        return await self._call(
            "POST", "/api/v1/borrower/loans/repay/submit", token=token, json=payload,
        )

    async def get_portfolio(self, token: str) -> dict[str, Any]:
        return await self._call("GET", "/api/v1/portfolio", token=token)

    async def close(self) -> None:
        await self._transport.close()
