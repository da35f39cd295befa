"""SatsTerminal liquidity venue REST client and response parsing."""

from __future__ import annotations

import os
from typing import Any

from runeswap.config.loader import ConfigError
from runeswap.core.logging import get_logger, mask_secret
from runeswap.data.transport import VenueTransport
from runeswap.errors import (
    ConfirmationFailedError,
    FeeTooLowError,
    RuneSwapError,
    UpstreamError,
    is_fee_error,
)
from runeswap.models.proposal import OperationKind, UnsignedProposal

log = get_logger(__name__)


def parse_swap_proposal(
    response: dict[str, Any],
    fee_rate: float | None,
) -> UnsignedProposal:
    """Build an UnsignedProposal from a get-PSBT response.

    The venue returns the PSBT as ``psbtBase64`` (older builds: ``psbt``)
    and an optional RBF-protection PSBT under ``rbfProtected.base64``.
    """
    psbt = response.get("psbtBase64") or response.get("psbt")
    swap_id = response.get("swapId")
    if not psbt or not swap_id:
        log.error(
            "sats_terminal.invalid_psbt_response",
            has_psbt_base64=bool(psbt),
            has_swap_id=bool(swap_id),
        )
        raise UpstreamError("Invalid PSBT data received from API.")

    rbf = response.get("rbfProtected")
    rbf_psbt = rbf.get("base64") if isinstance(rbf, dict) else None
    return UnsignedProposal(
        operation=OperationKind.SWAP,
        proposal_id=str(swap_id),
        psbt_base64=str(psbt),
        built_with_fee_rate=fee_rate,
        rbf_psbt_base64=rbf_psbt or None,
        raw=response,
    )


def extract_tx_id(response: dict[str, Any]) -> str | None:
    """txid, falling back to the RBF funds-preparation txid."""
    tx_id = response.get("txid")
    if tx_id:
        return str(tx_id)
    rbf = response.get("rbfProtection")
    if isinstance(rbf, dict) and rbf.get("fundsPreparationTxId"):
        return str(rbf["fundsPreparationTxId"])
    return None


def confirmation_failure(response: dict[str, Any]) -> RuneSwapError | None:
    """Typed error for a confirm response that carries no transaction id."""
    tx_id = extract_tx_id(response)
    if not response.get("error") and tx_id:
        return None
    details = str(response.get("error") or "No transaction id returned")
    if is_fee_error(details):
        return FeeTooLowError(details=details)
    return ConfirmationFailedError("Confirmation failed", details=details)


class SatsTerminalClient:
    """Async REST client for the SatsTerminal swap API.

    Reads the API key from SATS_TERMINAL_API_KEY.
    """

    def __init__(
        self,
        base_url: str = "https://api.satsterminal.com",
        quote_path: str = "/v1/runes/quote",
        psbt_path: str = "/v1/runes/psbt/create",
        confirm_path: str = "/v1/runes/psbt/confirm",
        timeout_seconds: float = 10.0,
        retries: int = 2,
        retry_delay_seconds: float = 1.0,
        api_key: str | None = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else os.environ.get("SATS_TERMINAL_API_KEY", "")
        self._quote_path = quote_path
        self._psbt_path = psbt_path
        self._confirm_path = confirm_path
        self._transport = VenueTransport(
            base_url,
            headers={"x-api-key": self._api_key} if self._api_key else {},
            timeout_seconds=timeout_seconds,
            retries=retries,
            retry_delay_seconds=retry_delay_seconds,
        )

        if self._api_key:
            log.info("sats_terminal_client.init", api_key=mask_secret(self._api_key))

    def _require_key(self) -> None:
        if not self._api_key:
            msg = "Server configuration error: Missing SatsTerminal API Key"
            raise ConfigError(msg)

    async def fetch_quote(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Fetch a swap quote for ``btcAmount``/``runeName``/``address``/``sell``."""
        self._require_key()
        log.info(
            "sats_terminal_client.fetch_quote",
            rune_name=payload.get("runeName"),
            sell=payload.get("sell"),
        )
        result: dict[str, Any] = await self._transport.request(
            "POST", self._quote_path, json=payload,
        )
        return result

    async def get_psbt(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Request an unsigned swap PSBT for the selected orders."""
        self._require_key()
        log.info(
            "sats_terminal_client.get_psbt",
            rune_name=payload.get("runeName"),
            sell=payload.get("sell"),
            fee_rate=payload.get("feeRate"),
        )
        result: dict[str, Any] = await self._transport.request(
            "POST", self._psbt_path, json=payload,
        )
        return result

    async def confirm_psbt(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Submit a signed swap PSBT under its ``swapId``."""
        self._require_key()
        log.info(
            "sats_terminal_client.confirm_psbt",
            swap_id=payload.get("swapId"),
            rune_name=payload.get("runeName"),
        )
        result: dict[str, Any] = await self._transport.request(
            "POST", self._confirm_path, json=payload,
        )
        return result

    async def close(self) -> None:
        await self._transport.close()
