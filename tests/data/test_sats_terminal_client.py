"""Tests for the SatsTerminal client and swap response parsing."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import pytest

from runeswap.config.loader import ConfigError
from runeswap.data.sats_terminal_client import (
    SatsTerminalClient,
    confirmation_failure,
    extract_tx_id,
    parse_swap_proposal,
)
from runeswap.errors import ConfirmationFailedError, FeeTooLowError, UpstreamError


class TestParsing:
    def test_parse_proposal(self) -> None:
        proposal = parse_swap_proposal(
            {"psbtBase64": "cHNidP8", "swapId": "s1", "rbfProtected": {"base64": "rbf"}}, 12.0,
        )
        assert proposal.proposal_id == "s1"
        assert proposal.psbt_base64 == "cHNidP8"
        assert proposal.rbf_psbt_base64 == "rbf"
        assert proposal.built_with_fee_rate == 12.0

    def test_parse_legacy_psbt_field(self) -> None:
        assert parse_swap_proposal({"psbt": "old", "swapId": "s1"}, None).psbt_base64 == "old"

    def test_parse_missing_swap_id(self) -> None:
        with pytest.raises(UpstreamError, match="Invalid PSBT data received from API"):
            parse_swap_proposal({"psbtBase64": "cHNidP8"}, 12.0)

    def test_extract_tx_id(self) -> None:
        assert extract_tx_id({"txid": "t1"}) == "t1"
        assert extract_tx_id({"rbfProtection": {"fundsPreparationTxId": "t2"}}) == "t2"
        assert extract_tx_id({}) is None

    def test_confirmation_failure(self) -> None:
        assert confirmation_failure({"txid": "t1"}) is None
        assert isinstance(confirmation_failure({"error": "fee too low"}), FeeTooLowError)
        failure = confirmation_failure({"error": "inputs spent"})
        assert isinstance(failure, ConfirmationFailedError)
        assert failure.details == "inputs spent"

    def test_error_with_txid_is_failure(self) -> None:
        assert confirmation_failure({"txid": "t1", "error": "partial"}) is not None


@pytest.fixture()
def client() -> SatsTerminalClient:
    c = SatsTerminalClient(api_key="test-key", psbt_path="/psbt", confirm_path="/confirm")
    c._transport = AsyncMock()
    c._transport.request = AsyncMock(return_value={"ok": True})
    return c


class TestSatsTerminalClient:
    @pytest.mark.asyncio()
    async def test_missing_api_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SATS_TERMINAL_API_KEY", raising=False)
        client = SatsTerminalClient()
        with pytest.raises(ConfigError, match="Missing SatsTerminal API Key"):
            await client.fetch_quote({"btcAmount": "0.001"})

    def test_api_key_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SATS_TERMINAL_API_KEY", "env-key")
        assert SatsTerminalClient()._api_key == "env-key"

    @pytest.mark.asyncio()
    async def test_paths(self, client: SatsTerminalClient) -> None:
        payload: dict[str, Any] = {"runeName": "DOG"}
        await client.get_psbt(payload)
        await client.confirm_psbt(payload)
        await client.fetch_quote(payload)
        paths = [call.args[1] for call in client._transport.request.call_args_list]  # type: ignore[attr-defined]
        assert paths == ["/psbt", "/confirm", "/v1/runes/quote"]
