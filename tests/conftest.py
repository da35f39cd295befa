"""Shared test fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path  # noqa: TCH003
from typing import Any
from unittest.mock import AsyncMock

import pytest

from runeswap.config.loader import ConfigLoader
from runeswap.models.fees import FeeRates
from runeswap.models.quote import BTC, Asset, Quote, QuoteSide, RuneOrder
from runeswap.models.wallet import WalletAccounts

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Settable clock for quote windows, token expiry and event stamps."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture()
def config_dir(tmp_path: Path) -> Path:
    """Create a temp config directory with default.toml."""
    config = tmp_path / "config"
    config.mkdir()

    default_toml = config / "default.toml"
    default_toml.write_text(
        """\
[server]
host = "127.0.0.1"
port = 8100

[rate_limit]
limit = 30
window_ms = 60000

[swap]
quote_ttl_seconds = 60

[transport]
timeout_seconds = 10.0
retries = 2
retry_delay_seconds = 1.0

[liquidium]
base_url = "https://alpha.liquidium.wtf"
default_wallet = "xverse"
default_repay_fee_rate = 5
"""
    )
    return config


@pytest.fixture()
def config_loader(config_dir: Path) -> ConfigLoader:
    loader = ConfigLoader(config_dir=config_dir)
    loader.load()
    return loader


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def wallet() -> WalletAccounts:
    return WalletAccounts(
        address="bc1pordinals000",
        public_key="02ordinalspub",
        payment_address="bc1qpayment000",
        payment_public_key="03paymentpub",
    )


def make_order(**overrides: Any) -> RuneOrder:
    data: dict[str, Any] = {
        "id": "order-1",
        "market": "MagicEden",
        "price": "1.25",
        "formattedAmount": "1000",
        "side": "sell",
    }
    data.update(overrides)
    return RuneOrder.model_validate(data)


@pytest.fixture()
def order() -> RuneOrder:
    return make_order()


@pytest.fixture()
def quote(order: RuneOrder, clock: FakeClock) -> Quote:
    return Quote(
        input_asset=BTC,
        output_asset=Asset(name="DOG•GO•TO•THE•MOON"),
        amount=Decimal("0.001"),
        side=QuoteSide.BUY,
        selected_orders=[order],
        fetched_at=clock.now,
    )


@pytest.fixture()
def fee_rates() -> FeeRates:
    return FeeRates(fastestFee=30, halfHourFee=20, hourFee=12, economyFee=8, minimumFee=2)


@pytest.fixture()
def fee_estimator(fee_rates: FeeRates) -> AsyncMock:
    estimator = AsyncMock()
    estimator.get_fee_rates = AsyncMock(return_value=fee_rates)
    return estimator


@pytest.fixture()
def signer() -> AsyncMock:
    s = AsyncMock()
    s.sign_psbt = AsyncMock(side_effect=lambda psbt: f"signed:{psbt}")
    return s


@pytest.fixture()
def liquidity_venue() -> AsyncMock:
    venue = AsyncMock()
    venue.fetch_quote = AsyncMock(return_value={"selectedOrders": [], "totalFormattedAmount": "1000"})
    venue.get_psbt = AsyncMock(return_value={"psbtBase64": "cHNidP8-swap", "swapId": "swap-1"})
    venue.confirm_psbt = AsyncMock(return_value={"txid": "tx-abc"})
    return venue


@pytest.fixture()
def lending_venue() -> AsyncMock:
    venue = AsyncMock()
    venue.auth_prepare = AsyncMock(return_value={"ordinals": {"message": "sign me", "nonce": "n1"}})
    venue.auth_submit = AsyncMock(return_value={"user_jwt": "header.payload.sig"})
    venue.get_borrow_offers = AsyncMock(return_value={"runeDetails": {}, "offers": []})
    venue.start_loan_prepare = AsyncMock(
        return_value={"base64_psbt": "cHNidP8-borrow", "prepare_offer_id": "prep-1"},
    )
    venue.start_loan_submit = AsyncMock(return_value={"loan_transaction_id": "loan-tx-1"})
    venue.repay_prepare = AsyncMock(return_value={"psbt": "cHNidP8-repay", "offer_id": "loan-9"})
    venue.repay_submit = AsyncMock(return_value={"repayment_transaction_id": "repay-tx-1"})
    venue.get_portfolio = AsyncMock(return_value={"borrower": {"runes": {"loans": []}}})
    return venue
