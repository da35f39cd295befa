"""Quote, asset and venue order models."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from runeswap.models.timestamps import UtcDatetime

SWAP_QUOTE_TTL = timedelta(seconds=60)

_NUMERIC_ORDER_FIELDS = ("price", "formattedAmount", "listingAmount", "slippage")


class QuoteSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class Asset(BaseModel):
    """One side of a swap: BTC or a Rune."""

    name: str
    is_btc: bool = False

    model_config = {"frozen": True}


BTC = Asset(name="BTC", is_btc=True)


def normalize_rune_name(name: str) -> str:
    """Strip spacer characters (bullets and dots) from a Rune name."""
    return name.replace("•", "").replace(".", "")


class RuneOrder(BaseModel):
    """A venue order reference selected by a quote.

    Only the fields the venue requires are typed; everything else the venue
    returned is kept and resent untouched.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    id: str = Field(min_length=1)
    market: str = Field(min_length=1)
    price: float
    formatted_amount: float = Field(alias="formattedAmount")

    @model_validator(mode="before")
    @classmethod
    def _patch_venue_fields(cls, data: Any) -> Any:
        """Coerce numeric strings to numbers and upper-case ``side``."""
        if not isinstance(data, dict):
            return data
        patched = dict(data)
        for key in _NUMERIC_ORDER_FIELDS:
            value = patched.get(key)
            if isinstance(value, str):
                try:
                    patched[key] = float(value)
                except ValueError:
                    pass
        side = patched.get("side")
        if isinstance(side, str):
            patched["side"] = side.upper()
        return patched

    def to_venue(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Quote(BaseModel):
    """A venue-priced swap proposal, valid for a bounded time.

    Quotes are never mutated; an expired quote is discarded and refetched.
    """

    id: UUID = Field(default_factory=uuid4)
    input_asset: Asset
    output_asset: Asset
    amount: Decimal
    side: QuoteSide
    selected_orders: list[RuneOrder] = Field(default_factory=list)
    fetched_at: UtcDatetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    raw: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def is_sell(self) -> bool:
        return self.side == QuoteSide.SELL

    @property
    def rune_asset(self) -> Asset | None:
        """The single non-BTC asset of the pair, or None if malformed."""
        runes = [a for a in (self.input_asset, self.output_asset) if not a.is_btc]
        if len(runes) != 1:
            return None
        return runes[0]

    def age(self, now: datetime) -> timedelta:
        return now - self.fetched_at
