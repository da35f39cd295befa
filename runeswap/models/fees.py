"""Recommended fee rates and the fee tier ladder."""

from __future__ import annotations

import math
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

_PRIORITY_MULTIPLIER = 1.3


class FeeTier(str, Enum):
    MINIMUM = "minimum"
    ECONOMY = "economy"
    HOUR = "hour"
    HALF_HOUR = "half_hour"
    FASTEST = "fastest"
    PRIORITY = "priority"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)


_TIER_ORDER = list(FeeTier)


class FeeRates(BaseModel):
    """Recommended sat/vB rates as published by mempool-style estimators."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    fastest_fee: float = Field(alias="fastestFee")
    half_hour_fee: float = Field(alias="halfHourFee")
    hour_fee: float = Field(alias="hourFee")
    economy_fee: float = Field(alias="economyFee")
    minimum_fee: float = Field(alias="minimumFee")

    def rate_for(self, tier: FeeTier) -> float:
        if tier == FeeTier.PRIORITY:
            return float(math.ceil(self.fastest_fee * _PRIORITY_MULTIPLIER))
        return {
            FeeTier.MINIMUM: self.minimum_fee,
            FeeTier.ECONOMY: self.economy_fee,
            FeeTier.HOUR: self.hour_fee,
            FeeTier.HALF_HOUR: self.half_hour_fee,
            FeeTier.FASTEST: self.fastest_fee,
        }[tier]


DEFAULT_FEE_RATES = FeeRates(
    fastestFee=25, halfHourFee=20, hourFee=15, economyFee=10, minimumFee=5,
)


class FeeChoice(BaseModel):
    """A fee rate plus the tier it came from (None for explicit rates)."""

    rate: float
    tier: FeeTier | None = None

    model_config = {"frozen": True}


def initial_fee(rates: FeeRates, sell: bool, explicit_rate: float | None = None) -> FeeChoice:
    """Fee for the first prepare call.

    Sells confirm against listings that move, so they start at the fastest
    tier; buys start at half-hour.
    """
    if explicit_rate is not None and explicit_rate > 0:
        return FeeChoice(rate=explicit_rate)
    tier = FeeTier.FASTEST if sell else FeeTier.HALF_HOUR
    return FeeChoice(rate=rates.rate_for(tier), tier=tier)


def next_fee(rates: FeeRates, current: FeeChoice) -> FeeChoice:
    """Move one tier up the ladder from the current choice.

    The result is always strictly above the current rate.
    """
    if current.tier is not None and current.tier != FeeTier.PRIORITY:
        tier = _TIER_ORDER[current.tier.rank + 1]
        rate = rates.rate_for(tier)
        if rate > current.rate:
            return FeeChoice(rate=rate, tier=tier)
    for tier in _TIER_ORDER:
        rate = rates.rate_for(tier)
        if rate > current.rate:
            return FeeChoice(rate=rate, tier=tier)
    return FeeChoice(rate=current.rate + 1, tier=FeeTier.PRIORITY)
