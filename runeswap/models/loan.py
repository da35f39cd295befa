"""Loan offer and loan operation models."""

from __future__ import annotations

from datetime import datetime  # noqa: TCH003
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from runeswap.models.timestamps import UtcDatetime


class LoanOffer(BaseModel):
    """A lending venue's instant loan offer."""

    offer_id: str
    fungible_amount: float | None = None
    loan_term_days: int | None = None
    ltv_rate: float | None = None
    expires_at: UtcDatetime | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def is_valid(self, now: datetime) -> bool:
        return self.expires_at is None or now < self.expires_at


class BorrowRange(BaseModel):
    """Collateral bounds the lending venue accepts for one rune.

    Amounts are integer strings in the rune's base units.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    rune_id: str = Field(alias="runeId")
    min_amount: str = Field(alias="minAmount")
    max_amount: str = Field(alias="maxAmount")
    loan_term_days: list[int] = Field(default_factory=list, alias="loanTermDays")
    cached: bool = False
    updated_at: UtcDatetime = Field(alias="updatedAt")
    no_offers_available: bool = Field(default=False, alias="noOffersAvailable")

    def to_response(self) -> dict[str, Any]:
        body = self.model_dump(by_alias=True, mode="json")
        if not self.no_offers_available:
            body.pop("noOffersAvailable")
        return body


class BorrowPrepare(BaseModel):
    kind: Literal["borrow_prepare"] = "borrow_prepare"
    instant_offer_id: str
    fee_rate: float
    token_amount: str
    borrower_payment_address: str
    borrower_payment_pubkey: str
    borrower_ordinal_address: str
    borrower_ordinal_pubkey: str
    borrower_wallet: str = "xverse"
    collateral_asset_id: str | None = None

    def to_venue(self) -> dict[str, Any]:
        # collateral_asset_id is resolved locally and never forwarded
        return self.model_dump(exclude={"kind", "collateral_asset_id"})


class BorrowSubmit(BaseModel):
    kind: Literal["borrow_submit"] = "borrow_submit"
    signed_psbt_base_64: str
    prepare_offer_id: str

    def to_venue(self) -> dict[str, Any]:
        return self.model_dump(exclude={"kind"})


class RepayPrepare(BaseModel):
    kind: Literal["repay_prepare"] = "repay_prepare"
    offer_id: str
    fee_rate: float

    def to_venue(self) -> dict[str, Any]:
        return self.model_dump(exclude={"kind"})


class RepaySubmit(BaseModel):
    kind: Literal["repay_submit"] = "repay_submit"
    offer_id: str
    signed_psbt_base_64: str

    def to_venue(self) -> dict[str, Any]:
        return self.model_dump(exclude={"kind"})


LoanOperation = Annotated[
    Union[BorrowPrepare, BorrowSubmit, RepayPrepare, RepaySubmit],
    Field(discriminator="kind"),
]
