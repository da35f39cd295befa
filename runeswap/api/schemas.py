"""Request bodies for the HTTP surface.

Everything a route forwards to a venue is validated here first; a failing
body never reaches a venue or the token store.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any
from uuid import UUID

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field, StringConstraints

from runeswap.models.quote import RuneOrder
from runeswap.models.session import AuthSubmission
from runeswap.models.timestamps import UtcDatetime
from runeswap.models.wallet import WalletAccounts

_RUNE_NAME = re.compile(r"^[A-Z•.]+$")
_DIGITS = re.compile(r"^\d+$")


def sanitize_amount(value: str) -> str:
    """Normalise a localized amount string (``1.234,56`` -> ``1234.56``).

    When both separators appear the later one is the decimal point; a lone
    comma is a decimal comma.
    """
    text = value.strip().replace(" ", "").replace("_", "")
    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", ".")
    return text


def _positive_amount(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int, float, Decimal)):
        msg = "Invalid amount (must be a positive number)"
        raise ValueError(msg)
    text = sanitize_amount(str(value))
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        msg = "Invalid amount (must be a positive number)"
        raise ValueError(msg) from None
    if not parsed.is_finite() or parsed <= 0:
        msg = "Invalid amount (must be a positive number)"
        raise ValueError(msg)
    return text


def _rune_name(value: str) -> str:
    if not _RUNE_NAME.match(value):
        msg = "Rune name must be uppercase letters and spacers only"
        raise ValueError(msg)
    return value


def _integer_string(value: str) -> str:
    if not _DIGITS.match(value):
        msg = "Must be a positive integer string"
        raise ValueError(msg)
    return value


Amount = Annotated[str, BeforeValidator(_positive_amount)]
Address = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
NonEmpty = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
RuneName = Annotated[
    str,
    StringConstraints(strip_whitespace=True, min_length=1, max_length=32),
    AfterValidator(_rune_name),
]
IntegerString = Annotated[str, StringConstraints(min_length=1), AfterValidator(_integer_string)]


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class QuoteRequest(_Body):
    btc_amount: Amount = Field(alias="btcAmount")
    rune_name: RuneName = Field(alias="runeName")
    address: Address
    sell: bool = False


class _WalletFields(_Body):
    orders: list[RuneOrder]
    address: Address
    public_key: NonEmpty = Field(alias="publicKey")
    payment_address: Address = Field(alias="paymentAddress")
    payment_public_key: NonEmpty = Field(alias="paymentPublicKey")
    rune_name: NonEmpty = Field(alias="runeName")
    sell: bool = False
    rbf_protection: bool = Field(default=False, alias="rbfProtection")

    def wallet(self) -> WalletAccounts:
        return WalletAccounts(
            address=self.address,
            public_key=self.public_key,
            payment_address=self.payment_address,
            payment_public_key=self.payment_public_key,
        )


class PsbtCreateRequest(_WalletFields):
    fee_rate: float | None = Field(default=None, alias="feeRate", gt=0)
    slippage: float | None = None
    quote_fetched_at: UtcDatetime | None = Field(
        default=None, alias="quoteFetchedAt",
    )


class PsbtConfirmRequest(_WalletFields):
    signed_psbt_base64: NonEmpty = Field(alias="signedPsbtBase64")
    swap_id: NonEmpty = Field(alias="swapId")
    signed_rbf_psbt_base64: str | None = Field(default=None, alias="signedRbfPsbtBase64")


class AuthRequest(_Body):
    ordinals_address: Address = Field(alias="ordinalsAddress")
    payment_address: Address = Field(alias="paymentAddress")
    ordinals_signature: NonEmpty = Field(alias="ordinalsSignature")
    ordinals_nonce: NonEmpty = Field(alias="ordinalsNonce")
    payment_signature: str | None = Field(default=None, alias="paymentSignature")
    payment_nonce: str | None = Field(default=None, alias="paymentNonce")

    def submission(self) -> AuthSubmission:
        return AuthSubmission(
            ordinals_address=self.ordinals_address,
            payment_address=self.payment_address,
            ordinals_signature=self.ordinals_signature,
            ordinals_nonce=self.ordinals_nonce,
            payment_signature=self.payment_signature,
            payment_nonce=self.payment_nonce,
        )


class BorrowPrepareRequest(_Body):
    instant_offer_id: UUID
    fee_rate: float = Field(gt=0)
    token_amount: IntegerString
    borrower_payment_address: Address
    borrower_payment_pubkey: NonEmpty
    borrower_ordinal_address: Address
    borrower_ordinal_pubkey: NonEmpty
    collateral_asset_id: str | None = None
    address: Address


class BorrowSubmitRequest(_Body):
    signed_psbt_base_64: NonEmpty
    prepare_offer_id: UUID
    address: Address


class RepayRequest(_Body):
    loan_id: NonEmpty = Field(alias="loanId")
    address: Address
    signed_psbt: str | None = Field(default=None, alias="signedPsbt")
    fee_rate: float | None = Field(default=None, alias="feeRate")
