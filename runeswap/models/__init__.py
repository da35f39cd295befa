from runeswap.models.fees import DEFAULT_FEE_RATES, FeeChoice, FeeRates, FeeTier
from runeswap.models.loan import (
    BorrowPrepare,
    BorrowRange,
    BorrowSubmit,
    LoanOffer,
    LoanOperation,
    RepayPrepare,
    RepaySubmit,
)
from runeswap.models.proposal import (
    Confirmation,
    OperationKind,
    SignedProposal,
    UnsignedProposal,
)
from runeswap.models.quote import BTC, Asset, Quote, QuoteSide, RuneOrder
from runeswap.models.session import AuthSubmission, SessionToken
from runeswap.models.swap import SwapEvent, SwapEventKind, SwapState, SwapStep
from runeswap.models.wallet import WalletAccounts

__all__ = [
    "BTC",
    "DEFAULT_FEE_RATES",
    "Asset",
    "AuthSubmission",
    "BorrowPrepare",
    "BorrowRange",
    "BorrowSubmit",
    "Confirmation",
    "FeeChoice",
    "FeeRates",
    "FeeTier",
    "LoanOffer",
    "LoanOperation",
    "OperationKind",
    "Quote",
    "QuoteSide",
    "RepayPrepare",
    "RepaySubmit",
    "RuneOrder",
    "SessionToken",
    "SignedProposal",
    "SwapEvent",
    "SwapEventKind",
    "SwapState",
    "SwapStep",
    "UnsignedProposal",
    "WalletAccounts",
]
