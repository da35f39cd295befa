"""Loan start and repayment orchestration against the lending venue."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from runeswap.core.logging import get_logger
from runeswap.errors import (
    QuoteExpiredError,
    RuneSwapError,
    SigningCancelledError,
    ValidationError,
)
from runeswap.execution.psbt_exchange import (
    BorrowProposalMapper,
    ProposalMapper,
    PsbtExchange,
    RepayProposalMapper,
)
from runeswap.execution.quote_window import QuoteWindow, utc_now
from runeswap.execution.swap_orchestrator import (
    MISSING_DETAILS_MESSAGE,
    AttemptDriver,
    SwapAttempt,
)
from runeswap.models.loan import BorrowPrepare
from runeswap.models.swap import SwapEvent, SwapEventKind

if TYPE_CHECKING:
    from runeswap.execution.session_store import SessionTokenStore
    from runeswap.interfaces import LendingVenue, WalletSigner
    from runeswap.models.loan import LoanOffer
    from runeswap.models.wallet import WalletAccounts

logger = get_logger(__name__)

DEFAULT_REPAY_FEE_RATE = 5.0


class LoanOrchestrator(AttemptDriver):
    """Borrow and repay flows. No automatic fee retry: loans surface every failure.

    Each call resolves the wallet's session token first; an absent or
    expired token ends the attempt before any venue call.
    """

    def __init__(
        self,
        venue: LendingVenue,
        sessions: SessionTokenStore,
        signer: WalletSigner,
        quote_window: QuoteWindow | None = None,
        wallet_kind: str = "xverse",
        clock: Callable[[], datetime] = utc_now,
        listeners: list[Callable[[SwapEvent], None]] | None = None,
    ) -> None:
        super().__init__(signer, clock=clock, listeners=listeners)
        self._venue = venue
        self._sessions = sessions
        self._window = quote_window or QuoteWindow(clock=clock)
        self._wallet_kind = wallet_kind

    async def start_loan(
        self,
        offer: LoanOffer,
        token_amount: str,
        wallet: WalletAccounts,
        fee_rate: float,
        attempt: SwapAttempt | None = None,
    ) -> SwapAttempt:
        """Borrow against ``offer``; ``attempt.tx_id`` is the loan transaction id."""
        attempt = attempt or SwapAttempt()
        self._begin(attempt)

        if not wallet.is_complete:
            self._fail(attempt, ValidationError(MISSING_DETAILS_MESSAGE))
            return attempt

        try:
            token = await self._sessions.get_valid_token(wallet.address)
        except RuneSwapError as exc:
            self._fail(attempt, exc)
            return attempt

        try:
            self._window.ensure_offer_valid(offer)
        except QuoteExpiredError as exc:
            self._expire(attempt, exc, exc.message)
            return attempt

        request = BorrowPrepare(
            instant_offer_id=offer.offer_id,
            fee_rate=fee_rate,
            token_amount=token_amount,
            borrower_payment_address=wallet.payment_address,
            borrower_payment_pubkey=wallet.payment_public_key,
            borrower_ordinal_address=wallet.address,
            borrower_ordinal_pubkey=wallet.public_key,
            borrower_wallet=self._wallet_kind,
        )
        logger.info(
            "loan_orchestrator.start_loan",
            attempt_id=attempt.id,
            offer_id=offer.offer_id,
            token_amount=token_amount,
            fee_rate=fee_rate,
        )
        return await self._drive(
            attempt, BorrowProposalMapper(self._venue, token, request), fee_rate,
        )

    async def repay(
        self,
        loan_id: str,
        wallet: WalletAccounts,
        fee_rate: float | None = None,
        attempt: SwapAttempt | None = None,
    ) -> SwapAttempt:
        """Repay ``loan_id``; ``attempt.tx_id`` is the repayment transaction id."""
        attempt = attempt or SwapAttempt()
        self._begin(attempt)

        try:
            token = await self._sessions.get_valid_token(wallet.address)
        except RuneSwapError as exc:
            self._fail(attempt, exc)
            return attempt

        rate = fee_rate if fee_rate is not None and fee_rate > 0 else DEFAULT_REPAY_FEE_RATE
        logger.info("loan_orchestrator.repay", attempt_id=attempt.id, loan_id=loan_id, fee_rate=rate)
        return await self._drive(
            attempt, RepayProposalMapper(self._venue, token, loan_id), rate,
        )

    async def _drive(
        self,
        attempt: SwapAttempt,
        mapper: ProposalMapper,
        fee_rate: float,
    ) -> SwapAttempt:
        self._emit(attempt, SwapEventKind.SWAP_START, fee_rate=fee_rate)
        exchange = PsbtExchange(mapper, self._ledger)
        try:
            confirmation = await self._run_exchange(attempt, exchange, fee_rate)
        except SigningCancelledError as exc:
            self._cancel(attempt, exc)
            return attempt
        except QuoteExpiredError as exc:
            self._expire(attempt, exc, exc.message)
            self._emit(attempt, SwapEventKind.SWAP_ERROR, error=exc.message)
            return attempt
        except RuneSwapError as exc:
            self._fail(attempt, exc)
            return attempt

        self._succeed(attempt, confirmation)
        return attempt
