"""Swap execution orchestrator.

An attempt is a ``SwapState`` value advanced only by ``apply_event``; every
transition is appended to the attempt's event log and written to the audit
trail, so the timeline can be replayed from the log alone.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from runeswap.core.logging import get_logger, log_swap_event
from runeswap.errors import (
    FeeTooLowError,
    InvalidTransitionError,
    QuoteExpiredError,
    RuneSwapError,
    SigningCancelledError,
    ValidationError,
)
from runeswap.execution.psbt_exchange import ConfirmationLedger, PsbtExchange, SwapProposalMapper
from runeswap.execution.quote_window import QuoteWindow, utc_now
from runeswap.models.fees import DEFAULT_FEE_RATES, FeeRates, initial_fee, next_fee
from runeswap.models.swap import SwapEvent, SwapEventKind, SwapState, SwapStep

if TYPE_CHECKING:
    from runeswap.interfaces import FeeEstimator, LiquidityVenue, WalletSigner
    from runeswap.models.proposal import Confirmation
    from runeswap.models.quote import Quote
    from runeswap.models.wallet import WalletAccounts

logger = get_logger(__name__)

MISSING_DETAILS_MESSAGE = "Missing wallet connection details or rune name"
QUOTE_EXPIRED_MESSAGE = "Quote expired. Please fetch a new one."
FEE_RETRY_MESSAGE = "Fee rate too low, automatically retrying with a higher fee rate..."
FEE_RETRY_EXHAUSTED_MESSAGE = (
    "Transaction failed even with a higher fee rate. The network may be "
    "congested. Please try again later."
)
CANCELLED_MESSAGE = "User canceled the request"

# One automatic fee bump per attempt; a second rejection is surfaced.
MAX_FEE_RETRIES = 1


def apply_event(state: SwapState, event: SwapEvent) -> SwapState:
    """Pure transition function for attempt state."""
    kind = event.kind
    if kind == SwapEventKind.SWAP_START:
        return SwapState(step=SwapStep.IDLE, in_progress=True, fee_rate=event.fee_rate)
    if kind == SwapEventKind.SWAP_STEP:
        update: dict[str, Any] = {"step": event.step}
        if event.proposal_id is not None:
            update["proposal_id"] = event.proposal_id
        return state.model_copy(update=update)
    if kind == SwapEventKind.FEE_RETRY:
        return state.model_copy(update={
            "fee_rate": event.fee_rate,
            "fee_retries": state.fee_retries + 1,
            "proposal_id": None,
        })
    if kind == SwapEventKind.SWAP_SUCCESS:
        return state.model_copy(update={
            "step": SwapStep.SUCCESS,
            "in_progress": False,
            "tx_id": event.tx_id,
            "error": None,
            "generic_error": None,
        })
    if kind == SwapEventKind.SWAP_ERROR:
        return state.model_copy(update={
            "step": SwapStep.ERROR,
            "in_progress": False,
            "error": event.error,
        })
    if kind == SwapEventKind.QUOTE_EXPIRED:
        return state.model_copy(update={
            "step": SwapStep.QUOTE_EXPIRED,
            "in_progress": False,
            "proposal_id": None,
        })
    if kind == SwapEventKind.GENERIC_ERROR:
        return state.model_copy(update={"generic_error": event.error})
    if kind == SwapEventKind.RESET_SWAP:
        return SwapState()
    msg = f"Unhandled swap event: {kind}"
    raise ValueError(msg)


@dataclass
class SwapAttempt:
    """One user-initiated swap (or loan) attempt and its ordered timeline."""

    id: str = field(default_factory=lambda: str(uuid4()))
    state: SwapState = field(default_factory=SwapState)
    events: list[SwapEvent] = field(default_factory=list)
    failure: RuneSwapError | None = None
    closed: bool = False

    @property
    def event_kinds(self) -> list[SwapEventKind]:
        return [e.kind for e in self.events]

    @property
    def tx_id(self) -> str | None:
        return self.state.tx_id


class AttemptDriver:
    """Event emission plus one prepare/sign/submit pass.

    Shared by the swap and loan orchestrators so both produce the same
    event log shape.
    """

    def __init__(
        self,
        signer: WalletSigner,
        clock: Callable[[], datetime] = utc_now,
        listeners: list[Callable[[SwapEvent], None]] | None = None,
    ) -> None:
        self._signer = signer
        self._clock = clock
        self._listeners = listeners or []
        self._ledger = ConfirmationLedger()

    def _emit(self, attempt: SwapAttempt, kind: SwapEventKind, **fields: Any) -> SwapEvent:
        event = SwapEvent(kind=kind, at=self._clock(), **fields)
        attempt.state = apply_event(attempt.state, event)
        attempt.events.append(event)
        log_swap_event(
            kind.value.lower(),
            attempt.id,
            **{k: (v.value if isinstance(v, SwapStep) else v) for k, v in fields.items()},
        )
        for listener in self._listeners:
            listener(event)
        return event

    def _fail(self, attempt: SwapAttempt, error: RuneSwapError, message: str | None = None) -> None:
        text = message or error.message
        attempt.failure = error
        self._emit(attempt, SwapEventKind.GENERIC_ERROR, error=text)
        self._emit(attempt, SwapEventKind.SWAP_ERROR, error=text)

    def _cancel(self, attempt: SwapAttempt, error: SigningCancelledError) -> None:
        attempt.failure = error
        self._emit(attempt, SwapEventKind.RESET_SWAP)
        self._emit(attempt, SwapEventKind.GENERIC_ERROR, error=CANCELLED_MESSAGE)

    def _expire(self, attempt: SwapAttempt, error: QuoteExpiredError, message: str) -> None:
        attempt.failure = error
        self._emit(attempt, SwapEventKind.QUOTE_EXPIRED)
        self._emit(attempt, SwapEventKind.GENERIC_ERROR, error=message)

    def _begin(self, attempt: SwapAttempt) -> None:
        if attempt.closed:
            raise InvalidTransitionError("Attempt already completed", details=attempt.id)
        if attempt.state.in_progress:
            raise InvalidTransitionError("Attempt already in progress", details=attempt.id)
        attempt.failure = None

    async def _run_exchange(
        self,
        attempt: SwapAttempt,
        exchange: PsbtExchange,
        fee_rate: float | None,
    ) -> Confirmation:
        self._emit(attempt, SwapEventKind.SWAP_STEP, step=SwapStep.GETTING_PSBT, fee_rate=fee_rate)
        proposal = await exchange.prepare(fee_rate)

        self._emit(
            attempt, SwapEventKind.SWAP_STEP,
            step=SwapStep.SIGNING, proposal_id=proposal.proposal_id,
        )
        signed = await exchange.request_signature(self._signer)

        self._emit(
            attempt, SwapEventKind.SWAP_STEP,
            step=SwapStep.CONFIRMING, proposal_id=proposal.proposal_id,
        )
        return await exchange.submit(signed)

    def _succeed(self, attempt: SwapAttempt, confirmation: Confirmation) -> None:
        self._emit(
            attempt, SwapEventKind.SWAP_SUCCESS,
            tx_id=confirmation.tx_id, proposal_id=confirmation.proposal_id,
        )
        attempt.closed = True


class SwapOrchestrator(AttemptDriver):
    """Drives quote validation, PSBT exchange and the one-shot fee retry."""

    def __init__(
        self,
        venue: LiquidityVenue,
        signer: WalletSigner,
        fee_estimator: FeeEstimator | None = None,
        quote_window: QuoteWindow | None = None,
        clock: Callable[[], datetime] = utc_now,
        listeners: list[Callable[[SwapEvent], None]] | None = None,
    ) -> None:
        super().__init__(signer, clock=clock, listeners=listeners)
        self._venue = venue
        self._fees = fee_estimator
        self._window = quote_window or QuoteWindow(clock=clock)

    async def _fee_rates(self) -> FeeRates:
        if self._fees is None:
            return DEFAULT_FEE_RATES
        return await self._fees.get_fee_rates()

    async def execute(
        self,
        quote: Quote,
        wallet: WalletAccounts,
        fee_rate: float | None = None,
        attempt: SwapAttempt | None = None,
        rbf_protection: bool = False,
        slippage: float | None = None,
    ) -> SwapAttempt:
        """Run one swap attempt to a terminal state.

        Failures are recorded on the returned attempt (``failure`` plus the
        event log) rather than raised. Only driving a closed or running
        attempt raises.
        """
        attempt = attempt or SwapAttempt()
        self._begin(attempt)

        rune = quote.rune_asset
        if not wallet.is_complete or rune is None:
            logger.warning(
                "swap_orchestrator.missing_details",
                attempt_id=attempt.id,
                wallet_complete=wallet.is_complete,
                has_rune=rune is not None,
            )
            self._fail(attempt, ValidationError(MISSING_DETAILS_MESSAGE))
            return attempt

        try:
            self._window.ensure_valid(quote)
        except QuoteExpiredError as exc:
            self._expire(attempt, exc, QUOTE_EXPIRED_MESSAGE)
            return attempt

        rates = await self._fee_rates()
        choice = initial_fee(rates, quote.is_sell, fee_rate)
        mapper = SwapProposalMapper(
            self._venue,
            quote.selected_orders,
            wallet,
            rune.name,
            sell=quote.is_sell,
            rbf_protection=rbf_protection,
            slippage=slippage,
        )
        self._emit(attempt, SwapEventKind.SWAP_START, fee_rate=choice.rate)

        while True:
            exchange = PsbtExchange(mapper, self._ledger)
            try:
                confirmation = await self._run_exchange(attempt, exchange, choice.rate)
            except SigningCancelledError as exc:
                self._cancel(attempt, exc)
                return attempt
            except FeeTooLowError as exc:
                if attempt.state.fee_retries >= MAX_FEE_RETRIES:
                    self._fail(
                        attempt, exc,
                        f"{FEE_RETRY_EXHAUSTED_MESSAGE} ({exc.details or exc.message})",
                    )
                    return attempt
                choice = next_fee(rates, choice)
                logger.info(
                    "swap_orchestrator.fee_retry",
                    attempt_id=attempt.id,
                    fee_rate=choice.rate,
                    tier=choice.tier.value if choice.tier else None,
                )
                self._emit(attempt, SwapEventKind.GENERIC_ERROR, error=FEE_RETRY_MESSAGE)
                self._emit(attempt, SwapEventKind.FEE_RETRY, fee_rate=choice.rate)
                continue
            except QuoteExpiredError as exc:
                self._expire(attempt, exc, exc.message)
                self._emit(attempt, SwapEventKind.SWAP_ERROR, error=exc.message)
                return attempt
            except RuneSwapError as exc:
                self._fail(attempt, exc)
                return attempt

            self._succeed(attempt, confirmation)
            return attempt
