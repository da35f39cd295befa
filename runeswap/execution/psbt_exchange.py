"""Two-phase prepare/sign/submit exchange shared by swaps and loans.

One ``PsbtExchange`` drives a single proposal through
``IDLE -> PREPARING -> AWAITING_SIGNATURE -> SUBMITTING -> CONFIRMED | FAILED``.
Venue specifics live in a ``ProposalMapper``; the exchange itself never
knows which venue it talks to.
"""

from __future__ import annotations

from collections import OrderedDict
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from runeswap.core.logging import get_logger, log_exchange_event
from runeswap.data.sats_terminal_client import (
    confirmation_failure,
    extract_tx_id,
    parse_swap_proposal,
)
from runeswap.errors import (
    ConfirmationFailedError,
    InvalidTransitionError,
    ProposalMismatchError,
    RuneSwapError,
    SigningCancelledError,
    UpstreamError,
    classify_venue_error,
)
from runeswap.models.loan import BorrowPrepare, BorrowSubmit, RepayPrepare, RepaySubmit
from runeswap.models.proposal import (
    Confirmation,
    OperationKind,
    SignedProposal,
    UnsignedProposal,
)
from runeswap.models.quote import RuneOrder, normalize_rune_name

if TYPE_CHECKING:
    from runeswap.interfaces import LendingVenue, LiquidityVenue, WalletSigner
    from runeswap.models.wallet import WalletAccounts

logger = get_logger(__name__)


class ExchangeState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    AWAITING_SIGNATURE = "awaiting_signature"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class ProposalMapper(Protocol):
    """Venue-specific half of the exchange."""

    @property
    def operation(self) -> OperationKind: ...

    async def prepare(self, fee_rate: float | None) -> UnsignedProposal: ...

    async def submit(self, proposal_id: str, signed: SignedProposal) -> Confirmation: ...


class ConfirmationLedger:
    """Bounded record of confirmed submissions; the oldest entries are evicted first.

    Keyed by operation, proposal id and signed PSBT.
    """

    def __init__(self, max_entries: int = 10_000) -> None:
        self._max_entries = max_entries
        self._entries: OrderedDict[tuple[str, str, str], Confirmation] = OrderedDict()

    def get(self, key: tuple[str, str, str]) -> Confirmation | None:
        return self._entries.get(key)

    def record(self, key: tuple[str, str, str], confirmation: Confirmation) -> None:
        self._entries[key] = confirmation
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


def is_cancellation(exc: BaseException) -> bool:
    """Wallets report a user abort as an error whose text mentions cancel."""
    return "cancel" in str(exc).lower()


class PsbtExchange:
    """State machine for one prepare/sign/submit round.

    Confirmations are remembered per ``(proposal_id, signed_psbt)`` so a
    retransmitted submission returns the first confirmation instead of
    reaching the venue again. Pass a shared ``ledger`` to extend that
    guarantee across exchanges.
    """

    def __init__(
        self,
        mapper: ProposalMapper,
        ledger: ConfirmationLedger | None = None,
    ) -> None:
        self._mapper = mapper
        self._ledger = ledger if ledger is not None else ConfirmationLedger()
        self._state = ExchangeState.IDLE
        self._proposal: UnsignedProposal | None = None
        self._proposal_id: str | None = None
        self._failure: RuneSwapError | None = None

    @property
    def state(self) -> ExchangeState:
        return self._state

    @property
    def proposal(self) -> UnsignedProposal | None:
        return self._proposal

    @property
    def failure(self) -> RuneSwapError | None:
        return self._failure

    @property
    def operation(self) -> OperationKind:
        return self._mapper.operation

    def _transition(self, state: ExchangeState, **kwargs: Any) -> None:
        self._state = state
        log_exchange_event(
            state.value,
            self.operation.value,
            self._proposal_id,
            **kwargs,
        )

    def _fail(self, error: RuneSwapError) -> RuneSwapError:
        self._failure = error
        self._transition(ExchangeState.FAILED, reason=error.code, error=error.message)
        return error

    def _require(self, *states: ExchangeState) -> None:
        if self._state not in states:
            expected = ", ".join(s.value for s in states)
            raise InvalidTransitionError(
                f"Cannot {self.operation.value} from state {self._state.value}",
                details=f"expected one of: {expected}",
            )

    async def prepare(self, fee_rate: float | None = None) -> UnsignedProposal:
        """Ask the venue for an unsigned proposal.

        Allowed from IDLE, or from FAILED to supersede a rejected proposal.
        """
        self._require(ExchangeState.IDLE, ExchangeState.FAILED)
        self._proposal = None
        self._proposal_id = None
        self._failure = None
        self._transition(ExchangeState.PREPARING, fee_rate=fee_rate)

        try:
            proposal = await self._mapper.prepare(fee_rate)
        except Exception as exc:
            raise self._fail(
                classify_venue_error(exc, f"Failed to prepare {self.operation.value} PSBT"),
            ) from exc

        self._proposal = proposal
        self._proposal_id = proposal.proposal_id
        self._transition(ExchangeState.AWAITING_SIGNATURE, fee_rate=proposal.built_with_fee_rate)
        return proposal

    def resume(self, proposal_id: str) -> None:
        """Adopt a proposal prepared by an earlier request.

        Used by the HTTP surface, where the client holds the PSBT and signs
        it between two requests; only the id travels back for submission.
        """
        self._require(ExchangeState.IDLE)
        self._proposal = None
        self._proposal_id = proposal_id
        self._transition(ExchangeState.AWAITING_SIGNATURE, resumed=True)

    async def request_signature(self, signer: WalletSigner) -> SignedProposal:
        """Hand the proposal to the wallet signer and wait without a timeout.

        A declined or cancelled signature discards the proposal; a fresh
        ``prepare`` is then required.
        """
        self._require(ExchangeState.AWAITING_SIGNATURE)
        proposal = self._proposal
        if proposal is None:
            raise InvalidTransitionError("No PSBT held for signing; the proposal was resumed by id")

        try:
            signed_psbt = await signer.sign_psbt(proposal.psbt_base64)
        except Exception as exc:
            if is_cancellation(exc):
                self.discard("signer_cancelled")
                raise SigningCancelledError(details=str(exc)) from exc
            raise self._fail(classify_venue_error(exc, "Failed to sign PSBT")) from exc

        if not signed_psbt:
            self.discard("signer_declined")
            raise SigningCancelledError()

        signed_rbf: str | None = None
        if proposal.rbf_psbt_base64:
            try:
                signed_rbf = await signer.sign_psbt(proposal.rbf_psbt_base64) or None
            except Exception as exc:
                # RBF protection is optional; the main PSBT still goes out.
                logger.warning(
                    "psbt_exchange.rbf_signature_skipped",
                    proposal_id=proposal.proposal_id,
                    error=str(exc),
                )

        return SignedProposal(
            originating_proposal_id=proposal.proposal_id,
            signed_psbt_base64=signed_psbt,
            signed_rbf_psbt_base64=signed_rbf,
        )

    async def submit(self, signed: SignedProposal) -> Confirmation:
        """Submit a signed proposal under the id it was prepared with."""
        proposal_id = self._proposal_id
        if proposal_id is None:
            raise InvalidTransitionError(
                f"Cannot submit {self.operation.value} without a prepared proposal",
            )
        if signed.originating_proposal_id != proposal_id:
            raise ProposalMismatchError(
                "Signed PSBT does not belong to the prepared proposal",
                details=f"prepared {proposal_id}, signed {signed.originating_proposal_id}",
            )

        key = (self.operation.value, signed.originating_proposal_id, signed.signed_psbt_base64)
        cached = self._ledger.get(key)
        if cached is not None:
            log_exchange_event(
                "duplicate_submit",
                self.operation.value,
                cached.proposal_id,
                tx_id=cached.tx_id,
            )
            return cached

        self._require(ExchangeState.AWAITING_SIGNATURE)
        self._transition(ExchangeState.SUBMITTING)

        try:
            confirmation = await self._mapper.submit(proposal_id, signed)
        except Exception as exc:
            raise self._fail(
                classify_venue_error(exc, f"Failed to submit {self.operation.value} PSBT"),
            ) from exc

        self._ledger.record(key, confirmation)
        self._transition(ExchangeState.CONFIRMED, tx_id=confirmation.tx_id)
        return confirmation

    def discard(self, reason: str = "discarded") -> None:
        """Drop the in-flight proposal without contacting the venue."""
        if self._state == ExchangeState.CONFIRMED:
            return
        self._transition(ExchangeState.IDLE, reason=reason)
        self._proposal = None
        self._proposal_id = None


class SwapProposalMapper:
    """Liquidity-venue mapping: orders plus wallet keys in, swap PSBT out."""

    operation = OperationKind.SWAP

    def __init__(
        self,
        venue: LiquidityVenue,
        orders: list[RuneOrder],
        wallet: WalletAccounts,
        rune_name: str,
        sell: bool,
        rbf_protection: bool = False,
        slippage: float | None = None,
    ) -> None:
        self._venue = venue
        self._orders = orders
        self._wallet = wallet
        self._rune_name = normalize_rune_name(rune_name)
        self._sell = sell
        self._rbf_protection = rbf_protection
        self._slippage = slippage

    def _base_payload(self) -> dict[str, Any]:
        return {
            "orders": [order.to_venue() for order in self._orders],
            "address": self._wallet.address,
            "publicKey": self._wallet.public_key,
            "paymentAddress": self._wallet.payment_address,
            "paymentPublicKey": self._wallet.payment_public_key,
            "runeName": self._rune_name,
            "sell": self._sell,
            "rbfProtection": self._rbf_protection,
        }

    async def prepare(self, fee_rate: float | None) -> UnsignedProposal:
        payload = self._base_payload()
        if fee_rate is not None:
            payload["feeRate"] = fee_rate
        if self._slippage is not None:
            payload["slippage"] = self._slippage
        response = await self._venue.get_psbt(payload)
        return parse_swap_proposal(response, fee_rate)

    async def submit(self, proposal_id: str, signed: SignedProposal) -> Confirmation:
        payload = self._base_payload()
        payload["signedPsbtBase64"] = signed.signed_psbt_base64
        payload["swapId"] = proposal_id
        if signed.signed_rbf_psbt_base64:
            payload["signedRbfPsbtBase64"] = signed.signed_rbf_psbt_base64

        response = await self._venue.confirm_psbt(payload)
        failure = confirmation_failure(response)
        if failure is not None:
            raise failure
        tx_id = extract_tx_id(response)
        if tx_id is None:
            raise ConfirmationFailedError("Confirmation failed", details="No transaction id returned")
        return Confirmation(
            operation=OperationKind.SWAP, proposal_id=proposal_id, tx_id=tx_id, raw=response,
        )


def _psbt_field(response: dict[str, Any]) -> str | None:
    psbt = response.get("base64_psbt") or response.get("psbt")
    return str(psbt) if psbt else None


class BorrowProposalMapper:
    """Lending-venue mapping for loan start, bound to one session token."""

    operation = OperationKind.BORROW

    def __init__(
        self, venue: LendingVenue, token: str, request: BorrowPrepare | None = None,
    ) -> None:
        self._venue = venue
        self._token = token
        self._request = request

    async def prepare(self, fee_rate: float | None) -> UnsignedProposal:
        request = self._request
        if request is None:
            raise InvalidTransitionError("Loan prepare needs the offer terms")
        if fee_rate is not None:
            request = request.model_copy(update={"fee_rate": fee_rate})
        response = await self._venue.start_loan_prepare(self._token, request.to_venue())

        psbt = _psbt_field(response)
        offer_id = response.get("prepare_offer_id")
        if not psbt or not offer_id:
            raise UpstreamError(
                "Invalid response from Liquidium prepare",
                details="missing base64_psbt or prepare_offer_id",
            )
        return UnsignedProposal(
            operation=OperationKind.BORROW,
            proposal_id=str(offer_id),
            psbt_base64=psbt,
            built_with_fee_rate=request.fee_rate,
            raw=response,
        )

    async def submit(self, proposal_id: str, signed: SignedProposal) -> Confirmation:
        body = BorrowSubmit(
            signed_psbt_base_64=signed.signed_psbt_base64, prepare_offer_id=proposal_id,
        )
        response = await self._venue.start_loan_submit(self._token, body.to_venue())
        tx_id = response.get("loan_transaction_id")
        if not tx_id:
            raise ConfirmationFailedError(
                "Loan submission failed", details="No loan_transaction_id returned",
            )
        return Confirmation(
            operation=OperationKind.BORROW, proposal_id=proposal_id, tx_id=str(tx_id), raw=response,
        )


class RepayProposalMapper:
    """Lending-venue mapping for loan repayment."""

    operation = OperationKind.REPAY

    def __init__(self, venue: LendingVenue, token: str, loan_id: str) -> None:
        self._venue = venue
        self._token = token
        self._loan_id = loan_id

    async def prepare(self, fee_rate: float | None) -> UnsignedProposal:
        if fee_rate is None:
            raise UpstreamError("Repayment requires a fee rate")
        body = RepayPrepare(offer_id=self._loan_id, fee_rate=fee_rate)
        response = await self._venue.repay_prepare(self._token, body.to_venue())

        psbt = _psbt_field(response)
        if not psbt:
            raise UpstreamError(
                "Invalid response from Liquidium repay prepare", details="missing base64_psbt",
            )
        return UnsignedProposal(
            operation=OperationKind.REPAY,
            proposal_id=str(response.get("offer_id") or self._loan_id),
            psbt_base64=psbt,
            built_with_fee_rate=fee_rate,
            raw=response,
        )

    async def submit(self, proposal_id: str, signed: SignedProposal) -> Confirmation:
        body = RepaySubmit(offer_id=proposal_id, signed_psbt_base_64=signed.signed_psbt_base64)
        response = await self._venue.repay_submit(self._token, body.to_venue())
        tx_id = response.get("repayment_transaction_id")
        if not tx_id:
            raise ConfirmationFailedError(
                "Repayment submission failed", details="No repayment_transaction_id returned",
            )
        return Confirmation(
            operation=OperationKind.REPAY, proposal_id=proposal_id, tx_id=str(tx_id), raw=response,
        )
