"""Lending routes: wallet authentication, loans, collateral ranges and portfolio.

Every route that acts for a wallet resolves its session token first, so a
missing or expired token answers 401 before the venue is contacted.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from runeswap.api.limits import enforce_rate_limit
from runeswap.api.responses import EnvelopeRoute, ok
from runeswap.api.schemas import (
    AuthRequest,
    BorrowPrepareRequest,
    BorrowSubmitRequest,
    RepayRequest,
)
from runeswap.api.services import Services, get_services
from runeswap.core.logging import get_logger, redact
from runeswap.errors import ValidationError
from runeswap.execution.borrow_ranges import BorrowRangeLookup
from runeswap.execution.psbt_exchange import (
    BorrowProposalMapper,
    PsbtExchange,
    RepayProposalMapper,
)
from runeswap.models.loan import BorrowPrepare
from runeswap.models.proposal import SignedProposal

log = get_logger(__name__)

router = APIRouter(prefix="/liquidium", tags=["liquidium"], route_class=EnvelopeRoute)


@router.get("/challenge")
async def challenge(
    ordinals_address: str | None = Query(default=None, alias="ordinalsAddress"),
    payment_address: str | None = Query(default=None, alias="paymentAddress"),
    wallet: str | None = Query(default=None),
    services: Services = Depends(get_services),
) -> JSONResponse:
    if not ordinals_address or not payment_address:
        raise ValidationError(
            "Missing addresses",
            details="Both ordinalsAddress and paymentAddress are required",
        )
    data = await services.lending.auth_prepare(
        ordinals_address, payment_address, wallet or services.default_wallet,
    )
    return ok(data)


@router.post("/auth")
async def authenticate(
    body: AuthRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> JSONResponse:
    enforce_rate_limit(request, services, "liquidium:auth")
    token = await services.sessions.issue_token(body.submission())
    log.info(
        "liquidium_routes.authenticated",
        **redact({"wallet_address": token.wallet_address, "jwt": token.token}, "jwt"),
    )
    return ok({"jwt": token.token})


@router.post("/borrow/prepare")
async def borrow_prepare(
    body: BorrowPrepareRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> JSONResponse:
    enforce_rate_limit(request, services, "liquidium:borrow:prepare")
    token = await services.sessions.get_valid_token(body.address)

    prepare = BorrowPrepare(
        instant_offer_id=str(body.instant_offer_id),
        fee_rate=body.fee_rate,
        token_amount=body.token_amount,
        borrower_payment_address=body.borrower_payment_address,
        borrower_payment_pubkey=body.borrower_payment_pubkey,
        borrower_ordinal_address=body.borrower_ordinal_address,
        borrower_ordinal_pubkey=body.borrower_ordinal_pubkey,
        borrower_wallet=services.default_wallet,
        collateral_asset_id=body.collateral_asset_id,
    )
    exchange = PsbtExchange(BorrowProposalMapper(services.lending, token, prepare), services.ledger)
    proposal = await exchange.prepare(body.fee_rate)
    return ok(proposal.raw)


@router.post("/borrow/submit")
async def borrow_submit(
    body: BorrowSubmitRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> JSONResponse:
    enforce_rate_limit(request, services, "liquidium:borrow:submit")
    token = await services.sessions.get_valid_token(body.address)

    offer_id = str(body.prepare_offer_id)
    exchange = PsbtExchange(
        BorrowProposalMapper(services.lending, token), services.ledger,
    )
    exchange.resume(offer_id)
    confirmation = await exchange.submit(
        SignedProposal(originating_proposal_id=offer_id, signed_psbt_base64=body.signed_psbt_base_64),
    )
    return ok(confirmation.raw)


@router.post("/repay")
async def repay(
    body: RepayRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> JSONResponse:
    enforce_rate_limit(request, services, "liquidium:repay")
    token = await services.sessions.get_valid_token(body.address)

    exchange = PsbtExchange(
        RepayProposalMapper(services.lending, token, body.loan_id), services.ledger,
    )
    if body.signed_psbt:
        exchange.resume(body.loan_id)
        confirmation = await exchange.submit(
            SignedProposal(originating_proposal_id=body.loan_id, signed_psbt_base64=body.signed_psbt),
        )
        return ok(confirmation.raw)

    fee_rate = (
        body.fee_rate
        if body.fee_rate is not None and body.fee_rate > 0
        else services.default_repay_fee_rate
    )
    proposal = await exchange.prepare(fee_rate)
    return ok(proposal.raw)


@router.get("/borrow/quotes")
async def borrow_quotes(
    request: Request,
    rune_id: str = Query(alias="runeId", min_length=1),
    rune_amount: str = Query(alias="runeAmount", min_length=1, pattern=r"^\d+$"),
    address: str = Query(min_length=1, max_length=100),
    services: Services = Depends(get_services),
) -> JSONResponse:
    enforce_rate_limit(request, services, "liquidium:borrow:quotes")
    token = await services.sessions.get_valid_token(address.strip())
    data = await services.lending.get_borrow_offers(token, rune_id.strip(), rune_amount)
    return ok(data)


@router.get("/borrow/ranges")
async def borrow_ranges(
    request: Request,
    rune_id: str = Query(alias="runeId", min_length=1),
    address: str = Query(min_length=1, max_length=100),
    services: Services = Depends(get_services),
) -> JSONResponse:
    enforce_rate_limit(request, services, "liquidium:borrow:ranges")
    rune_id, address = rune_id.strip(), address.strip()
    if not rune_id or not address:
        raise ValidationError("Invalid request", details="runeId and address must not be blank")
    lookup = BorrowRangeLookup(
        services.lending,
        services.sessions,
        services.cache,
        ttl_seconds=services.borrow_range_ttl_seconds,
    )
    result = await lookup.get(rune_id, address)
    return ok(result.to_response())

@router.get("/portfolio")
async def portfolio(
    address: str | None = Query(default=None),
    services: Services = Depends(get_services),
) -> JSONResponse:
    if not address:
        raise ValidationError("Missing address", details="address query param is required")
    token = await services.sessions.get_valid_token(address)
    raw = await services.lending.get_portfolio(token)
    return ok({"loans": _loans(raw), "rawPortfolio": raw})


def _loans(portfolio: dict[str, Any]) -> list[Any]:
    for side in ("borrower", "lender"):
        loans = ((portfolio.get(side) or {}).get("runes") or {}).get("loans")
        if loans is not None:
            return list(loans)
    return []

