"""Swap routes: quotes, PSBT create/confirm and fee estimates."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from runeswap.api.limits import enforce_rate_limit
from runeswap.api.responses import EnvelopeRoute, ok
from runeswap.api.schemas import PsbtConfirmRequest, PsbtCreateRequest, QuoteRequest
from runeswap.api.services import Services, get_services
from runeswap.core.logging import get_logger
from runeswap.errors import QuoteExpiredError
from runeswap.execution.psbt_exchange import PsbtExchange, SwapProposalMapper
from runeswap.models.fees import FeeTier, initial_fee
from runeswap.models.proposal import SignedProposal
from runeswap.models.quote import normalize_rune_name

log = get_logger(__name__)

router = APIRouter(tags=["swap"], route_class=EnvelopeRoute)


@router.post("/quote")
async def fetch_quote(
    body: QuoteRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> JSONResponse:
    enforce_rate_limit(request, services, "sats:quote")
    payload: dict[str, Any] = {
        "btcAmount": body.btc_amount,
        "address": body.address,
        "runeName": normalize_rune_name(body.rune_name),
        "sell": body.sell,
    }
    if body.sell:
        # Lets the venue fill sells from its AMM when the order book is thin.
        payload["fill"] = True
    return ok(await services.liquidity.fetch_quote(payload))


@router.post("/psbt/create")
async def create_psbt(
    body: PsbtCreateRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> JSONResponse:
    enforce_rate_limit(request, services, "sats:psbt:create")

    if body.quote_fetched_at is not None and not services.quote_window.fetched_at_is_valid(
        body.quote_fetched_at,
    ):
        raise QuoteExpiredError(details=f"Quote fetched at {body.quote_fetched_at.isoformat()}")

    fee_rate = services.forced_fee_rate or body.fee_rate
    if fee_rate is None:
        rates = await services.fees.get_fee_rates()
        fee_rate = initial_fee(rates, body.sell).rate

    log.info(
        "liquidity_routes.create_psbt",
        fee_rate=fee_rate,
        sell=body.sell,
        rune_name=body.rune_name,
        forced_fee_rate_applied=services.forced_fee_rate is not None,
    )
    mapper = SwapProposalMapper(
        services.liquidity,
        body.orders,
        body.wallet(),
        body.rune_name,
        sell=body.sell,
        rbf_protection=body.rbf_protection,
        slippage=body.slippage if body.slippage is not None else 0,
    )
    proposal = await PsbtExchange(mapper, services.ledger).prepare(fee_rate)
    return ok(proposal.raw)


@router.post("/psbt/confirm")
async def confirm_psbt(
    body: PsbtConfirmRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> JSONResponse:
    enforce_rate_limit(request, services, "sats:psbt:confirm")

    mapper = SwapProposalMapper(
        services.liquidity,
        body.orders,
        body.wallet(),
        body.rune_name,
        sell=body.sell,
        rbf_protection=body.rbf_protection,
    )
    exchange = PsbtExchange(mapper, services.ledger)
    exchange.resume(body.swap_id)
    signed = SignedProposal(
        originating_proposal_id=body.swap_id,
        signed_psbt_base64=body.signed_psbt_base64,
        signed_rbf_psbt_base64=(
            body.signed_rbf_psbt_base64 if body.rbf_protection else None
        ),
    )
    confirmation = await exchange.submit(signed)
    return ok(confirmation.raw)


@router.get("/fees/recommended")
async def recommended_fees(services: Services = Depends(get_services)) -> JSONResponse:
    rates = await services.fees.get_fee_rates()
    data = rates.model_dump(by_alias=True)
    data["priorityFee"] = rates.rate_for(FeeTier.PRIORITY)
    return ok(data)
