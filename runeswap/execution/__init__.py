"""Execution layer: admission control, sessions, PSBT exchange and orchestrators."""

from __future__ import annotations

from runeswap.execution.loan_orchestrator import LoanOrchestrator
from runeswap.execution.psbt_exchange import (
    BorrowProposalMapper,
    ExchangeState,
    PsbtExchange,
    RepayProposalMapper,
    SwapProposalMapper,
)
from runeswap.execution.quote_window import QuoteWindow
from runeswap.execution.rate_limiter import FixedWindowRateLimiter, RateLimitDecision
from runeswap.execution.session_store import SessionTokenStore
from runeswap.execution.swap_orchestrator import SwapAttempt, SwapOrchestrator, apply_event

__all__ = [
    "BorrowProposalMapper",
    "ExchangeState",
    "FixedWindowRateLimiter",
    "LoanOrchestrator",
    "PsbtExchange",
    "QuoteWindow",
    "RateLimitDecision",
    "RepayProposalMapper",
    "SessionTokenStore",
    "SwapAttempt",
    "SwapOrchestrator",
    "SwapProposalMapper",
    "apply_event",
]
