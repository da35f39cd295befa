"""Swap attempt state and event models.

The attempt is an explicit state value advanced only by events; the
ordered event log is the attempt's timeline.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class SwapStep(str, Enum):
    IDLE = "idle"
    GETTING_PSBT = "getting_psbt"
    SIGNING = "signing"
    CONFIRMING = "confirming"
    SUCCESS = "success"
    ERROR = "error"
    QUOTE_EXPIRED = "quote_expired"


class SwapEventKind(str, Enum):
    SWAP_START = "SWAP_START"
    SWAP_STEP = "SWAP_STEP"
    FEE_RETRY = "FEE_RETRY"
    SWAP_SUCCESS = "SWAP_SUCCESS"
    SWAP_ERROR = "SWAP_ERROR"
    QUOTE_EXPIRED = "QUOTE_EXPIRED"
    GENERIC_ERROR = "GENERIC_ERROR"
    RESET_SWAP = "RESET_SWAP"


class SwapEvent(BaseModel):
    """One addressable transition of a swap (or loan) attempt."""

    kind: SwapEventKind
    step: SwapStep | None = None
    tx_id: str | None = None
    error: str | None = None
    fee_rate: float | None = None
    proposal_id: str | None = None
    at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))

    model_config = {"frozen": True}


class SwapState(BaseModel):
    step: SwapStep = SwapStep.IDLE
    in_progress: bool = False
    tx_id: str | None = None
    error: str | None = None
    generic_error: str | None = None
    fee_rate: float | None = None
    proposal_id: str | None = None
    fee_retries: int = 0

    model_config = {"frozen": True}
