"""Unsigned/signed PSBT proposal models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class OperationKind(str, Enum):
    SWAP = "swap"
    BORROW = "borrow"
    REPAY = "repay"


class UnsignedProposal(BaseModel):
    """PSBT built by a venue, owned by the attempt that requested it.

    ``proposal_id`` is the venue's swap id or offer id and doubles as the
    idempotency key on submit. Superseded, never patched, on retry.
    """

    operation: OperationKind
    proposal_id: str
    psbt_base64: str
    built_with_fee_rate: float | None = None
    rbf_psbt_base64: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    raw: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class SignedProposal(BaseModel):
    """Signed counterpart of an UnsignedProposal; consumed once by submit."""

    originating_proposal_id: str
    signed_psbt_base64: str
    signed_rbf_psbt_base64: str | None = None

    model_config = {"frozen": True}


class Confirmation(BaseModel):
    """Venue acknowledgement of a submitted proposal."""

    operation: OperationKind
    proposal_id: str
    tx_id: str
    raw: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}
