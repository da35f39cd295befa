"""Lending-venue session token and authentication models."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


class SessionToken(BaseModel):
    """Bearer token for one wallet address; at most one live row per address."""

    wallet_address: str
    token: str
    expires_at: datetime | None = None
    last_used_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    ordinals_address: str | None = None
    payment_address: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class AuthSubmission(BaseModel):
    """Signed challenge returned by the wallet for the lending venue."""

    ordinals_address: str
    payment_address: str
    ordinals_signature: str
    ordinals_nonce: str
    payment_signature: str | None = None
    payment_nonce: str | None = None

    def to_venue(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ordinals": {
                "address": self.ordinals_address,
                "signature": self.ordinals_signature,
                "nonce": self.ordinals_nonce,
            },
        }
        if self.payment_signature and self.payment_nonce:
            payload["payment"] = {
                "address": self.payment_address,
                "signature": self.payment_signature,
                "nonce": self.payment_nonce,
            }
        return payload
