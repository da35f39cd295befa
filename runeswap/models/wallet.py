"""Wallet account details supplied by the connected wallet."""

from __future__ import annotations

from pydantic import BaseModel


class WalletAccounts(BaseModel):
    """Ordinals and payment accounts of the connected wallet."""

    address: str
    public_key: str
    payment_address: str
    payment_public_key: str

    model_config = {"frozen": True}

    @property
    def is_complete(self) -> bool:
        return all((self.address, self.public_key, self.payment_address, self.payment_public_key))
