"""Session token lifecycle for the lending venue.

Tokens are keyed by wallet address and replaced wholesale on every
re-authentication. Two concurrent authentications for the same address
race on the upsert and the last write wins; the product allows a single
live session per address, so no version check is made.
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from runeswap.core.logging import get_logger, redact
from runeswap.errors import (
    AuthExpiredError,
    AuthRequiredError,
    RuneSwapError,
    StoreError,
    UpstreamError,
    classify_venue_error,
)
from runeswap.execution.quote_window import utc_now
from runeswap.models.session import AuthSubmission, SessionToken

if TYPE_CHECKING:
    from runeswap.interfaces import LendingVenue, TokenRepository

logger = get_logger(__name__)


def decode_jwt_payload(jwt: str) -> dict[str, Any] | None:
    """Decode a JWT payload without verifying it.

    The venue has already validated the signature it issued; only ``exp``
    is read here.
    """
    parts = jwt.split(".")
    if len(parts) != 3:
        return None
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(segment))
    except (binascii.Error, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


def jwt_expiry(jwt: str) -> datetime | None:
    payload = decode_jwt_payload(jwt)
    if payload is None or not isinstance(payload.get("exp"), (int, float)):
        return None
    try:
        return datetime.fromtimestamp(payload["exp"], tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


class SessionTokenStore:
    """Gatekeeper for every lending-venue call made on a wallet's behalf."""

    def __init__(
        self,
        repository: TokenRepository,
        venue: LendingVenue,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._venue = venue
        self._clock = clock

    async def _fetch(self, wallet_address: str) -> SessionToken | None:
        try:
            return await self._repository.fetch(wallet_address)
        except StoreError:
            raise
        except Exception as exc:
            logger.error("session_store.fetch_failed", wallet_address=wallet_address, error=str(exc))
            raise StoreError("Database error retrieving authentication", details=str(exc)) from exc

    async def get_valid_token(self, wallet_address: str) -> str:
        """Return the live token for an address and record its use.

        Raises:
            AuthRequiredError: No token stored for the address.
            AuthExpiredError: The stored token's expiry has passed.
            StoreError: The repository failed.
        """
        token = await self._fetch(wallet_address)
        if token is None:
            logger.warning("session_store.no_token", wallet_address=wallet_address)
            raise AuthRequiredError()

        now = self._clock()
        if token.is_expired(now):
            logger.info(
                "session_store.token_expired",
                wallet_address=wallet_address,
                expires_at=token.expires_at.isoformat() if token.expires_at else None,
            )
            raise AuthExpiredError()

        await self._repository.touch(wallet_address, now)
        return token.token

    async def issue_token(self, submission: AuthSubmission) -> SessionToken:
        """Exchange a signed challenge for a session token and store it.

        The new row supersedes any earlier token for the ordinals address.
        """
        try:
            response = await self._venue.auth_submit(submission.to_venue())
        except RuneSwapError:
            raise
        except Exception as exc:
            raise classify_venue_error(exc, "Liquidium authentication failed") from exc

        jwt = response.get("user_jwt")
        if not isinstance(jwt, str) or not jwt:
            raise UpstreamError("Liquidium authentication failed", details="No user_jwt returned")

        expires_at = jwt_expiry(jwt)
        if expires_at is None:
            logger.warning(
                "session_store.jwt_expiry_unreadable",
                wallet_address=submission.ordinals_address,
            )

        token = SessionToken(
            wallet_address=submission.ordinals_address,
            ordinals_address=submission.ordinals_address,
            payment_address=submission.payment_address,
            token=jwt,
            expires_at=expires_at,
            last_used_at=self._clock(),
        )
        logger.info(
            "session_store.upsert",
            **redact(token.model_dump(mode="json"), "token"),
        )
        await self._repository.upsert(token)
        return token
