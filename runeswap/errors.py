"""Error taxonomy shared by the venue clients, orchestrators and HTTP surface.

Every failure that leaves this package is a ``RuneSwapError`` subclass with
an HTTP status and a stable code. Venue failures arrive as arbitrary
exceptions (httpx errors, JSON error bodies, SDK-style messages) and are
mapped onto the taxonomy by ``classify_venue_error``.
"""

from __future__ import annotations

import json
import re
from typing import Any

import httpx

_QUOTE_EXPIRED_CODE = "ERR677K3"
_INSUFFICIENT_FUNDS_CODE = "ERR0W25K"
_FEE_PATTERN = re.compile(r"\bfee\b", re.IGNORECASE)

INSUFFICIENT_FUNDS_HELP = (
    "Not enough confirmed spendable funds!\n\n"
    "Possible solutions:\n"
    "1. You might have pending Bitcoin transactions. Check your pending "
    "transactions on mempool.space or in your wallet and wait for them to confirm.\n"
    "2. Your Bitcoin might be on a different address type. Verify which address "
    "type you're connected with (Native SegWit, Nested SegWit, Taproot, or Legacy) "
    "and ensure your funds are on that address."
)


class RuneSwapError(Exception):
    """Base class for every typed failure."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"message": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(RuneSwapError):
    status_code = 400
    code = "validation_error"


class ProposalMismatchError(ValidationError):
    """A signed payload was paired with a different prepare call's id."""

    code = "proposal_mismatch"


class AuthRequiredError(RuneSwapError):
    status_code = 401
    code = "auth_required"

    def __init__(
        self,
        message: str = "Liquidium authentication required",
        details: str | None = (
            "No JWT found for this address. Please authenticate with Liquidium first."
        ),
    ) -> None:
        super().__init__(message, details)


class AuthExpiredError(RuneSwapError):
    status_code = 401
    code = "auth_expired"

    def __init__(
        self,
        message: str = "Authentication expired",
        details: str | None = (
            "Your authentication has expired. Please re-authenticate with Liquidium."
        ),
    ) -> None:
        super().__init__(message, details)


class NoLiquidityError(RuneSwapError):
    status_code = 404
    code = "no_liquidity"


class QuoteExpiredError(RuneSwapError):
    status_code = 410
    code = "quote_expired"

    def __init__(
        self,
        message: str = "Quote expired. Please fetch a new quote.",
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)


class ConfirmationFailedError(RuneSwapError):
    status_code = 422
    code = "confirmation_failed"


class RateLimitedError(RuneSwapError):
    status_code = 429
    code = "rate_limited"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after_seconds: int | None = None,
        details: str | None = None,
    ) -> None:
        if details is None:
            details = (
                f"Try again in {retry_after_seconds}s"
                if retry_after_seconds is not None
                else "Please try again later"
            )
        super().__init__(message, details)
        self.retry_after_seconds = retry_after_seconds


class StoreError(RuneSwapError):
    status_code = 500
    code = "store_error"


class UpstreamError(RuneSwapError):
    """Unclassified venue failure; the original message rides in details."""

    status_code = 500
    code = "upstream_error"


class VenueUnavailableError(RuneSwapError):
    status_code = 503
    code = "venue_unavailable"

    def __init__(
        self,
        message: str = "API service unavailable",
        details: str | None = "The venue API is currently unavailable. Please try again later.",
    ) -> None:
        super().__init__(message, details)


class FeeTooLowError(RuneSwapError):
    status_code = 400
    code = "fee_too_low"

    def __init__(self, message: str = "Fee rate too low", details: str | None = None) -> None:
        super().__init__(message, details)


class InsufficientFundsError(RuneSwapError):
    status_code = 400
    code = "insufficient_funds"

    def __init__(
        self,
        message: str = INSUFFICIENT_FUNDS_HELP,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)


class SigningCancelledError(RuneSwapError):
    """The wallet signer declined or the user aborted; never sent over HTTP."""

    status_code = 499
    code = "signing_cancelled"

    def __init__(self, message: str = "User canceled the request", details: str | None = None) -> None:
        super().__init__(message, details)


class InvalidTransitionError(RuneSwapError):
    """An exchange or attempt was driven out of order."""

    status_code = 409
    code = "invalid_transition"


def _response_error(response: httpx.Response) -> tuple[str, str | None]:
    """Extract (message, venue code) from an error response body."""
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        text = response.text.strip()
        return text or f"HTTP {response.status_code}", None

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = str(error.get("message") or error.get("details") or "")
            code = error.get("code") or body.get("code")
        else:
            message = str(error or body.get("message") or body.get("detail") or "")
            code = body.get("code")
        return message or f"HTTP {response.status_code}", str(code) if code else None
    return str(body), None


def error_message(exc: BaseException) -> tuple[str, str | None, int | None]:
    """Return (message, venue code, http status) for any venue exception."""
    if isinstance(exc, httpx.HTTPStatusError):
        message, code = _response_error(exc.response)
        return message, code, exc.response.status_code
    code = getattr(exc, "code", None)
    status = getattr(exc, "status", None)
    return str(exc), str(code) if code else None, status if isinstance(status, int) else None


def classify_venue_error(
    exc: BaseException,
    default_message: str = "Venue request failed",
) -> RuneSwapError:
    """Map a venue exception onto the error taxonomy.

    Already-typed errors pass through unchanged. Anything that does not
    match a known pattern degrades to ``UpstreamError`` with the original
    message attached as details.
    """
    if isinstance(exc, RuneSwapError):
        return exc

    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return VenueUnavailableError(details=str(exc) or type(exc).__name__)

    message, code, status = error_message(exc)
    lowered = message.lower()

    if "quote expired" in lowered or code == _QUOTE_EXPIRED_CODE or status == 410:
        return QuoteExpiredError(details=message)
    if "rate limit" in lowered or status == 429:
        return RateLimitedError()
    if (
        "unexpected token" in lowered
        or "invalid json response body" in lowered
        or "temporarily unavailable" in lowered
        or status in (502, 503, 504)
    ):
        return VenueUnavailableError()
    if "not enough confirmed spendable funds" in lowered or code == _INSUFFICIENT_FUNDS_CODE:
        return InsufficientFundsError(details=message)
    if "no marketplace found" in lowered or "no valid orders" in lowered:
        return NoLiquidityError("No orders available for this trade", details=message)
    if "liquidity" in lowered:
        return NoLiquidityError("No liquidity available", details=message)
    if "network fee rate not high enough" in lowered or "fee rate" in lowered:
        return FeeTooLowError(details=message)
    if status == 401:
        return AuthExpiredError(details=message)

    return UpstreamError(default_message, details=message)


def is_fee_error(detail: str) -> bool:
    """True when a confirmation detail string is about the fee."""
    return bool(_FEE_PATTERN.search(detail)) or "fee rate" in detail.lower()
