"""Shared httpx transport for venue clients: bounded timeout, small retry budget."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from runeswap.core.logging import get_logger
from runeswap.errors import VenueUnavailableError

log = get_logger(__name__)

# Client errors the venue decided on; resending cannot change the answer.
_NO_RETRY_STATUSES = frozenset({400, 401, 403, 404, 409, 410, 422, 429})


class VenueTransport:
    """Lazily created AsyncClient plus the transport-level retry loop.

    Retries cover transport failures and 5xx only; this is independent of
    any business-level retry an orchestrator performs.
    """

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout_seconds: float = 10.0,
        retries: int = 2,
        retry_delay_seconds: float = 1.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = headers or {}
        self._timeout = timeout_seconds
        self._retries = retries
        self._retry_delay = retry_delay_seconds
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._headers,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Raises:
            httpx.HTTPStatusError: Non-2xx response after the retry budget.
            httpx.TransportError: Network failure after the retry budget.
            VenueUnavailableError: 2xx response whose body is not JSON.
        """
        client = await self._get_client()
        attempt = 0
        while True:
            try:
                resp = await client.request(
                    method, path, json=json, params=params, headers=headers,
                )
                resp.raise_for_status()
                break
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status in _NO_RETRY_STATUSES or status < 500 or attempt >= self._retries:
                    raise
                self._log_retry(method, path, attempt, f"HTTP {status}")
            except httpx.TransportError as exc:
                if attempt >= self._retries:
                    raise
                self._log_retry(method, path, attempt, type(exc).__name__)
            attempt += 1
            await asyncio.sleep(self._retry_delay)

        try:
            return resp.json()
        except ValueError:
            log.error("venue_transport.invalid_json", path=path, status=resp.status_code)
            raise VenueUnavailableError(details="invalid json response body") from None

    def _log_retry(self, method: str, path: str, attempt: int, reason: str) -> None:
        log.warning(
            "venue_transport.retry",
            method=method,
            path=path,
            attempt=attempt + 1,
            max_retries=self._retries,
            reason=reason,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
