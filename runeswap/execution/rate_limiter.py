"""Per-key fixed-window rate limiter for the HTTP surface.

Best-effort and process-local: entries live in memory, are lost on restart
and are not shared across replicas. Not a security boundary.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from runeswap.core.logging import get_logger

logger = get_logger(__name__)

UNKNOWN_CLIENT = "unknown"


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check."""

    allowed: bool
    count: int
    retry_after_seconds: int | None = None


@dataclass
class _Entry:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """Window-by-reset approximation of a sliding window.

    The first request for a key opens a window of ``window_ms``; requests
    inside it are counted until ``count >= limit``, after which they are
    rejected until the window has passed and the entry resets. Expired
    entries are swept at most once per window so the map tracks only the
    identities seen recently.

    ``admit`` never awaits, so a single event loop cannot interleave two
    checks for the same key. Rapid duplicates from one identity across
    processes are counted independently.
    """

    def __init__(self, clock: Callable[[], float] = _monotonic_ms) -> None:
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._next_sweep_at = 0.0

    def admit(self, key: str, limit: int, window_ms: int) -> RateLimitDecision:
        now = self._clock()
        if now >= self._next_sweep_at:
            self._sweep(now)
            self._next_sweep_at = now + window_ms
        entry = self._entries.get(key)

        if entry is None or now > entry.reset_at:
            self._entries[key] = _Entry(count=1, reset_at=now + window_ms)
            return RateLimitDecision(allowed=True, count=1)

        if entry.count >= limit:
            retry_after = max(1, math.ceil((entry.reset_at - now) / 1000.0))
            logger.warning(
                "rate_limit.rejected",
                key=key,
                count=entry.count,
                retry_after_seconds=retry_after,
            )
            return RateLimitDecision(
                allowed=False, count=entry.count, retry_after_seconds=retry_after,
            )

        entry.count += 1
        return RateLimitDecision(allowed=True, count=entry.count)

    def count(self, key: str) -> int:
        entry = self._entries.get(key)
        if entry is None or self._clock() > entry.reset_at:
            return 0
        return entry.count

    def purge_expired(self) -> int:
        """Drop entries whose window has passed. Returns how many were dropped."""
        return self._sweep(self._clock())

    def _sweep(self, now: float) -> int:
        stale = [k for k, e in self._entries.items() if now > e.reset_at]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)


def client_identity(headers: Mapping[str, str]) -> str:
    """Derive the limiter identity from proxy headers.

    First hop of X-Forwarded-For, else X-Real-IP, else one shared bucket.
    Both headers are client-controlled unless a trusted proxy rewrites them.
    """
    forwarded = headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    return UNKNOWN_CLIENT


def rate_limit_key(route_key: str, identity: str) -> str:
    return f"{route_key}:{identity}"
