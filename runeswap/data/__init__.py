"""Venue connectivity, fee estimation, caching and token storage."""

from __future__ import annotations

from runeswap.data.liquidium_client import LiquidiumClient
from runeswap.data.mempool_client import MempoolFeeClient
from runeswap.data.redis_cache import RedisCache
from runeswap.data.sats_terminal_client import SatsTerminalClient
from runeswap.data.token_repository import PostgresTokenRepository

__all__ = [
    "LiquidiumClient",
    "MempoolFeeClient",
    "PostgresTokenRepository",
    "RedisCache",
    "SatsTerminalClient",
]
