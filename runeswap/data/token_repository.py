"""PostgreSQL persistence for lending-venue session tokens."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

import psycopg
import psycopg.rows
from psycopg_pool import AsyncConnectionPool

from runeswap.core.logging import get_logger
from runeswap.errors import StoreError
from runeswap.models.session import SessionToken

if TYPE_CHECKING:
    from datetime import datetime

log = get_logger(__name__)

CREATE_TOKENS_TABLE = """
CREATE TABLE IF NOT EXISTS liquidium_tokens (
    wallet_address   TEXT        PRIMARY KEY,
    ordinals_address TEXT,
    payment_address  TEXT,
    jwt              TEXT        NOT NULL,
    expires_at       TIMESTAMPTZ,
    last_used_at     TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

UPSERT_TOKEN = """
INSERT INTO liquidium_tokens
    (wallet_address, ordinals_address, payment_address, jwt, expires_at, last_used_at)
VALUES (%s, %s, %s, %s, %s, %s)
ON CONFLICT (wallet_address) DO UPDATE SET
    ordinals_address = EXCLUDED.ordinals_address,
    payment_address  = EXCLUDED.payment_address,
    jwt              = EXCLUDED.jwt,
    expires_at       = EXCLUDED.expires_at,
    last_used_at     = EXCLUDED.last_used_at;
"""

SELECT_TOKEN = """
SELECT wallet_address, ordinals_address, payment_address, jwt, expires_at, last_used_at
FROM liquidium_tokens
WHERE wallet_address = %s
LIMIT 1;
"""

TOUCH_TOKEN = """
UPDATE liquidium_tokens SET last_used_at = %s WHERE wallet_address = %s;
"""


class PostgresTokenRepository:
    """One row per wallet address; writes are upserts, last write wins.

    Reads connection URL from RUNESWAP_DATABASE_URL env var. Every psycopg
    failure surfaces as StoreError, never as a missing row.
    """

    def __init__(self, dsn: str | None = None, min_pool: int = 1, max_pool: int = 5) -> None:
        self._dsn = dsn or os.environ.get("RUNESWAP_DATABASE_URL", "")
        self._min_pool = min_pool
        self._max_pool = max_pool
        self._pool: AsyncConnectionPool[psycopg.AsyncConnection[Any]] | None = None

    async def open(self) -> None:
        """Open connection pool."""
        self._pool = AsyncConnectionPool(
            conninfo=self._dsn,
            min_size=self._min_pool,
            max_size=self._max_pool,
            open=False,
        )
        await self._pool.open()
        log.info("token_repository.pool_opened")

    async def close(self) -> None:
        """Close connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            log.info("token_repository.pool_closed")

    def _require_pool(self) -> AsyncConnectionPool[psycopg.AsyncConnection[Any]]:
        if self._pool is None:
            raise StoreError("Token store is not connected")
        return self._pool

    async def create_tables(self) -> None:
        pool = self._require_pool()
        async with pool.connection() as conn:
            await conn.execute(CREATE_TOKENS_TABLE)
            await conn.commit()
        log.info("token_repository.tables_created")

    async def fetch(self, wallet_address: str) -> SessionToken | None:
        pool = self._require_pool()
        try:
            async with (
                pool.connection() as conn,
                conn.cursor(row_factory=psycopg.rows.dict_row) as cur,
            ):
                await cur.execute(SELECT_TOKEN, (wallet_address,))
                row: dict[str, Any] | None = await cur.fetchone()
        except psycopg.Error as exc:
            log.error("token_repository.fetch_failed", wallet_address=wallet_address, error=str(exc))
            raise StoreError("Database error retrieving authentication", details=str(exc)) from exc

        if row is None or not row.get("jwt"):
            return None
        return SessionToken(
            wallet_address=row["wallet_address"],
            token=row["jwt"],
            expires_at=row.get("expires_at"),
            last_used_at=row["last_used_at"],
            ordinals_address=row.get("ordinals_address"),
            payment_address=row.get("payment_address"),
        )

    async def upsert(self, token: SessionToken) -> None:
        pool = self._require_pool()
        try:
            async with pool.connection() as conn:
                await conn.execute(
                    UPSERT_TOKEN,
                    (
                        token.wallet_address,
                        token.ordinals_address,
                        token.payment_address,
                        token.token,
                        token.expires_at,
                        token.last_used_at,
                    ),
                )
                await conn.commit()
        except psycopg.Error as exc:
            log.error("token_repository.upsert_failed", wallet_address=token.wallet_address, error=str(exc))
            raise StoreError("Failed to store Liquidium JWT", details=str(exc)) from exc

    async def touch(self, wallet_address: str, at: datetime) -> None:
        pool = self._require_pool()
        try:
            async with pool.connection() as conn:
                await conn.execute(TOUCH_TOKEN, (at, wallet_address))
                await conn.commit()
        except psycopg.Error as exc:
            log.error("token_repository.touch_failed", wallet_address=wallet_address, error=str(exc))
            raise StoreError("Database error updating authentication", details=str(exc)) from exc
