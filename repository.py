"""
repository.py — Persistence for catalog records and recommendation results.

ProductRepository is the interface the pipeline talks to; InMemoryRepository
backs tests and database-less deployments, AsyncPGRepository is the
PostgreSQL implementation on an asyncpg pool. Records are upserted by id;
recommendation results are write-once per (user_id, timestamp).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Sequence

import asyncpg

from models import (
    CatalogRecord, DuplicateResultError, PersistenceError, RecommendationResult,
)

logger = logging.getLogger(__name__)

# ── Interface ────────────────────────────────────────────────────────────────

class ProductRepository:
    """
    Abstract storage. Implementations are swappable; the pipeline only
    depends on these four operations.
    """

    async def upsert_products(self, records: Sequence[CatalogRecord]) -> int:
        """Insert or replace by id. Returns the number of records written."""
        raise NotImplementedError

    async def get_product(self, product_id: str) -> Optional[CatalogRecord]:
        raise NotImplementedError

    async def save_recommendation(self, result: RecommendationResult) -> None:
        """Raises DuplicateResultError when (user_id, timestamp) already exists."""
        raise NotImplementedError

    async def get_recommendations(self, user_id: str, limit: int = 20) -> list[RecommendationResult]:
        """Most recent first."""
        raise NotImplementedError

    async def health_check(self) -> dict:
        return {"status": "healthy"}

    async def close(self) -> None:
        pass


class InMemoryRepository(ProductRepository):
    """In-memory implementation for testing without a database."""

    def __init__(self):
        self.products: dict[str, CatalogRecord] = {}
        self.results: dict[tuple[str, str], RecommendationResult] = {}

    async def upsert_products(self, records: Sequence[CatalogRecord]) -> int:
        for record in records:
            self.products[record.id] = record
        return len(records)

    async def get_product(self, product_id: str) -> Optional[CatalogRecord]:
        return self.products.get(product_id)

    async def save_recommendation(self, result: RecommendationResult) -> None:
        if result.key in self.results:
            raise DuplicateResultError(f"Result already saved for {result.key}")
        self.results[result.key] = result

    async def get_recommendations(self, user_id: str, limit: int = 20) -> list[RecommendationResult]:
        found = [r for r in self.results.values() if r.user_id == user_id]
        found.sort(key=lambda r: r.timestamp, reverse=True)
        return found[:limit]

    async def health_check(self) -> dict:
        return {
            "status": "healthy",
            "backend": "memory",
            "products": len(self.products),
            "results": len(self.results),
        }


# ── Connection Pool Manager ──────────────────────────────────────────────────

class DatabasePool:
    """Manages asyncpg connection pool lifecycle."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    async def initialize(self) -> None:
        self._pool = await asyncpg.create_pool(
            self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            command_timeout=30,
        )
        logger.info(
            "Database pool initialized (min=%d, max=%d)", self.min_size, self.max_size
        )

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")
        return self._pool

    @asynccontextmanager
    async def acquire(self):
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self):
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            logger.info("Database pool closed")


# ── PostgreSQL Repository ────────────────────────────────────────────────────

SCHEMA = """
CREATE TABLE IF NOT EXISTS catalog_records (
    id          TEXT PRIMARY KEY,
    upc         TEXT,
    brand       TEXT NOT NULL DEFAULT '',
    name        TEXT NOT NULL,
    source      TEXT NOT NULL,
    data        JSONB NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL,
    updated_at  TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_catalog_records_upc ON catalog_records (upc);

CREATE TABLE IF NOT EXISTS recommendation_results (
    user_id     TEXT NOT NULL,
    ts          TIMESTAMPTZ NOT NULL,
    data        JSONB NOT NULL,
    PRIMARY KEY (user_id, ts)
);
"""


class AsyncPGRepository(ProductRepository):
    """
    Records are stored whole as JSONB alongside a few indexed columns.
    Results are insert-only; the (user_id, ts) primary key enforces
    write-once.
    """

    def __init__(self, db: DatabasePool):
        self.db = db

    async def create_schema(self) -> None:
        async with self.db.acquire() as conn:
            await conn.execute(SCHEMA)

    # ── Catalog records ──────────────────────────────────────────────────

    async def upsert_products(self, records: Sequence[CatalogRecord]) -> int:
        if not records:
            return 0
        now = datetime.now(timezone.utc)
        try:
            async with self.db.transaction() as conn:
                stmt = await conn.prepare(
                    """
                    INSERT INTO catalog_records (id, upc, brand, name, source, data,
                                                 created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $7)
                    ON CONFLICT (id) DO UPDATE SET
                        upc = EXCLUDED.upc,
                        brand = EXCLUDED.brand,
                        name = EXCLUDED.name,
                        source = EXCLUDED.source,
                        data = EXCLUDED.data,
                        updated_at = EXCLUDED.updated_at
                    """
                )
                for record in records:
                    await stmt.fetch(
                        record.id,
                        record.upc,
                        record.brand,
                        record.name,
                        record.source.value,
                        record.model_dump_json(),
                        now,
                    )
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Upsert of {len(records)} records failed: {e}") from e
        logger.debug("Upserted %d catalog records", len(records))
        return len(records)

    async def get_product(self, product_id: str) -> Optional[CatalogRecord]:
        async with self.db.acquire() as conn:
            data = await conn.fetchval(
                "SELECT data::text FROM catalog_records WHERE id = $1", product_id
            )
        return CatalogRecord.model_validate_json(data) if data else None

    # ── Recommendation results ───────────────────────────────────────────

    async def save_recommendation(self, result: RecommendationResult) -> None:
        try:
            async with self.db.acquire() as conn:
                await conn.execute(
                    "INSERT INTO recommendation_results (user_id, ts, data) "
                    "VALUES ($1, $2, $3::jsonb)",
                    result.user_id,
                    result.timestamp,
                    result.model_dump_json(),
                )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateResultError(f"Result already saved for {result.key}") from e
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Saving result for {result.user_id} failed: {e}") from e

    async def get_recommendations(self, user_id: str, limit: int = 20) -> list[RecommendationResult]:
        async with self.db.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT data::text AS data FROM recommendation_results
                WHERE user_id = $1
                ORDER BY ts DESC
                LIMIT $2
                """,
                user_id,
                limit,
            )
        return [RecommendationResult.model_validate_json(r["data"]) for r in rows]

    # ── Health Check ─────────────────────────────────────────────────────

    async def health_check(self) -> dict:
        try:
            async with self.db.acquire() as conn:
                version = await conn.fetchval("SELECT version()")
                pool = self.db.pool
                return {
                    "status": "healthy",
                    "backend": "postgres",
                    "postgres_version": version,
                    "pool_size": pool.get_size(),
                    "pool_free": pool.get_idle_size(),
                }
        except Exception as e:
            return {"status": "unhealthy", "error": str(e)}

    async def close(self) -> None:
        await self.db.close()
