"""Search history sinks.

History rows are written after a search completes and never influence its
result. Writes without a user id are skipped.
"""

import json
import threading
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any, Dict, List, Optional

import asyncpg
import structlog
from asyncpg import Pool

from libs.vector_store.pgvector import to_vector_literal
from ..exceptions import HistorySinkError
from ..models import SearchHistoryRecord

logger = structlog.get_logger("search_service.history_sink")


class HistorySink(ABC):

    @abstractmethod
    async def record(self, entry: SearchHistoryRecord) -> None:
        """Persist one history row. Raises ``HistorySinkError`` on failure."""

    @abstractmethod
    async def get_user_history(self, user_id: str, limit: int = 50) -> List[SearchHistoryRecord]:
        """Most recent searches of ``user_id``, newest first."""

    @abstractmethod
    async def get_popular_queries(self, limit: int = 10) -> List[Dict[str, Any]]:
        """``{"query", "count"}`` pairs ordered by count, most frequent first."""

    async def close(self) -> None:
        return None


class PgHistorySink(HistorySink):
    """Writes to the ``search_history`` table."""

    INSERT_QUERY = """
        INSERT INTO search_history
            (user_id, query, query_embedding, search_method, top_score,
             results_count, filters, searched_at)
        VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8)
    """

    USER_HISTORY_QUERY = """
        SELECT user_id, query, search_method, top_score, results_count,
               filters::text AS filters, searched_at
        FROM search_history
        WHERE user_id = $1
        ORDER BY searched_at DESC
        LIMIT $2
    """

    POPULAR_QUERY = """
        SELECT query, COUNT(*) AS count
        FROM search_history
        GROUP BY query
        ORDER BY count DESC, query
        LIMIT $1
    """

    def __init__(self, dsn: Optional[str] = None, pool: Optional[Pool] = None, pool_size: int = 5):
        if dsn is None and pool is None:
            raise ValueError("Either dsn or pool is required")
        self.dsn = dsn
        self.pool_size = pool_size
        self._pool = pool
        self._owns_pool = pool is None

    async def _get_pool(self) -> Pool:
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(self.dsn, min_size=1, max_size=self.pool_size)
            except (OSError, asyncpg.PostgresError) as e:
                raise HistorySinkError(f"Failed to connect: {e}") from e
        return self._pool

    async def record(self, entry: SearchHistoryRecord) -> None:
        pool = await self._get_pool()
        embedding = to_vector_literal(entry.embedding) if entry.embedding else None
        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    self.INSERT_QUERY,
                    entry.user_id,
                    entry.query,
                    embedding,
                    entry.method,
                    entry.score,
                    entry.result_count,
                    json.dumps(entry.filters),
                    entry.searched_at,
                )
        except (OSError, asyncpg.PostgresError) as e:
            raise HistorySinkError(f"Failed to write search history: {e}") from e

    async def get_user_history(self, user_id: str, limit: int = 50) -> List[SearchHistoryRecord]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(self.USER_HISTORY_QUERY, user_id, limit)
        except (OSError, asyncpg.PostgresError) as e:
            raise HistorySinkError(f"Failed to read search history: {e}") from e

        return [
            SearchHistoryRecord(
                user_id=row["user_id"],
                query=row["query"],
                embedding=None,
                method=row["search_method"],
                score=row["top_score"],
                result_count=row["results_count"],
                filters=json.loads(row["filters"]) if row["filters"] else {},
                searched_at=row["searched_at"],
            )
            for row in rows
        ]

    async def get_popular_queries(self, limit: int = 10) -> List[Dict[str, Any]]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(self.POPULAR_QUERY, limit)
        except (OSError, asyncpg.PostgresError) as e:
            raise HistorySinkError(f"Failed to read popular searches: {e}") from e
        return [{"query": row["query"], "count": row["count"]} for row in rows]

    async def close(self) -> None:
        if self._pool is not None and self._owns_pool:
            await self._pool.close()
            self._pool = None


class InMemoryHistorySink(HistorySink):

    def __init__(self):
        self.records: List[SearchHistoryRecord] = []
        self._lock = threading.Lock()

    async def record(self, entry: SearchHistoryRecord) -> None:
        with self._lock:
            self.records.append(entry)

    async def get_user_history(self, user_id: str, limit: int = 50) -> List[SearchHistoryRecord]:
        with self._lock:
            rows = [r for r in self.records if r.user_id == user_id]
        rows.sort(key=lambda r: r.searched_at, reverse=True)
        return rows[:limit]

    async def get_popular_queries(self, limit: int = 10) -> List[Dict[str, Any]]:
        with self._lock:
            counts = Counter(r.query for r in self.records)
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [{"query": query, "count": count} for query, count in ranked[:limit]]
