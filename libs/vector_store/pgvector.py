"""PgVector implementation of the document embedding store.

Embeddings live in the ``document_embeddings`` table. Cosine similarity is
computed with the ``<=>`` operator and converted to ``1 - distance``.

Query vectors are sent as text literals (``[0.1,0.2,...]``) cast to
``::vector`` so no codec registration is needed; a database without the
extension therefore still serves the fallback path.

Connection management
- A shared asyncpg pool is created on demand and reused across calls
- Queries are funneled through ``_execute_query`` for uniform error handling
"""

import json
from typing import Any, Dict, Iterable, Optional, Sequence

import asyncpg
import numpy as np
import structlog
from asyncpg import Pool

from .base import (
    UNSUPPORTED,
    SimilarityQueryResult,
    VectorStore,
    VectorStoreConnectionError,
    VectorStoreQueryError,
)

logger = structlog.get_logger("vector_store.pgvector")

# SQLSTATE 42704 (undefined_object) and 42883 (undefined_function) are what
# PostgreSQL reports when the ``vector`` type or its operators are missing.
CAPABILITY_ERRORS = (
    asyncpg.exceptions.UndefinedObjectError,
    asyncpg.exceptions.UndefinedFunctionError,
)


def to_vector_literal(vector: Iterable[float]) -> str:
    """Format a vector as a pgvector text literal."""
    array = np.asarray(vector, dtype=np.float64)
    return "[" + ",".join(repr(float(v)) for v in array.tolist()) + "]"


def parse_vector_literal(value: Optional[str]) -> Optional[np.ndarray]:
    """Parse ``[1,2,3]`` (pgvector) or ``{1,2,3}`` (float array) text."""
    if value is None:
        return None
    text = value.strip()
    if text.startswith("{") and text.endswith("}"):
        text = "[" + text[1:-1] + "]"
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    if not isinstance(parsed, list):
        return None
    try:
        return np.asarray(parsed, dtype=np.float64)
    except (TypeError, ValueError):
        return None


class PgVectorStore(VectorStore):
    """PgVector implementation of the embedding store."""

    SIMILARITY_QUERY = """
        SELECT de.document_id AS document_id,
               1 - (de.embedding <=> $1::vector) AS similarity
        FROM document_embeddings de
        WHERE de.document_id = ANY($2::text[])
          AND 1 - (de.embedding <=> $1::vector) >= $3
        ORDER BY de.embedding <=> $1::vector
        LIMIT $4
    """

    EMBEDDINGS_QUERY = """
        SELECT document_id, embedding::text AS embedding
        FROM document_embeddings
        WHERE document_id = ANY($1::text[])
    """

    CAPABILITY_QUERY = "SELECT 1 FROM pg_extension WHERE extname = 'vector'"

    def __init__(
        self,
        dsn: str,
        pool_size: int = 10,
        max_queries: int = 50000,
        command_timeout: int = 60,
        vector_dimension: Optional[int] = None,
    ):
        """Configure a PgVector-backed store.

        Parameters
        - dsn: PostgreSQL DSN including database and credentials
        - pool_size: Max size of asyncpg connection pool
        - max_queries: Queries per connection before recycling
        - command_timeout: Seconds to allow per DB command
        - vector_dimension: Expected dimensionality of query vectors
        """
        self.dsn = dsn
        self.pool_size = pool_size
        self.max_queries = max_queries
        self.command_timeout = command_timeout
        self.vector_dimension = vector_dimension
        self._pool: Optional[Pool] = None
        self._native_supported: Optional[bool] = None

    async def _get_pool(self) -> Pool:
        """Get or create connection pool.

        Lazily initializes an asyncpg pool so callers don't pay startup cost
        unless/until they make a call that requires the database.
        """
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    max_queries=self.max_queries,
                    command_timeout=self.command_timeout,
                )
                logger.info("Created PgVector connection pool", pool_size=self.pool_size)
            except (OSError, asyncpg.PostgresError) as e:
                logger.error("Failed to create PgVector connection pool", error=str(e))
                raise VectorStoreConnectionError(f"Failed to create connection pool: {e}") from e

        return self._pool

    async def _execute_query(
        self,
        query: str,
        *args: Any,
        fetch_one: bool = False
    ) -> Any:
        """Execute a read query, wrapping driver failures in ``VectorStoreQueryError``.

        Capability errors are re-raised untouched so callers can map them to
        ``UNSUPPORTED``.
        """
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                if fetch_one:
                    return await conn.fetchrow(query, *args)
                return await conn.fetch(query, *args)
        except CAPABILITY_ERRORS:
            raise
        except asyncpg.PostgresError as e:
            logger.error("Query execution failed", error=str(e))
            raise VectorStoreQueryError(f"Query failed: {e}") from e

    async def supports_native_similarity(self) -> bool:
        """Check once whether the ``vector`` extension is installed."""
        if self._native_supported is None:
            row = await self._execute_query(self.CAPABILITY_QUERY, fetch_one=True)
            self._native_supported = row is not None
            logger.info("Probed pgvector capability", supported=self._native_supported)
        return self._native_supported

    async def search_similar(
        self,
        query_vector: np.ndarray,
        document_ids: Sequence[str],
        similarity_threshold: float = 0.0,
        limit: int = 10,
    ) -> SimilarityQueryResult:
        """Search for similar vectors using cosine distance."""
        if not document_ids:
            return SimilarityQueryResult.ok([])

        if not await self.supports_native_similarity():
            return UNSUPPORTED

        vector_array = self._ensure_vector_dimension(query_vector)

        try:
            rows = await self._execute_query(
                self.SIMILARITY_QUERY,
                to_vector_literal(vector_array),
                list(document_ids),
                float(similarity_threshold),
                int(limit),
            )
        except CAPABILITY_ERRORS as e:
            # Extension present but unusable (e.g. dropped since the probe).
            logger.warning("Native similarity unavailable", error=str(e))
            self._native_supported = False
            return UNSUPPORTED

        results = [(row["document_id"], float(row["similarity"])) for row in rows]

        logger.info(
            "Vector similarity search completed",
            query_vector_dim=len(vector_array),
            candidate_count=len(document_ids),
            limit=limit,
            results_count=len(results)
        )
        return SimilarityQueryResult.ok(results)

    async def get_embeddings(self, document_ids: Sequence[str]) -> Dict[str, np.ndarray]:
        """Fetch raw vectors for the given documents, skipping unparsable rows."""
        if not document_ids:
            return {}

        rows = await self._execute_query(self.EMBEDDINGS_QUERY, list(document_ids))

        embeddings: Dict[str, np.ndarray] = {}
        for row in rows:
            vector = parse_vector_literal(row["embedding"])
            if vector is None:
                logger.debug("Skipping unparsable embedding", document_id=row["document_id"])
                continue
            embeddings[row["document_id"]] = vector
        return embeddings

    async def health_check(self) -> bool:
        """Check if the vector store is healthy."""
        try:
            await self._execute_query("SELECT 1", fetch_one=True)
            return True
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Closed PgVector connection pool")

    def _ensure_vector_dimension(self, vector: Iterable[float]) -> np.ndarray:
        """Ensure a vector matches the expected dimensionality."""
        array = np.asarray(vector, dtype=np.float64)
        if array.ndim != 1:
            raise ValueError("Vector must be one-dimensional")

        if self.vector_dimension is not None and array.shape[0] != self.vector_dimension:
            raise ValueError(
                f"Expected vector dimension {self.vector_dimension}, "
                f"got {array.shape[0]}"
            )
        return array
