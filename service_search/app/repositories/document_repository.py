"""Document repository used for candidate selection.

Every query applies the same hard filters:

- approved documents only (``is_approved`` matches the filter, default true,
  and ``moderation_status`` is ``APPROVED``)
- ``is_public`` when given
- ``category_id``: the category itself plus all of its active descendants
- ``tags``: at least one shared tag
- ``language`` when given

The repository is read-only; documents are written by the ingestion pipeline.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import asyncpg
import structlog
from asyncpg import Pool

from ..exceptions import DocumentRepositoryError
from ..models import CandidateDocument, CategoryRecord, DocumentRecord, SearchFilters

logger = structlog.get_logger("search_service.document_repository")

APPROVED = "APPROVED"


class DocumentRepository(ABC):

    @abstractmethod
    async def get_candidate_ids(self, filters: SearchFilters) -> List[str]:
        """Ids of every document passing ``filters``."""

    @abstractmethod
    async def find_keyword_candidates(
        self,
        filters: SearchFilters,
        terms: Sequence[str],
        limit: int,
    ) -> List[CandidateDocument]:
        """Filtered documents whose title, description or summary contains any term.

        Matching is case-insensitive substring matching; at most ``limit`` rows.
        """

    @abstractmethod
    async def get_recent_candidates(self, filters: SearchFilters, limit: int) -> List[CandidateDocument]:
        """The ``limit`` most recently updated documents passing ``filters``."""

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so ``term`` matches literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PgDocumentRepository(DocumentRepository):
    """PostgreSQL implementation over ``documents``, ``ai_analyses`` and ``categories``."""

    CANDIDATE_COLUMNS = """
        d.id, d.title, d.description, d.tags, d.updated_at,
        a.summary, a.key_points, a.suggested_tags
    """

    CATEGORY_TREE = """
        d.category_id IN (
            WITH RECURSIVE category_tree AS (
                SELECT id FROM categories WHERE id = ${n}
                UNION ALL
                SELECT c.id FROM categories c
                JOIN category_tree ct ON c.parent_id = ct.id
                WHERE c.is_active
            )
            SELECT id FROM category_tree
        )
    """

    def __init__(self, dsn: Optional[str] = None, pool: Optional[Pool] = None, pool_size: int = 10):
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
                logger.info("Created document repository pool", pool_size=self.pool_size)
            except (OSError, asyncpg.PostgresError) as e:
                logger.error("Failed to create document repository pool", error=str(e))
                raise DocumentRepositoryError(f"Failed to connect: {e}") from e
        return self._pool

    async def _fetch(self, sql: str, params: List[Any]) -> List[asyncpg.Record]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                return await conn.fetch(sql, *params)
        except (OSError, asyncpg.PostgresError) as e:
            logger.error("Document query failed", error=str(e))
            raise DocumentRepositoryError(f"Document query failed: {e}") from e

    def _build_filters(self, filters: SearchFilters) -> Tuple[List[str], List[Any]]:
        """Translate ``filters`` into WHERE clauses and positional params."""
        clauses = ["d.is_approved = $1", "d.moderation_status = $2"]
        params: List[Any] = [filters.is_approved, APPROVED]

        if filters.is_public is not None:
            params.append(filters.is_public)
            clauses.append(f"d.is_public = ${len(params)}")

        if filters.category_id:
            params.append(filters.category_id)
            clauses.append(self.CATEGORY_TREE.replace("{n}", str(len(params))))

        if filters.tags:
            params.append(list(filters.tags))
            clauses.append(f"d.tags && ${len(params)}::text[]")

        if filters.language:
            params.append(filters.language)
            clauses.append(f"d.language = ${len(params)}")

        return clauses, params

    async def get_candidate_ids(self, filters: SearchFilters) -> List[str]:
        clauses, params = self._build_filters(filters)
        sql = f"SELECT d.id FROM documents d WHERE {' AND '.join(clauses)}"
        rows = await self._fetch(sql, params)
        return [row["id"] for row in rows]

    async def find_keyword_candidates(
        self,
        filters: SearchFilters,
        terms: Sequence[str],
        limit: int,
    ) -> List[CandidateDocument]:
        patterns = [f"%{escape_like(term)}%" for term in terms if term]
        if not patterns:
            return []

        clauses, params = self._build_filters(filters)
        params.append(patterns)
        n = len(params)
        clauses.append(
            f"(d.title ILIKE ANY(${n}::text[]) OR d.description ILIKE ANY(${n}::text[])"
            f" OR a.summary ILIKE ANY(${n}::text[]))"
        )
        params.append(limit)

        sql = f"""
            SELECT {self.CANDIDATE_COLUMNS}
            FROM documents d
            LEFT JOIN ai_analyses a ON a.document_id = d.id
            WHERE {' AND '.join(clauses)}
            ORDER BY d.updated_at DESC, d.id
            LIMIT ${len(params)}
        """
        rows = await self._fetch(sql, params)
        return [self._to_candidate(row) for row in rows]

    async def get_recent_candidates(self, filters: SearchFilters, limit: int) -> List[CandidateDocument]:
        clauses, params = self._build_filters(filters)
        params.append(limit)
        sql = f"""
            SELECT {self.CANDIDATE_COLUMNS}
            FROM documents d
            LEFT JOIN ai_analyses a ON a.document_id = d.id
            WHERE {' AND '.join(clauses)}
            ORDER BY d.updated_at DESC, d.id
            LIMIT ${len(params)}
        """
        rows = await self._fetch(sql, params)
        return [self._to_candidate(row) for row in rows]

    @staticmethod
    def _to_candidate(row: Any) -> CandidateDocument:
        return CandidateDocument(
            id=row["id"],
            title=row["title"] or "",
            description=row["description"],
            tags=list(row["tags"] or []),
            summary=row["summary"],
            key_points=list(row["key_points"] or []),
            suggested_tags=list(row["suggested_tags"] or []),
            updated_at=row["updated_at"],
        )

    async def health_check(self) -> bool:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception as e:
            logger.error("Document repository health check failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._pool is not None and self._owns_pool:
            await self._pool.close()
            self._pool = None


class InMemoryDocumentRepository(DocumentRepository):
    """Repository over in-process ``DocumentRecord`` and ``CategoryRecord`` rows."""

    def __init__(
        self,
        documents: Optional[Iterable[DocumentRecord]] = None,
        categories: Optional[Iterable[CategoryRecord]] = None,
    ):
        self._documents: Dict[str, DocumentRecord] = {}
        self._categories: Dict[str, CategoryRecord] = {}
        self._lock = threading.Lock()
        for document in documents or []:
            self.add_document(document)
        for category in categories or []:
            self.add_category(category)

    def add_document(self, document: DocumentRecord) -> None:
        with self._lock:
            self._documents[document.id] = document

    def add_category(self, category: CategoryRecord) -> None:
        with self._lock:
            self._categories[category.id] = category

    def _category_tree(self, root_id: str) -> Set[str]:
        tree = {root_id}
        frontier = [root_id]
        while frontier:
            parent = frontier.pop()
            for category in self._categories.values():
                if category.parent_id == parent and category.is_active and category.id not in tree:
                    tree.add(category.id)
                    frontier.append(category.id)
        return tree

    def _filtered(self, filters: SearchFilters) -> List[DocumentRecord]:
        with self._lock:
            documents = list(self._documents.values())
            categories = self._category_tree(filters.category_id) if filters.category_id else None

        wanted_tags = set(filters.tags or [])
        matched = []
        for document in documents:
            if document.is_approved != filters.is_approved or document.moderation_status != APPROVED:
                continue
            if filters.is_public is not None and document.is_public != filters.is_public:
                continue
            if categories is not None and document.category_id not in categories:
                continue
            if wanted_tags and not wanted_tags.intersection(document.tags):
                continue
            if filters.language and document.language != filters.language:
                continue
            matched.append(document)
        return matched

    @staticmethod
    def _by_recency(documents: List[DocumentRecord]) -> List[DocumentRecord]:
        ordered = sorted(documents, key=lambda d: d.id)
        return sorted(ordered, key=lambda d: d.updated_at, reverse=True)

    async def get_candidate_ids(self, filters: SearchFilters) -> List[str]:
        return [document.id for document in self._filtered(filters)]

    async def find_keyword_candidates(
        self,
        filters: SearchFilters,
        terms: Sequence[str],
        limit: int,
    ) -> List[CandidateDocument]:
        needles = [term.lower() for term in terms if term]
        if not needles:
            return []

        matched = []
        for document in self._by_recency(self._filtered(filters)):
            haystacks = [
                (document.title or "").lower(),
                (document.description or "").lower(),
                (document.summary or "").lower(),
            ]
            if any(needle in haystack for needle in needles for haystack in haystacks):
                matched.append(document.to_candidate())
                if len(matched) >= limit:
                    break
        return matched

    async def get_recent_candidates(self, filters: SearchFilters, limit: int) -> List[CandidateDocument]:
        return [d.to_candidate() for d in self._by_recency(self._filtered(filters))[:limit]]
