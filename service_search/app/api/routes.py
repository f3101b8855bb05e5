"""API routes for search service."""

import time
from typing import Any, Dict, List, Literal, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ..exceptions import SearchServiceError
from ..hybrid.search_manager import SearchManager
from ..models import SearchFilters

logger = structlog.get_logger("search_service.api")

router = APIRouter()


class SearchFiltersModel(BaseModel):
    """Hard filters applied before scoring."""
    category_id: Optional[str] = Field(None, description="Category, including its descendants")
    tags: Optional[List[str]] = Field(None, description="Match documents sharing any tag")
    language: Optional[str] = Field(None, description="Document language code")
    is_public: Optional[bool] = Field(None, description="Restrict to public or private documents")
    is_approved: bool = Field(True, description="Approval state to match")

    def to_filters(self) -> SearchFilters:
        return SearchFilters.from_dict(self.model_dump())


class SearchRequest(BaseModel):
    """Request model for search endpoint."""
    query: str = Field(..., description="Search query")
    search_type: Literal["hybrid", "vector", "keyword"] = Field("hybrid", description="Retrieval mode")
    filters: Optional[SearchFiltersModel] = Field(None, description="Search filters")
    limit: Optional[int] = Field(None, ge=1, description="Maximum number of results (capped server-side)")
    threshold: Optional[float] = Field(None, ge=0.0, le=1.0, description="Minimum similarity threshold")
    user_id: Optional[str] = Field(None, description="User to attribute search history to")


class SearchResult(BaseModel):
    """Search result model."""
    document_id: str = Field(..., description="Document ID")
    score: float = Field(..., description="Relevance score in [0, 1]")
    vector_score: Optional[float] = Field(None, description="Embedding similarity, when available")
    text_score: Optional[float] = Field(None, description="Keyword relevance, when available")


class SearchResponse(BaseModel):
    """Response model for search endpoint."""
    results: List[SearchResult] = Field(..., description="Search results")
    total: int = Field(..., description="Total number of results")
    query: str = Field(..., description="Original query")
    search_type: str = Field(..., description="Retrieval mode used")
    latency_ms: float = Field(..., description="Search latency in milliseconds")


class HistoryEntry(BaseModel):
    query: str
    method: str
    score: Optional[float] = None
    result_count: int
    filters: Dict[str, Any]
    searched_at: str


class PopularQuery(BaseModel):
    query: str
    count: int


def get_search_manager(request: Request) -> SearchManager:
    """Get search manager from application state."""
    return request.app.state.search_manager


@router.post("/search", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    search_manager: SearchManager = Depends(get_search_manager),
):
    """Rank documents for a free-text query."""
    start_time = time.time()
    filters = request.filters.to_filters() if request.filters else None

    try:
        results = await search_manager.search(
            query=request.query,
            filters=filters,
            limit=request.limit,
            threshold=request.threshold,
            search_type=request.search_type,
            user_id=request.user_id,
        )
    except SearchServiceError as e:
        logger.error("Search failed", search_type=request.search_type, error=str(e))
        raise HTTPException(status_code=500, detail="Search failed")

    latency_ms = (time.time() - start_time) * 1000
    search_results = [
        SearchResult(
            document_id=result.document_id,
            score=result.combined_score,
            vector_score=result.vector_score,
            text_score=result.text_score,
        )
        for result in results
    ]

    return SearchResponse(
        results=search_results,
        total=len(search_results),
        query=request.query,
        search_type=request.search_type,
        latency_ms=latency_ms,
    )


@router.get("/search/metrics")
async def get_search_metrics(search_manager: SearchManager = Depends(get_search_manager)):
    """Search counters and result cache statistics."""
    return {
        "metrics": search_manager.get_metrics().to_dict(),
        "cache": search_manager.cache.get_stats(),
    }


@router.delete("/search/cache")
async def clear_search_cache(search_manager: SearchManager = Depends(get_search_manager)):
    """Drop every cached search result."""
    search_manager.clear_cache()
    return {"status": "success", "message": "Search cache cleared"}


@router.get("/search/history/{user_id}", response_model=List[HistoryEntry])
async def get_user_history(
    user_id: str,
    limit: int = Query(50, ge=1, le=200, description="Maximum number of entries"),
    search_manager: SearchManager = Depends(get_search_manager),
):
    """Recent searches of one user, newest first."""
    try:
        records = await search_manager.get_user_history(user_id, limit)
    except SearchServiceError as e:
        logger.error("Failed to get search history", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to get search history")

    return [
        HistoryEntry(
            query=r.query,
            method=r.method,
            score=r.score,
            result_count=r.result_count,
            filters=r.filters,
            searched_at=r.searched_at.isoformat(),
        )
        for r in records
    ]


@router.get("/search/popular", response_model=List[PopularQuery])
async def get_popular_searches(
    limit: int = Query(10, ge=1, le=100, description="Maximum number of queries"),
    search_manager: SearchManager = Depends(get_search_manager),
):
    """Most frequent queries across all users."""
    try:
        popular = await search_manager.get_popular_queries(limit)
    except SearchServiceError as e:
        logger.error("Failed to get popular searches", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to get popular searches")

    return [PopularQuery(**item) for item in popular]
