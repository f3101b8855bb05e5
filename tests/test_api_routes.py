"""Tests for the HTTP surface of the search service."""

import asyncio

import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from libs.common.metrics import MetricsCollector
from service_search.app.main import create_app
from service_search.app.models import SearchHistoryRecord
from tests.fakes import FailingRepository, StaticEmbeddingProvider, build_manager


def _client(manager) -> TestClient:
    collector = MetricsCollector("test", registry=CollectorRegistry())
    return TestClient(create_app(search_manager=manager, metrics_collector=collector))


@pytest.fixture
def client(manager):
    with _client(manager) as test_client:
        yield test_client


def test_search_endpoint(client):
    response = client.post(
        "/api/v1/search",
        json={
            "query": "Machine learning basics",
            "filters": {"language": "en"},
            "limit": 5,
            "threshold": 0.4,
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["search_type"] == "hybrid"
    assert data["query"] == "Machine learning basics"
    assert data["total"] == 2
    assert [r["document_id"] for r in data["results"]] == ["ml-intro", "deep-learning"]
    assert 0.0 <= data["results"][0]["score"] <= 1.0
    assert data["latency_ms"] >= 0.0
    assert "X-Process-Time" in response.headers


def test_keyword_search_endpoint(client):
    response = client.post("/api/v1/search", json={"query": "deep learning", "search_type": "keyword"})
    assert response.status_code == 200
    first = response.json()["results"][0]
    assert first["document_id"] == "deep-learning"
    assert first["vector_score"] is None


@pytest.mark.parametrize(
    "payload",
    [
        {"query": "x", "threshold": 2},
        {"query": "x", "limit": 0},
        {"query": "x", "search_type": "fuzzy"},
        {"limit": 5},
    ],
)
def test_search_rejects_invalid_requests(client, payload):
    assert client.post("/api/v1/search", json=payload).status_code == 422


def test_search_failure_returns_500(documents, embeddings):
    manager = build_manager(
        documents,
        embeddings,
        provider=StaticEmbeddingProvider(error=RuntimeError("provider down")),
        repository=FailingRepository(fail_keyword=True),
    )
    with _client(manager) as client:
        response = client.post("/api/v1/search", json={"query": "machine learning"})

    assert response.status_code == 500
    assert response.json()["detail"] == "Search failed"


def test_search_metrics_and_cache_endpoints(client):
    client.post("/api/v1/search", json={"query": "machine learning"})
    client.post("/api/v1/search", json={"query": "machine learning"})

    data = client.get("/api/v1/search/metrics").json()
    assert data["metrics"]["total_searches"] == 2
    assert data["metrics"]["cache_hits"] == 1
    assert data["cache"]["size"] == 1

    response = client.delete("/api/v1/search/cache")
    assert response.status_code == 200
    assert response.json()["status"] == "success"
    assert client.get("/api/v1/search/metrics").json()["cache"]["size"] == 0


def test_history_and_popular_endpoints(manager, history_sink, client):
    for user_id, query in [("u1", "python"), ("u1", "rust"), ("u2", "python")]:
        asyncio.run(
            history_sink.record(
                SearchHistoryRecord(
                    user_id=user_id,
                    query=query,
                    embedding=None,
                    method="keyword",
                    score=0.5,
                    result_count=1,
                    filters={},
                )
            )
        )

    history = client.get("/api/v1/search/history/u1").json()
    assert sorted(entry["query"] for entry in history) == ["python", "rust"]
    assert all(entry["method"] == "keyword" for entry in history)

    assert client.get("/api/v1/search/history/u1", params={"limit": 0}).status_code == 422

    popular = client.get("/api/v1/search/popular", params={"limit": 1}).json()
    assert popular == [{"query": "python", "count": 2}]


def test_health_and_prometheus_endpoints(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"

    client.post("/api/v1/search", json={"query": "machine learning"})
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "http_requests_total" in metrics.text

    assert client.get("/").json()["service"] == "search-service"
