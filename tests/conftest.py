"""Shared fixtures: a small document corpus with known similarities."""

from datetime import datetime, timedelta, timezone

import pytest

from service_search.app.history.history_sink import InMemoryHistorySink
from service_search.app.models import CategoryRecord, DocumentRecord

from tests.fakes import StaticEmbeddingProvider, build_manager, vector_with_similarity

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _doc(doc_id: str, title: str, age_days: int, **fields) -> DocumentRecord:
    return DocumentRecord(
        id=doc_id,
        title=title,
        updated_at=BASE_TIME - timedelta(days=age_days),
        **fields,
    )


@pytest.fixture
def documents():
    return [
        _doc(
            "ml-intro",
            "Introduction to Machine Learning",
            1,
            description="A gentle overview for newcomers.",
            tags=["ai"],
            language="en",
            category_id="science",
        ),
        _doc(
            "node-tutorial",
            "Node.js Tutorial for Beginners",
            2,
            description="Build servers with JavaScript.",
            tags=["javascript", "backend"],
            language="en",
            category_id="programming",
        ),
        _doc(
            "cooking",
            "Italian Cooking at Home",
            3,
            description="Pasta and sauces.",
            tags=["food"],
            language="en",
        ),
        _doc(
            "ml-vi",
            "Học máy cơ bản",
            4,
            description="Machine learning basics in Vietnamese.",
            tags=["ai"],
            language="vi",
        ),
        _doc(
            "deep-learning",
            "Deep Learning Systems",
            5,
            description="Neural networks and training at scale.",
            summary="Covers learning rate schedules.",
            tags=["ai", "ml"],
            language="en",
            category_id="ai-research",
        ),
    ]


@pytest.fixture
def categories():
    return [
        CategoryRecord(id="science"),
        CategoryRecord(id="ai-research", parent_id="science"),
        CategoryRecord(id="programming"),
    ]


@pytest.fixture
def embeddings():
    return {
        "ml-intro": vector_with_similarity(0.92),
        "node-tutorial": vector_with_similarity(0.30),
        "cooking": vector_with_similarity(0.10),
        "ml-vi": vector_with_similarity(0.85),
        "deep-learning": vector_with_similarity(0.75),
    }


@pytest.fixture
def provider():
    return StaticEmbeddingProvider()


@pytest.fixture
def history_sink():
    return InMemoryHistorySink()


@pytest.fixture
def manager(documents, embeddings, provider, history_sink):
    return build_manager(documents, embeddings, provider=provider, history_sink=history_sink)
