"""Embedding provider clients.

``HttpEmbeddingProvider`` calls the embedding service over HTTP with retries
and keeps a bounded TTL cache of recent query vectors. ``HashEmbeddingProvider``
produces deterministic placeholder vectors for local development when no
embedding service is available; its vectors carry no semantic meaning.
"""

import asyncio
import hashlib
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import httpx
import numpy as np
import structlog

from libs.common.config import EmbeddingConfig
from libs.common.metrics import MetricsCollector
from ..exceptions import ProviderError
from ..retrievers.cache_manager import ResultCache

logger = structlog.get_logger("search_service.embedding_client")

# Roughly the provider's 2048-token input window.
MAX_INPUT_CHARS = 8000

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class RetryableEmbeddingError(Exception):
    """Transient failure worth another attempt."""
    pass


class EmbeddingProvider(ABC):
    """Produces a fixed-dimension vector for a piece of text."""

    dimension: int

    @abstractmethod
    async def generate_embedding(self, text: str) -> np.ndarray:
        """Embed ``text``.

        Raises ``ProviderError`` when the text is empty or the vector cannot
        be produced.
        """

    async def close(self) -> None:
        return None


async def call_with_retry(
    func: Callable[[], Awaitable[Any]],
    operation_name: str,
    max_attempts: int,
    base_delay: float,
    max_delay: float,
) -> Any:
    """Execute a coroutine-returning callable with retry and backoff.

    Only ``RetryableEmbeddingError`` triggers another attempt; anything else
    propagates immediately.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return await func()
        except RetryableEmbeddingError as exc:
            if attempt == max_attempts:
                logger.error(
                    "Operation failed after retries",
                    operation=operation_name,
                    attempts=attempt,
                    error=str(exc)
                )
                raise

            delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
            logger.warning(
                "Operation failed, retrying",
                operation=operation_name,
                attempt=attempt,
                max_attempts=max_attempts,
                delay_seconds=delay,
                error=str(exc)
            )
            await asyncio.sleep(delay)

    raise RuntimeError(f"Retry logic failed for {operation_name}")


class HttpEmbeddingProvider(EmbeddingProvider):
    """Client for the embedding service's ``/api/v1/embed`` endpoint."""

    def __init__(
        self,
        service_url: str,
        model: str = "default",
        dimension: int = 768,
        timeout_seconds: float = 10.0,
        retry_attempts: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 8.0,
        cache: Optional[ResultCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        metrics_collector: Optional[MetricsCollector] = None,
    ):
        self.service_url = service_url.rstrip("/")
        self.model = model
        self.dimension = dimension
        self.retry_attempts = max(1, retry_attempts)
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.cache = cache if cache is not None else ResultCache(
            max_entries=1000, ttl_seconds=3600, name="query_embeddings"
        )
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self.metrics_collector = metrics_collector

    @classmethod
    def from_config(
        cls,
        config: EmbeddingConfig,
        metrics_collector: Optional[MetricsCollector] = None,
    ) -> "HttpEmbeddingProvider":
        return cls(
            service_url=config.ds_embedding_service_url,
            model=config.ds_embedding_model,
            dimension=config.ds_vector_dimension,
            timeout_seconds=config.ds_embedding_timeout_seconds,
            retry_attempts=config.ds_embedding_retry_attempts,
            retry_base_delay=config.ds_embedding_retry_base_delay,
            retry_max_delay=config.ds_embedding_retry_max_delay,
            cache=ResultCache(
                max_entries=config.ds_embedding_cache_max_entries,
                ttl_seconds=config.ds_embedding_cache_ttl,
                name="query_embeddings",
            ),
            metrics_collector=metrics_collector,
        )

    async def generate_embedding(self, text: str) -> np.ndarray:
        if not text or not text.strip():
            raise ProviderError("Text cannot be empty")

        text = text[:MAX_INPUT_CHARS]
        cache_key = (self.model, text)
        cached = self.cache.get(cache_key)
        if cached is not None:
            if self.metrics_collector:
                self.metrics_collector.record_cache_hit("query_embeddings")
            return np.array(cached, dtype=np.float32)

        start_time = time.time()
        try:
            vector = await call_with_retry(
                lambda: self._request_embedding(text),
                operation_name="embedding_service_request",
                max_attempts=self.retry_attempts,
                base_delay=self.retry_base_delay,
                max_delay=self.retry_max_delay,
            )
        except ProviderError:
            self._record("error", start_time)
            raise
        except Exception as e:
            self._record("error", start_time)
            logger.error("Embedding service call failed", error=str(e))
            raise ProviderError(f"Embedding service call failed: {e}") from e

        self._record("success", start_time)
        self.cache.put(cache_key, tuple(float(x) for x in vector))
        return vector

    async def _request_embedding(self, text: str) -> np.ndarray:
        """POST to the embedding service to obtain the query vector."""
        try:
            response = await self.http_client.post(
                f"{self.service_url}/api/v1/embed",
                json={
                    "items": [{"text": text}],
                    "model": self.model
                }
            )
        except httpx.TransportError as e:
            raise RetryableEmbeddingError(f"Embedding service unreachable: {e}") from e

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise RetryableEmbeddingError(
                f"Embedding service returned status {response.status_code}"
            )
        if response.status_code != 200:
            raise ProviderError(f"Embedding service returned status {response.status_code}")

        vectors = response.json().get("vectors", [])
        if not vectors or not vectors[0]:
            raise ProviderError("Invalid embedding response format")

        vector = np.asarray(vectors[0], dtype=np.float32)
        if vector.ndim != 1 or vector.shape[0] != self.dimension:
            raise ProviderError(
                f"Embedding dimension mismatch: expected {self.dimension}, got {vector.shape[-1]}"
            )
        if not np.all(np.isfinite(vector)):
            raise ProviderError("Embedding contains non-finite values")
        return vector

    def _record(self, status: str, start_time: float) -> None:
        if self.metrics_collector:
            self.metrics_collector.record_embedding(self.model, status, time.time() - start_time)

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()


class HashEmbeddingProvider(EmbeddingProvider):
    """Deterministic unit-length vectors seeded from a hash of the text."""

    def __init__(self, dimension: int = 768):
        self.dimension = dimension

    async def generate_embedding(self, text: str) -> np.ndarray:
        if not text or not text.strip():
            raise ProviderError("Text cannot be empty")

        digest = hashlib.sha256(text[:MAX_INPUT_CHARS].encode("utf-8")).digest()
        rng = np.random.default_rng(int.from_bytes(digest[:8], "big"))
        vector = rng.standard_normal(self.dimension).astype(np.float32)
        return vector / np.linalg.norm(vector)


def create_embedding_provider(
    config: EmbeddingConfig,
    metrics_collector: Optional[MetricsCollector] = None,
) -> EmbeddingProvider:
    """Build the provider selected by ``ds_embedding_provider``."""
    provider = config.ds_embedding_provider.lower()
    if provider == "hash":
        logger.warning("Using placeholder hash embeddings", dimension=config.ds_vector_dimension)
        return HashEmbeddingProvider(dimension=config.ds_vector_dimension)
    if provider == "http":
        return HttpEmbeddingProvider.from_config(config, metrics_collector=metrics_collector)
    raise ValueError(f"Unsupported embedding provider: {config.ds_embedding_provider}")
