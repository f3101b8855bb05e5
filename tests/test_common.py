"""Tests for common utilities."""

import pytest
from pydantic import ValidationError
from prometheus_client import CollectorRegistry

from libs.common.config import (
    DEFAULT_KEYWORD_WEIGHTS,
    BaseConfig,
    EmbeddingConfig,
    SearchConfig,
    get_config,
)
from libs.common.logging import configure_logging, log_performance
from libs.common.metrics import MetricsCollector


def test_config_loading():
    """Test configuration loading."""
    config = BaseConfig(_env_file=None)
    assert config.ds_env == "local"
    assert config.ds_log_level == "INFO"
    assert config.ds_vector_dimension == 768


def test_embedding_config():
    """Test embedding configuration."""
    config = EmbeddingConfig(_env_file=None)
    assert config.ds_embedding_provider == "http"
    assert config.ds_embedding_retry_attempts == 3
    assert config.ds_embedding_service_url == "http://localhost:9006"


def test_search_config_defaults():
    """Test search ranking and cache defaults."""
    config = SearchConfig(_env_file=None)
    assert config.ds_search_vector_weight == 0.65
    assert config.ds_search_boost_tiers == [(0.90, 1.15), (0.80, 1.10), (0.70, 1.05)]
    assert config.ds_search_keyword_weights == DEFAULT_KEYWORD_WEIGHTS
    assert config.ds_search_cache_max_entries == 500
    assert config.ds_search_cache_ttl_seconds == 300.0
    assert config.ds_search_default_limit == 10
    assert config.ds_search_max_limit == 50
    assert config.ds_search_vector_threshold == 0.5
    assert config.ds_search_hybrid_threshold == 0.4


def test_search_config_from_environment(monkeypatch):
    """Environment variables override defaults case-insensitively."""
    monkeypatch.setenv("DS_SEARCH_VECTOR_WEIGHT", "0.5")
    monkeypatch.setenv("DS_SEARCH_MAX_LIMIT", "20")
    config = SearchConfig(_env_file=None)
    assert config.ds_search_vector_weight == 0.5
    assert config.ds_search_max_limit == 20


def test_search_config_sorts_boost_tiers():
    config = SearchConfig(_env_file=None, ds_search_boost_tiers=[(0.7, 1.05), (0.9, 1.2)])
    assert config.ds_search_boost_tiers == [(0.9, 1.2), (0.7, 1.05)]


@pytest.mark.parametrize(
    "overrides",
    [
        {"ds_search_vector_weight": 1.5},
        {"ds_search_boost_tiers": [(0.9, 0.8)]},
        {"ds_search_keyword_weights": {**DEFAULT_KEYWORD_WEIGHTS, "title": 0.9}},
        {"ds_search_keyword_weights": {"title": 1.0}},
    ],
)
def test_search_config_rejects_invalid_ranking(overrides):
    with pytest.raises(ValidationError):
        SearchConfig(_env_file=None, **overrides)


def test_get_config():
    assert isinstance(get_config("search"), SearchConfig)
    assert isinstance(get_config("embedding"), EmbeddingConfig)
    assert type(get_config("unknown")) is BaseConfig


def test_logging_configuration():
    """Test logging configuration."""
    # This should not raise an exception
    configure_logging("test-service", "INFO", "json")
    configure_logging("test-service", "debug", "console")
    log_performance("unit_test", 1.5, results_count=3)


def test_metrics_collector():
    """Test metrics collector."""
    collector = MetricsCollector("test-service", registry=CollectorRegistry())
    assert collector.service_name == "test-service"

    collector.record_http_request("GET", "/test", 200, 0.1)
    collector.record_search("hybrid", 0.02)
    collector.record_search_failure("vector")
    collector.record_leg_failure("keyword")
    collector.record_embedding("test-model", "success", 0.05)
    collector.record_vector_store_operation("fallback")
    collector.record_cache_hit("search_results")
    collector.record_cache_miss("search_results")

    metrics = collector.get_metrics()
    assert isinstance(metrics, str)
    assert "http_requests_total" in metrics
    assert 'ds_search_requests_total{query_type="hybrid"} 1.0' in metrics
    assert 'ds_vector_store_operations_total{operation="fallback"} 1.0' in metrics
    assert 'ds_cache_hits_total{cache_type="search_results"} 1.0' in metrics
