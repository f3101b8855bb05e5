"""Vector store factory.

Centralizes creation of concrete ``VectorStore`` backends so callers don't
depend on implementation details.
"""

from enum import Enum
from typing import Any, Dict

import structlog

from .base import VectorStore
from .memory import InMemoryVectorStore
from .pgvector import PgVectorStore

logger = structlog.get_logger("vector_store.factory")


class VectorStoreType(Enum):
    """Supported vector store types."""
    PGVECTOR = "pgvector"
    MEMORY = "memory"


class VectorStoreFactory:
    """Factory for creating vector store instances."""

    @staticmethod
    def create(store_type: VectorStoreType, config: Dict[str, Any]) -> VectorStore:
        """Create a vector store instance.

        Parameters
        - store_type: A ``VectorStoreType`` enum value
        - config: Backend-specific parameters (e.g., DSN for pgvector)
        """
        if store_type == VectorStoreType.PGVECTOR:
            dsn = config.get("dsn")
            if not dsn:
                raise ValueError("PgVector requires 'dsn' in config")

            return PgVectorStore(
                dsn=dsn,
                pool_size=config.get("pool_size", 10),
                max_queries=config.get("max_queries", 50000),
                command_timeout=config.get("command_timeout", 60),
                vector_dimension=config.get("vector_dimension"),
            )

        elif store_type == VectorStoreType.MEMORY:
            return InMemoryVectorStore(
                vector_dimension=config.get("vector_dimension"),
                native_similarity=config.get("native_similarity", True),
            )

        else:
            raise ValueError(f"Unsupported vector store type: {store_type}")

    @staticmethod
    def create_from_config(config: Dict[str, Any]) -> VectorStore:
        """Create vector store from configuration dictionary.

        Expects a ``type`` key and any implementation-specific fields.
        """
        store_type_str = config.get("type", "pgvector")

        try:
            store_type = VectorStoreType(store_type_str)
        except ValueError:
            raise ValueError(f"Unsupported vector store type: {store_type_str}")

        return VectorStoreFactory.create(store_type, config)


def create_vector_store_from_env(env_config: Dict[str, str]) -> VectorStore:
    """Create vector store from environment configuration.

    Parameters
    - env_config: A flat mapping of environment variable names to values

    Returns
    - A ``VectorStore`` configured to talk to the backing datastore
    """
    backend = env_config.get("DS_VECTOR_BACKEND", "pgvector")

    if backend == "pgvector":
        config = {
            "type": "pgvector",
            "dsn": env_config.get("DS_DB_DSN"),
            "pool_size": int(env_config.get("DS_VECTOR_POOL_SIZE", "10")),
            "max_queries": int(env_config.get("DS_VECTOR_MAX_QUERIES", "50000")),
            "command_timeout": int(env_config.get("DS_VECTOR_COMMAND_TIMEOUT", "60")),
            "vector_dimension": int(env_config.get("DS_VECTOR_DIMENSION", "768")),
        }

        if not config["dsn"]:
            raise ValueError("DS_DB_DSN environment variable is required")

    elif backend == "memory":
        config = {
            "type": "memory",
            "vector_dimension": int(env_config.get("DS_VECTOR_DIMENSION", "768")),
        }

    else:
        raise ValueError(f"Unsupported vector backend: {backend}")

    logger.info("Creating vector store", backend=backend)
    return VectorStoreFactory.create_from_config(config)
