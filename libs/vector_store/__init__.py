"""Vector store adapters and utilities.

Primary components:
- ``base``: abstract ``VectorStore`` interface, ``SimilarityQueryResult`` and
  common exceptions.
- ``pgvector``: PostgreSQL/pgvector implementation of the interface.
- ``memory``: in-process implementation for development and tests.
- ``factory``: helpers to construct a store from typed config or env.
"""
