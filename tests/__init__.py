"""Tests for the document search service.

Everything runs in-process: the in-memory repository, vector store and history
sink stand in for PostgreSQL, and a static embedding provider replaces the
remote embedding service.
"""
